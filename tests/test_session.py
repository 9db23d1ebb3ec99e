"""End-to-end tests of host/guest sessions over a loopback push service."""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional

import pytest
from pushlink.chunking import encode_chunk, split
from pushlink.config import ReassemblyConfig, TransportConfig
from pushlink.identity import LocalIdentity, LocalSubscription
from pushlink.models import AssetTransfer, LogicalMessage
from pushlink.payload import PushRequest
from pushlink.reassembly import CompletionStatus, ReassemblyStore
from pushlink.relay import PushSink
from pushlink.session import Role, Session, SessionState
from pushlink.storage import InMemoryKeyValueStore, Namespace
from pushlink.types import ContentEncoding, DeliveryFailureError, ErrorKind, UnknownEndpointError

HOST_ENDPOINT = "https://fcm.googleapis.com/fcm/send/host"
GUEST_ENDPOINT = "https://updates.push.services.mozilla.com/wpush/v2/guest"


class LoopbackSink(PushSink):
    """Push service stand-in that queues requests per endpoint."""

    def __init__(self) -> None:
        self.queues: dict[str, list[PushRequest]] = defaultdict(list)
        self.failing = False

    async def deliver(self, request: PushRequest) -> None:
        if self.failing:
            raise DeliveryFailureError("push service unavailable", status=503)
        if request.endpoint not in (HOST_ENDPOINT, GUEST_ENDPOINT):
            raise UnknownEndpointError(request.endpoint)
        self.queues[request.endpoint].append(request)

    def take(self, endpoint: str) -> list[PushRequest]:
        return self.queues.pop(endpoint, [])


class Peer:
    """A session with its subscription and store."""

    def __init__(self, session: Session, subscription: LocalSubscription, store: InMemoryKeyValueStore) -> None:
        self.session = session
        self.subscription = subscription
        self.store = store
        self.assets: list[tuple[str, AssetTransfer]] = []

    async def on_asset(self, sender: str, asset: AssetTransfer) -> None:
        self.assets.append((sender, asset))

    async def pump(self, sink: LoopbackSink, reverse: bool = False) -> list:
        """Receive every queued push for this peer."""
        requests = sink.take(self.subscription.credential.endpoint)
        if reverse:
            requests.reverse()
        return [await self.session.receive_push(r, self.subscription.private_key) for r in requests]


async def _pair(
    sink: LoopbackSink,
    budget: Optional[int] = 10,
    guest_encoding: ContentEncoding = ContentEncoding.AES128GCM,
) -> tuple[Peer, Peer]:
    config = TransportConfig() if budget is None else TransportConfig().with_chunk_budget(budget)

    host_subscription = LocalSubscription.generate(HOST_ENDPOINT)
    host_store = InMemoryKeyValueStore()
    host_identity = await LocalIdentity.load_or_create(host_store, host_subscription.credential)

    guest_subscription = LocalSubscription.generate(GUEST_ENDPOINT, guest_encoding)
    guest_store = InMemoryKeyValueStore()
    guest_identity = await LocalIdentity.load_or_create(guest_store, guest_subscription.credential)

    host = Peer(None, host_subscription, host_store)
    host.session = Session(host_identity, Role.HOST, sink, host_store, config, on_asset=host.on_asset)

    guest = Peer(None, guest_subscription, guest_store)
    guest.session = Session(
        guest_identity,
        Role.GUEST,
        sink,
        guest_store,
        config,
        remote=host_identity.invite(),
        on_asset=guest.on_asset,
    )
    return host, guest


async def _handshake(sink: LoopbackSink, host: Peer, guest: Peer) -> None:
    await host.session.start()
    await guest.session.start()
    await host.pump(sink)
    await guest.pump(sink)


class TestHandshake:
    """Test the guest -> host handshake."""

    def test_handshake_and_ack(self) -> None:
        """Handshake then ack leaves both sides ACTIVE."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink)
            await host.session.start()
            assert host.session.state == SessionState.IDLE

            result = await guest.session.start()
            assert result.success
            assert result.chunks_sent > 1
            assert guest.session.state == SessionState.AWAITING_ACK

            await host.pump(sink)
            assert host.session.state == SessionState.ACTIVE
            assert host.session.remote.peer_id == guest.session.identity.peer_id
            assert host.session.remote.credential == guest.subscription.credential

            await guest.pump(sink)
            assert guest.session.state == SessionState.ACTIVE
            return host

        host = asyncio.run(run())
        stored = asyncio.run(host.store.get_all(Namespace.CLIENTS))
        assert list(stored) == [host.session.remote.peer_id]

    def test_host_restores_guest(self) -> None:
        """A restarted host picks up its known guest and is ACTIVE."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink)
            await _handshake(sink, host, guest)

            identity = await LocalIdentity.load_or_create(host.store)
            restarted = Session(identity, Role.HOST, sink, host.store)
            await restarted.start()
            return restarted, guest

        restarted, guest = asyncio.run(run())

        assert restarted.state == SessionState.ACTIVE
        assert restarted.remote.credential == guest.subscription.credential

    def test_guest_reconnect(self) -> None:
        """A guest can re-send its handshake and the host re-acks."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink)
            await _handshake(sink, host, guest)

            await guest.session.reconnect()
            assert guest.session.state == SessionState.AWAITING_ACK
            await host.pump(sink)
            await guest.pump(sink)
            return host, guest

        host, guest = asyncio.run(run())

        assert guest.session.state == SessionState.ACTIVE
        assert host.session.state == SessionState.ACTIVE

    def test_guest_needs_invite(self, subscription) -> None:
        """A guest without the host's invite cannot start."""
        async def run():
            store = InMemoryKeyValueStore()
            identity = await LocalIdentity.load_or_create(store, subscription.credential)
            return await Session(identity, Role.GUEST, LoopbackSink(), store).start()

        result = asyncio.run(run())
        assert result.error == ErrorKind.INVALID_STATE

    def test_host_cannot_reconnect(self) -> None:
        """Reconnect is a guest operation."""
        sink = LoopbackSink()

        async def run():
            host, _ = await _pair(sink)
            return await host.session.reconnect()

        assert asyncio.run(run()).error == ErrorKind.INVALID_STATE


class TestAssetTransfer:
    """Test asset exchange once ACTIVE."""

    def test_host_to_guest_reverse_order(self) -> None:
        """Chunks delivered in reverse order still yield the asset exactly once."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink, budget=10)
            await _handshake(sink, host, guest)

            result = await host.session.send_asset(b"hello", "text/plain")
            results = await guest.pump(sink, reverse=True)
            latest = await guest.session.latest_asset()
            return host, guest, result, results, latest

        host, guest, result, results, latest = asyncio.run(run())

        assert result.success
        assert result.chunks_sent > 1
        assert [r.status for r in results].count(CompletionStatus.COMPLETED) == 1
        assert len(guest.assets) == 1
        sender, asset = guest.assets[0]
        assert sender == host.session.identity.peer_id
        assert asset.content_base64 == "aGVsbG8="
        assert asset.content_type == "text/plain"
        assert asset.content == b"hello"
        assert latest == asset

    def test_guest_to_host(self) -> None:
        """The guest can send assets to the host too."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink, budget=500)
            await _handshake(sink, host, guest)
            await guest.session.send_asset(b"\x89PNG binary", "image/webp")
            await host.pump(sink)
            return host

        host = asyncio.run(run())

        assert host.assets[0][1].content == b"\x89PNG binary"
        assert host.assets[0][1].content_type == "image/webp"

    def test_default_budget_single_chunk(self) -> None:
        """Small assets fit one push with the derived budget."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink, budget=None)
            await _handshake(sink, host, guest)
            result = await host.session.send_asset(b"x" * 1000, "application/zip")
            await guest.pump(sink)
            return guest, result

        guest, result = asyncio.run(run())

        assert result.chunks_sent == 1
        assert guest.assets[0][1].content == b"x" * 1000

    def test_send_before_active(self) -> None:
        """Assets cannot be sent before the handshake completes."""
        sink = LoopbackSink()

        async def run():
            _, guest = await _pair(sink)
            return await guest.session.send_asset(b"early", "text/plain")

        result = asyncio.run(run())
        assert result.error == ErrorKind.INVALID_STATE
        assert not result.success


class TestUnavailable:
    """Test delivery failures and retry."""

    def test_failure_and_retry(self) -> None:
        """Failures mark the session UNAVAILABLE until a retry succeeds."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink)
            await _handshake(sink, host, guest)

            sink.failing = True
            first = await host.session.send_asset(b"hello", "text/plain")
            assert host.session.state == SessionState.UNAVAILABLE
            second = await host.session.retry()
            assert host.session.failed_attempts == 2

            sink.failing = False
            third = await host.session.retry()
            await guest.pump(sink)
            return host, guest, first, second, third

        host, guest, first, second, third = asyncio.run(run())

        assert first.error == ErrorKind.DELIVERY_FAILURE
        assert second.error == ErrorKind.DELIVERY_FAILURE
        assert third.success
        assert third.message_id == first.message_id
        assert host.session.state == SessionState.ACTIVE
        assert host.session.failed_attempts == 0
        assert guest.assets[0][1].content == b"hello"

    def test_failed_handshake_resumes_awaiting_ack(self) -> None:
        """A handshake that could not be delivered is retried into AWAITING_ACK."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink)
            sink.failing = True
            result = await guest.session.start()
            assert guest.session.state == SessionState.UNAVAILABLE

            sink.failing = False
            await guest.session.retry()
            return guest, result

        guest, result = asyncio.run(run())

        assert result.error == ErrorKind.DELIVERY_FAILURE
        assert guest.session.state == SessionState.AWAITING_ACK

    def test_retry_when_available(self) -> None:
        """Retry outside UNAVAILABLE is refused."""
        sink = LoopbackSink()

        async def run():
            host, _ = await _pair(sink)
            return await host.session.retry()

        assert asyncio.run(run()).error == ErrorKind.INVALID_STATE


class TestClose:
    """Test closing a session."""

    def test_close_evicts_buffers(self) -> None:
        """Closing drops partial messages of the peer and ignores later pushes."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink)
            await _handshake(sink, host, guest)

            await host.session.send_asset(b"partial transfer", "text/plain")
            requests = sink.take(GUEST_ENDPOINT)
            for request in requests[:-1]:
                await guest.session.receive_push(request, guest.subscription.private_key)
            pending_before = await guest.store.get_all(Namespace.CHUNKS)

            await guest.session.close()
            pending_after = await guest.store.get_all(Namespace.CHUNKS)
            late = await guest.session.receive_push(requests[-1], guest.subscription.private_key)
            return guest, pending_before, pending_after, late

        guest, pending_before, pending_after, late = asyncio.run(run())

        assert pending_before
        assert pending_after == {}
        assert late.status == CompletionStatus.REJECTED
        assert guest.session.state == SessionState.CLOSED
        assert guest.assets == []

    def test_closed_is_terminal(self) -> None:
        """Nothing can be sent after close."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink)
            await _handshake(sink, host, guest)
            await host.session.close()
            return await host.session.send_asset(b"late", "text/plain"), await host.session.start()

        send_result, start_result = asyncio.run(run())

        assert send_result.error == ErrorKind.INVALID_STATE
        assert start_result.error == ErrorKind.INVALID_STATE


class TestReassemblyState:
    """Test that received chunks do not pile up in the store."""

    def test_abandoned_transfers_are_swept(self) -> None:
        """Partial transfers fed through receive are dropped once inactive."""
        now = [datetime(2024, 1, 1, 12, 0, 0)]
        store = InMemoryKeyValueStore()
        subscription = LocalSubscription.generate(HOST_ENDPOINT)
        reassembly = ReassemblyStore(store, ReassemblyConfig(inactivity_window=timedelta(minutes=1)), clock=lambda: now[0])
        session = Session(
            LocalIdentity.create(subscription.credential),
            Role.HOST,
            LoopbackSink(),
            store,
            reassembly=reassembly,
        )

        def first_chunk() -> bytes:
            message = LogicalMessage.create(AssetTransfer.from_bytes(b"never finished" * 3, "text/plain"))
            return encode_chunk(split(message, 10, "stranger")[0])

        async def run():
            for _ in range(50):
                await session.receive(first_chunk())
            held_before = len(await store.get_all(Namespace.CHUNKS))
            now[0] += timedelta(hours=1)
            await session.receive(first_chunk())
            return held_before, len(await store.get_all(Namespace.CHUNKS))

        held_before, held_after = asyncio.run(run())

        assert held_before > 1
        assert held_after == 1

    def test_replaced_guest_buffers_dropped(self) -> None:
        """A new guest's handshake drops the previous guest's partial messages."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink)
            await _handshake(sink, host, guest)
            first_guest = guest.session.identity.peer_id

            await guest.session.send_asset(b"cut off by the next guest", "text/plain")
            requests = sink.take(HOST_ENDPOINT)
            for request in requests[:-1]:
                await host.session.receive_push(request, host.subscription.private_key)
            before = await host.store.get_all(Namespace.CHUNKS)

            second_subscription = LocalSubscription.generate(GUEST_ENDPOINT)
            second_store = InMemoryKeyValueStore()
            second_identity = await LocalIdentity.load_or_create(second_store, second_subscription.credential)
            second = Session(
                second_identity,
                Role.GUEST,
                sink,
                second_store,
                TransportConfig().with_chunk_budget(10),
                remote=host.session.identity.invite(),
            )
            await second.start()
            await host.pump(sink)
            after = await host.store.get_all(Namespace.CHUNKS)
            return host, first_guest, second_identity.peer_id, before, after

        host, first_guest, second_guest, before, after = asyncio.run(run())

        assert any(buffer["fr"] == first_guest for buffer in before.values())
        assert not any(buffer["fr"] == first_guest for buffer in after.values())
        assert host.session.remote.peer_id == second_guest


class TestReceiveErrors:
    """Test how bad pushes are absorbed."""

    def test_malformed_plaintext(self) -> None:
        """Plaintext that is not a chunk record is rejected."""
        sink = LoopbackSink()

        async def run():
            host, _ = await _pair(sink)
            return await host.session.receive(b"{\"t\":\"x\"}")

        result = asyncio.run(run())
        assert result.status == CompletionStatus.REJECTED

    def test_undecryptable_push(self) -> None:
        """A push encrypted for another subscription is rejected."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink)
            await guest.session.start()
            request = sink.take(HOST_ENDPOINT)[0]
            return await host.session.receive_push(request, guest.subscription.private_key)

        result = asyncio.run(run())
        assert result.status == CompletionStatus.REJECTED

    @pytest.mark.parametrize("budget", [10, 64, 1000])
    def test_handshake_any_budget(self, budget) -> None:
        """The handshake completes whatever the chunk budget."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink, budget=budget)
            await _handshake(sink, host, guest)
            return host, guest

        host, guest = asyncio.run(run())
        assert host.session.state == guest.session.state == SessionState.ACTIVE


class TestLegacyCoding:
    """Test a guest whose subscription asks for aesgcm."""

    def test_legacy_guest(self) -> None:
        """The host encrypts for the guest with the legacy coding."""
        sink = LoopbackSink()

        async def run():
            host, guest = await _pair(sink, budget=None, guest_encoding=ContentEncoding.AESGCM)
            await _handshake(sink, host, guest)
            await host.session.send_asset(b"old browser", "text/plain")
            requests = list(sink.queues[GUEST_ENDPOINT])
            await guest.pump(sink)
            return guest, requests

        guest, requests = asyncio.run(run())

        assert guest.session.state == SessionState.ACTIVE
        assert requests[0].headers["Content-Encoding"] == "aesgcm"
        assert guest.assets[0][1].content == b"old browser"
