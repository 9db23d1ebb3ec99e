"""
Host/guest session over Web Push.

A guest that holds the host's invite sends a Handshake carrying its own
subscription and VAPID keys. The host stores the guest, answers with a
HandshakeAck, and from then on either side may send AssetTransfer
messages. Every logical message is split into chunks, each chunk is
encrypted into one push request and handed to the sink.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from .chunking import decode_chunk, encode_chunk, max_chunk_payload_bytes, split
from .config import TransportConfig
from .identity import LocalIdentity
from .models import (
    AssetTransfer,
    Handshake,
    HandshakeAck,
    LogicalMessage,
    RemotePeer,
)
from .payload import PushRequest, build_push_request, decrypt_push_request
from .reassembly import CompletionResult, CompletionStatus, ReassemblyStore
from .relay import PushSink
from .storage import KeyValueStore, Namespace
from .types import (
    CryptoError,
    DeliveryFailureError,
    ErrorKind,
    InvalidStateError,
    MalformedChunkError,
    PushLinkError,
    UnknownEndpointError,
)

logger = logging.getLogger(__name__)

CURRENT_GUEST_KEY = "current-guest"

AssetCallback = Callable[[str, AssetTransfer], Awaitable[None]]


class Role(Enum):
    """Which side of the pairing this peer is."""
    HOST = "host"
    GUEST = "guest"


class SessionState(Enum):
    """Session lifecycle states."""
    IDLE = "idle"
    AWAITING_ACK = "awaiting_ack"
    ACTIVE = "active"
    UNAVAILABLE = "unavailable"
    CLOSED = "closed"


@dataclass(frozen=True)
class SendResult:
    """Outcome of sending one logical message."""
    message_id: Optional[int] = None
    chunks_sent: int = 0
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class Session:
    """
    One host/guest pairing.

    Example usage:
        ```python
        identity = await LocalIdentity.load_or_create(store, credential)
        session = Session(identity, Role.GUEST, sink, store, remote=host_invite)
        await session.start()
        ...
        await session.receive(plaintext)  # for every push this peer receives
        ```
    """

    def __init__(
        self,
        identity: LocalIdentity,
        role: Role,
        sink: PushSink,
        store: KeyValueStore,
        config: Optional[TransportConfig] = None,
        remote: Optional[RemotePeer] = None,
        reassembly: Optional[ReassemblyStore] = None,
        on_asset: Optional[AssetCallback] = None,
    ) -> None:
        self._identity = identity
        self._role = role
        self._sink = sink
        self._store = store
        self._config = config or TransportConfig()
        self._remote = remote
        self._reassembly = reassembly or ReassemblyStore(store)
        self._on_asset = on_asset

        self._state = SessionState.IDLE
        self._resume_state: Optional[SessionState] = None
        self._undelivered: Optional[LogicalMessage] = None
        self._failed_attempts = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def identity(self) -> LocalIdentity:
        return self._identity

    @property
    def role(self) -> Role:
        return self._role

    @property
    def remote(self) -> Optional[RemotePeer]:
        return self._remote

    @property
    def failed_attempts(self) -> int:
        """Consecutive failed deliveries since the last success."""
        return self._failed_attempts

    async def start(self) -> SendResult:
        """
        Start the session.

        A guest sends its handshake to the host. A host restores its last
        known guest from the store, becoming ACTIVE, or waits in IDLE for a
        handshake.
        """
        if self._state != SessionState.IDLE:
            return _invalid_state(f"cannot start from {self._state.value}")

        if self._role == Role.HOST:
            if self._remote is None:
                self._remote = await self._restore_guest()
            if self._remote is not None:
                self._set_state(SessionState.ACTIVE)
            return SendResult()

        return await self._send_handshake()

    async def reconnect(self) -> SendResult:
        """Re-send the guest handshake; the host answers a known guest with a new ack."""
        if self._role != Role.GUEST:
            return _invalid_state("only a guest can reconnect")
        if self._state == SessionState.CLOSED:
            return _invalid_state("session is closed")
        return await self._send_handshake()

    async def send_asset(self, content: bytes, content_type: str) -> SendResult:
        """
        Send an asset to the other peer.

        Args:
            content: Raw asset bytes
            content_type: MIME type of the asset

        Returns:
            SendResult; INVALID_STATE unless the session is ACTIVE
        """
        if self._state != SessionState.ACTIVE:
            return _invalid_state(f"cannot send an asset while {self._state.value}")
        return await self._send(LogicalMessage.create(AssetTransfer.from_bytes(content, content_type)))

    async def retry(self) -> SendResult:
        """
        Re-send the message whose delivery failed.

        On success the session returns to the state it had before it
        became UNAVAILABLE.
        """
        if self._state != SessionState.UNAVAILABLE:
            return _invalid_state("nothing to retry")

        if self._undelivered is not None:
            result = await self._send(self._undelivered)
            if not result.success:
                return result
        else:
            result = SendResult()

        self._set_state(self._resume_state or SessionState.IDLE)
        self._resume_state = None
        return result

    async def close(self) -> None:
        """Close the session for good and drop the peer's chunk buffers."""
        if self._state == SessionState.CLOSED:
            return
        self._set_state(SessionState.CLOSED)
        self._undelivered = None
        if self._remote is not None:
            await self._reassembly.evict_peer(self._remote.peer_id)

    async def latest_asset(self, peer_id: Optional[str] = None) -> Optional[AssetTransfer]:
        """The last asset received from a peer (default: the remote peer)."""
        if peer_id is None:
            if self._remote is None:
                return None
            peer_id = self._remote.peer_id
        cached = await self._store.get(Namespace.ASSETS, peer_id)
        if cached is None:
            return None
        return AssetTransfer(content_base64=cached["d"], content_type=cached["c"])

    async def receive_push(self, request: PushRequest, private_key: bytes) -> CompletionResult:
        """
        Decrypt a push request addressed to this peer and receive its plaintext.

        Args:
            request: Push request as delivered by the push service
            private_key: Private key of this peer's subscription
        """
        try:
            plaintext = decrypt_push_request(request, private_key, self._identity.credential.auth)
        except CryptoError as e:
            logger.warning(f"Dropped undecryptable push: {e}")
            return CompletionResult(status=CompletionStatus.REJECTED, reason=str(e))
        return await self.receive(plaintext)

    async def receive(self, plaintext: bytes) -> CompletionResult:
        """
        Feed one decrypted push plaintext into the session.

        Completed messages are dispatched by type: a handshake (host) stores
        the guest and sends the ack, an ack (guest) activates the session, an
        asset is cached and passed to the asset callback.

        Returns:
            The reassembly outcome of the chunk
        """
        if self._state == SessionState.CLOSED:
            return CompletionResult(status=CompletionStatus.REJECTED, reason="session is closed")

        try:
            chunk = decode_chunk(plaintext)
        except MalformedChunkError as e:
            logger.warning(f"Dropped malformed push payload: {e}")
            return CompletionResult(status=CompletionStatus.REJECTED, reason=e.reason)

        result = await self._reassembly.ingest(chunk)
        if result.is_completed:
            await self._dispatch(result.sender, result.message)
        return result

    async def _dispatch(self, sender: str, message: LogicalMessage) -> None:
        body = message.body

        if isinstance(body, Handshake):
            await self._on_handshake(sender, body)
            return

        if self._remote is None or sender != self._remote.peer_id:
            logger.warning(f"Ignored message {message.id} from unknown peer {sender}")
            return

        if isinstance(body, HandshakeAck):
            self._on_handshake_ack()
        elif isinstance(body, AssetTransfer):
            await self._on_asset_transfer(sender, message.id, body)

    async def _on_handshake(self, sender: str, handshake: Handshake) -> None:
        if self._role != Role.HOST:
            logger.warning(f"Guest ignored handshake from {sender}")
            return

        if self._remote is not None and self._remote.peer_id != sender:
            evicted = await self._reassembly.evict_peer(self._remote.peer_id)
            logger.info(f"Guest {self._remote.peer_id} replaced by {sender}, dropped {evicted} buffers")

        self._remote = RemotePeer(
            peer_id=sender,
            credential=handshake.credential,
            vapid_keys=handshake.vapid_keys,
        )
        await self._store.put(Namespace.CLIENTS, sender, self._remote.to_json())
        await self._store.put(Namespace.CONFIG, CURRENT_GUEST_KEY, sender)
        logger.info(f"Accepted handshake from guest {sender}")

        self._set_state(SessionState.ACTIVE)
        await self._send(LogicalMessage.create(HandshakeAck()))

    def _on_handshake_ack(self) -> None:
        if self._state == SessionState.AWAITING_ACK:
            self._set_state(SessionState.ACTIVE)
        elif self._state == SessionState.UNAVAILABLE and self._resume_state == SessionState.AWAITING_ACK:
            # The handshake got through after all
            self._resume_state = SessionState.ACTIVE

    async def _on_asset_transfer(self, sender: str, message_id: int, asset: AssetTransfer) -> None:
        if self._state not in (SessionState.ACTIVE, SessionState.UNAVAILABLE):
            logger.warning(f"Ignored asset {message_id} while {self._state.value}")
            return

        await self._store.put(Namespace.ASSETS, sender, {
            "id": message_id,
            "d": asset.content_base64,
            "c": asset.content_type,
            "receivedAt": datetime.now().isoformat(),
        })
        logger.info(f"Received asset {message_id} ({asset.content_type}) from {sender}")

        if self._on_asset is not None:
            await self._on_asset(sender, asset)

    async def _send_handshake(self) -> SendResult:
        if self._remote is None:
            return _invalid_state("guest has no host invite")
        self._set_state(SessionState.AWAITING_ACK)
        handshake = Handshake(credential=self._identity.credential, vapid_keys=self._identity.vapid_keys)
        return await self._send(LogicalMessage.create(handshake))

    async def _send(self, message: LogicalMessage) -> SendResult:
        if self._remote is None:
            return _invalid_state("no remote peer")

        sender = self._identity.peer_id
        budget = self._config.max_chunk_payload_bytes or max_chunk_payload_bytes(sender)
        chunks = split(message, budget, sender)
        sent = 0

        try:
            for chunk in chunks:
                request = build_push_request(
                    encode_chunk(chunk),
                    self._remote.credential,
                    self._remote.vapid_keys,
                    self._config,
                )
                await self._sink.deliver(request)
                sent += 1
        except (DeliveryFailureError, UnknownEndpointError) as e:
            self._failed_attempts += 1
            self._undelivered = message
            if self._state != SessionState.UNAVAILABLE:
                self._resume_state = self._state
                self._set_state(SessionState.UNAVAILABLE)
            logger.error(f"Delivery of message {message.id} failed after {sent}/{len(chunks)} chunks: {e}")
            return SendResult(message_id=message.id, chunks_sent=sent, error=e.kind, detail=str(e))
        except PushLinkError as e:
            logger.error(f"Cannot send message {message.id}: {e}")
            return SendResult(message_id=message.id, chunks_sent=sent, error=e.kind, detail=str(e))

        self._failed_attempts = 0
        self._undelivered = None
        logger.debug(f"Sent message {message.id} in {sent} chunks")
        return SendResult(message_id=message.id, chunks_sent=sent)

    async def _restore_guest(self) -> Optional[RemotePeer]:
        guest_id = await self._store.get(Namespace.CONFIG, CURRENT_GUEST_KEY)
        if guest_id is None:
            return None
        data = await self._store.get(Namespace.CLIENTS, guest_id)
        if data is None:
            return None
        try:
            remote = RemotePeer.from_json(data)
        except MalformedChunkError as e:
            logger.warning(f"Ignored invalid stored guest {guest_id}: {e}")
            return None
        logger.info(f"Restored guest {guest_id} from storage")
        return remote

    def _set_state(self, state: SessionState) -> None:
        if state != self._state:
            logger.info(f"Session {self._role.value} {self._state.value} -> {state.value}")
            self._state = state


def _invalid_state(detail: str) -> SendResult:
    logger.debug(f"Refused operation: {detail}")
    return SendResult(error=InvalidStateError.kind, detail=detail)
