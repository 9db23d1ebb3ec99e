"""Local peer identity and subscription key material."""

import logging
import os
import uuid
from dataclasses import dataclass, replace
from typing import Optional

from .keys import (
    VapidKeyPair,
    generate_keypair,
    generate_vapid_keys,
    private_key_to_bytes,
    public_key_to_bytes,
)
from .models import PushEndpointCredential, RemotePeer
from .storage import KeyValueStore, Namespace
from .types import AUTH_SECRET_SIZE, ContentEncoding, CryptoError, MalformedChunkError, StorageError

logger = logging.getLogger(__name__)

IDENTITY_KEY = "identity"


@dataclass(frozen=True)
class LocalSubscription:
    """
    A push subscription together with its private key.

    Browsers keep the private half inside their push subsystem; this type
    exists for receivers that decrypt push messages themselves.
    """
    credential: PushEndpointCredential
    private_key: bytes

    @classmethod
    def generate(
        cls,
        endpoint: str,
        encoding: ContentEncoding = ContentEncoding.AES128GCM,
    ) -> "LocalSubscription":
        """Creates a subscription with a fresh P-256 key pair and auth secret."""
        private_key, public_key = generate_keypair()
        credential = PushEndpointCredential(
            endpoint=endpoint,
            p256dh=public_key_to_bytes(public_key),
            auth=os.urandom(AUTH_SECRET_SIZE),
            encoding=encoding,
        )
        return cls(credential=credential, private_key=private_key_to_bytes(private_key))


@dataclass(frozen=True)
class LocalIdentity:
    """This peer's id, VAPID keys and push subscription."""
    peer_id: str
    vapid_keys: VapidKeyPair
    credential: PushEndpointCredential

    @classmethod
    def create(cls, credential: PushEndpointCredential) -> "LocalIdentity":
        """Creates an identity with a fresh peer id and VAPID key pair."""
        return cls(
            peer_id=str(uuid.uuid4()),
            vapid_keys=generate_vapid_keys(),
            credential=credential,
        )

    @classmethod
    async def load_or_create(
        cls,
        store: KeyValueStore,
        credential: Optional[PushEndpointCredential] = None,
    ) -> "LocalIdentity":
        """
        Load the persisted identity, creating it on first use.

        A credential that differs from the stored one replaces it, since
        subscriptions can be renewed by the push subsystem.

        Raises:
            StorageError: If the stored identity is unreadable, or no identity
                is stored and no credential was given
        """
        data = await store.get(Namespace.CONFIG, IDENTITY_KEY)

        if data is not None:
            try:
                identity = cls.from_json(data)
            except MalformedChunkError as e:
                raise StorageError(f"Stored identity is invalid: {e}") from e
            if credential is not None and credential != identity.credential:
                identity = replace(identity, credential=credential)
                await store.put(Namespace.CONFIG, IDENTITY_KEY, identity.to_json())
                logger.info(f"Updated push subscription of {identity.peer_id}")
            return identity

        if credential is None:
            raise StorageError("No stored identity and no push credential to create one")

        identity = cls.create(credential)
        await store.put(Namespace.CONFIG, IDENTITY_KEY, identity.to_json())
        logger.info(f"Created identity {identity.peer_id}")
        return identity

    @staticmethod
    async def reset(store: KeyValueStore) -> None:
        """Forget the identity, known clients, cached assets and chunk buffers."""
        for namespace in (Namespace.CONFIG, Namespace.CLIENTS, Namespace.ASSETS, Namespace.CHUNKS):
            await store.clear(namespace)
        logger.info("Cleared stored identity and peer data")

    def invite(self) -> RemotePeer:
        """What the other peer needs to push to this one."""
        return RemotePeer(peer_id=self.peer_id, credential=self.credential, vapid_keys=self.vapid_keys)

    def to_json(self) -> dict:
        return {
            "id": self.peer_id,
            "vapidKeys": self.vapid_keys.to_json(),
            "credential": self.credential.to_json(),
        }

    @classmethod
    def from_json(cls, data: dict) -> "LocalIdentity":
        try:
            return cls(
                peer_id=data["id"],
                vapid_keys=VapidKeyPair.from_json(data["vapidKeys"]),
                credential=PushEndpointCredential.from_json(data["credential"]),
            )
        except (KeyError, TypeError, CryptoError) as e:
            raise MalformedChunkError(f"invalid identity record: {e}") from e
