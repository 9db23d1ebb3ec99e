"""Tests for P-256 key handling."""

import pytest
from pushlink.keys import (
    VapidKeyPair,
    ecdh,
    generate_keypair,
    generate_vapid_keys,
    private_key_from_bytes,
    private_key_to_bytes,
    public_key_from_bytes,
    public_key_to_bytes,
)
from pushlink.types import CryptoError


class TestKeyConversion:
    """Test raw byte forms of P-256 keys."""

    def test_public_key_bytes(self) -> None:
        """Public keys are 65-byte uncompressed points."""
        _, public_key = generate_keypair()
        data = public_key_to_bytes(public_key)

        assert len(data) == 65
        assert data[0] == 0x04
        assert public_key_to_bytes(public_key_from_bytes(data)) == data

    def test_private_key_bytes(self) -> None:
        """Private keys are 32-byte scalars."""
        private_key, public_key = generate_keypair()
        data = private_key_to_bytes(private_key)

        assert len(data) == 32
        restored = private_key_from_bytes(data)
        assert public_key_to_bytes(restored.public_key()) == public_key_to_bytes(public_key)

    def test_reject_compressed_point(self) -> None:
        """Only uncompressed points are accepted."""
        with pytest.raises(CryptoError, match="65-byte"):
            public_key_from_bytes(b"\x02" + bytes(32))

    def test_reject_point_off_curve(self) -> None:
        """A 65-byte value that is not a curve point is rejected."""
        with pytest.raises(CryptoError):
            public_key_from_bytes(b"\x04" + bytes(64))

    def test_reject_private_key_length(self) -> None:
        """Private scalars must be 32 bytes."""
        with pytest.raises(CryptoError, match="32 bytes"):
            private_key_from_bytes(bytes(31))

    def test_ecdh_agreement(self) -> None:
        """Both sides compute the same shared secret."""
        alice_private, alice_public = generate_keypair()
        bob_private, bob_public = generate_keypair()

        assert ecdh(alice_private, bob_public) == ecdh(bob_private, alice_public)
        assert len(ecdh(alice_private, bob_public)) == 32


class TestVapidKeyPair:
    """Test VAPID key pair serialization."""

    def test_json_round_trip(self) -> None:
        """Keys survive the {publicKey, privateKey} form."""
        keys = generate_vapid_keys()
        data = keys.to_json()

        assert set(data) == {"publicKey", "privateKey"}
        assert "=" not in data["publicKey"]
        assert VapidKeyPair.from_json(data) == keys

    def test_invalid_json(self) -> None:
        """Missing fields raise CryptoError."""
        with pytest.raises(CryptoError):
            VapidKeyPair.from_json({"publicKey": "abc"})

    def test_fresh_keys(self) -> None:
        """Every call generates a new pair."""
        assert generate_vapid_keys() != generate_vapid_keys()
