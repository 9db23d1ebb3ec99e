"""Shared fixtures for pushlink tests."""

import pytest
from pushlink.identity import LocalSubscription
from pushlink.keys import generate_vapid_keys
from pushlink.types import ContentEncoding

ENDPOINT = "https://fcm.googleapis.com/fcm/send/test-subscription"


@pytest.fixture
def subscription():
    """A subscription with its private key (aes128gcm)."""
    return LocalSubscription.generate(ENDPOINT)


@pytest.fixture
def legacy_subscription():
    """A subscription that asks for the legacy aesgcm coding."""
    return LocalSubscription.generate(ENDPOINT, ContentEncoding.AESGCM)


@pytest.fixture
def vapid_keys():
    """A fresh VAPID key pair."""
    return generate_vapid_keys()
