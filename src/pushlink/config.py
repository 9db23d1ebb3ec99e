"""Configuration values for pushlink components."""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional


@dataclass(frozen=True)
class TransportConfig:
    """Configuration for encrypting and addressing outgoing push messages."""

    subject_email: str = "noreply@localhost"
    """Contact placed in the VAPID "sub" claim."""

    ttl: int = 86400
    """Seconds the push service should keep an undelivered message."""

    urgency: Optional[str] = "high"
    """Urgency header value ("very-low", "low", "normal", "high") or None."""

    max_chunk_payload_bytes: Optional[int] = None
    """Override for the chunk budget; derived from the record size when None."""

    def with_chunk_budget(self, budget: int) -> "TransportConfig":
        """Returns a copy with a fixed chunk budget."""
        return TransportConfig(
            subject_email=self.subject_email,
            ttl=self.ttl,
            urgency=self.urgency,
            max_chunk_payload_bytes=budget,
        )


@dataclass(frozen=True)
class ReassemblyConfig:
    """Configuration for the reassembly store."""

    inactivity_window: timedelta = timedelta(minutes=10)
    """Buffers untouched for longer than this are evicted."""


@dataclass(frozen=True)
class RelayConfig:
    """Configuration for relay sinks."""

    allowlist: tuple[str, ...] = ()
    """Allowed push service hostnames; "*.suffix" entries match subdomains."""

    proxy_url: Optional[str] = None
    """URL of a remote relay accepting {endpoint, body, headers} JSON."""

    timeout: timedelta = timedelta(seconds=30)
    """Per-request timeout."""

    @classmethod
    def default_push_services(cls) -> "RelayConfig":
        """Allowlist covering the major browser push services."""
        return cls(
            allowlist=(
                "*.googleapis.com",
                "*.push.services.mozilla.com",
                "*.notify.windows.com",
                "*.push.apple.com",
            ),
        )

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """
        Creates configuration from environment variables.

        ALLOWED_NOTIFICATION_SERVICE_URLS: comma separated allowlist entries
        PUSH_PROXY_URL: relay URL (optional)
        """
        raw = os.environ.get("ALLOWED_NOTIFICATION_SERVICE_URLS", "")
        allowlist = tuple(entry.strip() for entry in raw.split(",") if entry.strip())
        return cls(
            allowlist=allowlist,
            proxy_url=os.environ.get("PUSH_PROXY_URL") or None,
        )
