"""Request-scoped access context captured for audit entries."""

from dataclasses import dataclass
from typing import Optional

from esign.utils.user_agent import DeviceFingerprint, fingerprint


@dataclass(frozen=True)
class AccessContext:
    """Where a request came from."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

    @property
    def device(self) -> DeviceFingerprint:
        return fingerprint(self.user_agent)


SYSTEM_CONTEXT = AccessContext(ip_address="system", user_agent="esign-scheduler")
