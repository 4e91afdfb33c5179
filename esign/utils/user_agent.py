"""Device fingerprinting from User-Agent headers."""

from dataclasses import dataclass
from typing import Optional

from user_agents import parse as parse_user_agent


@dataclass(frozen=True)
class DeviceFingerprint:
    """Human-readable device, browser and OS descriptions."""

    device: str
    browser: str
    os: str

    @classmethod
    def unknown(cls) -> "DeviceFingerprint":
        return cls(device="Unknown", browser="Unknown", os="Unknown")


def _join(*parts: Optional[str]) -> str:
    return " ".join(p for p in parts if p).strip() or "Unknown"


def fingerprint(user_agent: Optional[str]) -> DeviceFingerprint:
    """Parse a User-Agent string into a :class:`DeviceFingerprint`."""
    if not user_agent:
        return DeviceFingerprint.unknown()

    ua = parse_user_agent(user_agent)

    if ua.is_mobile:
        kind = "Mobile"
    elif ua.is_tablet:
        kind = "Tablet"
    elif ua.is_pc:
        kind = "Desktop"
    elif ua.is_bot:
        kind = "Bot"
    else:
        kind = "Other"

    brand = ua.device.brand if ua.device.brand not in (None, "Other") else None
    model = ua.device.model if ua.device.model not in (None, "Other") else None

    return DeviceFingerprint(
        device=_join(kind, brand, model),
        browser=_join(ua.browser.family, ua.browser.version_string),
        os=_join(ua.os.family, ua.os.version_string),
    )
