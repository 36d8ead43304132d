"""
Device fingerprint: a deterministic, opaque id for (user-agent, IP).

It is an anomaly signal for the velocity check, not a credential, so a
short BLAKE2b digest is plenty.  Never raises.
"""

import hashlib

UNKNOWN_COMPONENT = "unknown"
FINGERPRINT_BYTES = 12


def _normalise(value: str | None) -> str:
    if value is None:
        return UNKNOWN_COMPONENT
    value = value.strip()
    return value or UNKNOWN_COMPONENT


def fingerprint(user_agent: str | None, ip_address: str | None) -> str:
    combined = f"{_normalise(user_agent)}|{_normalise(ip_address)}"
    return hashlib.blake2b(
        combined.encode("utf-8", errors="replace"),
        digest_size=FINGERPRINT_BYTES,
    ).hexdigest()
