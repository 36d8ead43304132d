"""
IP geolocation: a best-effort wrapper over an external HTTP lookup.

`GeoLocator.locate` never raises:
- loopback / private / link-local addresses short-circuit to the
  "Local" tuple without a network call;
- unparseable addresses, timeouts, transport errors, non-2xx responses
  and malformed bodies all resolve to the "Unknown" tuple;
- an HTTP 429 from the provider starts a per-instance backoff during
  which lookups return "Unknown" without calling out.

The backoff is local to this process.  Under scale-out that only costs
a few extra provider calls; nothing depends on it for correctness.
"""

import ipaddress
import logging
import time

import httpx

from app.core.config import settings
from app.schemas import LOCAL_LOCATION, UNKNOWN_LOCATION, GeoLocation

logger = logging.getLogger(__name__)

IPV4_MAPPED_PREFIX = "::ffff:"


def _clean_ip(raw: str | None) -> str:
    ip = (raw or "").strip()
    if ip.lower().startswith(IPV4_MAPPED_PREFIX):
        ip = ip[len(IPV4_MAPPED_PREFIX):]
    return ip


def _field(data: dict, key: str) -> str:
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return "Unknown"


class GeoLocator:
    def __init__(
        self,
        *,
        url_template: str | None = None,
        timeout_seconds: float | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url_template = url_template or settings.GEO_LOOKUP_URL
        self.timeout_seconds = timeout_seconds or settings.GEO_LOOKUP_TIMEOUT_SECONDS
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None
            else settings.GEO_RATE_LIMIT_BACKOFF_SECONDS
        )
        self._transport = transport
        self._backoff_until = 0.0

    @staticmethod
    def is_local(ip: str) -> bool | None:
        """True for local ranges, False for public, None if not an IP at all."""
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return None
        return addr.is_loopback or addr.is_private or addr.is_link_local

    def backing_off(self) -> bool:
        return time.monotonic() < self._backoff_until

    async def locate(self, ip_address: str | None) -> GeoLocation:
        ip = _clean_ip(ip_address)
        local = self.is_local(ip)
        if local is None:
            return UNKNOWN_LOCATION
        if local:
            return LOCAL_LOCATION

        if self.backing_off():
            logger.debug("Geo lookup skipped for %s: provider backoff active", ip)
            return UNKNOWN_LOCATION

        url = self.url_template.format(ip=ip)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(url, headers={"Accept": "application/json"})
        except httpx.TimeoutException:
            logger.warning("Geo lookup timed out for %s", ip)
            return UNKNOWN_LOCATION
        except httpx.HTTPError as exc:
            logger.warning("Geo lookup failed for %s: %s", ip, exc)
            return UNKNOWN_LOCATION

        if response.status_code == 429:
            self._backoff_until = time.monotonic() + self.backoff_seconds
            logger.warning(
                "Geo provider rate limit hit; backing off for %.0fs", self.backoff_seconds,
            )
            return UNKNOWN_LOCATION
        if response.status_code != 200:
            logger.warning("Geo lookup for %s returned HTTP %s", ip, response.status_code)
            return UNKNOWN_LOCATION

        try:
            data = response.json()
        except ValueError:
            logger.warning("Geo lookup for %s returned a non-JSON body", ip)
            return UNKNOWN_LOCATION
        if not isinstance(data, dict) or data.get("error"):
            return UNKNOWN_LOCATION

        return GeoLocation(
            country=_field(data, "country_name"),
            city=_field(data, "city"),
            region=_field(data, "region"),
            isp=_field(data, "org"),
        )


geo_locator = GeoLocator()
