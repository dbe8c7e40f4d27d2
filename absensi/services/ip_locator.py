"""
Best-effort IP geolocation used to cross-check a GPS fix.

The lookup is optional by contract: any transport error, timeout, bad
status or malformed body yields ``None`` and the caller proceeds on GPS
alone.  It must never be the reason a legitimate check-in fails.
"""

from __future__ import annotations

import ipaddress
import logging

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class IpLocation(BaseModel):
    ip: str | None = None
    latitude: float
    longitude: float


def _is_public(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return addr.is_global


class IpLocator:
    def __init__(
        self,
        url_template: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url_template = url_template
        self.timeout = timeout
        self._transport = transport

    async def locate(self, ip: str | None) -> IpLocation | None:
        if not ip or not _is_public(ip):
            logger.debug("Skipping IP geolocation for non-public address %r", ip)
            return None

        url = self.url_template.format(ip=ip)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException:
            logger.warning("IP geolocation timed out for %s, using GPS only", ip)
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("IP geolocation failed for %s: %s, using GPS only", ip, e)
            return None

        lat = data.get("latitude") if isinstance(data, dict) else None
        lng = data.get("longitude") if isinstance(data, dict) else None
        if lat is None or lng is None:
            logger.warning("IP geolocation returned no coordinates for %s", ip)
            return None
        try:
            return IpLocation(ip=data.get("ip", ip), latitude=lat, longitude=lng)
        except ValueError as e:
            logger.warning("IP geolocation returned malformed coordinates: %s", e)
            return None
