"""Best-effort IP geolocation.

Lookups go to an HTTP endpoint (``GEO_LOOKUP_URL``, ``{ip}`` is substituted)
answering in the ip-api.com JSON shape: ``{"status": "success",
"countryCode": "US", "city": "Boston"}``. Every failure collapses into an empty
result; callers never see an exception from here.
"""
import ipaddress
import logging
import os
from dataclasses import dataclass

import httpx

logger = logging.getLogger("snaplink.geo")

GEO_LOOKUP_URL = os.getenv("GEO_LOOKUP_URL", "http://ip-api.com/json/{ip}?fields=status,countryCode,city")
GEO_LOOKUP_TIMEOUT = float(os.getenv("GEO_LOOKUP_TIMEOUT", 1.5))


@dataclass(frozen=True)
class GeoResult:
    country: str | None = None
    city: str | None = None


UNKNOWN = GeoResult()


def is_public_ip(ip: str | None) -> bool:
    try:
        addr = ipaddress.ip_address((ip or "").strip())
    except ValueError:
        return False
    return addr.is_global


def lookup_ip(ip: str | None) -> GeoResult:
    if not GEO_LOOKUP_URL or not is_public_ip(ip):
        return UNKNOWN
    try:
        response = httpx.get(GEO_LOOKUP_URL.format(ip=ip.strip()), timeout=GEO_LOOKUP_TIMEOUT)
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.debug("Geo lookup failed for %s: %s", ip, exc)
        return UNKNOWN
    if not isinstance(payload, dict) or payload.get("status", "success") != "success":
        return UNKNOWN
    country = payload.get("countryCode") or None
    return GeoResult(
        country=country[:2].upper() if isinstance(country, str) else None,
        city=(payload.get("city") or None),
    )
