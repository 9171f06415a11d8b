"""beacon.processing.enrichment

Network origin metadata: public IP, private/public classification, and geo.

Resolution order, every time:
1. the instance cache (mirrored to durable storage)
2. a race of independent providers, first settled success wins
3. a deterministic fallback

Nothing in here raises to the caller. A resolver that times out or lies costs one
field of metadata, never an event.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from beacon.core.cache import PersistentTTLCache
from beacon.core.client import TransportClient
from beacon.core.config import EnrichmentConfig
from beacon.core.exceptions import AllProvidersFailedError, EnrichmentError
from beacon.core.race import first_success
from beacon.core.storage import GEO_CACHE_KEY, IP_CACHE_KEY, MemoryStorage, Storage
from beacon.core.time import Clock, local_timezone_name, now_ms

logger = logging.getLogger(__name__)

FALLBACK_IP = "0.0.0.0"
LOCAL = "Local"

_PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


@dataclass(frozen=True, slots=True)
class IpInfo:
    ip: str
    is_private: bool
    local_ip: str | None = None


@dataclass(frozen=True, slots=True)
class GeoInfo:
    country: str | None = None
    region: str | None = None
    city: str | None = None
    isp: str | None = None
    timezone: str | None = None

    @property
    def empty(self) -> bool:
        return not any(asdict(self).values())

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GeoInfo:
        return cls(**{k: (None if data.get(k) is None else str(data[k])) for k in cls.__slots__})


def is_private_ip(ip: str) -> bool:
    """Loopback plus the three RFC 1918 ranges. Unparsable input is not private."""

    ip = (ip or "").strip()
    if ip == "localhost":
        return True
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    if addr.is_loopback:
        return True
    if addr.version != 4:
        return False
    return any(addr in net for net in _PRIVATE_NETWORKS)


def local_geo() -> GeoInfo:
    return GeoInfo(country=LOCAL, region=LOCAL, city=LOCAL, isp=LOCAL, timezone=local_timezone_name())


def discover_local_ip() -> str | None:
    """Address of the interface that routes outward. Sends no packets."""

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("10.255.255.255", 1))
        return str(sock.getsockname()[0])
    finally:
        sock.close()


def _valid_ip(value: Any) -> str:
    ip = str(value or "").strip()
    try:
        ipaddress.ip_address(ip)
    except ValueError as e:
        raise EnrichmentError(f"resolver_returned_invalid_ip:{ip!r}") from e
    return ip


# -----------------
# Providers
# -----------------

IpResolver = Callable[[TransportClient, float], Awaitable[str]]
GeoProvider = Callable[[TransportClient, str, float], Awaitable[GeoInfo]]


async def _ipify(client: TransportClient, timeout_s: float) -> str:
    data = await client.get_json("https://api.ipify.org?format=json", timeout_s=timeout_s)
    return _valid_ip(data.get("ip"))


async def _ipinfo_ip(client: TransportClient, timeout_s: float) -> str:
    data = await client.get_json("https://ipinfo.io/json", timeout_s=timeout_s)
    return _valid_ip(data.get("ip"))


async def _icanhazip(client: TransportClient, timeout_s: float) -> str:
    return _valid_ip(await client.get_text("https://icanhazip.com", timeout_s=timeout_s))


async def _geo_ip_api(client: TransportClient, ip: str, timeout_s: float) -> GeoInfo:
    data = await client.get_json(
        f"http://ip-api.com/json/{ip}?fields=status,country,regionName,city,isp,timezone",
        timeout_s=timeout_s,
    )
    if data.get("status") == "fail":
        raise EnrichmentError("ip-api_lookup_failed")
    return GeoInfo(
        country=data.get("country"),
        region=data.get("regionName"),
        city=data.get("city"),
        isp=data.get("isp"),
        timezone=data.get("timezone"),
    )


async def _geo_ipinfo(client: TransportClient, ip: str, timeout_s: float) -> GeoInfo:
    data = await client.get_json(f"https://ipinfo.io/{ip}/json", timeout_s=timeout_s)
    return GeoInfo(
        country=data.get("country"),
        region=data.get("region"),
        city=data.get("city"),
        isp=data.get("org"),
        timezone=data.get("timezone"),
    )


async def _geo_ipapi_co(client: TransportClient, ip: str, timeout_s: float) -> GeoInfo:
    data = await client.get_json(f"https://ipapi.co/{ip}/json/", timeout_s=timeout_s)
    if data.get("error"):
        raise EnrichmentError(f"ipapi.co_lookup_failed:{data.get('reason')}")
    return GeoInfo(
        country=data.get("country_name"),
        region=data.get("region"),
        city=data.get("city"),
        isp=data.get("org"),
        timezone=data.get("timezone"),
    )


IP_RESOLVERS: dict[str, IpResolver] = {
    "ipify": _ipify,
    "ipinfo": _ipinfo_ip,
    "icanhazip": _icanhazip,
}

GEO_PROVIDERS: dict[str, GeoProvider] = {
    "ipapi": _geo_ip_api,
    "ipinfo": _geo_ipinfo,
    "ipapi_co": _geo_ipapi_co,
}


class EnrichmentService:
    """IP and geo resolution with caching, racing, and fallback.

    Failures are remembered in memory for ``failure_backoff_ms`` so a dead network costs
    one race per window instead of one per event.
    """

    def __init__(
        self,
        client: TransportClient,
        storage: Storage | None = None,
        *,
        config: EnrichmentConfig | None = None,
        clock: Clock = now_ms,
        ip_resolvers: dict[str, IpResolver] | None = None,
        geo_providers: dict[str, GeoProvider] | None = None,
        local_discovery: Callable[[], str | None] = discover_local_ip,
    ) -> None:
        self.config = config or EnrichmentConfig()
        self._client = client
        self._clock = clock
        storage = storage if storage is not None else MemoryStorage()
        self.ip_cache = PersistentTTLCache(storage, IP_CACHE_KEY, ttl_ms=self.config.ip_cache_ttl_ms, clock=clock)
        self.geo_cache = PersistentTTLCache(
            storage,
            GEO_CACHE_KEY,
            ttl_ms=self.config.geo_cache_ttl_ms,
            stale_ms=self.config.geo_cache_stale_ms,
            clock=clock,
        )
        # Injected providers replace the configured set wholesale.
        self._ip_injected = ip_resolvers is not None
        self._geo_injected = geo_providers is not None
        self._ip_resolvers = self._pick(IP_RESOLVERS, self.config.ip_resolvers, ip_resolvers)
        self._geo_providers = self._pick(GEO_PROVIDERS, self.config.geo_providers, geo_providers)
        self._local_discovery = local_discovery
        self._ip_failed_at: int | None = None
        self._geo_failed_at: dict[str, int] = {}
        self._ip_lock = asyncio.Lock()

    @staticmethod
    def _pick(registry: dict[str, Any], names: list[str], injected: dict[str, Any] | None) -> list[Any]:
        if injected is None:
            injected = {n: registry[n] for n in names if n in registry}
        return list(injected.values())

    def reconfigure(self, config: EnrichmentConfig) -> None:
        """Apply new settings in place. Cached entries are kept and judged by the new TTLs."""

        self.config = config
        self.ip_cache.ttl_ms = config.ip_cache_ttl_ms
        self.ip_cache.stale_ms = config.ip_cache_ttl_ms
        self.geo_cache.ttl_ms = config.geo_cache_ttl_ms
        self.geo_cache.stale_ms = config.geo_cache_stale_ms
        if not self._ip_injected:
            self._ip_resolvers = self._pick(IP_RESOLVERS, config.ip_resolvers, None)
        if not self._geo_injected:
            self._geo_providers = self._pick(GEO_PROVIDERS, config.geo_providers, None)

    def _backing_off(self, failed_at: int | None) -> bool:
        return failed_at is not None and (self._clock() - failed_at) < self.config.failure_backoff_ms

    def _fallback_ip(self) -> IpInfo:
        local_ip: str | None = None
        try:
            local_ip = self._local_discovery()
        except Exception:  # noqa: BLE001 - best-effort path, never raises
            local_ip = None
        return IpInfo(ip=FALLBACK_IP, is_private=True, local_ip=local_ip)

    async def resolve_ip(self) -> IpInfo:
        cached = self.ip_cache.get("self")
        if cached is not None:
            return IpInfo(ip=str(cached.get("ip")), is_private=bool(cached.get("isPrivate")))

        # Concurrent callers share one race.
        async with self._ip_lock:
            cached = self.ip_cache.get("self")
            if cached is not None:
                return IpInfo(ip=str(cached.get("ip")), is_private=bool(cached.get("isPrivate")))
            if self._backing_off(self._ip_failed_at):
                return self._fallback_ip()

            timeout_s = self.config.request_timeout_s
            factories = [lambda r=r: r(self._client, timeout_s) for r in self._ip_resolvers]
            try:
                ip = await first_success(factories, timeout_s=timeout_s)
            except AllProvidersFailedError as e:
                self._ip_failed_at = self._clock()
                logger.warning(
                    "ip_resolution_failed",
                    extra={"errors": [f"{type(x).__name__}: {x}" for x in e.errors]},
                )
                return self._fallback_ip()

            self._ip_failed_at = None
            info = IpInfo(ip=ip, is_private=is_private_ip(ip))
            self.ip_cache.set("self", {"ip": info.ip, "isPrivate": info.is_private})
            return info

    async def resolve_geo(self, ip: str) -> GeoInfo:
        if ip == FALLBACK_IP or is_private_ip(ip):
            return local_geo()

        hit = self.geo_cache.lookup(ip, allow_stale=True)
        if hit is not None and hit.fresh:
            return GeoInfo.from_dict(hit.value)

        if not self._backing_off(self._geo_failed_at.get(ip)):
            timeout_s = self.config.request_timeout_s
            factories = [lambda p=p: p(self._client, ip, timeout_s) for p in self._geo_providers]
            try:
                geo = await first_success(factories, timeout_s=timeout_s)
            except AllProvidersFailedError as e:
                self._geo_failed_at[ip] = self._clock()
                logger.warning(
                    "geo_resolution_failed",
                    extra={"ip": ip, "errors": [f"{type(x).__name__}: {x}" for x in e.errors]},
                )
            else:
                self._geo_failed_at.pop(ip, None)
                if not geo.empty:
                    self.geo_cache.set(ip, geo.to_dict())
                return geo

        if hit is not None:
            logger.debug("geo_served_stale", extra={"ip": ip, "resolved_at": hit.resolved_at})
            return GeoInfo.from_dict(hit.value)
        return GeoInfo()

    async def enrich(self, *, collect_ip: bool, collect_geo: bool) -> dict[str, Any]:
        """Metadata fields for one event. Never raises; failure yields ``{}``."""

        if not collect_ip:
            return {}
        try:
            info = await self.resolve_ip()
            out: dict[str, Any] = {"userIp": info.ip, "isPrivateIp": info.is_private}
            if info.local_ip:
                out["localIp"] = info.local_ip
            if collect_geo and not info.is_private:
                out["geo"] = (await self.resolve_geo(info.ip)).to_dict()
            return out
        except (EnrichmentError, httpx.HTTPError, OSError, ValueError):
            logger.warning("enrichment_failed", exc_info=True)
            return {}
