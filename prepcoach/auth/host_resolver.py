"""
Redirect-URI candidate resolution.

The service sits behind a proxy whose public hostname is only visible on the
inbound request, and preview/production hostnames differ. The provider
rejects any token exchange whose redirect URI differs from the registered one
by a single character, so instead of guessing one URL we produce an ordered
list of candidates and let the retry path walk it.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from urllib.parse import urlsplit

from ..config import AuthSettings

logger = logging.getLogger(__name__)

_LOOPBACK_NAMES = {"localhost", "localhost.localdomain"}
_HOST_RE = re.compile(r"^(?:[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)*|\[[0-9A-Fa-f:.]+\])(?::\d{1,5})?$")
_HOSTED_RE = re.compile(
    r"^(?:www\.)?(?P<slug>[a-z0-9-]+)\.(?P<owner>[a-z0-9-]+)\.(?:repl\.co|replit\.dev|replit\.app)$"
)
_HOSTED_SUFFIXES = ("repl.co", "replit.dev", "replit.app")
_DEFAULT_PORTS = {"https": ":443", "http": ":80"}


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if not value:
        return None
    # proxies append; the client-facing hop is first
    return value.split(",")[0].strip() or None


def hostname_of(host: str) -> str:
    """Strip the port from a host[:port] value (IPv6 literals keep their brackets off)."""
    if host.startswith("["):
        return host[1 : host.find("]")] if "]" in host else host.strip("[]")
    return host.rsplit(":", 1)[0] if host.count(":") == 1 else host


def is_loopback(host: str) -> bool:
    name = hostname_of(host).lower()
    if name in _LOOPBACK_NAMES:
        return True
    try:
        return ipaddress.ip_address(name).is_loopback
    except ValueError:
        return False


def _normalise_host(raw: str | None) -> str | None:
    if not raw:
        return None
    host = raw.strip().lower()
    if "://" in host:
        host = urlsplit(host).netloc
    host = host.rstrip("/")
    if not host or not _HOST_RE.match(host):
        return None
    return host


class HostCache:
    """Last externally-visible host observed by a resolver, with a freshness window.

    Used only when a request arrives without any host header; a request that
    carries its own host never reads the cache.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._host: str | None = None
        self._seen_at: float = 0.0

    def remember(self, host: str) -> None:
        with self._lock:
            self._host = host
            self._seen_at = self._clock()

    def recent(self) -> str | None:
        with self._lock:
            if self._host is None:
                return None
            if self._clock() - self._seen_at > self.ttl_seconds:
                self._host = None
                return None
            return self._host

    def clear(self) -> None:
        with self._lock:
            self._host = None
            self._seen_at = 0.0


class HostDomainResolver:
    def __init__(
        self,
        callback_path: str = "/auth/callback",
        *,
        deploy_domains: Iterable[str] = (),
        explicit_redirect_uri: str = "",
        repl_slug: str = "",
        repl_owner: str = "",
        loopback_hosts: Iterable[str] = ("localhost:5000",),
        cache: HostCache | None = None,
    ):
        if not callback_path.startswith("/"):
            callback_path = "/" + callback_path
        self.callback_path = callback_path
        self.deploy_domains = tuple(deploy_domains)
        self.explicit_redirect_uri = explicit_redirect_uri.strip()
        self.repl_slug = repl_slug.strip().lower()
        self.repl_owner = repl_owner.strip().lower()
        self.loopback_hosts = tuple(loopback_hosts) or ("localhost:5000",)
        self.cache = cache if cache is not None else HostCache()

    @classmethod
    def from_settings(cls, settings: AuthSettings, cache: HostCache | None = None) -> HostDomainResolver:
        return cls(
            settings.callback_path,
            deploy_domains=settings.deploy_domains,
            explicit_redirect_uri=settings.explicit_redirect_uri,
            repl_slug=settings.repl_slug,
            repl_owner=settings.repl_owner,
            loopback_hosts=settings.loopback_hosts,
            cache=cache if cache is not None else HostCache(settings.host_cache_ttl_seconds),
        )

    def detect_host(self, headers: Mapping[str, str]) -> str | None:
        """Return the client-facing host from the request headers, if any."""
        raw = _header(headers, "X-Forwarded-Host") or _header(headers, "Host")
        host = _normalise_host(raw)
        if raw and host is None:
            logger.warning(
                "Ignoring malformed host header",
                extra={"meta": {"raw_length": len(raw)}},
            )
        return host

    def _url(self, host: str, proto: str | None = None) -> str:
        if is_loopback(host):
            scheme = proto if proto in {"http", "https"} else "http"
        else:
            scheme = "https"
        default_port = _DEFAULT_PORTS[scheme]
        if host.endswith(default_port):
            host = host[: -len(default_port)]
        return f"{scheme}://{host}{self.callback_path}"

    def _deployment_candidates(self, header_host: str | None) -> list[str]:
        urls: list[str] = []
        if header_host:
            m = _HOSTED_RE.match(hostname_of(header_host))
            if m:
                for suffix in _HOSTED_SUFFIXES:
                    urls.append(self._url(f"{m.group('slug')}.{m.group('owner')}.{suffix}"))
        if self.repl_slug and self.repl_owner:
            for suffix in ("repl.co", "replit.dev"):
                urls.append(self._url(f"{self.repl_slug}.{self.repl_owner}.{suffix}"))
        for entry in self.deploy_domains:
            host = _normalise_host(entry)
            if host:
                urls.append(self._url(host))
        if self.explicit_redirect_uri:
            urls.append(self.explicit_redirect_uri)
        return urls

    def resolve(self, headers: Mapping[str, str], scheme: str | None = None) -> list[str]:
        """Return callback URL candidates, most likely first. Never empty."""
        proto = (_header(headers, "X-Forwarded-Proto") or scheme or "").lower() or None
        header_host = self.detect_host(headers)

        candidates: list[str] = []
        if header_host:
            self.cache.remember(header_host)
            candidates.append(self._url(header_host, proto))
        else:
            cached = self.cache.recent()
            if cached:
                candidates.append(self._url(cached))

        candidates.extend(self._deployment_candidates(header_host))

        for entry in self.loopback_hosts:
            host = _normalise_host(entry)
            if host:
                candidates.append(self._url(host, "http"))
        if not any(is_loopback(urlsplit(u).netloc) for u in candidates):
            candidates.append(f"http://localhost:5000{self.callback_path}")

        # dedupe, keep first occurrence
        ordered = list(dict.fromkeys(candidates))

        logger.info(
            "Redirect URI candidates resolved",
            extra={
                "meta": {
                    "header_host": header_host,
                    "forwarded_proto": proto,
                    "candidate_count": len(ordered),
                    "candidates": ordered,
                }
            },
        )
        return ordered
