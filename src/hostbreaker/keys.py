# === NAVMAP v1 ===
# {
#   "module": "hostbreaker.keys",
#   "purpose": "URL to breaker key derivation with a host cache",
#   "sections": [
#     {
#       "id": "normalize-host-key",
#       "name": "normalize_host_key",
#       "anchor": "function-normalize-host-key",
#       "kind": "function"
#     },
#     {
#       "id": "parse-url",
#       "name": "parse_url",
#       "anchor": "function-parse-url",
#       "kind": "function"
#     },
#     {
#       "id": "breakerkeyextractor",
#       "name": "BreakerKeyExtractor",
#       "anchor": "class-breakerkeyextractor",
#       "kind": "class"
#     },
#     {
#       "id": "urlkeyextractor",
#       "name": "UrlKeyExtractor",
#       "anchor": "class-urlkeyextractor",
#       "kind": "class"
#     },
#     {
#       "id": "extract-host-with-fallback",
#       "name": "extract_host_with_fallback",
#       "anchor": "function-extract-host-with-fallback",
#       "kind": "function"
#     },
#     {
#       "id": "is-valid-url",
#       "name": "is_valid_url",
#       "anchor": "function-is-valid-url",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Breaker key derivation from request URLs.

Responsibilities
----------------
- Parse request URLs with :func:`urllib.parse.urlsplit` and map them onto a
  canonical breaker key: ``host`` or ``host:port``.
- Canonicalize hosts (lowercase, trailing dot removed, IDNA 2008 + UTS #46
  punycode, bracketed IPv6 literals) via :func:`normalize_host_key`.
- Cache raw authority text → key so hot paths skip re-canonicalization, with
  optional LRU bounding.

Canonicalization Rules
----------------------
1. **Path, query, fragment and scheme never reach the key**:
   ``https://a.example/x?y=1`` and ``http://a.example/z`` share ``a.example``.
2. **Default ports count as absent**: ``https://a.example:443/`` → ``a.example``
   (80 for http/ws, 443 for https/wss, 21 for ftp).
3. **Explicit ports** are appended only when ``include_port`` is enabled.
4. **IDN hosts** are encoded to ASCII (``münchen.example`` →
   ``xn--mnchen-3ya.example``); names IDNA rejects (underscores, overlong
   labels) fall back to lowercase.

Gotchas
-------
- ``api.example.com:8080/path`` (no scheme) parses with ``api.example.com`` as
  the *scheme*; it has no authority and raises :class:`MissingHostError`.
- The cache is keyed by the host as written in the URL plus its effective
  port (userinfo stripped, scheme-default port dropped), so a key depends only
  on host, effective port and ``include_port``. Pre-seeded entries win over
  computed keys.
- Hosts containing spaces, controls or other characters a URL host may not
  carry raise :class:`UrlParseError`.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from collections import OrderedDict
from typing import Iterable, List, Optional, Protocol, Tuple
from urllib.parse import SplitResult, urlsplit

import idna  # IDNA 2008 with UTS #46 support

from hostbreaker.errors import (
    BreakerKeyError,
    InvalidUrlError,
    MissingHostError,
    UrlParseError,
)

__all__ = (
    "DEFAULT_PORTS",
    "normalize_host_key",
    "normalize_authority",
    "parse_url",
    "BreakerKeyExtractor",
    "UrlKeyExtractor",
    "extract_host_with_fallback",
    "is_valid_url",
)

LOGGER = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}

UNKNOWN_HOST = "unknown_host"
INVALID_URL = "invalid_url"

# characters a URL host may not contain (controls are checked separately)
_FORBIDDEN_HOST_CHARS = frozenset(" <>^|\\\"`{}")


def normalize_host_key(host: str) -> str:
    """
    Normalize a host to its canonical breaker form.

    Examples:
        >>> normalize_host_key("Example.COM.")
        'example.com'
        >>> normalize_host_key("münchen.example")
        'xn--mnchen-3ya.example'
        >>> normalize_host_key("::1")
        '[::1]'
    """
    h = host.strip().rstrip(".")
    if not h:
        return h

    try:
        ip = ipaddress.ip_address(h.strip("[]"))
    except ValueError:
        pass
    else:
        return f"[{ip.compressed}]" if ip.version == 6 else ip.compressed

    try:
        return idna.encode(h, uts46=True).decode("ascii")
    except (idna.IDNAError, UnicodeError) as e:
        LOGGER.debug("IDNA encoding failed for %r: %s; falling back to lowercase", h, e)
        return h.lower()


def _default_port(scheme: str) -> Optional[int]:
    return DEFAULT_PORTS.get(scheme.lower())


def _format_key(host: str, port: Optional[int], scheme: str, include_port: bool) -> str:
    key = normalize_host_key(host)
    if include_port and port is not None and port != _default_port(scheme):
        return f"{key}:{port}"
    return key


def _effective_port(parts: SplitResult) -> Optional[int]:
    """Explicit port, or None when absent or equal to the scheme default."""
    port = parts.port
    if port is None or port == _default_port(parts.scheme):
        return None
    return port


def _cache_authority(parts: SplitResult) -> str:
    """
    Cache lookup text: the host as written (userinfo and port stripped) plus
    the effective port, so ``https://h:443`` and ``http://h:443`` never share
    an entry.
    """
    authority = parts.netloc.rpartition("@")[2]
    if authority.startswith("["):
        host = authority[: authority.find("]") + 1]
    else:
        host = authority.partition(":")[0]
    port = _effective_port(parts)
    return host if port is None else f"{host}:{port}"


def _valid_host(host: str) -> bool:
    return not any(c in _FORBIDDEN_HOST_CHARS or ord(c) < 0x20 or c == "\x7f" for c in host)


def normalize_authority(authority: str, *, include_port: bool) -> str:
    """
    Canonicalize a bare ``host[:port]`` string (config keys, seed hosts).

    ``[::1]:8080`` and IDN hosts are handled like URL hosts. Text that does not
    split into host and port is canonicalized as a whole.
    """
    text = authority.strip()
    try:
        parts = urlsplit(f"//{text}")
        host = parts.hostname
        port = parts.port
    except ValueError:
        return normalize_host_key(text)
    if not host:
        return normalize_host_key(text)
    return _format_key(host, port, "", include_port)


def parse_url(url: str) -> SplitResult:
    """
    Parse ``url`` as an absolute URL with a host.

    Raises:
        InvalidUrlError: empty or relative input.
        UrlParseError: syntax ``urlsplit`` rejects, or an unusable port.
        MissingHostError: absolute URL without a host.
    """
    text = url.strip()
    if not text:
        raise InvalidUrlError(url)
    try:
        parts = urlsplit(text)
    except ValueError as e:
        raise UrlParseError(url, str(e)) from e
    if not parts.scheme:
        raise InvalidUrlError(url)
    if not parts.hostname:
        raise MissingHostError(url)
    if not _valid_host(parts.hostname):
        raise UrlParseError(url, f"invalid host character in {parts.hostname!r}")
    try:
        parts.port
    except ValueError as e:
        raise UrlParseError(url, str(e)) from e
    return parts


# ────────────────────────────────────────────────────────────────────────────────
# Extractors
# ────────────────────────────────────────────────────────────────────────────────


class BreakerKeyExtractor(Protocol):
    """Maps request URLs onto breaker keys.

    ``extract_key`` may raise :class:`BreakerKeyError`; ``extract_key_from_parsed``
    must never raise.
    """

    def extract_key(self, url: str) -> str: ...
    def extract_key_from_parsed(self, url: SplitResult) -> str: ...
    def get_cached_key(self, host: str) -> Optional[str]: ...
    def cache_key(self, host: str, key: str) -> None: ...


class UrlKeyExtractor:
    """
    Host-based key extractor with a thread-safe authority cache.

    Usage:
        extractor = UrlKeyExtractor(include_port=True)
        extractor.extract_key("https://api.example.com:8080/v1")  # "api.example.com:8080"
    """

    def __init__(self, include_port: bool = False, *, max_cached_hosts: Optional[int] = None) -> None:
        if max_cached_hosts is not None and max_cached_hosts < 1:
            raise ValueError("max_cached_hosts must be >=1 when set")
        self.include_port = include_port
        self.max_cached_hosts = max_cached_hosts
        self._cache: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    @classmethod
    def with_common_hosts(
        cls,
        include_port: bool,
        common_hosts: Iterable[str],
        *,
        max_cached_hosts: Optional[int] = None,
    ) -> "UrlKeyExtractor":
        """Build an extractor with ``common_hosts`` (``host[:port]``) pre-cached."""
        extractor = cls(include_port, max_cached_hosts=max_cached_hosts)
        for host in common_hosts:
            extractor.cache_key(host, normalize_authority(host, include_port=include_port))
        return extractor

    # ── Public API ────────────────────────────────────────────────────────────

    def extract_key(self, url: str) -> str:
        return self.extract_key_from_parsed(parse_url(url))

    def extract_key_from_parsed(self, url: SplitResult) -> str:
        host = url.hostname
        if not host or not _valid_host(host):
            return url.geturl()
        try:
            authority = _cache_authority(url)
        except ValueError:
            return url.geturl()

        cached = self.get_cached_key(authority)
        if cached is not None:
            return cached

        key = _format_key(host, _effective_port(url), "", self.include_port)
        self.cache_key(authority, key)
        return key

    def get_cached_key(self, host: str) -> Optional[str]:
        with self._lock:
            key = self._cache.get(host)
            if key is not None and self.max_cached_hosts is not None:
                self._cache.move_to_end(host)
            return key

    def cache_key(self, host: str, key: str) -> None:
        with self._lock:
            self._cache[host] = key
            self._cache.move_to_end(host)
            if self.max_cached_hosts is not None:
                while len(self._cache) > self.max_cached_hosts:
                    evicted, _ = self._cache.popitem(last=False)
                    LOGGER.debug("Evicted breaker key cache entry %s", evicted)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def cached_items(self) -> List[Tuple[str, str]]:
        with self._lock:
            return list(self._cache.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


# ────────────────────────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────────────────────────


def extract_host_with_fallback(url: str) -> str:
    """
    Return ``host[:port]`` for ``url``, never raising.

    ``"unknown_host"`` when the URL has no host, ``"invalid_url"`` when it does
    not parse. The port is always kept unless it is the scheme default.
    """
    try:
        parts = parse_url(url)
    except MissingHostError:
        return UNKNOWN_HOST
    except BreakerKeyError:
        return INVALID_URL
    return _format_key(parts.hostname or "", parts.port, parts.scheme, True)


def is_valid_url(url: str) -> bool:
    """True when ``url`` parses as an absolute URL (host not required)."""
    try:
        parse_url(url)
    except MissingHostError:
        return True
    except BreakerKeyError:
        return False
    return True
