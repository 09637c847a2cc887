# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Navigation guard: syntactic SSRF filter applied before any backend call.

The default check looks only at the literal hostname the actor supplied.
A hostname that resolves to a private address through DNS passes unless
``check_url_with_dns`` is used (``BrowseConfig.resolve_dns``).
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import re
import socket
import string
from urllib.parse import urlparse

from .errors import GuardRejection

logger = logging.getLogger(__name__)

ALLOWED_URL_SCHEMES = frozenset({"http", "https"})

# Lexical loopback + cloud metadata hostnames
BLOCKED_HOSTS = frozenset(
    {
        "localhost",
        "127.0.0.1",
        "::1",
        "169.254.169.254",  # AWS/GCP/Azure metadata
        "metadata.google.internal",
    }
)

# Private/reserved IP ranges (RFC 1918, loopback, link-local, CGNAT, IPv4-mapped IPv6)
_PRIVATE_NETWORKS = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),  # "This" network
    ipaddress.ip_network("100.64.0.0/10"),  # CGNAT
    ipaddress.ip_network("::/128"),  # Unspecified
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
    ipaddress.ip_network("::ffff:0:0/96"),  # IPv4-mapped IPv6
]

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")
# Scheme-only URLs without "//" that must not be rewritten into https://
_OPAQUE_SCHEME_RE = re.compile(r"^(?:javascript|data|file|about|blob|mailto|vbscript|chrome):", re.IGNORECASE)

DNS_RESOLVE_TIMEOUT_SECONDS = 2.0

_DEC_DIGITS = frozenset(string.digits)
_OCT_DIGITS = frozenset(string.octdigits)
_HEX_DIGITS = frozenset(string.hexdigits)


def normalize_url(raw: str) -> str:
    """Trim *raw* and default it to ``https://`` when it carries no scheme."""
    url = raw.strip()
    if not url:
        return url
    if _SCHEME_RE.match(url) or _OPAQUE_SCHEME_RE.match(url):
        return url
    return f"https://{url}"


def _parse_ipv4_part(part: str) -> int | None:
    """Parse one dotted part: ``0x`` hex, leading-zero octal, or decimal."""
    if part[:2].lower() == "0x":
        digits, base, alphabet = part[2:], 16, _HEX_DIGITS
        if not digits:
            return 0
    elif len(part) > 1 and part.startswith("0"):
        digits, base, alphabet = part[1:], 8, _OCT_DIGITS
    else:
        digits, base, alphabet = part, 10, _DEC_DIGITS
    # int() also takes signs, underscores and whitespace; browsers do not
    if len(digits) > 32 or not all(c in alphabet for c in digits):
        return None
    return int(digits, base)


def _normalize_ip(hostname: str) -> str | None:
    """Normalize IPv4 spellings to dotted-quad form, the way browsers parse hosts.

    Accepts one to four dot-separated parts, each decimal, hex (``0x7f``) or
    octal (``0177``); the last part fills the remaining bytes, so ``127.1``,
    ``2130706433`` and ``0x7f.0.0.1`` are all 127.0.0.1.

    Returns None if *hostname* is not an IP address. Pure arithmetic, no DNS.
    """
    try:
        return str(ipaddress.ip_address(hostname))
    except ValueError:
        pass

    parts = hostname.split(".")
    if not 1 <= len(parts) <= 4 or not all(parts):
        return None
    values = [_parse_ipv4_part(p) for p in parts]
    if any(v is None for v in values):
        return None
    *head, last = values
    if any(v > 255 for v in head) or last >= 256 ** (4 - len(head)):
        return None

    num = last
    for i, v in enumerate(head):
        num |= v << (8 * (3 - i))
    return str(ipaddress.ip_address(num))


def _is_private_ip(addr: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return any(addr in net for net in _PRIVATE_NETWORKS)


def validate_url(url: str) -> str | None:
    """Validate URL for safe navigation.

    Returns None if URL is safe, or an error message string if blocked.
    """
    try:
        parsed = urlparse(url)
        hostname = (parsed.hostname or "").lower().rstrip(".")
    except ValueError:
        return "Invalid URL format."

    scheme = (parsed.scheme or "").lower()
    if scheme not in ALLOWED_URL_SCHEMES:
        return f"URL scheme '{scheme}' is not allowed. Use http or https."

    if not hostname:
        return "URL must include a hostname."

    if hostname in BLOCKED_HOSTS or hostname.endswith(".localhost"):
        return f"Access to '{hostname}' is blocked."

    check_ip = _normalize_ip(hostname) or hostname
    try:
        addr = ipaddress.ip_address(check_ip)
    except ValueError:
        return None  # domain name

    if _is_private_ip(addr):
        return f"Access to private/reserved IP '{hostname}' is blocked."
    return None


def check_url(raw: str) -> str:
    """Normalize and validate *raw*; return the URL to navigate to.

    Raises:
        GuardRejection: the URL is malformed, non-HTTP(S) or targets a private host.
    """
    url = normalize_url(raw)
    error = validate_url(url)
    if error:
        logger.warning("Navigation guard blocked: url=%s reason=%s", url, error)
        raise GuardRejection(error, url=url, reason=error)
    return url


# ── DNS resolution check ─────────────────────────────────────────────


async def _resolve_dns(hostname: str) -> list[str]:
    """Resolve hostname to a deduplicated IP list.

    Raises ValueError on DNS failure or timeout.
    """

    def _sync_resolve() -> list[str]:
        results = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
        seen: set[str] = set()
        ips: list[str] = []
        for _family, _type, _proto, _canonname, sockaddr in results:
            ip = sockaddr[0]
            if ip not in seen:
                seen.add(ip)
                ips.append(ip)
        return ips

    try:
        return await asyncio.wait_for(asyncio.to_thread(_sync_resolve), timeout=DNS_RESOLVE_TIMEOUT_SECONDS)
    except TimeoutError as e:
        raise ValueError(f"DNS resolution timed out for '{hostname}'") from e
    except socket.gaierror as e:
        raise ValueError(f"DNS resolution failed for '{hostname}': {e}") from e


def _validate_resolved_ips(ips: list[str], hostname: str) -> str | None:
    if not ips:
        return f"DNS resolution returned no addresses for '{hostname}'."
    for ip_str in ips:
        try:
            addr = ipaddress.ip_address(ip_str)
        except ValueError:
            return f"Invalid IP '{ip_str}' resolved from '{hostname}'."
        if _is_private_ip(addr) or not addr.is_global:
            return f"'{hostname}' resolves to private IP {ip_str}."
    return None


async def check_url_with_dns(raw: str) -> str:
    """Like :func:`check_url`, then also reject hostnames resolving to private IPs."""
    url = check_url(raw)
    hostname = (urlparse(url).hostname or "").lower()
    if _normalize_ip(hostname) is not None:
        return url  # IP literal, already checked

    try:
        ips = await _resolve_dns(hostname)
    except ValueError as e:
        error = str(e)
    else:
        error = _validate_resolved_ips(ips, hostname)
    if error:
        logger.warning("Navigation guard blocked after DNS: url=%s reason=%s", url, error)
        raise GuardRejection(error, url=url, reason=error)
    return url
