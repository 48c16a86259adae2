"""Outbound URL validation guarding against server-side request forgery.

Every base URL the client may talk to passes through ``UrlValidator.validate``
before any socket is opened: once when settings are built and again for each
externally supplied test-connection candidate.
"""

from __future__ import annotations

import asyncio
import ipaddress
import re
import socket
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Protocol
from urllib.parse import urlsplit, urlunsplit

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

ALLOWED_SCHEMES = frozenset({"http", "https"})
DEFAULT_PORTS = {"http": 80, "https": 443}
STANDARD_PORTS = {
    "http": frozenset({80, 8080, 8000, 3000}),
    "https": frozenset({443, 8443}),
}
DEFAULT_ALLOWED_DOMAINS = ("wger.de",)

METADATA_ADDRESSES = frozenset(
    {
        ipaddress.ip_address("169.254.169.254"),
        ipaddress.ip_address("100.100.100.200"),
        ipaddress.ip_address("192.0.0.192"),
        ipaddress.ip_address("fd00:ec2::254"),
    }
)
METADATA_HOSTNAMES = frozenset(
    {"metadata.google.internal", "metadata.azure.com", "metadata.cloud"}
)

_BLOCKED_IPV4_RANGES = (
    (ipaddress.ip_network("10.0.0.0/8"), "private address range 10.0.0.0/8"),
    (ipaddress.ip_network("172.16.0.0/12"), "private address range 172.16.0.0/12"),
    (ipaddress.ip_network("192.168.0.0/16"), "private address range 192.168.0.0/16"),
    (ipaddress.ip_network("169.254.0.0/16"), "link-local address range 169.254.0.0/16"),
    (ipaddress.ip_network("0.0.0.0/8"), "current network range 0.0.0.0/8"),
    (ipaddress.ip_network("100.64.0.0/10"), "shared address space 100.64.0.0/10"),
    (ipaddress.ip_network("224.0.0.0/4"), "multicast address range 224.0.0.0/4"),
    (ipaddress.ip_network("240.0.0.0/4"), "reserved address range 240.0.0.0/4"),
)
_LOOPBACK_IPV4 = ipaddress.ip_network("127.0.0.0/8")

_NUMERIC_HOST = re.compile(r"^(?:0x[0-9a-f]*|\d+)(?:\.(?:0x[0-9a-f]*|\d+))*$")
_DOTTED_QUAD = re.compile(r"^(?:0|[1-9]\d{0,2})(?:\.(?:0|[1-9]\d{0,2})){3}$")
_DECIMAL_DIGITS = re.compile(r"^\d+$")
_TRAILING_SLASHES = re.compile(r"/{2,}$")
_MAX_HOST_LENGTH = 253
_MAX_LABEL_LENGTH = 63

_TEST_ENDPOINT_MARKERS = ("localhost", "test", "127.0.0.1", "::1")


@dataclass(frozen=True, slots=True)
class UrlValidationResult:
    """Outcome of one URL validation.

    Attributes:
        valid: Whether the URL may be used as an outbound target.
        url: The URL exactly as supplied.
        normalized_url: Canonical form, present only when ``valid``.
        errors: Fatal findings.
        warnings: Non-fatal findings.
    """

    valid: bool
    url: str
    normalized_url: str | None = None
    errors: tuple[str, ...] = field(default_factory=tuple)
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, object]:
        return {
            "valid": self.valid,
            "url": self.url,
            "normalizedUrl": self.normalized_url,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


class Resolver(Protocol):
    """Hostname resolver used by ``UrlValidator.validate_resolved``."""

    async def resolve(self, hostname: str) -> Sequence[str]:
        """Return the IP address strings ``hostname`` resolves to."""


class SystemResolver:
    """Resolve through the running loop's ``getaddrinfo``."""

    async def resolve(self, hostname: str) -> Sequence[str]:
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
        addresses: list[str] = []
        for _family, _type, _proto, _canonname, sockaddr in infos:
            address = str(sockaddr[0])
            if address not in addresses:
                addresses.append(address)
        return addresses


@dataclass(slots=True)
class _ParsedUrl:
    scheme: str
    host: str
    ip: IPAddress | None
    port: int | None
    path: str
    query: str
    fragment: str


def _split_host_port(netloc: str) -> tuple[str, str | None]:
    hostport = netloc.rpartition("@")[2]
    if hostport.startswith("["):
        end = hostport.find("]")
        if end == -1:
            raise ValueError("unterminated IPv6 address literal")
        host, rest = hostport[1:end], hostport[end + 1 :]
        if rest and not rest.startswith(":"):
            raise ValueError("unexpected characters after IPv6 address literal")
        return host, (rest[1:] if rest else None)
    host, separator, port = hostport.partition(":")
    if ":" in port:
        raise ValueError("IPv6 addresses must be enclosed in brackets")
    return host, (port if separator else None)


def _parse_ip_host(host: str) -> IPAddress | None:
    """Return the address for an IP-literal host, or ``None`` for a name.

    Raises:
        ValueError: For IPv6 literals that do not parse and for numeric hosts
            whose meaning depends on octal, hex or shorthand interpretation.
    """
    if ":" in host:
        return ipaddress.IPv6Address(host)
    if not _NUMERIC_HOST.match(host):
        return None
    if _DECIMAL_DIGITS.match(host):
        if len(host) > 1 and host.startswith("0"):
            raise ValueError(f"ambiguous numeric host notation: {host}")
        value = int(host, 10)
        if value > 0xFFFFFFFF:
            raise ValueError(f"decimal host out of range: {host}")
        return ipaddress.IPv4Address(value)
    if _DOTTED_QUAD.match(host):
        return ipaddress.IPv4Address(host)
    raise ValueError(f"ambiguous numeric host notation: {host}")


def _check_host_name(host: str) -> None:
    """Reject host names DNS cannot carry.

    Raises:
        ValueError: For empty labels, labels over 63 characters, names over
            253 characters and names the IDNA codec cannot encode.
    """
    if len(host) > _MAX_HOST_LENGTH:
        raise ValueError(f"host name exceeds {_MAX_HOST_LENGTH} characters")
    for label in host.split("."):
        if not label:
            raise ValueError(f"empty label in host name: {host}")
        if len(label) > _MAX_LABEL_LENGTH:
            raise ValueError(f"host label exceeds {_MAX_LABEL_LENGTH} characters")
    try:
        encoded = host.encode("idna")
    except UnicodeError as exc:
        raise ValueError(f"host name cannot be encoded: {host}") from exc
    if len(encoded) > _MAX_HOST_LENGTH:
        raise ValueError(f"host name exceeds {_MAX_HOST_LENGTH} characters")


def _matches_domain(hostname: str, pattern: str) -> bool:
    pattern = pattern.lower().rstrip(".")
    if pattern.startswith("*."):
        return hostname.endswith(pattern[1:])
    return hostname == pattern or hostname.endswith(f".{pattern}")


def classify_address(address: IPAddress) -> tuple[bool, str | None]:
    """Classify an address as ``(is_loopback, blocked_reason)``.

    Loopback addresses report ``(True, "loopback address")``. Any other
    reserved address reports ``(False, reason)``. Public addresses report
    ``(False, None)``.
    """
    if isinstance(address, ipaddress.IPv6Address):
        mapped = address.ipv4_mapped
        if mapped is not None:
            return classify_address(mapped)
        if address.is_loopback:
            return True, "IPv6 loopback address"
        if address.is_unspecified:
            return False, "IPv6 unspecified address"
        if address.is_link_local:
            return False, "IPv6 link-local address"
        if address.is_multicast:
            return False, "IPv6 multicast address"
        if address in ipaddress.ip_network("fc00::/7"):
            return False, "IPv6 unique-local address"
        return False, None

    if address in _LOOPBACK_IPV4:
        return True, "loopback address"
    for network, reason in _BLOCKED_IPV4_RANGES:
        if address in network:
            return False, reason
    return False, None


def looks_like_test_endpoint(url: str) -> bool:
    """Return whether ``url`` looks like a local or test deployment.

    Used for display only. It never relaxes any check in ``UrlValidator``.
    """
    try:
        hostname = urlsplit(url.strip()).hostname
    except ValueError:
        return False
    if not hostname:
        return False
    return any(marker in hostname for marker in _TEST_ENDPOINT_MARKERS)


class UrlValidator:
    """Classify candidate base URLs as safe or unsafe outbound targets.

    Development mode relaxes loopback and ``localhost`` hosts and the domain
    allow-list. Private ranges, link-local ranges and cloud metadata endpoints
    are rejected in every mode.
    """

    def __init__(
        self,
        *,
        allowed_domains: Iterable[str] = DEFAULT_ALLOWED_DOMAINS,
        resolver: Resolver | None = None,
        dns_timeout_s: float = 3.0,
    ) -> None:
        self.allowed_domains = tuple(domain.lower() for domain in allowed_domains)
        self._resolver = SystemResolver() if resolver is None else resolver
        self._dns_timeout_s = dns_timeout_s

    def validate(
        self,
        url: str,
        *,
        is_development: bool = False,
        extra_domains: Iterable[str] = (),
    ) -> UrlValidationResult:
        """Validate ``url`` without any network access."""
        result, _ = self._validate(
            url, is_development=is_development, extra_domains=extra_domains
        )
        return result

    async def validate_resolved(
        self,
        url: str,
        *,
        is_development: bool = False,
        extra_domains: Iterable[str] = (),
    ) -> UrlValidationResult:
        """Validate ``url`` and check where its hostname resolves.

        Resolution runs only in production mode and only for names. A name
        resolving to any blocked address is rejected. A resolution failure is
        reported as a warning.
        """
        result, parsed = self._validate(
            url, is_development=is_development, extra_domains=extra_domains
        )
        if not result.valid or parsed is None or parsed.ip is not None:
            return result
        if is_development:
            return result

        try:
            addresses = await asyncio.wait_for(
                self._resolver.resolve(parsed.host), timeout=self._dns_timeout_s
            )
        except (OSError, TimeoutError, ValueError) as exc:
            return replace(
                result, warnings=(*result.warnings, f"DNS resolution warning: {exc}")
            )

        if not addresses:
            return replace(
                result,
                warnings=(
                    *result.warnings,
                    f"DNS resolution warning: could not resolve hostname: {parsed.host}",
                ),
            )

        for raw_address in addresses:
            try:
                address = ipaddress.ip_address(raw_address.split("%", 1)[0])
            except ValueError:
                continue
            reason = self._blocked_reason(address)
            if reason is not None:
                return UrlValidationResult(
                    valid=False,
                    url=url,
                    errors=(
                        f"Domain {parsed.host} resolves to blocked IP {address}: {reason}",
                    ),
                    warnings=result.warnings,
                )
        return result

    def _blocked_reason(self, address: IPAddress) -> str | None:
        if address in METADATA_ADDRESSES:
            return "cloud metadata endpoint"
        _, reason = classify_address(address)
        return reason

    def _validate(
        self,
        url: str,
        *,
        is_development: bool,
        extra_domains: Iterable[str],
    ) -> tuple[UrlValidationResult, _ParsedUrl | None]:
        if not isinstance(url, str) or not url.strip():
            return _invalid(url, ["malformed URL: URL must be a non-empty string"]), None

        candidate = url.strip()
        try:
            parts = urlsplit(candidate)
            raw_host, raw_port = _split_host_port(parts.netloc)
        except ValueError as exc:
            return _invalid(url, [f"malformed URL: {exc}"]), None
        if not parts.scheme:
            return _invalid(url, ["malformed URL: missing scheme"]), None

        errors: list[str] = []
        warnings: list[str] = []
        scheme = parts.scheme.lower()

        if "@" in parts.netloc:
            errors.append("URLs with embedded credentials are not allowed")
        if scheme not in ALLOWED_SCHEMES:
            errors.append(
                f"Protocol not allowed: {scheme}. Only http, https are permitted"
            )
        if errors:
            return _invalid(url, errors), None
        if not raw_host:
            return _invalid(url, ["malformed URL: missing host"]), None

        host = raw_host.lower().rstrip(".")
        try:
            ip = _parse_ip_host(host)
            if ip is None:
                _check_host_name(host)
        except ValueError as exc:
            return _invalid(url, [f"malformed URL: {exc}"]), None

        if ip is not None:
            self._check_address(ip, is_development, errors, warnings)
        else:
            self._check_hostname(
                host, is_development, extra_domains, errors, warnings
            )

        port = self._check_port(scheme, raw_port, errors, warnings)
        if errors:
            return _invalid(url, errors, warnings), None

        if is_development:
            warnings.append("Running against a development endpoint")

        parsed = _ParsedUrl(
            scheme=scheme,
            host=host,
            ip=ip,
            port=port,
            path=parts.path,
            query=parts.query,
            fragment=parts.fragment,
        )
        return (
            UrlValidationResult(
                valid=True,
                url=url,
                normalized_url=_normalize(parsed),
                warnings=tuple(warnings),
            ),
            parsed,
        )

    def _check_address(
        self,
        address: IPAddress,
        is_development: bool,
        errors: list[str],
        warnings: list[str],
    ) -> None:
        if address in METADATA_ADDRESSES or (
            isinstance(address, ipaddress.IPv6Address)
            and address.ipv4_mapped in METADATA_ADDRESSES
        ):
            errors.append(f"Blocked cloud metadata endpoint: {address}")
            return

        is_loopback, reason = classify_address(address)
        if is_loopback:
            if is_development:
                warnings.append(f"Using {reason} in development mode")
            else:
                errors.append(f"Blocked IP address: {reason} not allowed in production mode")
            return
        if reason is not None:
            errors.append(f"Blocked IP address: {reason}")

    def _check_hostname(
        self,
        host: str,
        is_development: bool,
        extra_domains: Iterable[str],
        errors: list[str],
        warnings: list[str],
    ) -> None:
        if host in METADATA_HOSTNAMES:
            errors.append(f"Blocked cloud metadata endpoint: {host}")
            return

        if host == "localhost" or host.endswith(".localhost"):
            if is_development:
                warnings.append("Using localhost in development mode")
            else:
                errors.append(
                    "Localhost addresses are not allowed in production mode"
                )
            return
        if "localhost" in host and not is_development:
            errors.append(f"Deceptive hostname containing 'localhost': {host}")
            return

        allowed = (*self.allowed_domains, *(d.lower() for d in extra_domains))
        if not allowed or any(_matches_domain(host, pattern) for pattern in allowed):
            return
        if is_development:
            warnings.append(
                f"Using non-whitelisted domain in development mode: {host}"
            )
        else:
            errors.append(
                f"Domain not whitelisted: {host}. Allowed domains: {', '.join(allowed)}"
            )

    def _check_port(
        self,
        scheme: str,
        raw_port: str | None,
        errors: list[str],
        warnings: list[str],
    ) -> int | None:
        if not raw_port:
            return None
        if not _DECIMAL_DIGITS.match(raw_port):
            errors.append(f"Invalid port number: {raw_port}")
            return None
        port = int(raw_port, 10)
        if not 1 <= port <= 65535:
            errors.append(f"Invalid port number: {raw_port}")
            return None
        if port not in STANDARD_PORTS[scheme]:
            warnings.append(f"Non-standard port for {scheme}: {port}")
        return port


def _normalize(parsed: _ParsedUrl) -> str:
    if isinstance(parsed.ip, ipaddress.IPv6Address):
        netloc = f"[{parsed.ip.compressed}]"
    elif parsed.ip is not None:
        netloc = str(parsed.ip)
    else:
        netloc = parsed.host
    if parsed.port is not None and parsed.port != DEFAULT_PORTS[parsed.scheme]:
        netloc = f"{netloc}:{parsed.port}"
    path = _TRAILING_SLASHES.sub("/", parsed.path)
    return urlunsplit((parsed.scheme, netloc, path, parsed.query, parsed.fragment))


def _invalid(
    url: object, errors: Sequence[str], warnings: Sequence[str] = ()
) -> UrlValidationResult:
    return UrlValidationResult(
        valid=False,
        url=url if isinstance(url, str) else repr(url),
        errors=tuple(errors),
        warnings=tuple(warnings),
    )

