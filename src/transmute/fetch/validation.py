"""URL validation applied before any network access.

Checks run in a fixed order and stop at the first failure:

1. non-empty, no whitespace or control characters, no script/data markers
2. syntactically valid (scheme and host present, port parses)
3. Unicode host converted to its IDNA (ASCII) form
4. scheme in the allow-list
5. host made of valid DNS labels
6. no empty path segments or backslashes
7. localhost, loopback and private addresses (unless allowed)
8. host not covered by the deny-list
"""

from __future__ import annotations

from collections.abc import Iterable
import ipaddress
import logging
import re
from urllib.parse import SplitResult, urlsplit, urlunsplit

from transmute.core.exceptions import UrlValidationError

logger = logging.getLogger(__name__)

_MARKERS = ("javascript:", "data:", "vbscript:")
_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
_LOCAL_NAMES = frozenset({"localhost", "localhost.localdomain"})


def _has_control_or_space(value: str) -> bool:
    return any(ch.isspace() or ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value)


def _to_ascii_host(host: str) -> str:
    try:
        return host.encode("idna").decode("ascii").lower()
    except UnicodeError as e:
        raise UrlValidationError(f"Invalid internationalized host: {host}") from e


def _is_ip_literal(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return None


class UrlValidator:
    """Validates and normalizes URLs against scheme and domain policy."""

    def __init__(
        self,
        allowed_schemes: Iterable[str] = ("http", "https"),
        blocked_domains: Iterable[str] = (),
        *,
        allow_localhost: bool = False,
    ) -> None:
        """Initialize with the scheme allow-list and domain deny-list.

        Deny-list entries are matched on label boundaries. A plain entry
        (``example.com``) blocks the host and all of its subdomains; a
        wildcard entry (``*.example.com``) blocks subdomains only.
        """
        self.allowed_schemes = frozenset(s.lower() for s in allowed_schemes)
        self.allow_localhost = allow_localhost
        exact: set[str] = set()
        subdomains_only: set[str] = set()
        for entry in blocked_domains:
            domain = entry.strip().lower().rstrip(".")
            if not domain:
                continue
            if domain.startswith("*."):
                subdomains_only.add(_to_ascii_host(domain[2:]))
            else:
                exact.add(_to_ascii_host(domain))
        self._blocked = frozenset(exact)
        self._blocked_subdomains_only = frozenset(subdomains_only)

    @classmethod
    def from_config(cls, config) -> UrlValidator:  # noqa: ANN001
        """Build from a ``FetchConfig``."""
        return cls(
            config.allowed_schemes,
            config.blocked_domains,
            allow_localhost=config.allow_localhost,
        )

    def validate(self, url: str) -> str:
        """Return the normalized URL or raise ``UrlValidationError``."""
        if not isinstance(url, str) or not url.strip():
            raise UrlValidationError("URL must be a non-empty string", url=url)
        candidate = url.strip()
        if _has_control_or_space(candidate):
            raise UrlValidationError("URL contains whitespace or control characters", url=url)
        lowered = candidate.lower()
        if lowered.startswith(_MARKERS):
            raise UrlValidationError("URL uses a disallowed script or data scheme", url=url)

        parts = self._split(candidate, url)
        host = _to_ascii_host(parts.hostname or "")

        scheme = parts.scheme.lower()
        if scheme not in self.allowed_schemes:
            raise UrlValidationError(
                f"URL scheme '{scheme}' is not allowed; allowed: "
                f"{', '.join(sorted(self.allowed_schemes))}",
                url=url,
            )

        self._check_host(host, url)
        if "//" in parts.path or "\\" in parts.path:
            raise UrlValidationError("URL path contains empty segments or backslashes", url=url)
        self._check_local(host, url)
        self._check_blocked(host, url)

        netloc = host if ":" not in host else f"[{host}]"
        if parts.port is not None:
            netloc = f"{netloc}:{parts.port}"
        if parts.username:
            userinfo = parts.username
            if parts.password:
                userinfo = f"{userinfo}:{parts.password}"
            netloc = f"{userinfo}@{netloc}"
        return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))

    def is_blocked(self, host: str) -> bool:
        """Whether ``host`` is covered by the deny-list."""
        host = host.lower().rstrip(".")
        labels = host.split(".")
        for i in range(len(labels)):
            suffix = ".".join(labels[i:])
            if suffix in self._blocked:
                return True
            if i > 0 and suffix in self._blocked_subdomains_only:
                return True
        return False

    # --- Individual checks ---

    def _split(self, candidate: str, original: str) -> SplitResult:
        try:
            parts = urlsplit(candidate)
            _ = parts.port  # raises on a malformed port
        except ValueError as e:
            raise UrlValidationError(f"Malformed URL: {e}", url=original) from e
        if not parts.scheme or not parts.netloc or not parts.hostname:
            raise UrlValidationError("URL must include a scheme and host", url=original)
        return parts

    def _check_host(self, host: str, url: str) -> None:
        if not host:
            raise UrlValidationError("URL host is empty", url=url)
        if any(marker in host for marker in _MARKERS):
            raise UrlValidationError("URL host contains a script or data marker", url=url)
        if _is_ip_literal(host) is not None:
            return
        labels = host.rstrip(".").split(".")
        if not all(_LABEL.match(label) for label in labels):
            raise UrlValidationError(f"URL host '{host}' is not a valid domain name", url=url)

    def _check_local(self, host: str, url: str) -> None:
        if self.allow_localhost:
            return
        bare = host.rstrip(".")
        if bare in _LOCAL_NAMES or bare.endswith(".localhost"):
            raise UrlValidationError("Requests to localhost are not allowed", url=url)
        ip = _is_ip_literal(bare)
        if ip is not None and (
            ip.is_loopback
            or ip.is_private
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_unspecified
        ):
            raise UrlValidationError(
                f"Requests to internal address {ip} are not allowed", url=url
            )

    def _check_blocked(self, host: str, url: str) -> None:
        if self.is_blocked(host):
            logger.debug("Rejected blocked host %s", host)
            raise UrlValidationError(f"Domain '{host}' is blocked", url=url)
