"""Immutable credential sets and cookie string helpers."""
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Mapping, Optional

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "_m_h5_tk"
TOKEN_DELIMITER = "_"
TOKEN_MAX_AGE_HOURS = 24

# Attributes that can appear in a Set-Cookie header next to the pair itself
_COOKIE_ATTRIBUTES = {"path", "domain", "expires", "max-age", "secure", "httponly", "samesite"}
_PLACEHOLDER_ALPHABET = string.ascii_lowercase + string.digits


class CredentialSource(str, Enum):
    """Where a credential set came from."""

    STATIC = "static-config"
    LIVE = "live-fetch"
    FALLBACK = "durable-fallback"
    EMPTY = "empty"


@dataclass(frozen=True)
class CredentialSet:
    """Ordered name/value pairs authenticating calls to one domain."""

    domain: str
    items: tuple[tuple[str, str], ...] = ()
    source: CredentialSource = CredentialSource.EMPTY
    obtained_at: float = field(default_factory=time.time)

    @classmethod
    def from_mapping(
        cls,
        domain: str,
        values: Mapping[str, str],
        source: CredentialSource,
        obtained_at: Optional[float] = None,
    ) -> "CredentialSet":
        return cls(
            domain=domain,
            items=tuple((str(k), str(v)) for k, v in values.items()),
            source=source,
            obtained_at=time.time() if obtained_at is None else obtained_at,
        )

    @classmethod
    def from_header(
        cls,
        domain: str,
        header: Optional[str],
        source: CredentialSource,
        obtained_at: Optional[float] = None,
    ) -> "CredentialSet":
        return cls.from_mapping(domain, parse_cookie_header(header), source, obtained_at)

    @classmethod
    def empty(cls, domain: str) -> "CredentialSet":
        return cls(domain=domain, source=CredentialSource.EMPTY)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        for key, value in self.items:
            if key == name:
                return value
        return default

    def __contains__(self, name: object) -> bool:
        return any(key == name for key, _ in self.items)

    def __iter__(self) -> Iterator[str]:
        return (key for key, _ in self.items)

    def __len__(self) -> int:
        return len(self.items)

    def as_dict(self) -> dict[str, str]:
        return dict(self.items)

    def to_header(self) -> str:
        """Render as a `name=value; name=value` Cookie header."""
        return format_cookie_header(self.items)

    def with_values(self, extra: Mapping[str, str]) -> "CredentialSet":
        """Return a new set with `extra` added or replaced, same source and age."""
        merged = self.as_dict()
        merged.update(extra)
        return CredentialSet.from_mapping(self.domain, merged, self.source, self.obtained_at)

    def with_source(self, source: CredentialSource) -> "CredentialSet":
        return CredentialSet(self.domain, self.items, source, self.obtained_at)


def parse_cookie_header(header: Optional[str]) -> dict[str, str]:
    """Parse `a=1; b=2` (or a Set-Cookie line) into an ordered dict."""
    cookies: dict[str, str] = {}
    if not header or not header.strip():
        return cookies
    for pair in header.split(";"):
        if "=" not in pair:
            continue
        name, value = pair.split("=", 1)
        name = name.strip()
        if not name or name.lower() in _COOKIE_ATTRIBUTES:
            continue
        cookies[name] = value.strip()
    return cookies


def format_cookie_header(pairs: Iterable[tuple[str, str]] | Mapping[str, str]) -> str:
    if isinstance(pairs, Mapping):
        pairs = pairs.items()
    return "; ".join(f"{name}={value}" for name, value in pairs)


def count_required(
    values: Mapping[str, str] | CredentialSet, required_keys: Iterable[str]
) -> int:
    """Number of required keys present with a non-empty value."""
    return sum(1 for key in required_keys if (values.get(key) or "").strip())


def validate_credentials(
    values: Mapping[str, str] | CredentialSet,
    required_keys: Iterable[str],
    min_required: int,
) -> bool:
    """True iff at least `min_required` of `required_keys` are present and non-empty."""
    return count_required(values, required_keys) >= min_required


def placeholder_value(length: int = 13) -> str:
    return "".join(secrets.choice(_PLACEHOLDER_ALPHABET) for _ in range(length))


def token_age_hours(token_cookie: Optional[str], now: Optional[float] = None) -> Optional[float]:
    """Age of a `<token>_<ms timestamp>` cookie in hours, or None if it has no timestamp."""
    if not token_cookie or TOKEN_DELIMITER not in token_cookie:
        return None
    _, _, stamp = token_cookie.partition(TOKEN_DELIMITER)
    try:
        issued_ms = int(stamp)
    except ValueError:
        return None
    now = time.time() if now is None else now
    return (now * 1000 - issued_ms) / (1000 * 60 * 60)


def mask_value(value: str, keep: int = 6) -> str:
    """Shorten a secret for logs: first `keep` chars then an ellipsis."""
    if len(value) <= keep:
        return "*" * len(value)
    return f"{value[:keep]}..."
