"""
Credential types.

The backend authenticates a request through two independent channels: a
bearer token pair and session cookies. Either, both or neither may be
present, so they are carried side by side rather than one standing in for
the other.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional


class CredentialChannel(Enum):
    BEARER = "bearer"
    COOKIE = "cookie"

    @classmethod
    def parse(cls, names: Iterable[str]) -> FrozenSet["CredentialChannel"]:
        """Parse channel names from configuration, ignoring unknown ones."""
        channels = set()
        for name in names:
            try:
                channels.add(cls(name.strip().lower()))
            except ValueError:
                continue
        return frozenset(channels)


@dataclass(frozen=True)
class TokenPair:
    """Access token (sent per request) and refresh token (mints new access tokens)."""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.access_token and not self.refresh_token

    @classmethod
    def from_payload(cls, payload: Any) -> "TokenPair":
        """Extract a token pair from a response ``data`` object, if any."""
        if not isinstance(payload, dict):
            return cls()
        return cls(
            access_token=payload.get("accessToken") or None,
            refresh_token=payload.get("refreshToken") or None,
        )


@dataclass(frozen=True)
class Credentials:
    """Everything the request stage may attach to an outgoing call."""
    bearer: TokenPair = field(default_factory=TokenPair)
    cookies: Dict[str, str] = field(default_factory=dict)

    @property
    def channels(self) -> FrozenSet[CredentialChannel]:
        present = set()
        if self.bearer.access_token:
            present.add(CredentialChannel.BEARER)
        if self.cookies:
            present.add(CredentialChannel.COOKIE)
        return frozenset(present)

    def authorization_header(self) -> Optional[str]:
        if self.bearer.access_token:
            return f"Bearer {self.bearer.access_token}"
        return None

    def cookie_header(self) -> Optional[str]:
        if not self.cookies:
            return None
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())
