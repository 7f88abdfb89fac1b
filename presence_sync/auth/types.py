"""
Auth session types.

An AuthSession is what the auth provider hands out: the bearer token for
remote calls, the refresh credential, and the signed-in user.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any


@dataclass
class AuthUser:
    """The signed-in user as known to the auth server."""

    id: str
    email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"id": self.id, "email": self.email, "metadata": self.metadata}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthUser":
        """Deserialize from dictionary (GoTrue user objects included)."""
        return cls(
            id=data["id"],
            email=data.get("email"),
            metadata=data.get("metadata") or data.get("user_metadata") or {},
        )


@dataclass
class AuthSession:
    """An authenticated session held by this device."""

    access_token: str
    refresh_token: str
    user: AuthUser
    expires_at: datetime | None = None
    token_type: str = "bearer"

    @property
    def user_id(self) -> str:
        return self.user.id

    def is_expired(self, leeway: float = 0.0, now: datetime | None = None) -> bool:
        """Check whether the access token is (about to be) expired.

        Sessions without an expiry never expire locally; the server has the
        final word.
        """
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        return now + timedelta(seconds=leeway) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_at_unix": int(self.expires_at.timestamp()) if self.expires_at else None,
            "user": self.user.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthSession":
        """Deserialize from the token file or a GoTrue token response.

        GoTrue reports expiry as ``expires_at`` (unix seconds) or
        ``expires_in`` (seconds from now).
        """
        expires_at = None
        expires_unix = data.get("expires_at_unix") or data.get("expires_at")
        if expires_unix:
            expires_at = datetime.fromtimestamp(int(expires_unix), tz=UTC)
        elif data.get("expires_in"):
            expires_at = datetime.now(UTC) + timedelta(seconds=int(data["expires_in"]))

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            user=AuthUser.from_dict(data["user"]),
            expires_at=expires_at,
            token_type=data.get("token_type", "bearer"),
        )
