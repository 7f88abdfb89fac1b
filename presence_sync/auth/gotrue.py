"""
Supabase Auth (GoTrue) provider.

Keeps the device's token set in ~/.presence/.auth-token and refreshes the
access token against the GoTrue REST API when it expires. The browser
OAuth flow itself is out of scope: whatever performs it hands the resulting
tokens to set_session().

Token file format:

```json
{
  "access_token": "...",
  "refresh_token": "...",
  "token_type": "bearer",
  "expires_at_unix": 1700000000,
  "user": {"id": "...", "email": "..."}
}
```
"""

from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Any

import aiohttp

from ..exceptions import AuthError, InvalidRefreshTokenError, StorageError
from .provider import AuthProvider
from .token_file import read_token_file, remove_token_file, write_token_file
from .types import AuthSession, AuthUser

logger = logging.getLogger(__name__)

# Refresh this many seconds before the access token actually expires
REFRESH_LEEWAY_SECONDS = 60.0


class GoTrueAuthProvider(AuthProvider):
    """Auth provider backed by Supabase GoTrue.

    Example:
        >>> provider = GoTrueAuthProvider(url, key, Path("~/.presence/.auth-token"))
        >>> session = await provider.get_session()
        >>> await provider.close()
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        token_path: Path,
        http: aiohttp.ClientSession | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the provider.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Publishable (anon) key sent as ``apikey``
            token_path: Where the device's tokens are persisted
            http: Optional shared HTTP session (owned by the caller)
            timeout: Timeout for each auth request in seconds
        """
        self.auth_url = f"{supabase_url.rstrip('/')}/auth/v1"
        self.supabase_key = supabase_key
        self.token_path = Path(token_path).expanduser()
        self.timeout = timeout
        self._http = http
        self._owns_http = http is None

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_http = True
        return self._http

    async def close(self) -> None:
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    # =========================================================================
    # AuthProvider
    # =========================================================================

    async def get_session(self) -> AuthSession | None:
        """Return the stored session, refreshing it if the access token expired."""
        try:
            data = await read_token_file(self.token_path)
        except StorageError as e:
            raise AuthError(f"Could not read stored session: {e}") from e
        if not data:
            return None

        try:
            session = AuthSession.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise AuthError(f"Stored session is malformed: {e}") from e

        if not session.is_expired(REFRESH_LEEWAY_SECONDS):
            return session
        if not session.refresh_token:
            raise InvalidRefreshTokenError("Session expired and no refresh token is stored")

        logger.info(f"Access token expired for user {session.user_id}, refreshing")
        return await self.refresh(session.refresh_token)

    async def sign_out(self, scope: str = "local") -> None:
        """Clear the stored session.

        With scope="global" the session is first revoked server-side; a
        failure to reach the server does not keep the local session alive.
        """
        if scope not in ("local", "global", "others"):
            raise ValueError(f"Unknown sign-out scope: {scope}")

        if scope != "local":
            data = await read_token_file(self.token_path)
            if data and data.get("access_token"):
                try:
                    await self._request(
                        "POST",
                        f"/logout?scope={scope}",
                        access_token=data["access_token"],
                    )
                except AuthError as e:
                    logger.warning(f"Server-side sign-out failed: {e}")
            if scope == "others":
                return

        if await remove_token_file(self.token_path):
            logger.info("Signed out, local session cleared")

    # =========================================================================
    # GoTrue operations
    # =========================================================================

    async def refresh(self, refresh_token: str) -> AuthSession:
        """Exchange a refresh token for a new session and persist it."""
        data = await self._request(
            "POST",
            "/token?grant_type=refresh_token",
            payload={"refresh_token": refresh_token},
        )
        session = AuthSession.from_dict(data)
        await write_token_file(self.token_path, session.to_dict())
        logger.debug(f"Session refreshed for user {session.user_id}")
        return session

    async def set_session(self, access_token: str, refresh_token: str) -> AuthSession:
        """Store tokens obtained by an external sign-in flow.

        The user and expiry are read from the access token's claims; if the
        token is already expired it is refreshed right away.
        """
        claims = _decode_jwt_claims(access_token)
        if not claims or not claims.get("sub"):
            raise AuthError("Access token does not carry a user id")

        session = AuthSession.from_dict(
            {
                "access_token": access_token,
                "refresh_token": refresh_token,
                "expires_at": claims.get("exp"),
                "user": {
                    "id": claims["sub"],
                    "email": claims.get("email"),
                    "user_metadata": claims.get("user_metadata"),
                },
            }
        )
        if session.is_expired():
            return await self.refresh(refresh_token)

        await write_token_file(self.token_path, session.to_dict())
        logger.info(f"Session stored for user {session.user_id}")
        return session

    async def get_user(self, access_token: str) -> AuthUser:
        """Fetch the user the access token belongs to."""
        data = await self._request("GET", "/user", access_token=access_token)
        return AuthUser.from_dict(data)

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        headers = {"apikey": self.supabase_key, "Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            async with self._session().request(
                method, f"{self.auth_url}{path}", json=payload, headers=headers
            ) as response:
                text = await response.text()
                body = _parse_body(text)
                if response.status >= 400:
                    raise _auth_error(response.status, body, text)
                return body
        except (aiohttp.ClientError, TimeoutError) as e:
            raise AuthError(f"Auth request failed: {e}") from e


def _parse_body(text: str) -> dict[str, Any]:
    if not text.strip():
        return {}
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return {}
    return body if isinstance(body, dict) else {}


def _auth_error(status: int, body: dict[str, Any], text: str) -> AuthError:
    """Map a GoTrue error response to an exception.

    Newer servers send ``code``/``error_code`` + ``msg``; older ones
    ``error`` + ``error_description``.
    """
    code = body.get("error_code") or body.get("code") or body.get("error")
    message = body.get("msg") or body.get("error_description") or body.get("message") or text
    if not isinstance(code, str):
        code = None

    if code == "refresh_token_not_found" or "Refresh Token" in str(message):
        return InvalidRefreshTokenError(str(message), status=status)
    return AuthError(str(message) or f"HTTP {status}", code=code, status=status)


def _decode_jwt_claims(token: str) -> dict[str, Any] | None:
    """Read the claims of a JWT without verifying it."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload_b64 = parts[1]
    padding = 4 - len(payload_b64) % 4
    if padding != 4:
        payload_b64 += "=" * padding
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload_b64))
    except (ValueError, json.JSONDecodeError):
        return None
    return claims if isinstance(claims, dict) else None
