"""
Auth provider abstract interface.

Defines the contract the session cache relies on.
"""

from abc import ABC, abstractmethod

from .types import AuthSession


class AuthProvider(ABC):
    """Abstract auth provider.

    The provider is responsible for:
    - Producing the current session (refreshing it when expired)
    - Sign out / credential clearing
    """

    @abstractmethod
    async def get_session(self) -> AuthSession | None:
        """Get the current session.

        Returns:
            The session, or None when the device is signed out

        Raises:
            InvalidRefreshTokenError: If the refresh credential is dead
            AuthError: If the session cannot be obtained
        """
        ...

    @abstractmethod
    async def sign_out(self, scope: str = "local") -> None:
        """Sign out and clear stored credentials.

        Args:
            scope: "local" clears only this device without any network
                call; "global" also revokes the session server-side.
        """
        ...

    async def close(self) -> None:
        """Release resources. Default: nothing to release."""
        return None
