"""
Authentication for presence sync.

Provides the auth provider abstraction, the Supabase GoTrue provider, and
the session cache every other component goes through.
"""

from .gotrue import GoTrueAuthProvider
from .provider import AuthProvider
from .session_cache import SessionCache
from .types import AuthSession, AuthUser

__all__ = [
    # Types
    "AuthSession",
    "AuthUser",
    # Providers
    "AuthProvider",
    "GoTrueAuthProvider",
    # Cache
    "SessionCache",
]
