"""Identity provider access: client protocol plus the process-wide instance."""

from __future__ import annotations

from course_platform.identity.client import IdentityProvider, SupabaseAuthClient

_provider: IdentityProvider | None = None


def get_identity_provider() -> IdentityProvider:
    """Get or create the global identity provider client."""
    global _provider
    if _provider is None:
        _provider = SupabaseAuthClient()
    return _provider


def set_identity_provider(provider: IdentityProvider | None) -> None:
    global _provider
    _provider = provider


__all__ = ["IdentityProvider", "SupabaseAuthClient", "get_identity_provider", "set_identity_provider"]
