"""Error taxonomy shared by the credential and reconciliation services."""

from __future__ import annotations


class ChatVibesError(Exception):
    """Base class for all domain errors."""

    def __init__(self, message: str = "", *, channel_login: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.channel_login = channel_login


class ChannelNotFound(ChatVibesError):
    """No channel record exists for the login."""


class MissingIdentity(ChatVibesError):
    """The channel record has no provider user id."""


class ReAuthRequired(ChatVibesError):
    """Stored credentials are unusable until the broadcaster re-consents."""


class ProviderConfigError(ChatVibesError):
    """Client credentials for the identity provider are not configured."""


class RefreshFailed(ChatVibesError):
    """The provider rejected a refresh token or returned a malformed reply."""


class ExchangeFailed(ChatVibesError):
    """The provider rejected an authorization code or returned a malformed reply."""


class ValidationFailed(ChatVibesError):
    """Token validation returned non-2xx or a malformed body."""


class AuthorizationInsufficient(ChatVibesError):
    """The token is valid but lacks the scope the operation needs."""


class ReconciliationFailed(ChatVibesError):
    """A remote resource could not be created."""


class SecretNotFound(ChatVibesError):
    """The secret, or any version of it, does not exist."""
