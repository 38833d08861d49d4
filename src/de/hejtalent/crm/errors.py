"""
Error taxonomy for the CRM functions service.

Every handler catches failures at its boundary and turns them into a JSON
``{"error": message}`` body (or, for the OAuth callback, an error redirect).
The message of these exceptions is therefore what the frontend shows, so it is
kept short and human readable.
"""


class CrmError(Exception):
    """Base class for all expected failures raised by this service."""


class AuthError(CrmError):
    """Missing or invalid credentials."""


class Unauthorized(AuthError):
    @staticmethod
    def missing_header() -> "Unauthorized":
        return Unauthorized("No authorization header")

    @staticmethod
    def invalid_token() -> "Unauthorized":
        return Unauthorized("Unauthorized")


class PermissionDeniedError(AuthError):
    pass


class OAuthError(AuthError):
    """The OAuth provider redirected back with an error or without a code."""

    @staticmethod
    def provider_error(error: str) -> "OAuthError":
        return OAuthError(f"OAuth error: {error}")

    @staticmethod
    def missing_parameters() -> "OAuthError":
        return OAuthError("Missing code or state parameter")


class ConfigurationError(CrmError):
    """A required setting is not configured."""


class ValidationError(CrmError):
    """A request body is missing required fields or is not valid JSON."""


class UpstreamAPIError(CrmError):
    """A third-party API answered with a non-success status."""

    def __init__(self, message: str, status: int = 0, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class TokenExchangeError(UpstreamAPIError):
    pass


class TokenRefreshError(UpstreamAPIError):
    pass


class ProfileFetchError(UpstreamAPIError):
    pass


class SubscriptionCreateError(UpstreamAPIError):
    pass


class MailDeliveryError(UpstreamAPIError):
    pass


class IdentityProviderError(UpstreamAPIError):
    pass


class ResearchError(UpstreamAPIError):
    pass


class DatabaseError(CrmError):
    """A storage read, write or upsert failed."""


class NotFoundError(CrmError):
    pass


class TokenNotFoundError(NotFoundError):
    pass
