"""Client-side error taxonomy.

  InvalidGrant          — the token endpoint answered invalid_grant.  During
                          a code exchange this reaches the caller directly:
                          the login flow has to start over.
  TokenEndpointError    — any other token endpoint failure (network error,
                          5xx, malformed body).
  StateMismatch         — the callback's `state` isn't the one we sent.
  AuthenticationRequired — no usable tokens; the application has to run a
                          fresh authorization-code login.
  RefreshFailure        — a refresh attempt failed.  Every caller waiting
                          on that refresh gets the same instance.  It is an
                          AuthenticationRequired because the manager has
                          already dropped the tokens by the time it's raised.
  TokenStoreError       — the persisted token record can't be written.
"""

from __future__ import annotations


class AuthClientError(Exception):
    """Base class for every error raised by authclient."""


class TokenEndpointError(AuthClientError):
    def __init__(
        self, message: str, *, status_code: int | None = None, error: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error


class InvalidGrant(TokenEndpointError):
    def __init__(
        self, message: str = "invalid_grant", *, status_code: int | None = 400
    ) -> None:
        super().__init__(message, status_code=status_code, error="invalid_grant")


class StateMismatch(AuthClientError):
    pass


class AuthenticationRequired(AuthClientError):
    pass


class RefreshFailure(AuthenticationRequired):
    pass


class TokenStoreError(AuthClientError):
    pass
