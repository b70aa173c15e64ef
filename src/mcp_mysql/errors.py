from __future__ import annotations


class GatewayError(Exception):
    """Base class for every failure the gateway reports to a caller."""

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        self.operation = operation
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message)


class AuthenticationFailure(GatewayError):
    """Bad credentials. Never says whether the user or the password was wrong."""

    def __init__(self, *, operation: str | None = None) -> None:
        super().__init__("Invalid credentials or session", operation=operation)


class SessionNotFound(AuthenticationFailure):
    """Unknown, revoked or expired session token.

    Rendered exactly like ``AuthenticationFailure`` so callers cannot learn the
    session lifecycle from it.
    """


class AuthorizationFailure(GatewayError):
    def __init__(self, username: str, permission: str, *, operation: str | None = None) -> None:
        self.username = username
        self.permission = permission
        super().__init__(
            f"User {username} does not have permission for {permission} operation",
            operation=operation,
        )


class DataStoreConnectionError(GatewayError):
    """The data store is unreachable or no connection is live."""


class ExecError(GatewayError):
    """The data store rejected a statement."""


class InvalidRequest(GatewayError):
    """Caller supplied arguments that cannot form a valid statement."""


class UnknownOperation(GatewayError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown operation '{name}'", operation=name)
