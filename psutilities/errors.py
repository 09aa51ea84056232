"""Exception types raised by PSUtilities operations."""

from __future__ import annotations


class PSUtilitiesError(Exception):
    """Base exception for all PSUtilities errors."""


class ParameterValidationError(PSUtilitiesError):
    """Raised when a required parameter is missing or invalid.

    Always raised before any network call is made.
    """


class ApiError(PSUtilitiesError):
    """Raised when a wrapped REST call fails.

    ``status_code`` is ``None`` when the request never got a response
    (DNS, connection refused, timeout).  The original transport exception,
    if any, is chained via ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        method: str | None = None,
        url: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.method = method
        self.url = url
        prefix = f"{method} {url}" if method and url else "Request"
        if status_code is not None:
            super().__init__(f"{prefix} failed with HTTP {status_code}: {message}")
        else:
            super().__init__(f"{prefix} failed: {message}")


class NotFoundError(ApiError):
    """Raised when a read returns HTTP 404."""


class VariableGroupNotFoundError(PSUtilitiesError):
    """Raised when a variable group cannot be found by id or name."""

    def __init__(self, group: int | str, project: str) -> None:
        self.group = group
        self.project = project
        kind = "id" if isinstance(group, int) else "name"
        super().__init__(
            f"Variable group with {kind} '{group}' not found in project '{project}'. "
            f"Check the {kind} or create the group first with create_variable_group."
        )


class UnsupportedRemoteError(PSUtilitiesError):
    """Raised when a git remote URL is neither GitHub nor Azure DevOps."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(
            f"Unsupported git remote '{url}'. "
            "Expected a github.com or dev.azure.com / visualstudio.com URL."
        )


class PublicIPError(PSUtilitiesError):
    """Raised when no probe returned a valid public IP address."""
