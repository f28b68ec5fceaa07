"""
Error taxonomy for tenant resolution, registry and connection handling.

Every error carries the HTTP status class it maps to so the web layer can
render it without knowing the individual types:

    - ValidationError (400): malformed slug or input, never retried.
    - TenantNotSpecifiedError (400): no strategy produced an identifier.
    - ConflictError (409): duplicate slug or domain.
    - NotFoundError (404): unknown tenant id, slug or domain.
    - InactiveTenantError (403): tenant exists but is not ``active``.
    - ResolutionError (500): unexpected failure while resolving.
    - ConnectivityError (503): handle creation or probe failed.
    - DegradedModeError (503): write attempted in degraded mode.

Example:
    try:
        await registry.create("Acme Inc.", "acme")
    except ConflictError as e:
        return JSONResponse(e.to_dict(), status_code=e.status_code)
"""

from typing import Any


class TenancyError(Exception):
    """Base class for all orgbase tenancy errors.

    Attributes:
        message: Human-readable description.
        status_code: HTTP status the error maps to.
        error: Short machine-readable error label.
        details: Extra structured context.
    """

    status_code: int = 500
    error: str = "Tenancy error"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses.

        Returns:
            Dictionary with error details.
        """
        return {"error": self.error, "message": self.message}


class ValidationError(TenancyError):
    status_code = 400
    error = "Validation failed"


class TenantNotSpecifiedError(TenancyError):
    status_code = 400
    error = "Tenant not specified"

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "Please specify a tenant via header, subdomain, domain, or route parameter"
        )


class ConflictError(TenancyError):
    status_code = 409
    error = "Conflict"


class NotFoundError(TenancyError):
    status_code = 404
    error = "Not found"


class TenantNotFoundError(NotFoundError):
    error = "Tenant not found"


class InactiveTenantError(TenancyError):
    status_code = 403
    error = "Tenant not active"

    def __init__(self, tenant_name: str, status: str):
        self.tenant_name = tenant_name
        self.status = status
        super().__init__(f"Organization '{tenant_name}' is not active", status=status)


class ResolutionError(TenancyError):
    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str = "Failed to resolve tenant context", **details: Any):
        super().__init__(message, **details)


class ConnectivityError(TenancyError):
    """Raised when a tenant handle cannot be created or fails its probe.

    Never cached: the next request for the same tenant retries creation.

    Attributes:
        tenant_id: The tenant whose handle failed, if known.
    """

    status_code = 503
    error = "Data store unavailable"

    def __init__(self, message: str, tenant_id: str | None = None, **details: Any):
        self.tenant_id = tenant_id
        super().__init__(message, tenant_id=tenant_id, **details)


class DegradedModeError(TenancyError):
    """Raised by the degraded backend when a write is attempted.

    Attributes:
        cause: Why the service is running degraded.
    """

    status_code = 503
    error = "Service unavailable"

    def __init__(self, operation: str, cause: str):
        self.operation = operation
        self.cause = cause
        super().__init__(
            f"Cannot {operation}: database not available ({cause})",
            operation=operation,
        )

    def to_dict(self) -> dict[str, Any]:
        # The cause is operator-facing and safe to show in any environment.
        return {"error": self.error, "message": self.message, "degraded": True}
