"""
Canteen Service - Error taxonomy

Domain operations raise these; FastAPI exception handlers in main.py turn
them into JSON responses. Only the database boundary translates driver
exceptions (see TransientBackendError).
"""
from typing import Any


class CanteenError(Exception):
    """Base class for every error surfaced to API callers."""

    status_code: int = 400
    code: str = "canteen_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(CanteenError):
    """Bad input shape. The operation was not attempted."""

    status_code = 422
    code = "validation_error"


class InvalidPriceError(ValidationError):
    code = "invalid_price"


class ConflictError(CanteenError):
    status_code = 409
    code = "conflict"


class DuplicateNameError(ConflictError):
    code = "duplicate_name"

    def __init__(self, name: str):
        super().__init__(f'A menu item with the name "{name}" already exists.', details={"name": name})


class InvalidTransitionError(ConflictError):
    code = "invalid_transition"

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"Cannot move {entity} from '{current}' to '{target}'.",
            details={"current": current, "target": target},
        )


class NotFoundError(CanteenError):
    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, resource_id: Any = None, message: str | None = None):
        if message is None:
            message = f"{resource} not found." if resource_id is None else f"{resource} '{resource_id}' not found."
        super().__init__(message, details={"resource": resource, "id": str(resource_id) if resource_id else None})


class VersionNotFoundError(NotFoundError):
    code = "version_not_found"

    def __init__(self, week_start: Any, version: int):
        super().__init__(
            "WeeklyMenuVersion",
            version,
            message=f"Version {version} not found for week starting {week_start}.",
        )


class NoPreviousMenuError(NotFoundError):
    code = "no_previous_menu"

    def __init__(self, previous_week_start: Any):
        super().__init__(
            "WeeklyMenu",
            previous_week_start,
            message=f"No menu found for previous week starting {previous_week_start}.",
        )


class InsufficientBalanceError(CanteenError):
    status_code = 402
    code = "insufficient_balance"

    def __init__(self, parent_id: str, requested_cents: int):
        super().__init__(
            "Insufficient balance for this operation.",
            details={"parent_id": parent_id, "requested_cents": requested_cents},
        )


class ForbiddenError(CanteenError):
    status_code = 403
    code = "forbidden"


class TransientBackendError(CanteenError):
    """Database or network unavailable. Safe to retry only for reads."""

    status_code = 503
    code = "backend_unavailable"
