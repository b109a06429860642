"""Service-level exceptions.

Every failure the core reports maps to a stable (kind, message) pair and an
HTTP status code. The API layer turns these into JSON error responses.

Hierarchy:
    TaskboardError (base)
    ├── BadRequestError (400)
    │   └── InvalidRoleError
    ├── UnauthorizedError (401)
    ├── ForbiddenError (403)
    ├── QuotaExceededError (403)
    ├── NotFoundError (404)
    ├── ConflictError (409)
    └── PreconditionFailedError (412)
"""


class TaskboardError(Exception):
    """Base class for all expected service failures."""

    status_code: int = 500
    kind: str = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "kind": self.kind, "message": self.message}


class BadRequestError(TaskboardError):
    """Malformed input, disallowed role target or violated business rule."""

    status_code = 400
    kind = "bad_request"


# Same failure class, named after the operation contract
InvalidArgumentError = BadRequestError


def reject_null_fields(changes: dict, required) -> None:
    """Raise BadRequestError if a patch clears any of the required fields."""
    cleared = sorted(field for field in required if field in changes and changes[field] is None)
    if cleared:
        raise BadRequestError(f"Field(s) cannot be null: {', '.join(cleared)}")


class InvalidRoleError(BadRequestError):
    """Raised when a role is not part of the hierarchy it is compared in."""

    kind = "invalid_role"

    def __init__(self, role, hierarchy: str):
        super().__init__(f"'{role}' is not a valid {hierarchy} role")
        self.role = role
        self.hierarchy = hierarchy


class UnauthorizedError(TaskboardError):
    status_code = 401
    kind = "unauthorized"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(TaskboardError):
    status_code = 403
    kind = "forbidden"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class QuotaExceededError(TaskboardError):
    status_code = 403
    kind = "quota_exceeded"


class NotFoundError(TaskboardError):
    status_code = 404
    kind = "not_found"

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ConflictError(TaskboardError):
    status_code = 409
    kind = "conflict"


class PreconditionFailedError(TaskboardError):
    status_code = 412
    kind = "precondition_failed"
