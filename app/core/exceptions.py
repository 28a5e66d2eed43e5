"""
Workflow error kinds.

Each error is an HTTPException so a service failure reaches the client with
the right status code and no translation layer. Errors log themselves when
raised.

Usage:
    raise NotFoundError("Product", product_id)
    raise PermissionError("product:approve", roles=user.roles)
    raise ValidationError([{"field": "product_name", "message": "Field required"}])
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status
from loguru import logger
from pydantic import ValidationError as PydanticValidationError


class AppException(HTTPException):
    """
    Base exception with automatic logging.
    """

    def __init__(
        self,
        status_code: int,
        detail: Any,
        headers: Optional[Dict[str, str]] = None,
        **log_context: Any,
    ):
        logger.bind(**log_context).warning(f"{type(self).__name__}: {detail}")
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class PermissionError(AppException):
    """Denied action (403)."""

    def __init__(self, action: str, roles: Optional[List[str]] = None):
        self.action = str(action)
        if roles is not None:
            detail = f"User role(s) '{', '.join(roles)}' cannot perform action '{self.action}'."
        else:
            detail = f"You do not have permission to perform '{self.action}'."
        super().__init__(status.HTTP_403_FORBIDDEN, detail, action=self.action)


class NotFoundError(AppException):
    """Missing or hidden entity (404)."""

    def __init__(self, entity: str, entity_id: Any = None):
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is not None:
            detail = f"{entity} not found: {entity_id}"
        else:
            detail = f"{entity} not found"
        super().__init__(status.HTTP_404_NOT_FOUND, detail, entity=entity)


class ValidationError(AppException):
    """
    Malformed input (422). `errors` lists every failing field as
    {"field": ..., "message": ...}.
    """

    def __init__(self, errors: List[Dict[str, str]]):
        self.errors = errors
        super().__init__(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            {"message": "Validation failed", "errors": errors},
        )

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "ValidationError":
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "__root__",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        return cls(errors)

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])


class StateConflictError(AppException):
    """Illegal lifecycle transition or stale version (409)."""

    def __init__(self, detail: str, **log_context: Any):
        super().__init__(status.HTTP_409_CONFLICT, detail, **log_context)


class OracleFailure(AppException):
    """Credential, proof or anchoring collaborator failed (502)."""

    def __init__(self, operation: str, reason: Any):
        self.operation = operation
        self.reason = str(reason)
        super().__init__(
            status.HTTP_502_BAD_GATEWAY,
            f"Oracle call '{operation}' failed: {self.reason}",
            operation=operation,
            component="oracle",
        )


class AuthenticationError(AppException):
    """Missing or invalid credentials (401)."""

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status.HTTP_401_UNAUTHORIZED,
            detail,
            headers={"WWW-Authenticate": "Bearer"},
        )
