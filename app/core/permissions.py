"""
Role based permission checks.

Every Action maps to exactly one predicate over (user, resource). Admins are
allowed everything. `resource`, when given, is the Product (or any object with
`company_id` and `status`) being acted upon.
"""
from enum import Enum
from typing import Any, Callable, Dict, Optional

from app.core.exceptions import PermissionError
from app.db.schema import User, UserRole, ProductStatus


class Action(str, Enum):
    PRODUCT_CREATE = "product:create"
    PRODUCT_EDIT = "product:edit"
    PRODUCT_DELETE = "product:delete"
    PRODUCT_ARCHIVE = "product:archive"
    PRODUCT_SUBMIT = "product:submit"
    PRODUCT_APPROVE = "product:approve"
    PRODUCT_REJECT = "product:reject"
    PRODUCT_RESOLVE = "product:resolve"
    PRODUCT_OVERRIDE_VERIFICATION = "product:override_verification"
    PRODUCT_CUSTOMS_INSPECT = "product:customs_inspect"
    PRODUCT_RECYCLE = "product:recycle"
    PRODUCT_ADD_SERVICE_RECORD = "product:add_service_record"
    PRODUCT_GENERATE_ZKP = "product:generate_zkp"
    TICKET_MANAGE = "ticket:manage"
    COMPLIANCE_MANAGE = "compliance:manage"
    AUDIT_READ = "audit:read"
    USER_MANAGE = "user:manage"
    COMPANY_MANAGE = "company:manage"
    DEVELOPER_MANAGE_API = "developer:manage_api"


def has_role(user: User, role: UserRole) -> bool:
    return role.value in (user.roles or [])


def has_any_role(user: User, *roles: UserRole) -> bool:
    return any(has_role(user, role) for role in roles)


def is_owner(user: User, resource: Any) -> bool:
    if resource is None:
        return False
    return getattr(resource, "company_id", None) == user.company_id


def _editor(user: User, resource: Any) -> bool:
    return is_owner(user, resource) and has_any_role(
        user, UserRole.SUPPLIER, UserRole.MANUFACTURER)


def _owning_supplier(user: User, resource: Any) -> bool:
    return is_owner(user, resource) and has_role(user, UserRole.SUPPLIER)


def _reviewer(user: User, resource: Any) -> bool:
    # Reviewers never sign off on their own company's passports
    return has_role(user, UserRole.AUDITOR) and not is_owner(user, resource)


def _overrider(user: User, resource: Any) -> bool:
    return has_any_role(user, UserRole.AUDITOR, UserRole.COMPLIANCE_MANAGER) \
        and not is_owner(user, resource)


def _deletable(user: User, resource: Any) -> bool:
    return _owning_supplier(user, resource) and \
        getattr(resource, "status", None) == ProductStatus.DRAFT


def _compliance_staff(user: User, resource: Any) -> bool:
    return has_any_role(user, UserRole.AUDITOR, UserRole.COMPLIANCE_MANAGER)


def _role(role: UserRole) -> Callable[[User, Any], bool]:
    return lambda user, resource: has_role(user, role)


def _nobody(user: User, resource: Any) -> bool:
    # Admin-only actions; admins short-circuit before the table lookup
    return False


RULES: Dict[Action, Callable[[User, Any], bool]] = {
    Action.PRODUCT_CREATE: _role(UserRole.SUPPLIER),
    Action.PRODUCT_EDIT: _editor,
    Action.PRODUCT_DELETE: _deletable,
    Action.PRODUCT_ARCHIVE: lambda user, resource: is_owner(user, resource) and has_any_role(
        user, UserRole.SUPPLIER, UserRole.COMPLIANCE_MANAGER),
    Action.PRODUCT_SUBMIT: _owning_supplier,
    Action.PRODUCT_APPROVE: _reviewer,
    Action.PRODUCT_REJECT: _reviewer,
    Action.PRODUCT_RESOLVE: _role(UserRole.COMPLIANCE_MANAGER),
    Action.PRODUCT_OVERRIDE_VERIFICATION: _overrider,
    Action.PRODUCT_CUSTOMS_INSPECT: _compliance_staff,
    Action.PRODUCT_RECYCLE: _role(UserRole.RECYCLER),
    Action.PRODUCT_ADD_SERVICE_RECORD: _role(UserRole.SERVICE_PROVIDER),
    Action.PRODUCT_GENERATE_ZKP: lambda user, resource: _editor(user, resource) or _compliance_staff(user, resource),
    Action.TICKET_MANAGE: _compliance_staff,
    Action.COMPLIANCE_MANAGE: _compliance_staff,
    Action.AUDIT_READ: _compliance_staff,
    Action.USER_MANAGE: _nobody,
    Action.COMPANY_MANAGE: _nobody,
    Action.DEVELOPER_MANAGE_API: _role(UserRole.DEVELOPER),
}


def ensure_rules_complete(rules: Dict[Action, Callable[[User, Any], bool]]) -> None:
    missing = set(Action) - set(rules)
    if missing:
        raise RuntimeError(f"Permission rules missing for: {sorted(a.value for a in missing)}")


ensure_rules_complete(RULES)


def can(user: User, action: Action, resource: Optional[Any] = None) -> bool:
    """
    Non-throwing check. Used to hide affordances and by bulk operations.
    """
    if has_role(user, UserRole.ADMIN):
        return True
    return RULES[Action(action)](user, resource)


def check_permission(user: User, action: Action, resource: Optional[Any] = None) -> None:
    """
    Raises PermissionError when `user` may not perform `action`.
    """
    if not can(user, action, resource):
        raise PermissionError(Action(action).value, roles=list(user.roles or []))
