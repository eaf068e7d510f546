from __future__ import annotations

from app.models.user import UserRole
from app.schemas.auth import SessionUser
from app.services.errors import ForbiddenError

# QC review and billing approval are separate gates.
QC_REVIEWER_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER})
TIME_MANAGER_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER})
WORK_ORDER_MANAGER_ROLES = frozenset({UserRole.ADMIN, UserRole.SERVICE_WRITER, UserRole.MANAGER})
PARTS_ROLES = frozenset({UserRole.ADMIN, UserRole.PARTS})
REPORT_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER, UserRole.SERVICE_WRITER})
TECH_REPORT_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER})


def is_admin(user: SessionUser) -> bool:
    return user.role == UserRole.ADMIN


def can_review_qc(user: SessionUser) -> bool:
    return user.role in QC_REVIEWER_ROLES


def can_manage_time(user: SessionUser) -> bool:
    return user.role in TIME_MANAGER_ROLES


def can_manage_work_orders(user: SessionUser) -> bool:
    return user.role in WORK_ORDER_MANAGER_ROLES


def can_view_kanban(user: SessionUser) -> bool:
    return user.role in WORK_ORDER_MANAGER_ROLES


def can_toggle_out_of_service(user: SessionUser) -> bool:
    return user.role in WORK_ORDER_MANAGER_ROLES


def can_manage_parts(user: SessionUser) -> bool:
    return user.role in PARTS_ROLES


def can_view_reports(user: SessionUser) -> bool:
    return user.role in REPORT_ROLES


def can_view_tech_performance(user: SessionUser) -> bool:
    return user.role in TECH_REPORT_ROLES


def ensure_admin(user: SessionUser) -> None:
    if not is_admin(user):
        raise ForbiddenError("Forbidden - Admin access required")
