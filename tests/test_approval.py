import json
from datetime import timedelta

import pytest
from sqlalchemy import update

from app.models.audit import AuditLog
from app.models.user import UserRole
from app.models.work import ApprovalState, TimeEntry
from app.services.approval import (
    adjust_time_entry,
    approve_time_entries,
    lock_time_entries,
    unlock_for_correction,
)
from app.services.audit import TimeEntryActions, list_audit_log
from app.services.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from conftest import T0, as_session_user, make_entry, make_line_item, make_user, make_work_order


@pytest.fixture()
def order_with_entries(db_session, tech):
    order = make_work_order(db_session)
    line_item = make_line_item(db_session, order, assignees=[tech])
    entries = {
        "draft": make_entry(db_session, tech, line_item, started_at=T0, state=ApprovalState.DRAFT),
        "submitted": make_entry(
            db_session, tech, line_item, started_at=T0 + timedelta(hours=2), state=ApprovalState.SUBMITTED
        ),
        "approved": make_entry(
            db_session, tech, line_item, started_at=T0 + timedelta(hours=4), state=ApprovalState.APPROVED
        ),
    }
    return order, line_item, entries


def test_approve_moves_draft_and_submitted_entries(db_session, admin, order_with_entries):
    order, _, entries = order_with_entries
    approved_at = T0 + timedelta(days=1)

    count = approve_time_entries(db_session, as_session_user(admin), order.id, now=approved_at)

    assert count == 2
    for key in ("draft", "submitted"):
        entry = db_session.get(TimeEntry, entries[key].id)
        assert entry.approval_state == ApprovalState.APPROVED
        assert entry.approved_by_id == admin.id
        assert entry.approved_at == approved_at
        logs = list_audit_log(db_session, "TimeEntry", entry.id)
        assert [log.action for log in logs] == [TimeEntryActions.APPROVE]
        assert json.loads(logs[0].before_json) == {"approval_state": key}
    # Already approved rows keep their original approver.
    untouched = db_session.get(TimeEntry, entries["approved"].id)
    assert untouched.approved_by_id is None
    assert list_audit_log(db_session, "TimeEntry", untouched.id) == []


def test_approve_twice_is_a_no_op(db_session, admin, order_with_entries):
    order, _, _ = order_with_entries
    actor = as_session_user(admin)

    assert approve_time_entries(db_session, actor, order.id) == 2
    assert approve_time_entries(db_session, actor, order.id) == 0


def test_approve_skips_deleted_entries(db_session, admin, tech):
    order = make_work_order(db_session)
    line_item = make_line_item(db_session, order, assignees=[tech])
    deleted = make_entry(db_session, tech, line_item, deleted_at=T0)

    assert approve_time_entries(db_session, as_session_user(admin), order.id) == 0
    assert db_session.get(TimeEntry, deleted.id).approval_state == ApprovalState.DRAFT


def test_approve_missing_work_order_returns_zero(db_session, admin):
    assert approve_time_entries(db_session, as_session_user(admin), 4242) == 0


@pytest.mark.parametrize("role", [UserRole.MANAGER, UserRole.TECH, UserRole.SERVICE_WRITER])
def test_only_admins_approve(db_session, order_with_entries, role):
    order, _, entries = order_with_entries
    user = make_user(db_session, role=role)

    with pytest.raises(ForbiddenError, match="Admin access required"):
        approve_time_entries(db_session, as_session_user(user), order.id)
    assert db_session.get(TimeEntry, entries["draft"].id).approval_state == ApprovalState.DRAFT


def test_lock_and_unlock_for_correction(db_session, admin, order_with_entries):
    order, _, entries = order_with_entries
    actor = as_session_user(admin)

    assert lock_time_entries(db_session, actor, order.id) == 1
    locked = db_session.get(TimeEntry, entries["approved"].id)
    assert locked.approval_state == ApprovalState.LOCKED

    with pytest.raises(ValidationError):
        unlock_for_correction(db_session, actor, locked.id, "typo")

    unlocked = unlock_for_correction(db_session, actor, locked.id, "Customer disputed hours")
    assert unlocked.approval_state == ApprovalState.APPROVED
    assert unlocked.edited_reason == "Customer disputed hours"
    assert [log.action for log in list_audit_log(db_session, "TimeEntry", locked.id)] == [
        TimeEntryActions.LOCK,
        TimeEntryActions.UNLOCK,
    ]

    with pytest.raises(InvalidStateError, match="not locked"):
        unlock_for_correction(db_session, actor, locked.id, "Customer disputed hours")


def test_unlock_rejects_entries_that_are_not_locked(db_session, admin, order_with_entries):
    _, _, entries = order_with_entries
    entry = entries["approved"]

    with pytest.raises(InvalidStateError, match="not locked"):
        unlock_for_correction(db_session, as_session_user(admin), entry.id, "Customer disputed hours")

    assert db_session.get(TimeEntry, entry.id).approval_state == ApprovalState.APPROVED
    assert db_session.query(AuditLog).count() == 0


def test_unlock_checks_current_row_state_not_cached_object(db_session, admin, tech):
    order = make_work_order(db_session)
    line_item = make_line_item(db_session, order, assignees=[tech])
    entry = make_entry(db_session, tech, line_item, state=ApprovalState.LOCKED)
    assert entry.approval_state == ApprovalState.LOCKED

    # Another writer unlocked the row after this session cached it.
    db_session.execute(
        update(TimeEntry)
        .where(TimeEntry.id == entry.id)
        .values(approval_state=ApprovalState.APPROVED)
        .execution_options(synchronize_session=False)
    )
    assert entry.approval_state == ApprovalState.LOCKED

    with pytest.raises(InvalidStateError, match="not locked"):
        unlock_for_correction(db_session, as_session_user(admin), entry.id, "Customer disputed hours")
    assert list_audit_log(db_session, "TimeEntry", entry.id) == []


def test_adjust_time_entry(db_session, manager, order_with_entries):
    _, _, entries = order_with_entries
    entry = entries["submitted"]

    adjusted = adjust_time_entry(db_session, as_session_user(manager), entry.id, 5400, "Forgot to stop timer")

    assert adjusted.duration_seconds == 5400
    assert adjusted.edited_reason == "Forgot to stop timer"
    logs = list_audit_log(db_session, "TimeEntry", entry.id)
    assert [log.action for log in logs] == [TimeEntryActions.EDIT]
    assert json.loads(logs[0].before_json) == {"duration_seconds": 3600}


def test_adjust_rejects_locked_entries(db_session, admin, order_with_entries):
    order, _, entries = order_with_entries
    actor = as_session_user(admin)
    lock_time_entries(db_session, actor, order.id)

    with pytest.raises(InvalidStateError, match="LOCKED"):
        adjust_time_entry(db_session, actor, entries["approved"].id, 60, "Correcting the duration")
    assert db_session.get(TimeEntry, entries["approved"].id).duration_seconds == 3600


def test_adjust_validation(db_session, admin, tech, order_with_entries):
    _, _, entries = order_with_entries
    entry_id = entries["draft"].id

    with pytest.raises(ForbiddenError):
        adjust_time_entry(db_session, as_session_user(tech), entry_id, 60, "Correcting the duration")
    with pytest.raises(ValidationError, match="greater than 0"):
        adjust_time_entry(db_session, as_session_user(admin), entry_id, 0, "Correcting the duration")
    with pytest.raises(ValidationError, match="at least 10"):
        adjust_time_entry(db_session, as_session_user(admin), entry_id, 60, "short")
    with pytest.raises(NotFoundError):
        adjust_time_entry(db_session, as_session_user(admin), 9999, 60, "Correcting the duration")
