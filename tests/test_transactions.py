"""A failing audit write must leave the audited change uncommitted."""

import pytest

from app.models.audit import AuditLog
from app.models.work import ApprovalState, KanbanColumn, TimeEntry, WorkOrder, WorkOrderStatus
from app.services import approval, timer, work_orders
from app.services.approval import approve_time_entries, unlock_for_correction
from app.services.timer import stop_active_timer
from app.services.work_orders import qc_approve
from conftest import T0, as_session_user, make_entry, make_line_item, make_work_order


class AuditStoreDown(RuntimeError):
    pass


def _failing_audit(*args, **kwargs):
    raise AuditStoreDown("audit store unavailable")


def _audit_rows(db):
    return db.query(AuditLog).count()


def test_stop_is_rolled_back_when_audit_fails(db_session, monkeypatch, tech):
    order = make_work_order(db_session)
    line_item = make_line_item(db_session, order, assignees=[tech])
    entry = make_entry(db_session, tech, line_item, running=True)
    monkeypatch.setattr(timer, "write_audit_log", _failing_audit)

    with pytest.raises(AuditStoreDown):
        stop_active_timer(db_session, as_session_user(tech))

    db_session.expire_all()
    stored = db_session.get(TimeEntry, entry.id)
    assert stored.ended_at is None
    assert stored.duration_seconds is None
    assert _audit_rows(db_session) == 0


def test_approval_is_rolled_back_when_audit_fails(db_session, monkeypatch, admin, tech):
    order = make_work_order(db_session)
    line_item = make_line_item(db_session, order, assignees=[tech])
    entry = make_entry(db_session, tech, line_item)
    monkeypatch.setattr(approval, "write_audit_log", _failing_audit)

    with pytest.raises(AuditStoreDown):
        approve_time_entries(db_session, as_session_user(admin), order.id, now=T0)

    db_session.expire_all()
    stored = db_session.get(TimeEntry, entry.id)
    assert stored.approval_state == ApprovalState.DRAFT
    assert stored.approved_by_id is None
    assert stored.approved_at is None
    assert _audit_rows(db_session) == 0


def test_unlock_is_rolled_back_when_audit_fails(db_session, monkeypatch, admin, tech):
    order = make_work_order(db_session)
    line_item = make_line_item(db_session, order, assignees=[tech])
    entry = make_entry(db_session, tech, line_item, state=ApprovalState.LOCKED)
    monkeypatch.setattr(approval, "write_audit_log", _failing_audit)

    with pytest.raises(AuditStoreDown):
        unlock_for_correction(db_session, as_session_user(admin), entry.id, "Customer disputed the hours")

    db_session.expire_all()
    stored = db_session.get(TimeEntry, entry.id)
    assert stored.approval_state == ApprovalState.LOCKED
    assert stored.edited_reason is None


def test_qc_approval_is_rolled_back_when_audit_fails(db_session, monkeypatch, manager):
    order = make_work_order(db_session, status=WorkOrderStatus.QC, kanban_column=KanbanColumn.QC)
    monkeypatch.setattr(work_orders, "write_audit_log", _failing_audit)

    with pytest.raises(AuditStoreDown):
        qc_approve(db_session, as_session_user(manager), order.id, now=T0)

    db_session.expire_all()
    stored = db_session.get(WorkOrder, order.id)
    assert stored.status == WorkOrderStatus.QC
    assert stored.kanban_column == KanbanColumn.QC
    assert stored.qc_approved_by_id is None
    assert stored.qc_approved_at is None
    assert _audit_rows(db_session) == 0
