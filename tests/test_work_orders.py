from datetime import timedelta

import pytest

from app.models.audit import AuditLog
from app.models.user import UserRole
from app.models.work import ApprovalState, KanbanColumn, LineItemStatus, WorkOrder, WorkOrderStatus
from app.services.audit import WorkOrderActions, list_audit_log
from app.services.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from app.services.work_orders import (
    board,
    list_work_orders,
    mark_ready_to_bill,
    move_on_board,
    qc_approve,
    qc_reject,
    toggle_out_of_service,
)
from conftest import T0, as_session_user, make_entry, make_line_item, make_user, make_work_order


def test_qc_reject_then_approve_round_trip(db_session, manager):
    order = make_work_order(db_session, status=WorkOrderStatus.QC, kanban_column=KanbanColumn.QC)
    reviewer = as_session_user(manager)

    rejected = qc_reject(db_session, reviewer, order.id, "Brake line still weeping fluid")
    assert rejected.status == WorkOrderStatus.IN_PROGRESS
    assert rejected.kanban_column == KanbanColumn.IN_PROGRESS
    assert rejected.qc_rejected_reason == "Brake line still weeping fluid"

    move_on_board(db_session, as_session_user(make_user(db_session, role=UserRole.ADMIN)), order.id, KanbanColumn.QC)

    approved = qc_approve(db_session, reviewer, order.id, now=T0)
    assert approved.status == WorkOrderStatus.READY_TO_BILL
    assert approved.kanban_column == KanbanColumn.READY_TO_BILL
    assert approved.qc_approved_by_id == manager.id
    assert approved.qc_approved_at == T0
    assert approved.qc_rejected_reason is None
    assert approved.qc_approved_by.name == manager.name

    actions = [log.action for log in list_audit_log(db_session, "WorkOrder", order.id)]
    assert actions == [WorkOrderActions.QC_REJECT, WorkOrderActions.KANBAN_MOVE, WorkOrderActions.QC_APPROVE]


def test_qc_requires_qc_status(db_session, admin):
    order = make_work_order(db_session, status=WorkOrderStatus.IN_PROGRESS)

    with pytest.raises(InvalidStateError, match="must be in QC status"):
        qc_approve(db_session, as_session_user(admin), order.id)
    with pytest.raises(InvalidStateError):
        qc_reject(db_session, as_session_user(admin), order.id, "Torque specs not recorded")


def test_qc_reject_short_reason_writes_nothing(db_session, admin):
    order = make_work_order(db_session, status=WorkOrderStatus.QC)

    with pytest.raises(ValidationError, match="at least 10 characters"):
        qc_reject(db_session, as_session_user(admin), order.id, "too short")

    assert db_session.get(WorkOrder, order.id).status == WorkOrderStatus.QC
    assert db_session.query(AuditLog).count() == 0


def test_qc_reject_validates_reason_before_existence(db_session, admin):
    with pytest.raises(ValidationError):
        qc_reject(db_session, as_session_user(admin), 9999, "")
    with pytest.raises(NotFoundError):
        qc_reject(db_session, as_session_user(admin), 9999, "Missing torque specs")


@pytest.mark.parametrize("role", [UserRole.TECH, UserRole.SERVICE_WRITER, UserRole.PARTS])
def test_qc_review_is_limited_to_admins_and_managers(db_session, role):
    order = make_work_order(db_session, status=WorkOrderStatus.QC)
    user = as_session_user(make_user(db_session, role=role))

    with pytest.raises(ForbiddenError):
        qc_approve(db_session, user, order.id)
    with pytest.raises(ForbiddenError):
        qc_reject(db_session, user, order.id, "Some long enough reason")


def test_ready_to_bill_blocked_by_unapproved_time(db_session, admin, tech):
    order = make_work_order(db_session, status=WorkOrderStatus.IN_PROGRESS)
    line_item = make_line_item(db_session, order, assignees=[tech])
    make_entry(db_session, tech, line_item, state=ApprovalState.DRAFT)
    make_entry(db_session, tech, line_item, state=ApprovalState.SUBMITTED)
    make_entry(db_session, tech, line_item, state=ApprovalState.APPROVED)

    with pytest.raises(ConflictError) as excinfo:
        mark_ready_to_bill(db_session, as_session_user(admin), order.id)

    assert str(excinfo.value) == "Cannot mark as ready to bill: 2 time entries are not approved"
    assert db_session.get(WorkOrder, order.id).status == WorkOrderStatus.IN_PROGRESS


def test_ready_to_bill_ignores_deleted_entries_and_leaves_board_column(db_session, admin, tech):
    """Billing moves only the status; the kanban column stays where it was (unlike QC approval)."""
    order = make_work_order(
        db_session, status=WorkOrderStatus.IN_PROGRESS, kanban_column=KanbanColumn.IN_PROGRESS
    )
    line_item = make_line_item(db_session, order, assignees=[tech])
    make_entry(db_session, tech, line_item, state=ApprovalState.DRAFT, deleted_at=T0)
    make_entry(db_session, tech, line_item, state=ApprovalState.LOCKED)

    billed = mark_ready_to_bill(db_session, as_session_user(admin), order.id)

    assert billed.status == WorkOrderStatus.READY_TO_BILL
    assert billed.kanban_column == KanbanColumn.IN_PROGRESS
    assert [log.action for log in list_audit_log(db_session, "WorkOrder", order.id)] == [
        WorkOrderActions.MARK_READY_TO_BILL
    ]


def test_ready_to_bill_is_admin_only(db_session, manager):
    order = make_work_order(db_session)

    with pytest.raises(ForbiddenError, match="Admin access required"):
        mark_ready_to_bill(db_session, as_session_user(manager), order.id)


def test_ready_to_bill_missing_order(db_session, admin):
    with pytest.raises(NotFoundError, match="Work order not found"):
        mark_ready_to_bill(db_session, as_session_user(admin), 9999)


def test_move_on_board_sets_status_and_default_position(db_session):
    writer = as_session_user(make_user(db_session, role=UserRole.SERVICE_WRITER))
    order = make_work_order(db_session, kanban_position=3)

    moved = move_on_board(db_session, writer, order.id, KanbanColumn.ON_HOLD_PARTS)

    assert moved.kanban_column == KanbanColumn.ON_HOLD_PARTS
    assert moved.status == WorkOrderStatus.ON_HOLD_PARTS
    assert moved.kanban_position == 999

    moved = move_on_board(db_session, writer, order.id, KanbanColumn.QC, 2)
    assert moved.kanban_position == 2


def test_technicians_cannot_use_the_board(db_session, tech):
    order = make_work_order(db_session)

    with pytest.raises(ForbiddenError):
        move_on_board(db_session, as_session_user(tech), order.id, KanbanColumn.QC)
    with pytest.raises(ForbiddenError):
        toggle_out_of_service(db_session, as_session_user(tech), order.id, True)


def test_toggle_out_of_service(db_session, manager):
    order = make_work_order(db_session)

    toggled = toggle_out_of_service(db_session, as_session_user(manager), order.id, True)

    assert toggled.is_out_of_service is True
    assert [log.action for log in list_audit_log(db_session, "WorkOrder", order.id)] == [
        WorkOrderActions.TOGGLE_OOS
    ]


def test_qc_reject_after_reentering_qc_clears_earlier_approval(db_session, manager, admin):
    order = make_work_order(db_session, status=WorkOrderStatus.QC, kanban_column=KanbanColumn.QC)
    reviewer = as_session_user(manager)

    approved = qc_approve(db_session, reviewer, order.id, now=T0)
    assert approved.qc_approved_by_id == manager.id

    back_in_qc = move_on_board(db_session, as_session_user(admin), order.id, KanbanColumn.QC)
    assert back_in_qc.status == WorkOrderStatus.QC
    assert back_in_qc.qc_approved_by_id == manager.id

    rejected = qc_reject(db_session, reviewer, order.id, "Torque marks missing on lug nuts")
    assert rejected.status == WorkOrderStatus.IN_PROGRESS
    assert rejected.kanban_column == KanbanColumn.IN_PROGRESS
    assert rejected.qc_approved_by_id is None
    assert rejected.qc_approved_at is None
    assert rejected.qc_approved_by is None


def test_board_groups_open_orders_by_column(db_session, manager, tech):
    other = make_user(db_session, name="Casey Tech")
    second = make_work_order(
        db_session, customer_name="Birch Farms", kanban_column=KanbanColumn.OPEN, kanban_position=2
    )
    first = make_work_order(
        db_session,
        status=WorkOrderStatus.IN_PROGRESS,
        customer_name="Acme Fleet",
        kanban_column=KanbanColumn.OPEN,
        kanban_position=1,
        priority=1,
    )
    make_work_order(db_session, status=WorkOrderStatus.CLOSED, kanban_column=KanbanColumn.READY_TO_BILL)

    done = make_line_item(db_session, first, assignees=[tech], status=LineItemStatus.DONE)
    make_line_item(db_session, first, assignees=[tech, other])
    make_line_item(db_session, first, assignees=[other], status=LineItemStatus.DONE, deleted_at=T0)
    make_entry(db_session, tech, done, seconds=3600)
    make_entry(db_session, tech, done, started_at=T0 + timedelta(hours=2), seconds=1800)
    make_entry(db_session, tech, done, started_at=T0 + timedelta(hours=4), seconds=3600, deleted_at=T0)

    columns = board(db_session, as_session_user(manager))

    assert set(columns) == set(KanbanColumn)
    assert columns[KanbanColumn.READY_TO_BILL] == []
    assert [card.id for card in columns[KanbanColumn.OPEN]] == [first.id, second.id]

    card = columns[KanbanColumn.OPEN][0]
    assert card.customer_name == "Acme Fleet"
    assert card.status == WorkOrderStatus.IN_PROGRESS
    assert card.priority == 1
    assert (card.progress_done, card.progress_total) == (1, 2)
    assert card.total_hours == 1.5
    assert sorted(t.name for t in card.assigned_techs) == ["Casey Tech", "Terry Tech"]

    empty = columns[KanbanColumn.OPEN][1]
    assert (empty.progress_done, empty.progress_total, empty.total_hours) == (0, 0, 0)
    assert empty.assigned_techs == []


def test_board_requires_kanban_access(db_session, tech):
    with pytest.raises(ForbiddenError, match="Kanban board access required"):
        board(db_session, as_session_user(tech))


def test_admin_lists_every_order_newest_first(db_session, admin, tech):
    older = make_work_order(db_session, customer_name="Acme Fleet", created_at=T0)
    newer = make_work_order(db_session, customer_name="Birch Farms", created_at=T0 + timedelta(days=1))
    item = make_line_item(db_session, older, assignees=[tech])
    make_line_item(db_session, older, deleted_at=T0)
    make_entry(db_session, tech, item)
    make_entry(db_session, tech, item, started_at=T0 + timedelta(hours=2))

    listings = list_work_orders(db_session, as_session_user(admin))

    assert [listing.work_order.id for listing in listings] == [newer.id, older.id]
    assert [li.id for li in listings[1].line_items] == [item.id]
    assert listings[1].time_entry_count == 2
    assert listings[0].time_entry_count == 0


def test_non_admin_lists_only_own_assignments(db_session, tech):
    other = make_user(db_session)
    mine = make_work_order(db_session, customer_name="Acme Fleet", created_at=T0)
    theirs = make_work_order(db_session, customer_name="Acme Logistics", created_at=T0)
    own_item = make_line_item(db_session, mine, assignees=[tech])
    make_line_item(db_session, mine, assignees=[other])
    make_line_item(db_session, theirs, assignees=[other])

    listings = list_work_orders(db_session, as_session_user(tech))

    assert [listing.work_order.id for listing in listings] == [mine.id]
    assert [li.id for li in listings[0].line_items] == [own_item.id]


def test_list_work_orders_filters(db_session, admin):
    acme = make_work_order(db_session, customer_name="Acme Fleet", wo_number="WO-90001", priority=1)
    birch = make_work_order(db_session, status=WorkOrderStatus.QC, customer_name="Birch Farms")
    user = as_session_user(admin)

    assert [row.work_order.id for row in list_work_orders(db_session, user, search="acme")] == [acme.id]
    assert [row.work_order.id for row in list_work_orders(db_session, user, search="wo-9000")] == [acme.id]
    assert [row.work_order.id for row in list_work_orders(db_session, user, status=WorkOrderStatus.QC)] == [birch.id]
    assert [row.work_order.id for row in list_work_orders(db_session, user, priority=1)] == [acme.id]
