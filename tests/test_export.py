import csv
import io
from datetime import timedelta

import pytest

from app.models.work import ApprovalState
from app.services.errors import ForbiddenError, NotFoundError
from app.services.export import export_work_order_csv, format_minutes
from conftest import T0, as_session_user, make_entry, make_line_item, make_user, make_work_order


def _rows(body: str):
    return list(csv.reader(io.StringIO(body)))


def test_export_lists_billable_items_with_approved_hours(db_session, admin, tech):
    second_tech = make_user(db_session, name="Sam Second")
    order = make_work_order(db_session, wo_number="WO-1001", customer_name="Harbor Freight Lines")
    brakes = make_line_item(db_session, order, assignees=[tech, second_tech], description="Brake job", sort_order=1)
    make_line_item(db_session, order, billable=False, description="Shop cleanup", sort_order=2)
    make_line_item(db_session, order, deleted_at=T0, description="Cancelled", sort_order=3)
    wash = make_line_item(db_session, order, description="Wash", sort_order=4)

    make_entry(db_session, tech, brakes, started_at=T0, seconds=5400, state=ApprovalState.APPROVED, notes="Rotors ok")
    make_entry(
        db_session, second_tech, brakes, started_at=T0 + timedelta(hours=2), seconds=1800, state=ApprovalState.LOCKED
    )
    make_entry(db_session, tech, brakes, started_at=T0 + timedelta(hours=4), seconds=999, state=ApprovalState.DRAFT)
    make_entry(
        db_session,
        tech,
        brakes,
        started_at=T0 + timedelta(hours=5),
        seconds=999,
        state=ApprovalState.APPROVED,
        deleted_at=T0,
    )

    rows = _rows(export_work_order_csv(db_session, as_session_user(admin), order.id))

    assert rows[0] == ["WO Number", "Customer", "Line Item Description", "Total Hours", "Rate", "Memo"]
    assert rows[1] == [
        "WO-1001",
        "Harbor Freight Lines",
        "Brake job",
        "2.00",
        "",
        f"Techs: {tech.name}, Sam Second. Rotors ok",
    ]
    assert rows[2] == ["WO-1001", "Harbor Freight Lines", "Wash", "0.00", "", ""]
    assert len(rows) == 3


def test_export_is_admin_only(db_session, manager):
    order = make_work_order(db_session)

    with pytest.raises(ForbiddenError):
        export_work_order_csv(db_session, as_session_user(manager), order.id)


def test_export_missing_work_order(db_session, admin):
    with pytest.raises(NotFoundError):
        export_work_order_csv(db_session, as_session_user(admin), 9999)


@pytest.mark.parametrize(
    "minutes,expected",
    [(None, "0h 0m"), (0, "0h 0m"), (59, "0h 59m"), (125, "2h 5m"), (-65, "-1h 5m")],
)
def test_format_minutes(minutes, expected):
    assert format_minutes(minutes) == expected
