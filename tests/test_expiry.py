from datetime import date, datetime

import pytest

from warranty_pro.db_models import NotificationDB
from warranty_pro.models import AlertKind
from warranty_pro.services import expiry
from warranty_pro.services.expiry import (
    alert_kind_for,
    compute_expiry_date,
    days_until_expiry,
    notification_content,
    run_expiry_check,
)

from conftest import RecordingChannel


def test_expiry_date_adds_calendar_months():
    assert compute_expiry_date(date(2024, 1, 15), 12) == date(2025, 1, 15)
    assert compute_expiry_date(date(2024, 6, 1), 1) == date(2024, 7, 1)
    assert compute_expiry_date(date(2024, 3, 10), 0) == date(2024, 3, 10)


def test_expiry_date_clamps_to_month_end():
    assert compute_expiry_date(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert compute_expiry_date(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert compute_expiry_date(date(2024, 8, 31), 18) == date(2026, 2, 28)


def test_negative_duration_rejected():
    with pytest.raises(ValueError):
        compute_expiry_date(date(2024, 1, 1), -1)


def test_days_until_expiry_rounds_up_partial_days():
    expiry_date = date(2024, 7, 1)
    assert days_until_expiry(expiry_date, datetime(2024, 6, 1, 0, 0)) == 30
    assert days_until_expiry(expiry_date, datetime(2024, 6, 1, 18, 30)) == 30
    assert days_until_expiry(expiry_date, datetime(2024, 7, 1, 9, 0)) == 0
    assert days_until_expiry(expiry_date, datetime(2024, 7, 2, 9, 0)) == -1


@pytest.mark.parametrize(
    "days,kind",
    [
        (31, None),
        (30, AlertKind.thirty_day),
        (29, None),
        (8, None),
        (7, AlertKind.seven_day),
        (6, None),
        (1, None),
        (0, AlertKind.expiry_day),
        (-1, AlertKind.expired),
        (-400, AlertKind.expired),
    ],
)
def test_threshold_table(days, kind):
    assert alert_kind_for(days) == kind


def test_content_is_fixed_per_kind():
    title, message = notification_content(AlertKind.seven_day, "Dishwasher", date(2024, 7, 1))
    assert title == "Last Week of Warranty: Dishwasher"
    assert "7 days (July 1, 2024)" in message
    title, _ = notification_content(AlertKind.expired, "Dishwasher", date(2024, 7, 1))
    assert title.startswith("Warranty Expired")


def _records(db, warranty_id):
    return db.query(NotificationDB).filter_by(warranty_id=warranty_id).order_by(NotificationDB.sent_at).all()


def test_lifecycle_emits_three_alerts(db, make_user, make_warranty):
    make_user("alice")
    w = make_warranty("alice", purchase_date=date(2024, 6, 1), coverage_months=1)
    channel = RecordingChannel()

    assert run_expiry_check(db, now=datetime(2024, 6, 1, 9, 0), channel=channel) == 1
    assert run_expiry_check(db, now=datetime(2024, 6, 1, 15, 0), channel=channel) == 0
    assert run_expiry_check(db, now=datetime(2024, 6, 10, 9, 0), channel=channel) == 0
    assert run_expiry_check(db, now=datetime(2024, 6, 24, 9, 0), channel=channel) == 1
    assert run_expiry_check(db, now=datetime(2024, 7, 2, 9, 0), channel=channel) == 1
    assert run_expiry_check(db, now=datetime(2024, 7, 3, 9, 0), channel=channel) == 0

    kinds = [n.type for n in _records(db, w.id)]
    assert kinds == ["thirty_day", "seven_day", "expired"]
    assert len(channel.sent) == 3
    assert channel.sent[0]["to"] == "alice@example.com"


def test_repeated_runs_at_threshold_are_idempotent(db, make_user, make_warranty):
    make_user("alice")
    w = make_warranty("alice", purchase_date=date(2024, 6, 1), coverage_months=1)
    for _ in range(5):
        run_expiry_check(db, now=datetime(2024, 6, 24, 8, 0), channel=RecordingChannel())
    records = _records(db, w.id)
    assert len(records) == 1
    assert records[0].type == AlertKind.seven_day.value
    assert records[0].days_until_expiry == 7
    assert records[0].expiry_date == date(2024, 7, 1)


def test_off_threshold_days_emit_nothing(db, make_user, make_warranty):
    make_user("alice")
    w = make_warranty("alice", purchase_date=date(2024, 6, 1), coverage_months=1)
    assert run_expiry_check(db, now=datetime(2024, 5, 31, 9, 0), channel=RecordingChannel()) == 0
    assert run_expiry_check(db, now=datetime(2024, 6, 2, 9, 0), channel=RecordingChannel()) == 0
    assert _records(db, w.id) == []


def test_delivery_failure_keeps_record(db, make_user, make_warranty):
    make_user("alice")
    w = make_warranty("alice", purchase_date=date(2024, 6, 1), coverage_months=1)
    failing = RecordingChannel(fail=True)

    assert run_expiry_check(db, now=datetime(2024, 6, 1, 9, 0), channel=failing) == 1
    record = _records(db, w.id)[0]
    assert record.delivery_attempted is True
    assert record.delivery_success is False
    assert record.delivered_at is None
    assert record.delivery_error == "mailbox unavailable"

    # not re-sent on the next run
    assert run_expiry_check(db, now=datetime(2024, 6, 1, 20, 0), channel=failing) == 0
    assert len(failing.sent) == 1


def test_successful_delivery_is_recorded(db, make_user, make_warranty):
    make_user("alice")
    w = make_warranty("alice", purchase_date=date(2024, 6, 1), coverage_months=1)
    run_expiry_check(db, now=datetime(2024, 6, 1, 9, 0), channel=RecordingChannel())
    record = _records(db, w.id)[0]
    assert record.delivery_success is True
    assert record.delivered_at is not None
    assert record.read_at is None


def test_opted_out_user_gets_record_without_email(db, make_user, make_warranty):
    make_user("alice", email_notifications=False)
    w = make_warranty("alice", purchase_date=date(2024, 6, 1), coverage_months=1)
    channel = RecordingChannel()
    assert run_expiry_check(db, now=datetime(2024, 6, 1, 9, 0), channel=channel) == 1
    assert channel.sent == []
    assert _records(db, w.id)[0].delivery_attempted is False


def test_user_scope_only_touches_own_warranties(db, make_user, make_warranty):
    make_user("alice")
    make_user("bob")
    mine = make_warranty("alice", purchase_date=date(2024, 6, 1), coverage_months=1)
    theirs = make_warranty("bob", purchase_date=date(2024, 6, 1), coverage_months=1)

    assert run_expiry_check(db, user_id="alice", now=datetime(2024, 6, 1, 9, 0), channel=RecordingChannel()) == 1
    assert len(_records(db, mine.id)) == 1
    assert _records(db, theirs.id) == []


def test_warranties_without_resolvable_owner_are_skipped(db, make_user, make_warranty):
    orphan = make_warranty(None, purchase_date=date(2024, 6, 1), coverage_months=1)
    ghost = make_warranty("nobody", purchase_date=date(2024, 6, 1), coverage_months=1)
    assert run_expiry_check(db, now=datetime(2024, 6, 1, 9, 0), channel=RecordingChannel()) == 0
    assert _records(db, orphan.id) == []
    assert _records(db, ghost.id) == []


def test_one_bad_warranty_does_not_stop_the_run(db, make_user, make_warranty, monkeypatch):
    make_user("alice")
    bad = make_warranty("alice", purchase_date=date(2024, 6, 1), coverage_months=1, product_name="Broken")
    good = make_warranty("alice", purchase_date=date(2024, 6, 1), coverage_months=1, product_name="Kettle")
    original = expiry.notification_content

    def flaky(kind, product_name, expiry_date):
        if product_name == "Broken":
            raise RuntimeError("template blew up")
        return original(kind, product_name, expiry_date)

    monkeypatch.setattr(expiry, "notification_content", flaky)
    assert run_expiry_check(db, now=datetime(2024, 6, 1, 9, 0), channel=RecordingChannel()) == 1
    assert _records(db, bad.id) == []
    assert len(_records(db, good.id)) == 1


def test_cron_endpoint_requires_secret(client):
    assert client.post("/cron/daily-check").status_code == 401
    resp = client.post("/cron/daily-check", headers={"Authorization": "Bearer wrong"})
    assert resp.status_code == 401


def test_cron_endpoint_runs_check(client, channel, make_user, make_warranty):
    make_user("alice")
    make_warranty("alice", purchase_date=date(2020, 1, 1), coverage_months=12)
    resp = client.post("/cron/daily-check", headers={"Authorization": "Bearer dev-secret"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["sent_count"] == 1
    assert len(channel.sent) == 1
