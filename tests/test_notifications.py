from datetime import date, datetime, timedelta

import pytest

from warranty_pro.db_models import NotificationDB
from warranty_pro.errors import NotFound
from warranty_pro.models import AlertKind
from warranty_pro.services import notifications as ledger


def _record(db, user_id, warranty_id, kind=AlertKind.thirty_day, now=None):
    return ledger.record_notification(
        db,
        user_id=user_id,
        warranty_id=warranty_id,
        kind=kind,
        title=f"{kind.value} title",
        message="message",
        product_name="Dishwasher",
        expiry_date=date(2024, 7, 1),
        days_until_expiry=30,
        now=now,
    )


def test_second_record_for_same_key_is_skipped(db):
    first = _record(db, "alice", "wty_1")
    assert first is not None
    assert _record(db, "alice", "wty_1") is None
    assert _record(db, "alice", "wty_1", AlertKind.seven_day) is not None
    assert _record(db, "bob", "wty_1") is not None
    assert db.query(NotificationDB).count() == 3


def test_concurrent_insert_is_swallowed(db, monkeypatch):
    assert _record(db, "alice", "wty_1") is not None
    # simulate a run that checked before the other run's insert landed
    monkeypatch.setattr(ledger, "has_notification", lambda *args, **kwargs: False)
    assert _record(db, "alice", "wty_1") is None
    assert db.query(NotificationDB).filter_by(user_id="alice", warranty_id="wty_1").count() == 1


def test_list_and_unread_count_are_per_owner(db):
    base = datetime(2024, 6, 1, 9, 0)
    _record(db, "alice", "wty_1", AlertKind.thirty_day, now=base)
    _record(db, "alice", "wty_1", AlertKind.seven_day, now=base + timedelta(days=23))
    _record(db, "bob", "wty_2", now=base)

    items = ledger.list_notifications(db, "alice")
    assert [n.type for n in items] == ["seven_day", "thirty_day"]
    assert ledger.list_notifications(db, "alice", limit=1)[0].type == "seven_day"
    assert ledger.unread_count(db, "alice") == 2
    assert ledger.unread_count(db, "bob") == 1


def test_mark_read(db):
    n = _record(db, "alice", "wty_1")
    updated = ledger.mark_read(db, n.id, "alice")
    assert updated.read_at is not None
    first_read = updated.read_at
    assert ledger.mark_read(db, n.id, "alice").read_at == first_read
    assert ledger.unread_count(db, "alice") == 0
    assert ledger.list_notifications(db, "alice", only_unread=True) == []


def test_mark_read_rejects_other_owner(db):
    n = _record(db, "alice", "wty_1")
    with pytest.raises(NotFound):
        ledger.mark_read(db, n.id, "bob")
    with pytest.raises(NotFound):
        ledger.mark_read(db, "ntf_missing", "alice")
    assert ledger.unread_count(db, "alice") == 1


def test_mark_all_read(db):
    _record(db, "alice", "wty_1")
    _record(db, "alice", "wty_2")
    _record(db, "bob", "wty_3")
    assert ledger.mark_all_read(db, "alice") == 2
    assert ledger.unread_count(db, "alice") == 0
    assert ledger.unread_count(db, "bob") == 1


def test_notification_routes(client, db, login, make_user, make_warranty, channel):
    make_user("alice")
    make_user("bob")
    make_warranty("alice", purchase_date=date(2020, 1, 1), coverage_months=12)
    alice = login("alice")
    bob = login("bob")

    resp = client.post("/notifications/sync", headers=alice)
    assert resp.status_code == 200
    assert resp.json() == {"created": 1}
    assert client.post("/notifications/sync", headers=alice).json() == {"created": 0}

    listing = client.get("/notifications", headers=alice).json()
    assert listing["unread_count"] == 1
    item = listing["notifications"][0]
    assert item["type"] == "expired"
    assert item["delivery_success"] is True

    assert client.get("/notifications/unread-count", headers=bob).json() == {"count": 0}
    assert client.post(f"/notifications/{item['id']}/read", headers=bob).status_code == 404

    read = client.post(f"/notifications/{item['id']}/read", headers=alice)
    assert read.status_code == 200
    assert read.json()["notification"]["read_at"] is not None
    assert client.get("/notifications/unread-count", headers=alice).json() == {"count": 0}


def test_notification_routes_require_auth(client):
    assert client.get("/notifications").status_code == 401


def test_mark_read_accepts_patch(client, db, login, make_user):
    make_user("alice")
    n = _record(db, "alice", "wty_1")
    resp = client.patch(f"/api/notifications/{n.id}/read", headers=login("alice"))
    assert resp.status_code == 200
    assert resp.json()["notification"]["read_at"] is not None
    assert ledger.unread_count(db, "alice") == 0
