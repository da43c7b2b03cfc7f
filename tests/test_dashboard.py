from datetime import date, datetime, timedelta

import pytest

from pedidos import app as pedidos_service
from pedidos import db as pedidos_db
from pedidos.models import Order
from pedidos.reporting import Window, resolve_window
from test_orders_api import magnet, place


def set_order(order_id, **values):
    with pedidos_db.SessionLocal() as db:
        db.query(Order).filter(Order.id == order_id).update(values, synchronize_session=False)
        db.commit()


@pytest.fixture
def sample_orders(pedidos_client, user_headers):
    ids = {}
    for key, qty, mode in (("cod_done", 1, "COD"), ("online_paid", 2, "ONLINE"),
                           ("online_unpaid", 3, "ONLINE"), ("open", 4, "COD"), ("old", 5, "COD")):
        ids[key] = place(pedidos_client, user_headers, photos=[magnet(quantity=qty)], payment_mode=mode)["id"]
    set_order(ids["cod_done"], order_status="COMPLETED")
    set_order(ids["online_paid"], order_status="COMPLETED", payment_status="PAID")
    set_order(ids["online_unpaid"], order_status="COMPLETED")
    set_order(ids["old"], created_at=datetime.now() - timedelta(days=10))
    return ids


def dashboard(client, headers, **params):
    r = client.get("/api/admin/dashboard", params=params, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


def test_empty_today(pedidos_client, admin_headers):
    body = dashboard(pedidos_client, admin_headers, range="today")
    assert body["stats"]["totalOrders"] == 0
    assert body["stats"]["totalRevenue"] == "0.00"
    assert body["dayWiseData"] == [{"date": date.today().isoformat(), "count": 0}]


def test_last_seven_days(pedidos_client, admin_headers, sample_orders):
    body = dashboard(pedidos_client, admin_headers)
    stats = body["stats"]
    assert stats == {
        "totalOrders": 4,
        "newOrders": 1,
        "completedOrders": 3,
        # 153 COD + 256 pagado online; el online sin pagar no suma
        "totalRevenue": "409.00",
        "totalMagnets": 6,
        "codOrdersCount": 1,
        "onlineOrdersCount": 2,
        "codRevenue": "153.00",
        "onlineRevenue": "615.00",
    }
    days = body["dayWiseData"]
    assert len(days) == 7
    assert days[-1] == {"date": date.today().isoformat(), "count": 4}
    assert body["range"] == {"start": (date.today() - timedelta(days=6)).isoformat(),
                             "end": date.today().isoformat()}


def test_thirty_days_and_full(pedidos_client, admin_headers, sample_orders):
    body = dashboard(pedidos_client, admin_headers, range="30")
    assert body["stats"]["totalOrders"] == 5
    assert len(body["dayWiseData"]) == 30
    assert sum(d["count"] for d in body["dayWiseData"]) == 5

    body = dashboard(pedidos_client, admin_headers, range="full")
    assert body["stats"]["totalOrders"] == 5
    assert body["range"]["start"] == (date.today() - timedelta(days=10)).isoformat()
    assert len(body["dayWiseData"]) == 11


def test_custom_range(pedidos_client, admin_headers, sample_orders):
    old_day = (date.today() - timedelta(days=10)).isoformat()
    body = dashboard(pedidos_client, admin_headers, startDate=old_day, endDate=old_day)
    assert body["stats"]["totalOrders"] == 1
    assert body["stats"]["newOrders"] == 1
    assert body["dayWiseData"] == [{"date": old_day, "count": 1}]


def test_invalid_custom_range(pedidos_client, admin_headers):
    r = pedidos_client.get("/api/admin/dashboard", params={"startDate": "2025-13-01", "endDate": "2025-12-31"},
                           headers=admin_headers)
    assert r.status_code == 400
    r = pedidos_client.get("/api/admin/dashboard", params={"startDate": "2025-12-31", "endDate": "2025-12-01"},
                           headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["message"] == "startDate must not be after endDate"


def test_unknown_range_falls_back_to_week(pedidos_client, admin_headers):
    body = dashboard(pedidos_client, admin_headers, range="90")
    assert len(body["dayWiseData"]) == 7


def test_resolve_window_uses_given_day(pedidos_client):
    today = date(2026, 3, 1)
    with pedidos_db.SessionLocal() as db:
        assert resolve_window(db, "7", None, None, today=today) == Window(date(2026, 2, 23), today)
        assert resolve_window(db, "today", None, None, today=today) == Window(today, today)
        full = resolve_window(db, "full", None, None, today=today)
    assert full.bounded is False


def test_dashboard_is_admin_only(pedidos_client, user_headers):
    r = pedidos_client.get("/api/admin/dashboard", headers=user_headers)
    assert r.status_code == 403


def test_notifications(pedidos_client, admin_headers, sample_orders, monkeypatch):
    monkeypatch.setattr(pedidos_service, "eventos_count_new", lambda token: 2)
    r = pedidos_client.get("/api/admin/notifications", headers=admin_headers)
    assert r.status_code == 200
    # "open" y "old" siguen en NEW
    assert r.json() == {"success": True, "newOrdersCount": 2, "newEventsCount": 2}


def test_custom_range_is_capped(pedidos_client, admin_headers):
    r = pedidos_client.get("/api/admin/dashboard", params={"startDate": "0001-01-01", "endDate": "9999-12-31"},
                           headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["message"] == "Date range must not exceed 366 days"

    # un año bisiesto completo entra justo
    body = dashboard(pedidos_client, admin_headers, startDate="2024-01-01", endDate="2024-12-31")
    assert len(body["dayWiseData"]) == 366
