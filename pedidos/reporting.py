# Agregados del dashboard. Todo se calcula sobre dias calendario completos en hora
# local del servidor. La facturacion solo cuenta pedidos COMPLETED pagados online o COD.
from collections import Counter
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import NamedTuple, Optional

from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .models import (
    Order, OrderItem,
    CLOSED_STATUSES, ORDER_COMPLETED, ORDER_NEW,
    PAYMENT_COD, PAYMENT_ONLINE, PAYMENT_PAID,
)
from .pricing import money

RANGE_TODAY = "today"
RANGE_7 = "7"
RANGE_30 = "30"
RANGE_FULL = "full"
# tope para rangos a medida (startDate/endDate)
MAX_CUSTOM_DAYS = 366


class Window(NamedTuple):
    start: date
    end: date
    # False = sin filtro de fechas (rango "full")
    bounded: bool = True

    def days(self):
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)


def _parse_day(value: str, field: str) -> date:
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field}, expected YYYY-MM-DD")


def _last_days(n: int, today: date) -> Window:
    return Window(today - timedelta(days=n - 1), today)


def resolve_window(db: Session, range_: Optional[str], start_date: Optional[str],
                   end_date: Optional[str], today: date = None) -> Window:
    today = today or date.today()

    if range_ == RANGE_TODAY:
        return Window(today, today)
    if range_ == RANGE_7 or (not range_ and not start_date and not end_date):
        return _last_days(7, today)
    if range_ == RANGE_30:
        return _last_days(30, today)
    if range_ == RANGE_FULL:
        first, last = db.query(func.min(Order.created_at), func.max(Order.created_at)).one()
        if first is None:
            return Window(today, today, bounded=False)
        return Window(first.date(), last.date(), bounded=False)
    if start_date and end_date:
        start = _parse_day(start_date, "startDate")
        end = _parse_day(end_date, "endDate")
        if start > end:
            raise HTTPException(status_code=400, detail="startDate must not be after endDate")
        if (end - start).days + 1 > MAX_CUSTOM_DAYS:
            raise HTTPException(status_code=400, detail=f"Date range must not exceed {MAX_CUSTOM_DAYS} days")
        return Window(start, end)
    # rango desconocido: ultimos 7 dias
    return _last_days(7, today)


def _in_window(query, window: Window):
    if not window.bounded:
        return query
    start = datetime.combine(window.start, time.min)
    end = datetime.combine(window.end + timedelta(days=1), time.min)
    return query.filter(Order.created_at >= start, Order.created_at < end)


def _revenue(value) -> str:
    return f"{money(Decimal(str(value or 0))):.2f}"


def dashboard_stats(db: Session, window: Window) -> dict:
    orders = _in_window(db.query(Order), window)
    completed = orders.filter(Order.order_status == ORDER_COMPLETED)

    def total_of(query):
        return query.with_entities(func.coalesce(func.sum(Order.total_amount), 0)).scalar()

    total_revenue = total_of(
        completed.filter(or_(Order.payment_status == PAYMENT_PAID, Order.payment_mode == PAYMENT_COD))
    )
    total_units = _in_window(
        db.query(func.coalesce(func.sum(OrderItem.quantity), 0))
        .join(Order, OrderItem.order_id == Order.id)
        .filter(Order.order_status == ORDER_COMPLETED),
        window,
    ).scalar()

    cod = completed.filter(Order.payment_mode == PAYMENT_COD)
    online = completed.filter(Order.payment_mode == PAYMENT_ONLINE)

    return {
        "totalOrders": orders.count(),
        "newOrders": orders.filter(Order.order_status.notin_(CLOSED_STATUSES)).count(),
        "completedOrders": completed.count(),
        "totalRevenue": _revenue(total_revenue),
        "totalMagnets": int(total_units or 0),
        "codOrdersCount": cod.count(),
        "onlineOrdersCount": online.count(),
        "codRevenue": _revenue(total_of(cod)),
        "onlineRevenue": _revenue(total_of(online)),
    }


def day_wise_counts(db: Session, window: Window) -> list:
    created = _in_window(db.query(Order.created_at), window).all()
    per_day = Counter(c.date() for (c,) in created if c is not None)
    return [{"date": d.isoformat(), "count": per_day.get(d, 0)} for d in window.days()]


def count_new_orders(db: Session) -> int:
    return db.query(Order).filter(Order.order_status == ORDER_NEW).count()
