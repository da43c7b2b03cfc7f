import base64
import binascii
import os
import re
from typing import List, Optional

import requests
from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse, Response
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from common import errors
from common.logs import setup_logging
from common.security import CurrentUser, get_bearer_token, get_current_user, require_admin, require_user
from .db import Base, engine, SessionLocal
from .gateway import RazorpayGateway, GatewayError, CURRENCY
from .models import (
    Order, OrderItem, Payment,
    ORDER_STATUSES, ORDER_CANCELLED, ORDER_ACCEPTED, ORDER_REJECTED, ORDER_COMPLETED, CLOSED_STATUSES,
    PAYMENT_MODES, PAYMENT_COD, PAYMENT_PAID,
    ATTEMPT_PENDING, ATTEMPT_SUCCESS, ATTEMPT_FAILED,
    TYPE_POLAROID,
)
from .orders import (
    CreateOrderIn, ADMIN_TRANSITIONS, USER_TRANSITIONS,
    validate_order, create_order as persist_order, transition_order, mark_order_paid, order_to_dict,
)
from .reporting import resolve_window, dashboard_stats, day_wise_counts, count_new_orders

AUTH_URL    = os.getenv("AUTH_URL", "http://127.0.0.1:8001")
EVENTOS_URL = os.getenv("EVENTOS_URL", "http://127.0.0.1:8003")
RAZORPAY_KEY_ID     = os.getenv("RAZORPAY_KEY_ID")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")

# Diferencia aceptada entre el monto del cliente y el total del pedido (paise)
AMOUNT_TOLERANCE = 1

setup_logging("pedidos")

app = FastAPI(title="Pedidos Service")
errors.install(app)

# ---------- DB init ----------
Base.metadata.create_all(bind=engine)

gateway = RazorpayGateway(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET)
if not gateway.configured:
    logger.warning("Razorpay credentials not found: online payments are disabled")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_gateway() -> RazorpayGateway:
    return gateway


# ---------- Helpers a Auth / Eventos ----------
def _auth_headers(token: str):
    return {"Authorization": f"Bearer {token}"}


def auth_get_user(token: str, user_id: int) -> dict:
    url = f"{AUTH_URL}/api/auth/users/{user_id}"
    try:
        r = requests.get(url, headers=_auth_headers(token), timeout=5)
    except requests.RequestException as e:
        logger.error("Auth no responde (user): {}", e)
        raise HTTPException(status_code=503, detail="Auth service unavailable")
    if r.status_code == 401:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if r.status_code == 404:
        raise HTTPException(status_code=404, detail="User not found")
    if r.status_code >= 400:
        raise HTTPException(status_code=502, detail=f"Auth service error ({r.status_code})")
    return r.json().get("user")


# Best-effort: si Auth no responde la lista de admin sale igual, sin datos de usuario
def auth_get_users(token: str, user_ids: List[int]) -> dict:
    if not user_ids:
        return {}
    url = f"{AUTH_URL}/api/auth/users"
    try:
        r = requests.get(url, params={"ids": ",".join(str(i) for i in user_ids)},
                         headers=_auth_headers(token), timeout=5)
    except requests.RequestException as e:
        logger.warning("Auth no responde (users): {}", e)
        return {}
    if r.status_code >= 400:
        logger.warning("Auth users lookup failed: {} {}", r.status_code, r.text)
        return {}
    return {u["id"]: u for u in r.json().get("users", [])}


def eventos_count_new(token: str) -> int:
    url = f"{EVENTOS_URL}/api/admin/events/count"
    try:
        r = requests.get(url, params={"status": "NEW"}, headers=_auth_headers(token), timeout=5)
    except requests.RequestException as e:
        logger.error("Eventos no responde (count): {}", e)
        raise HTTPException(status_code=503, detail="Events service unavailable")
    if r.status_code >= 400:
        raise HTTPException(status_code=502, detail=f"Events service error ({r.status_code})")
    return int(r.json().get("count", 0))


def get_order_or_404(db: Session, order_id: int) -> Order:
    o = db.query(Order).filter(Order.id == order_id).first()
    if not o:
        raise HTTPException(status_code=404, detail="Order not found")
    return o


def ensure_owner(order: Order, user: CurrentUser, message: str = "Unauthorized access to this order"):
    if order.user_id != user.id:
        raise HTTPException(status_code=403, detail=message)


# ---------- Schemas ----------
class StatusIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    order_status: Optional[str] = Field(None, alias="orderStatus")


class AdminActionIn(BaseModel):
    action: Optional[str] = None


class CreatePaymentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    order_id: Optional[int] = Field(None, alias="orderId")
    amount: Optional[float] = None


class VerifyPaymentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    order_id: Optional[int] = Field(None, alias="orderId")


ADMIN_STATUS_FILTERS = {
    "completed": ORDER_COMPLETED,
    "rejected": ORDER_REJECTED,
    "cancelled": ORDER_CANCELLED,
    "accepted": ORDER_ACCEPTED,
}


# ---------- Endpoints utilitarios ----------
@app.get("/api/health")
def health():
    return {"status": "ok", "service": "pedidos", "payments": gateway.configured}


# ---------- Pedidos ----------
@app.post("/api/orders/create")
def create_order(
    payload: CreateOrderIn,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(require_user),
    token: str = Depends(get_bearer_token),
):
    data = validate_order(payload)
    # El usuario tiene que seguir existiendo en Auth
    auth_get_user(token, user.id)

    order = persist_order(db, user.id, data)
    placed = order.payment_mode == PAYMENT_COD
    return {
        "success": True,
        "message": "Order placed successfully" if placed else "Order created, awaiting payment",
        "order": order_to_dict(order),
    }


@app.get("/api/orders/user")
def list_user_orders(db: Session = Depends(get_db), user: CurrentUser = Depends(require_user)):
    orders = db.query(Order).filter(Order.user_id == user.id).order_by(Order.created_at.desc(), Order.id.desc()).all()
    return {"success": True, "orders": [order_to_dict(o) for o in orders]}


@app.get("/api/orders/admin")
def list_admin_orders(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    token: str = Depends(get_bearer_token),
):
    q = db.query(Order)
    key = (status or "").lower()
    if key == "new":
        q = q.filter(Order.order_status.notin_(CLOSED_STATUSES))
    elif key in ADMIN_STATUS_FILTERS:
        q = q.filter(Order.order_status == ADMIN_STATUS_FILTERS[key])
    orders = q.order_by(Order.created_at.desc(), Order.id.desc()).all()

    users = auth_get_users(token, sorted({o.user_id for o in orders}))
    return {
        "success": True,
        "orders": [order_to_dict(o, with_address=True, user=users.get(o.user_id)) for o in orders],
    }


@app.get("/api/orders/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    o = get_order_or_404(db, order_id)
    if not user.is_admin:
        ensure_owner(o, user, "Forbidden")
    return {"success": True, "order": order_to_dict(o, with_address=True)}


@app.patch("/api/orders/{order_id}/status")
def update_order_status(
    order_id: int, payload: StatusIn,
    db: Session = Depends(get_db), admin: CurrentUser = Depends(require_admin),
):
    if not payload.order_status:
        raise HTTPException(status_code=400, detail="Order status is required")
    if payload.order_status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid order status")
    o = get_order_or_404(db, order_id)
    o = transition_order(db, o, payload.order_status, ADMIN_TRANSITIONS)
    return {
        "success": True,
        "message": "Order status updated successfully",
        "order": {"id": o.id, "orderStatus": o.order_status},
    }


@app.patch("/api/orders/{order_id}/admin-action")
def admin_action(
    order_id: int, payload: AdminActionIn,
    db: Session = Depends(get_db), admin: CurrentUser = Depends(require_admin),
):
    if payload.action not in ("ACCEPT", "REJECT"):
        raise HTTPException(status_code=400, detail="Action must be ACCEPT or REJECT")
    o = get_order_or_404(db, order_id)
    target = ORDER_ACCEPTED if payload.action == "ACCEPT" else ORDER_REJECTED
    o = transition_order(db, o, target, ADMIN_TRANSITIONS,
                         message=f"Only NEW orders can be {target.lower()}, this one is {o.order_status}")
    return {
        "success": True,
        "message": f"Order {target.lower()} successfully",
        "order": {"id": o.id, "orderStatus": o.order_status},
    }


@app.patch("/api/orders/{order_id}/cancel")
def cancel_order(order_id: int, db: Session = Depends(get_db), user: CurrentUser = Depends(require_user)):
    o = get_order_or_404(db, order_id)
    ensure_owner(o, user, "Unauthorized to cancel this order")
    o = transition_order(db, o, ORDER_CANCELLED, USER_TRANSITIONS, message="Order cannot be cancelled")
    return {
        "success": True,
        "message": "Order cancelled successfully",
        "order": {"id": o.id, "orderStatus": o.order_status},
    }


@app.get("/api/orders/{order_id}/photos/{photo_id}/download")
def download_photo(
    order_id: int, photo_id: int,
    db: Session = Depends(get_db), admin: CurrentUser = Depends(require_admin),
):
    item = db.query(OrderItem).filter(OrderItem.id == photo_id, OrderItem.order_id == order_id).first()
    if not item:
        raise HTTPException(status_code=404, detail="Photo not found")

    if item.photo_url.startswith("data:image"):
        header, _, data = item.photo_url.partition(",")
        m = re.match(r"data:image/(\w+);base64", header)
        mime = f"image/{m.group(1)}" if m else "image/jpeg"
        try:
            content = base64.b64decode(data)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=500, detail="Stored photo could not be decoded")
        filename = re.sub(r"[^a-zA-Z0-9.-]", "_", item.photo_name)
        return Response(
            content=content,
            media_type=mime,
            headers={"Content-Disposition": f'attachment; filename="{filename}.{mime.split("/")[1]}"'},
        )

    if not item.photo_url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="Unsupported photo source")
    return RedirectResponse(item.photo_url)


# ---------- Admin ----------
@app.get("/api/admin/dashboard")
def admin_dashboard(
    range_: Optional[str] = Query(None, alias="range"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    window = resolve_window(db, range_, start_date, end_date)
    return {
        "success": True,
        "range": {"start": window.start.isoformat(), "end": window.end.isoformat()},
        "stats": dashboard_stats(db, window),
        "dayWiseData": day_wise_counts(db, window),
    }


@app.get("/api/admin/notifications")
def admin_notifications(
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    token: str = Depends(get_bearer_token),
):
    return {
        "success": True,
        "newOrdersCount": count_new_orders(db),
        "newEventsCount": eventos_count_new(token),
    }


# ---------- Pagos ----------
@app.post("/api/payment/create")
def create_payment(
    payload: CreatePaymentIn,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(require_user),
    pg: RazorpayGateway = Depends(get_gateway),
):
    if not pg.configured:
        raise HTTPException(status_code=503, detail="Online payment service not configured. Please contact support.")
    if not payload.order_id or not payload.amount:
        raise HTTPException(status_code=400, detail="Order ID and amount are required")

    o = get_order_or_404(db, payload.order_id)
    ensure_owner(o, user)

    expected = int(round(o.total_amount * 100))  # a paise
    if abs(payload.amount - expected) > AMOUNT_TOLERANCE:
        raise HTTPException(status_code=400, detail="Amount mismatch with order total")
    if o.payment_mode not in PAYMENT_MODES:
        raise HTTPException(status_code=400, detail="Invalid payment mode")
    if o.payment_status == PAYMENT_PAID:
        raise HTTPException(status_code=400, detail="Order is already paid")
    # un pedido rechazado o cancelado no se envia, no se cobra
    if o.order_status in (ORDER_CANCELLED, ORDER_REJECTED):
        raise HTTPException(status_code=400, detail=f"Order is {o.order_status.lower()} and cannot be paid")

    quantity = sum(it.quantity for it in o.items)
    label = "Polaroid Print(s)" if o.order_type == TYPE_POLAROID else "Fridge Magnet(s)"
    try:
        rp_order = pg.create_order(
            amount=expected,
            receipt=f"order_{o.id}",
            notes={"orderId": str(o.id), "totalQuantity": str(quantity),
                   "description": f"{quantity} Custom Photo {label}"},
        )
    except GatewayError:
        raise HTTPException(status_code=502, detail="Failed to create payment order. Please try again.")

    db.add(Payment(order_id=o.id, razorpay_order_id=rp_order["id"], amount=expected,
                   currency=rp_order.get("currency", CURRENCY), status=ATTEMPT_PENDING))
    db.commit()
    return {
        "success": True,
        "orderId": rp_order["id"],
        "amount": rp_order.get("amount", expected),
        "currency": rp_order.get("currency", CURRENCY),
        "key": pg.key_id,
    }


@app.post("/api/payment/verify")
def verify_payment(
    payload: VerifyPaymentIn,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(require_user),
    pg: RazorpayGateway = Depends(get_gateway),
):
    if not pg.configured:
        raise HTTPException(status_code=503, detail="Payment service not configured. Please contact support.")
    if not (payload.razorpay_order_id and payload.razorpay_payment_id
            and payload.razorpay_signature and payload.order_id):
        raise HTTPException(status_code=400, detail="All payment details are required")

    o = get_order_or_404(db, payload.order_id)
    ensure_owner(o, user)

    attempts = db.query(Payment).filter(
        Payment.order_id == o.id, Payment.razorpay_order_id == payload.razorpay_order_id
    )
    if attempts.count() == 0:
        raise HTTPException(status_code=400, detail="No payment was started for this order")

    if not pg.verify_signature(payload.razorpay_order_id, payload.razorpay_payment_id, payload.razorpay_signature):
        # Solo los intentos pendientes pasan a FAILED; un SUCCESS no se pisa
        attempts.filter(Payment.status == ATTEMPT_PENDING).update(
            {Payment.status: ATTEMPT_FAILED}, synchronize_session=False
        )
        db.commit()
        logger.warning("Invalid payment signature for order {} ({})", o.id, payload.razorpay_order_id)
        raise HTTPException(status_code=400, detail="Invalid payment signature")

    if o.payment_status == PAYMENT_PAID:
        # Callback repetido: no se vuelve a aplicar nada
        return {"success": True, "message": "Payment already verified", "orderId": o.id, "alreadyVerified": True}

    attempts.filter(Payment.status != ATTEMPT_SUCCESS).update(
        {
            Payment.status: ATTEMPT_SUCCESS,
            Payment.razorpay_payment_id: payload.razorpay_payment_id,
            Payment.razorpay_signature: payload.razorpay_signature,
        },
        synchronize_session=False,
    )
    applied = mark_order_paid(db, o)
    db.commit()
    db.refresh(o)
    logger.info("Payment {} verified for order {}", payload.razorpay_payment_id, o.id)
    return {
        "success": True,
        "message": "Payment verified successfully" if applied else "Payment already verified",
        "orderId": o.id,
        "alreadyVerified": not applied,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8002)))
