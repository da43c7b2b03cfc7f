import re
from datetime import datetime
from typing import Any, List, Optional

from fastapi import HTTPException
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from .models import (
    Order, OrderItem,
    ORDER_NEW, ORDER_ACCEPTED, ORDER_REJECTED, ORDER_CANCELLED, ORDER_COMPLETED,
    PAYMENT_MODES, PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_COD, PAYMENT_ONLINE,
    ITEM_TYPES, TYPE_POLAROID,
)
from .pricing import UNIT_PRICE, Pricing, calculate_pricing, order_level_type

MIN_QUANTITY = 1
MAX_QUANTITY = 100
ADDRESS_FIELDS = ("fullName", "phone", "houseNo", "village", "city", "district", "state", "pincode")
PHONE_RE = re.compile(r"^\d{10}$")
PINCODE_RE = re.compile(r"^\d{6}$")

# Quien puede mover el pedido y hacia donde
ADMIN_TRANSITIONS = {
    ORDER_NEW: {ORDER_ACCEPTED, ORDER_REJECTED},
    ORDER_ACCEPTED: {ORDER_COMPLETED},
}
USER_TRANSITIONS = {
    ORDER_NEW: {ORDER_CANCELLED},
}


# ---------- Schemas de entrada ----------
# Los tipos se revisan en validate_order, regla por regla; aca no se valida nada
class CreateOrderIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    photos: Optional[Any] = None
    address: Optional[Any] = None
    payment_mode: Optional[Any] = Field(None, alias="paymentMode")


class ValidatedOrder:
    def __init__(self, items: List[dict], address: dict, payment_mode: str, total_quantity: int):
        self.items = items
        self.address = address
        self.payment_mode = payment_mode
        self.total_quantity = total_quantity

    @property
    def order_type(self) -> str:
        return order_level_type(it["order_type"] for it in self.items)

    @property
    def pricing(self) -> Pricing:
        return calculate_pricing(self.total_quantity)


def _bad_request(message: str):
    return HTTPException(status_code=400, detail=message)


def _text(value) -> Optional[str]:
    # solo strings con contenido; cualquier otro tipo cuenta como faltante
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _validate_photo(photo) -> dict:
    if not isinstance(photo, dict):
        raise _bad_request("Each photo must have photoName, photoUrl, and quantity")
    name, url = _text(photo.get("photoName")), _text(photo.get("photoUrl"))
    quantity = photo.get("quantity")
    if not name or not url or quantity is None:
        raise _bad_request("Each photo must have photoName, photoUrl, and quantity")
    # bool es subclase de int
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise _bad_request("Quantity for each photo must be a whole number")
    if not MIN_QUANTITY <= quantity <= MAX_QUANTITY:
        raise _bad_request(f"Quantity for each photo must be between {MIN_QUANTITY} and {MAX_QUANTITY}")

    order_type = photo.get("orderType")
    if not isinstance(order_type, str) or order_type not in ITEM_TYPES:
        raise _bad_request("Each photo must have a valid orderType (MAGNET or POLAROID)")
    is_polaroid = order_type == TYPE_POLAROID
    polaroid_type = _text(photo.get("polaroidType"))
    if is_polaroid and not polaroid_type:
        raise _bad_request("Polaroid type is required for Polaroid orders")
    caption = photo.get("caption")
    if caption is not None and not isinstance(caption, str):
        raise _bad_request("Caption must be text")

    return {
        "photo_name": name,
        "photo_url": url,
        "quantity": quantity,
        "order_type": order_type,
        # polaroid_type y caption solo aplican a polaroids
        "polaroid_type": polaroid_type if is_polaroid else None,
        "caption": (caption or None) if is_polaroid else None,
    }


# La primera regla que falla es la que se informa
def validate_order(payload: CreateOrderIn) -> ValidatedOrder:
    photos = payload.photos
    if not isinstance(photos, list) or not photos:
        raise _bad_request("At least one photo is required")

    items = [_validate_photo(photo) for photo in photos]
    total_quantity = sum(it["quantity"] for it in items)

    raw = payload.address if isinstance(payload.address, dict) else {}
    address = {}
    for field in ADDRESS_FIELDS:
        value = raw.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise _bad_request(f"Missing required field: {field}")
        if not isinstance(value, str):
            raise _bad_request(f"Invalid field {field}: must be text")
        address[field] = value.strip()
    if not PHONE_RE.match(address["phone"]):
        raise _bad_request("Phone number must be exactly 10 digits")
    if not PINCODE_RE.match(address["pincode"]):
        raise _bad_request("Pincode must be exactly 6 digits")
    # campos extra (landmark, etc.) se guardan tal cual si son texto
    for key, value in raw.items():
        if key not in address and isinstance(value, str):
            address[key] = value

    if not isinstance(payload.payment_mode, str) or payload.payment_mode not in PAYMENT_MODES:
        raise _bad_request("Payment mode must be COD or ONLINE")

    return ValidatedOrder(items, address, payload.payment_mode, total_quantity)


def create_order(db: Session, user_id: int, data: ValidatedOrder) -> Order:
    pricing = data.pricing
    order = Order(
        user_id=user_id,
        customer_name=data.address["fullName"],
        phone=str(data.address["phone"]),
        address_json=data.address,
        subtotal=pricing.subtotal,
        delivery_charge=pricing.delivery_charge,
        gst=pricing.gst,
        total_amount=pricing.total_amount,
        payment_mode=data.payment_mode,
        payment_status=PAYMENT_PENDING,
        order_status=ORDER_NEW,
        order_type=data.order_type,
    )
    # Pedido + items en la misma transaccion
    order.items = [OrderItem(price_per_unit=float(UNIT_PRICE), **it) for it in data.items]
    try:
        db.add(order)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info("Order {} created for user {} ({} units, {} {})",
                order.id, user_id, data.total_quantity, order.total_amount, order.payment_mode)
    return order


# ---------- Transiciones ----------
# Mueve el pedido a target solo si la transicion es valida y nadie lo cambio mientras tanto
def transition_order(db: Session, order: Order, target: str, transitions: dict, message: str = None) -> Order:
    current = order.order_status
    if target not in transitions.get(current, ()):
        raise HTTPException(status_code=409, detail=message or f"Cannot change order status from {current} to {target}")

    updated = (
        db.query(Order)
        .filter(Order.id == order.id, Order.order_status == current, Order.version == order.version)
        .update(
            {Order.order_status: target, Order.version: Order.version + 1, Order.updated_at: datetime.now()},
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise HTTPException(status_code=409, detail="Order was modified by another request, please retry")
    db.commit()
    db.refresh(order)
    logger.info("Order {}: {} -> {}", order.id, current, target)
    return order


# PENDING -> PAID; un COD pagado online pasa a ONLINE. False si ya estaba pagado
def mark_order_paid(db: Session, order: Order) -> bool:
    values = {
        Order.payment_status: PAYMENT_PAID,
        Order.version: Order.version + 1,
        Order.updated_at: datetime.now(),
    }
    if order.payment_mode == PAYMENT_COD:
        values[Order.payment_mode] = PAYMENT_ONLINE
    updated = (
        db.query(Order)
        .filter(Order.id == order.id, Order.payment_status != PAYMENT_PAID)
        .update(values, synchronize_session=False)
    )
    return bool(updated)


# ---------- Proyecciones ----------
def item_to_dict(it: OrderItem, with_photo: bool = True):
    d = {
        "id": it.id,
        "photoName": it.photo_name,
        "quantity": it.quantity,
        "pricePerUnit": it.price_per_unit,
        "orderType": it.order_type,
        "polaroidType": it.polaroid_type,
        "caption": it.caption,
    }
    if with_photo:
        d["photoUrl"] = it.photo_url
    return d


def order_to_dict(o: Order, with_address: bool = False, user: Optional[dict] = None):
    magnets = sum(it.quantity for it in o.items if it.order_type != TYPE_POLAROID)
    polaroids = sum(it.quantity for it in o.items if it.order_type == TYPE_POLAROID)
    d = {
        "id": o.id,
        "orderId": o.id,
        "userId": o.user_id,
        "customerName": o.customer_name,
        "phone": o.phone,
        "orderItems": [item_to_dict(it) for it in o.items],
        "totalQuantity": magnets + polaroids,
        "magnetCount": magnets,
        "polaroidCount": polaroids,
        "subtotal": o.subtotal,
        "deliveryCharge": o.delivery_charge,
        "gst": o.gst,
        "totalAmount": o.total_amount,
        "paymentMode": o.payment_mode,
        "paymentStatus": o.payment_status,
        "orderStatus": o.order_status,
        "orderType": o.order_type,
        "createdAt": o.created_at.isoformat() if o.created_at else None,
        "updatedAt": o.updated_at.isoformat() if o.updated_at else None,
    }
    if with_address:
        d["address"] = o.address_json
    if user is not None:
        d["user"] = user
    return d
