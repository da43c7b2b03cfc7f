from datetime import datetime
from sqlalchemy import Column, Integer, Float, String, Text, ForeignKey, DateTime, JSON
from sqlalchemy.orm import relationship
from .db import Base

# Estados del pedido
ORDER_NEW = "NEW"
ORDER_ACCEPTED = "ACCEPTED"
ORDER_REJECTED = "REJECTED"
ORDER_CANCELLED = "CANCELLED"
ORDER_COMPLETED = "COMPLETED"
ORDER_STATUSES = (ORDER_NEW, ORDER_ACCEPTED, ORDER_REJECTED, ORDER_CANCELLED, ORDER_COMPLETED)
CLOSED_STATUSES = (ORDER_COMPLETED, ORDER_REJECTED, ORDER_CANCELLED)

# Pago del pedido
PAYMENT_COD = "COD"
PAYMENT_ONLINE = "ONLINE"
PAYMENT_MODES = (PAYMENT_COD, PAYMENT_ONLINE)
PAYMENT_PENDING = "PENDING"
PAYMENT_PAID = "PAID"
PAYMENT_FAILED = "FAILED"

# Estados de un intento de pago en la pasarela
ATTEMPT_PENDING = "PENDING"
ATTEMPT_SUCCESS = "SUCCESS"
ATTEMPT_FAILED = "FAILED"

# Tipos de producto
TYPE_MAGNET = "MAGNET"
TYPE_POLAROID = "POLAROID"
TYPE_MIXED = "MIXED"
ITEM_TYPES = (TYPE_MAGNET, TYPE_POLAROID)


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    customer_name = Column(String(120), nullable=False)
    phone = Column(String(10), nullable=False)
    # copia de la direccion tal como vino en el pedido
    address_json = Column(JSON, nullable=False)
    subtotal = Column(Float, nullable=False)
    delivery_charge = Column(Float, nullable=False)
    gst = Column(Float, nullable=False)
    # subtotal + delivery_charge + gst, calculado una sola vez al crear
    total_amount = Column(Float, nullable=False)
    payment_mode = Column(String(10), nullable=False)
    payment_status = Column(String(10), nullable=False, default=PAYMENT_PENDING)
    order_status = Column(String(10), nullable=False, default=ORDER_NEW, index=True)
    # informativo: MAGNET | POLAROID | MIXED, nunca decide nada
    order_type = Column(String(10), nullable=False, default=TYPE_MAGNET)
    # se incrementa en cada transicion; sirve de compare-and-swap
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.now, index=True)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.id")
    payments = relationship("Payment", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    photo_name = Column(String(255), nullable=False)
    # data URI en base64 o URL externa
    photo_url = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False)
    price_per_unit = Column(Float, nullable=False)
    order_type = Column(String(10), nullable=False)
    polaroid_type = Column(String(50), nullable=True)
    caption = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    order = relationship("Order", back_populates="items")


class Payment(Base):
    __tablename__ = "payments"
    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    razorpay_order_id = Column(String(100), nullable=False, index=True)
    razorpay_payment_id = Column(String(100), nullable=True)
    razorpay_signature = Column(String(255), nullable=True)
    amount = Column(Integer, nullable=False)  # en paise
    currency = Column(String(10), nullable=False, default="INR")
    status = Column(String(10), nullable=False, default=ATTEMPT_PENDING)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
    order = relationship("Order", back_populates="payments")
