from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, Date, DateTime
from .db import Base

BOOKING_NEW = "NEW"
BOOKING_CONFIRMED = "CONFIRMED"
BOOKING_CANCELLED = "CANCELLED"
BOOKING_STATUSES = (BOOKING_NEW, BOOKING_CONFIRMED, BOOKING_CANCELLED)


class EventBooking(Base):
    __tablename__ = "event_bookings"
    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(100), nullable=False)
    event_date = Column(Date, nullable=False)
    time_slot = Column(String(50), nullable=False)
    location = Column(String(255), nullable=False)
    expected_guests = Column(Integer, nullable=False)
    contact_name = Column(String(120), nullable=False)
    contact_phone = Column(String(10), nullable=False)
    notes = Column(Text, nullable=True)
    # NEW -> CONFIRMED | CANCELLED, ambas solo por el admin
    status = Column(String(10), nullable=False, default=BOOKING_NEW, index=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class ContactMessage(Base):
    __tablename__ = "contact_messages"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
