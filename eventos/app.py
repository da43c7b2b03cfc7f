import os
import re
from datetime import date, datetime
from typing import Optional, Union

from fastapi import FastAPI, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from common import errors
from common.logs import setup_logging
from common.security import CurrentUser, require_admin
from .db import Base, engine, SessionLocal
from .models import (
    EventBooking, ContactMessage,
    BOOKING_NEW, BOOKING_CONFIRMED, BOOKING_CANCELLED, BOOKING_STATUSES,
)

PHONE_RE = re.compile(r"^\d{10}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

setup_logging("eventos")

app = FastAPI(title="Eventos Service")
errors.install(app)

# ---------------- DB init ----------------
Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ---------------- Schemas ----------------
class BookingIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: Optional[str] = Field(None, alias="eventType")
    event_date: Optional[str] = Field(None, alias="eventDate")
    time_slot: Optional[str] = Field(None, alias="timeSlot")
    location: Optional[str] = None
    expected_guests: Optional[Union[int, str]] = Field(None, alias="expectedGuests")
    contact_name: Optional[str] = Field(None, alias="contactName")
    contact_phone: Optional[str] = Field(None, alias="contactPhone")
    notes: Optional[str] = None


class BookingStatusIn(BaseModel):
    status: Optional[str] = None


class ContactIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    message: Optional[str] = None


def booking_to_dict(b: EventBooking):
    return {
        "id": b.id,
        "eventType": b.event_type,
        "eventDate": b.event_date.isoformat() if b.event_date else None,
        "timeSlot": b.time_slot,
        "location": b.location,
        "expectedGuests": b.expected_guests,
        "contactName": b.contact_name,
        "contactPhone": b.contact_phone,
        "notes": b.notes,
        "status": b.status,
        "createdAt": b.created_at.isoformat() if b.created_at else None,
        "updatedAt": b.updated_at.isoformat() if b.updated_at else None,
    }


def _parse_event_date(value: str) -> date:
    try:
        # acepta "2026-10-20" y tambien "2026-10-20T00:00:00.000Z"
        return date.fromisoformat(value[:10])
    except ValueError:
        raise HTTPException(status_code=400, detail="Event date must be a valid date (YYYY-MM-DD)")


def _parse_guests(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Expected guests must be a number")


# ---------------- Endpoints publicos ----------------
@app.get("/api/health")
def health():
    return {"status": "ok", "service": "eventos"}


@app.post("/api/events/book")
def book_event(payload: BookingIn, db: Session = Depends(get_db)):
    required = (payload.event_type, payload.event_date, payload.time_slot, payload.location,
                payload.expected_guests, payload.contact_name, payload.contact_phone)
    if any(v in (None, "") for v in required):
        raise HTTPException(status_code=400, detail="All required fields must be provided")

    phone = payload.contact_phone.strip()
    if not PHONE_RE.match(phone):
        raise HTTPException(status_code=400, detail="Phone number must be exactly 10 digits")

    event_date = _parse_event_date(payload.event_date)
    if event_date < date.today():
        raise HTTPException(status_code=400, detail="Event date must be in the future")

    guests = _parse_guests(payload.expected_guests)
    if guests < 1:
        raise HTTPException(status_code=400, detail="Expected guests must be at least 1")

    booking = EventBooking(
        event_type=payload.event_type.strip(),
        event_date=event_date,
        time_slot=payload.time_slot.strip(),
        location=payload.location.strip(),
        expected_guests=guests,
        contact_name=payload.contact_name.strip(),
        contact_phone=phone,
        notes=payload.notes.strip() if payload.notes and payload.notes.strip() else None,
        status=BOOKING_NEW,
    )
    db.add(booking)
    db.commit(); db.refresh(booking)
    logger.info("Event booking {} created for {} on {}", booking.id, booking.event_type, booking.event_date)
    return {
        "success": True,
        "message": "Booking request received. We'll contact you shortly.",
        "booking": {
            "id": booking.id,
            "eventType": booking.event_type,
            "eventDate": booking.event_date.isoformat(),
            "timeSlot": booking.time_slot,
        },
    }


@app.post("/api/contact")
def contact(payload: ContactIn, db: Session = Depends(get_db)):
    name = (payload.name or "").strip()
    email = (payload.email or "").strip()
    message = (payload.message or "").strip()
    if not name or not email or not message:
        raise HTTPException(status_code=400, detail="All fields are required")
    if not EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="Invalid email format")

    msg = ContactMessage(name=name, email=email, message=message)
    db.add(msg)
    db.commit(); db.refresh(msg)
    logger.info("Contact form submission {} from {}", msg.id, email)
    return {"success": True, "message": "Message received. We will get back to you soon!"}


# ---------------- Admin ----------------
@app.get("/api/admin/events")
def list_bookings(status: Optional[str] = None, db: Session = Depends(get_db),
                  admin: CurrentUser = Depends(require_admin)):
    q = db.query(EventBooking)
    if status and status.upper() in BOOKING_STATUSES:
        q = q.filter(EventBooking.status == status.upper())
    bookings = q.order_by(EventBooking.created_at.desc(), EventBooking.id.desc()).all()
    return {"success": True, "bookings": [booking_to_dict(b) for b in bookings]}


# -------- Para Pedidos (contador de notificaciones) --------
@app.get("/api/admin/events/count")
def count_bookings(status: str = BOOKING_NEW, db: Session = Depends(get_db),
                   admin: CurrentUser = Depends(require_admin)):
    if status.upper() not in BOOKING_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    count = db.query(EventBooking).filter(EventBooking.status == status.upper()).count()
    return {"success": True, "status": status.upper(), "count": count}


@app.patch("/api/admin/events/{booking_id}/status")
def update_booking_status(booking_id: int, payload: BookingStatusIn, db: Session = Depends(get_db),
                          admin: CurrentUser = Depends(require_admin)):
    if payload.status not in (BOOKING_CONFIRMED, BOOKING_CANCELLED):
        raise HTTPException(status_code=400, detail="Status must be CONFIRMED or CANCELLED")

    b = db.query(EventBooking).filter(EventBooking.id == booking_id).first()
    if not b:
        raise HTTPException(status_code=404, detail="Event booking not found")
    if b.status != BOOKING_NEW:
        raise HTTPException(status_code=409, detail=f"Booking is already {b.status.lower()}")

    # compare-and-swap: solo cambia si sigue en NEW
    updated = (
        db.query(EventBooking)
        .filter(EventBooking.id == booking_id, EventBooking.status == BOOKING_NEW)
        .update({EventBooking.status: payload.status, EventBooking.updated_at: datetime.now()},
                synchronize_session=False)
    )
    if not updated:
        db.rollback()
        raise HTTPException(status_code=409, detail="Booking was modified by another request, please retry")
    db.commit(); db.refresh(b)
    logger.info("Event booking {} -> {}", b.id, b.status)
    return {
        "success": True,
        "message": f"Event booking {payload.status.lower()} successfully",
        "booking": {"id": b.id, "status": b.status},
    }


@app.get("/api/admin/contacts")
def list_contacts(db: Session = Depends(get_db), admin: CurrentUser = Depends(require_admin)):
    messages = db.query(ContactMessage).order_by(ContactMessage.created_at.desc(), ContactMessage.id.desc()).all()
    return {
        "success": True,
        "messages": [
            {"id": m.id, "name": m.name, "email": m.email, "message": m.message,
             "createdAt": m.created_at.isoformat() if m.created_at else None}
            for m in messages
        ],
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8003)))
