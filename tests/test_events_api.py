from datetime import date, timedelta

import pytest


def booking(**overrides):
    data = {
        "eventType": "Wedding",
        "eventDate": (date.today() + timedelta(days=30)).isoformat(),
        "timeSlot": "Evening",
        "location": "Udaipur",
        "expectedGuests": 150,
        "contactName": "Asha Kumar",
        "contactPhone": "9876543210",
        "notes": "Photo booth near the stage",
    }
    data.update(overrides)
    return data


def book(client, **overrides):
    r = client.post("/api/events/book", json=booking(**overrides))
    assert r.status_code == 200, r.text
    return r.json()["booking"]


def test_book_event(eventos_client):
    r = eventos_client.post("/api/events/book", json=booking(expectedGuests="80"))
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["booking"]["eventType"] == "Wedding"
    assert body["booking"]["timeSlot"] == "Evening"


def test_booking_for_today_is_allowed(eventos_client):
    b = book(eventos_client, eventDate=date.today().isoformat())
    assert b["eventDate"] == date.today().isoformat()


@pytest.mark.parametrize("overrides, message", [
    ({"location": ""}, "All required fields must be provided"),
    ({"contactName": None}, "All required fields must be provided"),
    ({"contactPhone": "98765 43210"}, "Phone number must be exactly 10 digits"),
    ({"eventDate": "next friday"}, "Event date must be a valid date (YYYY-MM-DD)"),
    ({"eventDate": (date.today() - timedelta(days=1)).isoformat()}, "Event date must be in the future"),
    ({"expectedGuests": 0}, "Expected guests must be at least 1"),
    ({"expectedGuests": "lots"}, "Expected guests must be a number"),
])
def test_booking_validation(eventos_client, overrides, message):
    r = eventos_client.post("/api/events/book", json=booking(**overrides))
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": message}


def test_admin_manages_bookings(eventos_client, admin_headers):
    first = book(eventos_client)
    second = book(eventos_client, eventType="Birthday")

    r = eventos_client.get("/api/admin/events", headers=admin_headers)
    assert [b["id"] for b in r.json()["bookings"]] == [second["id"], first["id"]]
    assert r.json()["bookings"][1]["notes"] == "Photo booth near the stage"

    r = eventos_client.get("/api/admin/events/count", headers=admin_headers)
    assert r.json()["count"] == 2

    url = f"/api/admin/events/{first['id']}/status"
    r = eventos_client.patch(url, json={"status": "CONFIRMED"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["booking"] == {"id": first["id"], "status": "CONFIRMED"}

    r = eventos_client.patch(url, json={"status": "CANCELLED"}, headers=admin_headers)
    assert r.status_code == 409

    r = eventos_client.get("/api/admin/events", params={"status": "confirmed"}, headers=admin_headers)
    assert [b["id"] for b in r.json()["bookings"]] == [first["id"]]
    r = eventos_client.get("/api/admin/events/count", params={"status": "NEW"}, headers=admin_headers)
    assert r.json()["count"] == 1


def test_booking_status_validation(eventos_client, admin_headers, user_headers):
    b = book(eventos_client)
    url = f"/api/admin/events/{b['id']}/status"
    assert eventos_client.patch(url, json={"status": "NEW"}, headers=admin_headers).status_code == 400
    assert eventos_client.patch("/api/admin/events/999/status", json={"status": "CONFIRMED"},
                                headers=admin_headers).status_code == 404
    assert eventos_client.patch(url, json={"status": "CONFIRMED"}, headers=user_headers).status_code == 403
    assert eventos_client.get("/api/admin/events").status_code == 401
    assert eventos_client.get("/api/admin/events/count", params={"status": "DONE"},
                              headers=admin_headers).status_code == 400


def test_contact_form(eventos_client, admin_headers):
    r = eventos_client.post("/api/contact", json={"name": "Ravi", "email": "ravi@example.com",
                                                  "message": "Do you ship to Pune?"})
    assert r.status_code == 200
    assert r.json()["success"] is True

    r = eventos_client.get("/api/admin/contacts", headers=admin_headers)
    messages = r.json()["messages"]
    assert len(messages) == 1
    assert messages[0]["email"] == "ravi@example.com"


@pytest.mark.parametrize("payload, message", [
    ({"name": "Ravi", "email": "ravi@example.com"}, "All fields are required"),
    ({"name": "Ravi", "email": "ravi-at-example", "message": "hi"}, "Invalid email format"),
])
def test_contact_validation(eventos_client, payload, message):
    r = eventos_client.post("/api/contact", json=payload)
    assert r.status_code == 400
    assert r.json()["message"] == message
