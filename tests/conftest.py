import os
import tempfile
from datetime import timedelta

import pytest

# Entorno de prueba antes de importar cualquier servicio
_TMP_DIR = tempfile.mkdtemp(prefix="photoprints-tests-")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENVIRONMENT"] = "test"
os.environ["AUTH_DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/auth.db"
os.environ["PEDIDOS_DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/pedidos.db"
os.environ["EVENTOS_DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/eventos.db"
for key in ("REDIS_URL", "RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "ADMIN_USERNAME", "ADMIN_PASSWORD_HASH"):
    os.environ.pop(key, None)

from fastapi.testclient import TestClient  # noqa: E402

from common.security import create_access_token  # noqa: E402
from auth import app as auth_service  # noqa: E402
from auth import db as auth_db  # noqa: E402
from auth.otp import OtpStore, MemoryOtpBackend  # noqa: E402
from pedidos import app as pedidos_service  # noqa: E402
from pedidos import db as pedidos_db  # noqa: E402
from pedidos.gateway import RazorpayGateway  # noqa: E402
from eventos import app as eventos_service  # noqa: E402
from eventos import db as eventos_db  # noqa: E402


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class _FakeOrders:
    def __init__(self):
        self.created = []

    def create(self, data):
        self.created.append(data)
        return {"id": f"order_rp_{len(self.created)}", "amount": data["amount"], "currency": data["currency"],
                "receipt": data["receipt"], "status": "created"}


class FakeRazorpayClient:
    def __init__(self):
        self.order = _FakeOrders()


@pytest.fixture(autouse=True)
def fresh_databases():
    for db in (auth_db, pedidos_db, eventos_db):
        db.Base.metadata.drop_all(bind=db.engine)
        db.Base.metadata.create_all(bind=db.engine)
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def otp_store(clock):
    return OtpStore(MemoryOtpBackend(), ttl=300, clock=clock)


@pytest.fixture
def auth_client(otp_store):
    auth_service.app.dependency_overrides[auth_service.get_otp_store] = lambda: otp_store
    yield TestClient(auth_service.app)
    auth_service.app.dependency_overrides.clear()


@pytest.fixture
def gateway():
    return RazorpayGateway("rzp_test_key", "rzp_test_secret", client=FakeRazorpayClient())


@pytest.fixture
def pedidos_client(gateway, monkeypatch):
    # Auth responde siempre que el usuario existe; la lista de admin va sin datos de usuario
    monkeypatch.setattr(pedidos_service, "auth_get_user",
                        lambda token, user_id: {"id": user_id, "name": "Test User", "phone": "9876543210"})
    monkeypatch.setattr(pedidos_service, "auth_get_users", lambda token, ids: {})
    pedidos_service.app.dependency_overrides[pedidos_service.get_gateway] = lambda: gateway
    yield TestClient(pedidos_service.app)
    pedidos_service.app.dependency_overrides.clear()


@pytest.fixture
def eventos_client():
    return TestClient(eventos_service.app)


def user_token(user_id=1, phone="9876543210"):
    return create_access_token({"sub": str(user_id), "phone": phone, "role": "user"}, timedelta(days=30))


def admin_token(username="admin"):
    return create_access_token({"sub": username, "role": "admin"}, timedelta(hours=24))


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    return bearer(user_token())


@pytest.fixture
def other_user_headers():
    return bearer(user_token(user_id=2, phone="9123456780"))


@pytest.fixture
def admin_headers():
    return bearer(admin_token())
