import json

import pytest

from auth import otp as otp_module
from auth.otp import (
    OtpStore, MemoryOtpBackend, RedisOtpBackend,
    OtpExpired, OtpMismatch, OtpNotFound, generate_otp,
)


def test_generate_is_six_digits():
    for _ in range(50):
        code = generate_otp()
        assert len(code) == 6 and code.isdigit()


def test_generate_pads_short_codes(monkeypatch):
    monkeypatch.setattr(otp_module.secrets, "randbelow", lambda n: 42)
    assert generate_otp() == "000042"


def test_check_without_consuming_then_consume(otp_store):
    otp_store.store("9876543210", "123456")
    otp_store.verify("9876543210", "123456", consume=False)
    otp_store.verify("9876543210", "123456", consume=True)
    with pytest.raises(OtpNotFound):
        otp_store.verify("9876543210", "123456")


def test_unknown_phone(otp_store):
    with pytest.raises(OtpNotFound) as exc:
        otp_store.verify("9000000000", "123456")
    assert exc.value.message == "OTP not found or expired"


def test_mismatch_keeps_entry(otp_store):
    otp_store.store("9876543210", "123456")
    with pytest.raises(OtpMismatch):
        otp_store.verify("9876543210", "654321")
    otp_store.verify("9876543210", "123456")


def test_expired_code_fails_even_if_correct(otp_store, clock):
    otp_store.store("9876543210", "123456")
    clock.advance(301)
    with pytest.raises(OtpExpired):
        otp_store.verify("9876543210", "123456")
    # la entrada vencida se borra al verificar
    with pytest.raises(OtpNotFound):
        otp_store.verify("9876543210", "123456")


def test_valid_until_the_last_second(otp_store, clock):
    otp_store.store("9876543210", "123456")
    clock.advance(300)
    otp_store.verify("9876543210", "123456")


def test_new_code_replaces_previous(otp_store):
    otp_store.store("9876543210", "111111")
    otp_store.store("9876543210", "222222")
    with pytest.raises(OtpMismatch):
        otp_store.verify("9876543210", "111111")
    otp_store.verify("9876543210", "222222")


def test_sweep_removes_only_expired(clock):
    backend = MemoryOtpBackend()
    store = OtpStore(backend, ttl=300, clock=clock)
    store.store("9000000001", "111111")
    clock.advance(200)
    store.store("9000000002", "222222")
    clock.advance(150)
    assert store.sweep() == 1
    assert len(backend) == 1
    store.verify("9000000002", "222222")


def test_store_requires_phone_and_code(otp_store):
    with pytest.raises(ValueError):
        otp_store.store("", "123456")


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def get(self, key):
        return self.data.get(key)

    def delete(self, key):
        self.data.pop(key, None)


def test_redis_backend_uses_ttl_keys(clock):
    client = FakeRedis()
    store = OtpStore(RedisOtpBackend(client), ttl=300, clock=clock)
    store.store("9876543210", "123456")

    assert client.ttls["otp:9876543210"] == 300
    assert json.loads(client.data["otp:9876543210"])["otp"] == "123456"

    store.verify("9876543210", "123456", consume=False)
    store.verify("9876543210", "123456")
    assert "otp:9876543210" not in client.data
    assert store.sweep() == 0
