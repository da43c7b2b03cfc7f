# Codigos de un solo uso para el login por telefono.
# telefono -> {otp, expires_at} detras de un backend: memoria (una instancia, se pierde
# al reiniciar) o Redis (compartido, sobrevive reinicios).
import json
import redis
import secrets
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from loguru import logger

OTP_LENGTH = 6
OTP_TTL_SECONDS = 5 * 60


class OtpError(Exception):
    message = "Invalid OTP"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class OtpNotFound(OtpError):
    message = "OTP not found or expired"


class OtpExpired(OtpError):
    message = "OTP expired"


class OtpMismatch(OtpError):
    message = "Invalid OTP"


def generate_otp() -> str:
    code = str(secrets.randbelow(10 ** OTP_LENGTH))
    return code.zfill(OTP_LENGTH)


# ---------- Backends ----------
class OtpBackend(ABC):
    @abstractmethod
    def put(self, key: str, value: dict, ttl: int) -> None:
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[dict]:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    def sweep(self, now: float) -> int:
        # borra entradas vencidas y devuelve cuantas borro
        return 0


class MemoryOtpBackend(OtpBackend):
    def __init__(self):
        self._entries = {}
        self._lock = threading.Lock()

    def put(self, key, value, ttl):
        with self._lock:
            self._entries[key] = dict(value)

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            return dict(entry) if entry else None

    def delete(self, key):
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self, now):
        with self._lock:
            expired = [k for k, v in self._entries.items() if now > v["expires_at"]]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def __len__(self):
        return len(self._entries)


# Redis vence las claves solo, sweep() no tiene nada que hacer
class RedisOtpBackend(OtpBackend):

    def __init__(self, client, prefix: str = "otp:"):
        self.redis = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str):
        return cls(redis.from_url(url, decode_responses=True, socket_connect_timeout=2))

    def put(self, key, value, ttl):
        self.redis.setex(self.prefix + key, ttl, json.dumps(value))

    def get(self, key):
        data = self.redis.get(self.prefix + key)
        return json.loads(data) if data else None

    def delete(self, key):
        self.redis.delete(self.prefix + key)


# ---------- Store ----------
class OtpStore:
    def __init__(self, backend: OtpBackend, ttl: int = OTP_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.backend = backend
        self.ttl = ttl
        self.clock = clock

    def store(self, phone: str, code: str) -> None:
        if not phone or not code:
            raise ValueError("Phone and OTP are required")
        # pisa cualquier codigo anterior del mismo telefono
        self.backend.put(phone, {"otp": str(code), "expires_at": self.clock() + self.ttl}, self.ttl)
        logger.info("OTP stored for {}, expires in {}s", phone, self.ttl)

    # Lanza una subclase de OtpError si el codigo no sirve. Con consume=False el codigo
    # sigue valido: el alta de un usuario nuevo lo revisa antes de tener el nombre
    def verify(self, phone: str, code: str, consume: bool = True) -> None:
        entry = self.backend.get(phone)
        if not entry:
            raise OtpNotFound()
        if self.clock() > entry["expires_at"]:
            self.backend.delete(phone)
            raise OtpExpired()
        if not secrets.compare_digest(entry["otp"], str(code)):
            raise OtpMismatch()
        if consume:
            self.backend.delete(phone)

    def discard(self, phone: str) -> None:
        self.backend.delete(phone)

    def sweep(self) -> int:
        removed = self.backend.sweep(self.clock())
        if removed:
            logger.debug("OTP sweep removed {} expired entries", removed)
        return removed
