import asyncio
import os
import re
import secrets
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Query
from loguru import logger
# es la herramienta para manejar hashing y verificacion de contraseñas
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from common import config, errors
from common.logs import setup_logging
from common.security import (
    CurrentUser, ROLE_ADMIN, ROLE_USER,
    create_access_token, get_current_user, require_admin, require_user,
)
from .db import Base, engine, SessionLocal
from .models import User
from .otp import OtpStore, OtpError, MemoryOtpBackend, RedisOtpBackend, generate_otp

# Credenciales del admin: vienen del entorno, nunca del codigo
ADMIN_USERNAME      = os.getenv("ADMIN_USERNAME")
ADMIN_PASSWORD_HASH = os.getenv("ADMIN_PASSWORD_HASH")
USER_TOKEN_EXPIRE_DAYS   = int(os.getenv("USER_TOKEN_EXPIRE_DAYS", 30))
ADMIN_TOKEN_EXPIRE_HOURS = int(os.getenv("ADMIN_TOKEN_EXPIRE_HOURS", 24))
REDIS_URL          = os.getenv("REDIS_URL")
OTP_TTL_SECONDS    = int(os.getenv("OTP_TTL_SECONDS", 300))
OTP_SWEEP_INTERVAL = int(os.getenv("OTP_SWEEP_INTERVAL", 600))

PHONE_RE = re.compile(r"^\d{10}$")
OTP_RE = re.compile(r"^\d{6}$")

setup_logging("auth")

# bcrypt como algoritmo de hashing; si se agregan otros esquemas quedan como deprecados
password_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# --- OTP store ---
if REDIS_URL:
    otp_store = OtpStore(RedisOtpBackend.from_url(REDIS_URL), ttl=OTP_TTL_SECONDS)
    logger.info("OTP store backed by Redis")
else:
    otp_store = OtpStore(MemoryOtpBackend(), ttl=OTP_TTL_SECONDS)
    logger.warning("OTP store is in-memory: codes are lost on restart and not shared between instances")


async def _sweep_otps():
    while True:
        await asyncio.sleep(OTP_SWEEP_INTERVAL)
        try:
            otp_store.sweep()
        except Exception as e:
            logger.warning("OTP sweep failed: {}", e)


# El barrido de OTPs vive mientras viva la app
@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = asyncio.create_task(_sweep_otps())
    try:
        yield
    finally:
        sweeper.cancel()


app = FastAPI(title="Auth Service", lifespan=lifespan)
errors.install(app)

# --- DB setup ---
Base.metadata.create_all(bind=engine)


# --- Funciones adicionales ---
def get_db():
    db = SessionLocal()
    try:
        # entrega la sesion de la db al endpoint que lo necesite
        yield db
    finally:
        db.close()


def get_otp_store() -> OtpStore:
    return otp_store


# sirve para comprobar si la contraseña ingresada coincide con el hash configurado
def verify_password(plain, hashed):
    return password_context.verify(plain, hashed)


def hash_password(password):
    return password_context.hash(password)


def user_to_dict(u: User):
    return {"id": u.id, "name": u.name, "phone": u.phone}


def issue_user_token(user: User) -> str:
    return create_access_token(
        data={"sub": str(user.id), "phone": user.phone, "role": ROLE_USER},
        expires_delta=timedelta(days=USER_TOKEN_EXPIRE_DAYS),
    )


# --- Schemas ---
class SendOtpIn(BaseModel):
    phone: Optional[str] = None


class VerifyOtpIn(BaseModel):
    phone: Optional[str] = None
    otp: Optional[str] = None
    name: Optional[str] = None


class AdminLoginIn(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class UpdateMeIn(BaseModel):
    name: Optional[str] = None


# --- Endpoints ---
@app.get("/api/health")
def health():
    return {"status": "ok", "service": "auth"}


@app.post("/api/auth/send-otp")
def send_otp(payload: SendOtpIn, store: OtpStore = Depends(get_otp_store)):
    if not payload.phone:
        raise HTTPException(status_code=400, detail="Phone number is required")

    # Nos quedamos solo con los digitos
    phone = re.sub(r"\D", "", payload.phone)
    if not PHONE_RE.match(phone):
        raise HTTPException(status_code=400, detail="Valid 10-digit phone number is required")

    otp = generate_otp()
    store.store(phone, otp)
    # TODO: enviar por SMS cuando haya proveedor; mientras tanto solo se devuelve fuera de produccion
    if not config.is_production():
        logger.info("OTP for {}: {}", phone, otp)

    resp = {"success": True, "message": "OTP sent successfully"}
    if not config.is_production():
        resp["otp"] = otp
    return resp


@app.post("/api/auth/verify-otp")
def verify_otp(payload: VerifyOtpIn, db: Session = Depends(get_db), store: OtpStore = Depends(get_otp_store)):
    phone, otp = payload.phone, payload.otp
    if not phone or not PHONE_RE.match(phone):
        raise HTTPException(status_code=400, detail="Valid 10-digit phone number is required")
    if not otp or not OTP_RE.match(otp):
        raise HTTPException(status_code=400, detail="Valid 6-digit OTP is required")

    user = db.query(User).filter(User.phone == phone).first()

    if user is None:
        # Usuario nuevo: validamos sin consumir, todavia puede faltar el nombre
        try:
            store.verify(phone, otp, consume=False)
        except OtpError as e:
            raise errors.ApiError(400, e.message, requiresName=True)

        name = (payload.name or "").strip()
        if not name:
            raise errors.ApiError(400, "Name is required for new users", requiresName=True)

        user = User(name=name, phone=phone)
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # otro request dio de alta el mismo telefono al mismo tiempo
            db.rollback()
            user = db.query(User).filter(User.phone == phone).one()
        else:
            db.refresh(user)
            logger.info("New user {} registered for phone {}", user.id, phone)
        # el codigo ya se valido arriba; puede que el otro request ya lo haya borrado
        store.discard(phone)
    else:
        try:
            store.verify(phone, otp, consume=True)
        except OtpError as e:
            raise HTTPException(status_code=400, detail=e.message)

    return {
        "success": True,
        "message": "Login successful",
        "token": issue_user_token(user),
        "user": user_to_dict(user),
    }


@app.post("/api/auth/admin-login")
def admin_login(payload: AdminLoginIn):
    if not payload.username or not payload.password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    if not ADMIN_USERNAME or not ADMIN_PASSWORD_HASH:
        raise HTTPException(status_code=503, detail="Admin login is not configured")

    username_ok = secrets.compare_digest(payload.username.encode(), ADMIN_USERNAME.encode())
    # Siempre verificamos el hash para no filtrar por tiempo si el usuario existe
    password_ok = verify_password(payload.password, ADMIN_PASSWORD_HASH)
    if not (username_ok and password_ok):
        logger.warning("Failed admin login for {}", payload.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = create_access_token(
        data={"sub": ADMIN_USERNAME, "role": ROLE_ADMIN},
        expires_delta=timedelta(hours=ADMIN_TOKEN_EXPIRE_HOURS),
    )
    return {
        "success": True,
        "message": "Admin login successful",
        "token": token,
        "admin": {"username": ADMIN_USERNAME},
    }


@app.get("/api/auth/me")
def read_me(current: CurrentUser = Depends(require_user), db: Session = Depends(get_db)):
    user = db.query(User).filter(User.id == current.id).first()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "user": user_to_dict(user)}


@app.patch("/api/auth/me")
def update_me(payload: UpdateMeIn, current: CurrentUser = Depends(require_user), db: Session = Depends(get_db)):
    name = (payload.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")
    user = db.query(User).filter(User.id == current.id).first()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    # el nombre es lo unico editable del usuario
    user.name = name
    db.commit(); db.refresh(user)
    return {"success": True, "user": user_to_dict(user)}


# --- Lecturas para otros servicios (Pedidos) ---
@app.get("/api/auth/users")
def list_users(ids: str = Query("", description="Comma separated user ids"),
               db: Session = Depends(get_db), admin: CurrentUser = Depends(require_admin)):
    try:
        wanted = [int(i) for i in ids.split(",") if i.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail="ids must be a comma separated list of integers")
    if not wanted:
        return {"success": True, "users": []}
    users = db.query(User).filter(User.id.in_(wanted)).all()
    return {"success": True, "users": [user_to_dict(u) for u in users]}


@app.get("/api/auth/users/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db), current: CurrentUser = Depends(get_current_user)):
    if not current.is_admin and current.id != user_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "user": user_to_dict(user)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8001)))
