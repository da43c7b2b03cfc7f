from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError
from loguru import logger

from . import config

ROLE_USER = "user"
ROLE_ADMIN = "admin"

# auto_error=False: sin header devolvemos 401 con nuestro formato, no el 403 de HTTPBearer
oauth2_scheme = HTTPBearer(auto_error=False)


class CurrentUser:
    def __init__(self, sub: str, role: str, phone: Optional[str] = None):
        self.sub = sub
        self.role = role
        self.phone = phone
        # solo los clientes tienen id numerico; el admin se identifica por username
        self.id = int(sub) if role == ROLE_USER else None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def create_access_token(data: dict, expires_delta: timedelta = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_token(token: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError as e:
        logger.debug("JWT decode error: {}", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    sub = payload.get("sub")
    role = payload.get("role", ROLE_USER)
    if sub is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        return CurrentUser(sub=str(sub), role=role, phone=payload.get("phone"))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(oauth2_scheme)) -> CurrentUser:
    if not credentials or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Authentication required")
    return decode_token(credentials.credentials)


def get_bearer_token(credentials: HTTPAuthorizationCredentials = Depends(oauth2_scheme)) -> str:
    # El token crudo, para reenviarlo a otros servicios
    if not credentials:
        raise HTTPException(status_code=401, detail="Authentication required")
    return credentials.credentials


def require_user(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.role != ROLE_USER:
        raise HTTPException(status_code=403, detail="Customer access required")
    return user


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
