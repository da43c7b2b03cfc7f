from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime
from .db import Base


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    # Un usuario por telefono; se crea en la primera verificacion de OTP
    phone = Column(String(10), unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
