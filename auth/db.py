from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from pathlib import Path

from common.config import load_service_env, database_url

# __file__ = ruta del archivo, resolve() da la ruta absoluta, parent la carpeta del servicio
BASE_DIR = Path(__file__).resolve().parent
load_service_env(BASE_DIR)

# AUTH_DATABASE_URL o, si no esta, auth.db dentro del microservicio
DATABASE_URL = database_url("auth", BASE_DIR)

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
