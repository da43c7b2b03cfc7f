import os
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parent.parent

# Valores compartidos por los tres servicios; se completan en load_service_env()
SECRET_KEY = None
ALGORITHM = "HS256"
ENVIRONMENT = "development"
LOG_LEVEL = "INFO"
CORS_ORIGINS = ["*"]


def _read_shared():
    global SECRET_KEY, ALGORITHM, ENVIRONMENT, LOG_LEVEL, CORS_ORIGINS
    # Clave para firmar y verificar tokens, la misma en todos los servicios
    SECRET_KEY   = os.getenv("SECRET_KEY")
    ALGORITHM    = os.getenv("ALGORITHM", "HS256")
    ENVIRONMENT  = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL    = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


# Carga <servicio>/.env y luego el .env de la raiz; lo que ya esta en el entorno no se pisa.
def load_service_env(service_dir: Path):
    load_dotenv(dotenv_path=service_dir / ".env", override=False)
    load_dotenv(dotenv_path=ROOT_DIR / ".env", override=False)
    _read_shared()
    if not SECRET_KEY:
        raise RuntimeError(f"SECRET_KEY is not defined in {service_dir.name}/.env, .env or the environment")


def is_production() -> bool:
    return ENVIRONMENT == "production"


def is_development() -> bool:
    return ENVIRONMENT == "development"


# <SERVICE>_DATABASE_URL, o un archivo SQLite dentro del microservicio.
def database_url(service: str, service_dir: Path) -> str:
    url = os.getenv(f"{service.upper()}_DATABASE_URL")
    if url:
        return url
    db_file = os.getenv(f"{service.upper()}_DB_FILE", f"{service}.db")
    # si el archivo es una ruta absoluta, Path la respeta
    return f"sqlite:///{(service_dir / db_file).as_posix()}"
