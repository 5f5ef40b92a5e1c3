import logging
import os
from pathlib import Path

from google.cloud import secretmanager
from google.oauth2 import service_account
from google.auth import default as google_auth_default
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s"
)

logger = logging.getLogger("flames_backend")

# --- Configuration ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")
BUCKET_NAME = os.getenv("GCS_BUCKET_NAME", "flames-generated-apps")

DATABASE_URL        = os.environ.get("DATABASE_URL", "")
DB_HOST             = os.environ.get("DB_HOST", "localhost")
DB_PORT             = int(os.environ.get("DB_PORT", "5432"))
DB_NAME             = os.environ.get("DB_NAME", "flames")
DB_USER             = os.environ.get("DB_USER", "postgres")
DB_PASSWORD         = os.environ.get("DB_PASSWORD")
DB_SECRET_ID        = os.environ.get("DB_SECRET_ID")

IS_LOCAL_DB = (not DATABASE_URL and DB_HOST == "localhost")

WORK_ROOT = Path(os.getenv("FLAMES_WORK_ROOT", "temp_work"))
ARTIFACT_ROOT = Path(os.getenv("FLAMES_ARTIFACT_ROOT", "temp_artifacts"))
TEMPLATES_ROOT = Path(os.getenv("FLAMES_TEMPLATES_ROOT", str(Path(__file__).resolve().parent / "templates")))
DEFAULT_TEMPLATE = os.getenv("FLAMES_DEFAULT_TEMPLATE", "base-react-vite")

GENERATION_MODEL = os.getenv("GENERATION_MODEL", "gemini-2.5-pro")
EDIT_MODEL = os.getenv("EDIT_MODEL", "gemini-2.5-flash")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-005")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "300"))

CONCURRENT_INSTANCES = int(os.getenv("CONCURRENT_INSTANCES", "4"))


def _build_creds():
    key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    scopes = ["https://www.googleapis.com/auth/cloud-platform"]
    if key_path and os.path.exists(key_path):
        return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
    creds, _ = google_auth_default(scopes=scopes)
    return creds


def get_db_password() -> str:
    global DB_PASSWORD

    if DB_PASSWORD:
        return DB_PASSWORD

    if DB_SECRET_ID:
        creds = _build_creds()
        client = secretmanager.SecretManagerServiceClient(credentials=creds)
        name = client.secret_version_path(PROJECT_ID, DB_SECRET_ID, "latest")
        resp = client.access_secret_version(request={"name": name})
        DB_PASSWORD = resp.payload.data.decode("utf-8")
        return DB_PASSWORD

    raise RuntimeError("No DB_PASSWORD and no Secret Manager configured")


def get_db_url() -> str:
    if DATABASE_URL:
        return DATABASE_URL
    if IS_LOCAL_DB:
        return "sqlite:///flames.db"
    password = get_db_password()
    return f"postgresql+pg8000://{DB_USER}:{password}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


def get_db_engine(url: str | None = None):
    url = url or get_db_url()

    if url.startswith("sqlite"):
        logger.info(f"[DB] Using SQLite URL: {url}")
        return create_engine(url, connect_args={"check_same_thread": False})

    logger.info(f"[DB] Connecting to Postgres at {DB_HOST}:{DB_PORT}/{DB_NAME}")

    # pg8000 supports 'timeout' in seconds
    return create_engine(
        url,
        pool_pre_ping=True,
        connect_args={"timeout": 10},  # fail in 10s instead of hanging forever
    )


def create_session_factory(url: str | None = None) -> sessionmaker:
    engine = get_db_engine(url)
    return sessionmaker(bind=engine, autoflush=False, future=True)
