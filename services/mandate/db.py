# ============================================================
# db.py — Moteur SQLAlchemy/SQLModel du service Mandate
# ============================================================
from sqlmodel import Session, SQLModel, create_engine

from services.mandate import models  # noqa: F401  (enregistre les tables)
from services.mandate.config import MandateConfig

CONFIG = MandateConfig.from_env()


def make_engine(database_url: str):
    # SQLite : la session FastAPI peut changer de thread
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


engine = make_engine(CONFIG.database_url)


def create_tables(bind=None):
    SQLModel.metadata.create_all(bind or engine)


# Dépendance FastAPI : fournit une Session DB par requête, auto-close
def get_session():
    with Session(engine) as s:
        yield s
