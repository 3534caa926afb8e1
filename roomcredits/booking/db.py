# ============================================================
# db.py - Moteur SQLModel et sessions
# ------------------------------------------------------------
# Un seul moteur pour l'API et le consumer. Chaque requête
# FastAPI reçoit sa propre Session (fermée automatiquement).
# ============================================================
from sqlmodel import Session, SQLModel, create_engine

from roomcredits.booking import models  # noqa: F401  (enregistre les tables)
from roomcredits.booking.config import DATABASE_URL


def make_engine(url: str):
    # SQLite : la session peut changer de thread (threadpool FastAPI)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = make_engine(DATABASE_URL)


def init_db(bind=None):
    SQLModel.metadata.create_all(bind or engine)


# Dépendance FastAPI : fournit une Session DB par requête, auto-close
def get_session():
    with Session(engine) as s:
        yield s
