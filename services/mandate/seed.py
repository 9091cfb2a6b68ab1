# ============================================================
# seed.py — Initialisation de la base
# ------------------------------------------------------------
#   python -m services.mandate.seed
# Crée (ou réactive) le compte admin et le compte agent, puis
# SEED_COUNT numéros de l'année courante à partir de START_SEQ.
# Relançable sans risque : rien n'est dupliqué.
# ============================================================
import logging

from sqlmodel import Session

from services.mandate import db
from services.mandate.clock import to_local, utcnow
from services.mandate.config import MandateConfig
from services.mandate.models import ADMIN, AGENT, User
from services.mandate.pool import SequencePool
from services.mandate.repository import MandateRepository

logger = logging.getLogger(__name__)


def upsert_user(s: Session, email: str, role: str) -> User:
    user = MandateRepository(s).get_user_by_email(email)
    if user is None:
        user = User(email=email)
        s.add(user)
    user.role = role
    user.active = True
    s.commit()
    s.refresh(user)
    return user


def run(engine, config: MandateConfig) -> dict:
    db.create_tables(engine)
    year = to_local(utcnow(), config.tz).year
    with Session(engine) as s:
        admin = upsert_user(s, config.admin_email, ADMIN)
        agent = upsert_user(s, config.agent_email, AGENT)
        created = SequencePool(s, config).seed(year, config.seed_count)
        logger.info("[seed] admin=%s agent=%s, %s numbers created for %s", admin.email, agent.email, created, year)
        return {"admin": admin.email, "agent": agent.email, "created": created, "year": year}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run(db.engine, db.CONFIG)
