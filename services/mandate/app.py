# ============================================================
# app.py — Point d'entrée du service Mandate
# ------------------------------------------------------------
# Ce module initialise l'application FastAPI du service Mandate :
#   - Crée les tables dans la base de données
#   - Démarre le sweep quotidien (APScheduler, cron local)
#   - Monte les routes API et traduit les erreurs métier en HTTP
# ============================================================
import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from services.mandate import db
from services.mandate.api import router
from services.mandate.errors import MandateError
from services.mandate.publisher import EventNotifier
from services.mandate.scheduler import ReminderScheduler, build_scheduler

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("mandate")

app = FastAPI(title="Mandate Service")
scheduler = None


# Exécuté automatiquement par FastAPI au lancement du conteneur.
# 1️. Crée les tables SQL.
# 2️. Planifie le sweep quotidien sans bloquer l'API.
@app.on_event("startup")
def start():
    global scheduler
    db.create_tables()
    if not db.CONFIG.sweep_enabled:
        logger.info("[startup] daily sweep disabled via SWEEP_ENABLED")
        return
    sweeper = ReminderScheduler(db.engine, EventNotifier(db.CONFIG.rabbitmq_host), db.CONFIG)
    scheduler = build_scheduler(sweeper)
    scheduler.start()
    logger.info("[startup] daily sweep scheduled at %02d:%02d %s",
                db.CONFIG.sweep_hour, db.CONFIG.sweep_minute, db.CONFIG.local_tz)


@app.on_event("shutdown")
def stop():
    if scheduler is not None:
        scheduler.shutdown(wait=False)


@app.exception_handler(MandateError)
async def mandate_error(request: Request, exc: MandateError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/health")
def health():
    return {"ok": True}


app.include_router(router)
