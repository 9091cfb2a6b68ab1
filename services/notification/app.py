# ============================================================
#  Notification Service
# ------------------------------------------------------------
# Consomme les demandes de notification du service Mandate en
# arrière-plan et expose un simple healthcheck.
# ============================================================
import logging
import os
import threading

from fastapi import FastAPI

from services.notification.consumer import start_consumer

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(title="Notification Service")


@app.on_event("startup")
def startup():
    threading.Thread(target=start_consumer, daemon=True).start()


@app.get("/health")
def health():
    return {"ok": True}
