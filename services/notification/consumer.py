# ============================================================
# Notification Service — RabbitMQ Consumer
# ------------------------------------------------------------
# Écoute l'échange "events" et traite les NotificationRequested
# publiés par le service Mandate (rappels et expirations) :
#   - ignore les messages déjà traités (messageId)
#   - rend le template demandé puis envoie l'email
# ============================================================
import json
import logging
import os
import time

import pika
from jinja2 import TemplateError
from sqlmodel import Session, SQLModel, create_engine, select

from services.notification.mailer import render_email, send_email
from services.notification.models import ProcessedMessage

logger = logging.getLogger(__name__)

RABBIT = os.getenv("RABBITMQ_HOST", "rabbitmq")
DB_URL = os.getenv("NOTIFICATION_DATABASE_URL", "sqlite:///./notifications.db")
engine = create_engine(DB_URL, pool_pre_ping=True)

NOTIFICATION_REQUESTED = "NotificationRequested"


def already_processed(s: Session, mid: str) -> bool:
    return s.exec(select(ProcessedMessage).where(ProcessedMessage.message_id == mid)).first() is not None


def mark_processed(s: Session, mid: str):
    s.add(ProcessedMessage(message_id=mid))
    s.commit()


def handle(msg: dict, s: Session) -> bool:
    """Traite un message décodé ; renvoie True si un email est parti."""
    if msg.get("type") != NOTIFICATION_REQUESTED:
        return False
    payload = msg.get("payload", {})
    message_id = msg.get("messageId") or f"{payload.get('template')}:{payload.get('recipient')}"

    if already_processed(s, message_id):
        logger.info("[notification] %s already processed, skipping", message_id)
        return False

    recipient = payload.get("recipient")
    template = payload.get("template")
    if not recipient or not template:
        logger.warning("[notification] skipping %s (no recipient/template)", message_id)
        mark_processed(s, message_id)
        return False

    try:
        subject, body = render_email(template, payload.get("params", {}))
    except TemplateError as e:
        logger.error("[notification] cannot render %s for %s: %s", template, recipient, e)
        mark_processed(s, message_id)
        return False

    send_email(recipient, subject, body)
    mark_processed(s, message_id)
    return True


# Callback exécuté à chaque message reçu depuis RabbitMQ
def on_message(ch, method, properties, body):
    try:
        msg = json.loads(body)
    except ValueError as e:
        logger.warning("[notification] bad payload: %s", e)
        return
    # une erreur sur un message ne doit pas arrêter la consommation
    try:
        with Session(engine) as s:
            handle(msg, s)
    except Exception:
        logger.exception("[notification] failed to handle message %s", body)


def start_consumer():
    SQLModel.metadata.create_all(engine)
    attempt = 0
    while True:
        try:
            logger.info("[notification] connecting to rabbitmq at %s...", RABBIT)
            conn = pika.BlockingConnection(pika.ConnectionParameters(host=RABBIT, heartbeat=60))
            ch = conn.channel()
            # Déclare l'échange 'events' de type fanout (broadcast)
            ch.exchange_declare(exchange="events", exchange_type="fanout", durable=True)
            # Déclare une queue anonyme, exclusive à ce consumer
            q = ch.queue_declare(queue="", exclusive=True).method.queue
            ch.queue_bind(exchange="events", queue=q)
            logger.info("[notification] bound to 'events' queue='%s'. waiting...", q)
            attempt = 0
            ch.basic_consume(queue=q, on_message_callback=on_message, auto_ack=True)
            ch.start_consuming()
        except Exception as e:
            attempt += 1
            wait = min(5 * attempt, 30)
            logger.error("[notification] connection error: %s, retrying in %ss", e, wait)
            time.sleep(wait)
