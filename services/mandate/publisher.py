# ============================================================
# publisher.py — Émission d'événements RabbitMQ
# ------------------------------------------------------------
# Le service Mandate n'envoie pas les emails lui-même : il
# publie une demande de notification sur l'échange "events"
# (fanout) et le service Notification s'occupe du rendu et de
# l'envoi.
# ============================================================
import json
import logging
import uuid

import pika

logger = logging.getLogger(__name__)

EXCHANGE = "events"
NOTIFICATION_REQUESTED = "NotificationRequested"


# Publie un message sur l'échange "events" en mode fanout :
#   - event_type : nom de l'événement
#   - payload    : contenu du message
# Renvoie le messageId utilisé par les consommateurs pour
# ignorer les redélivrances.
def publish_event(host: str, event_type: str, payload: dict) -> str:
    message_id = uuid.uuid4().hex
    conn = pika.BlockingConnection(pika.ConnectionParameters(host=host, heartbeat=60))
    try:
        ch = conn.channel()
        # durable=True pour survivre aux redémarrages RabbitMQ
        ch.exchange_declare(exchange=EXCHANGE, exchange_type="fanout", durable=True)
        message = {"type": event_type, "messageId": message_id, "payload": payload}
        ch.basic_publish(exchange=EXCHANGE, routing_key="", body=json.dumps(message))
    finally:
        conn.close()
    logger.info("[event] %s %s", event_type, payload)
    return message_id


class EventNotifier:
    """Expéditeur de notifications : send(recipient, template, params) → événement RabbitMQ."""

    def __init__(self, host: str):
        self.host = host

    def send(self, recipient: str, template: str, params: dict) -> str:
        return publish_event(self.host, NOTIFICATION_REQUESTED, {
            "recipient": recipient,
            "template": template,
            "params": params,
        })
