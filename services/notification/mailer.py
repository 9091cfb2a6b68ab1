# ============================================================
# mailer.py — Rendu des emails (Jinja2)
# ------------------------------------------------------------
# Chaque template existe en deux fichiers :
#   <nom>.subject.txt et <nom>.body.txt
# L'envoi réel n'est pas branché : on trace un "mock email".
# ============================================================
import logging
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    undefined=StrictUndefined,
    keep_trailing_newline=False,
)


def render_email(template: str, params: dict) -> tuple[str, str]:
    subject = env.get_template(f"{template}.subject.txt").render(**params).strip()
    body = env.get_template(f"{template}.body.txt").render(**params).strip()
    return subject, body


def send_email(to: str, subject: str, body: str):
    logger.info("[notification] mock email -> %s | %s\n%s", to, subject, body)
