# ============================================================
# scheduler.py — ReminderScheduler (sweep quotidien)
# ------------------------------------------------------------
# À chaque tick :
#   1️. libère les allocations RESERVED/DRAFT dont l'échéance est
#      dépassée et prévient l'agent
#   2️. rappel "dépôt brouillon" aux allocations RESERVED depuis
#      exactement N jours calendaires
#   3️. rappel "dépôt signé" aux allocations DRAFT dont le premier
#      brouillon date d'exactement N jours calendaires
# Une erreur sur une allocation est loguée et n'interrompt pas
# le reste du tick.
# ============================================================
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.engine import Engine
from sqlmodel import Session

from services.mandate.clock import day_window, to_local, to_utc, utcnow
from services.mandate.config import MandateConfig
from services.mandate.ledger import AllocationLedger
from services.mandate.models import MandateAllocation
from services.mandate.repository import MandateRepository

logger = logging.getLogger(__name__)

DEADLINE_EXPIRED = "deadline_expired"

# Templates côté service Notification
MANDATE_EXPIRED = "mandate_expired"
DRAFT_REMINDER = "draft_reminder"
SIGNED_REMINDER = "signed_reminder"


@dataclass
class SweepReport:
    released: list = field(default_factory=list)
    draft_reminders: list = field(default_factory=list)
    signed_reminders: list = field(default_factory=list)
    failures: list = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "released": self.released,
            "draft_reminders": self.draft_reminders,
            "signed_reminders": self.signed_reminders,
            "failures": self.failures,
        }


class ReminderScheduler:
    def __init__(self, engine: Engine, notifier, config: Optional[MandateConfig] = None):
        self.engine = engine
        self.notifier = notifier
        self.config = config or MandateConfig()

    def run_sweep_once(self, now: Optional[datetime] = None) -> SweepReport:
        now = to_utc(now) if now else utcnow()
        logger.info("[sweep] running at %s", now.isoformat())
        report = SweepReport()
        self._expire(now, report)
        self._draft_reminders(now, report)
        self._signed_reminders(now, report)
        logger.info(
            "[sweep] done: %s released, %s draft reminders, %s signed reminders, %s failures",
            len(report.released), len(report.draft_reminders),
            len(report.signed_reminders), len(report.failures),
        )
        return report

    # Paramètres communs aux templates d'email
    def _params(self, repo: MandateRepository, allocation: MandateAllocation):
        user = repo.get_user(allocation.user_id)
        number = repo.get_number(allocation.mandate_number_id)
        deadline = to_local(allocation.deadline_at, self.config.tz).strftime("%d/%m/%Y")
        return user, number, {
            "first_name": user.first_name or user.email.split("@")[0],
            "code": number.code,
            "deadline": deadline,
            "base_url": self.config.base_url,
        }

    # ------------------------------------------------------------
    # 1) Échéances dépassées
    # ------------------------------------------------------------
    def _expire(self, now: datetime, report: SweepReport):
        with Session(self.engine) as s:
            repo = MandateRepository(s)
            overdue = [(a.id, repo.get_number(a.mandate_number_id).code) for a in repo.overdue_allocations(now)]

        for allocation_id, code in overdue:
            with Session(self.engine) as s:
                try:
                    released = AllocationLedger(s, self.config).release(allocation_id, now, DEADLINE_EXPIRED)
                except Exception as e:
                    logger.exception("[sweep] release failed for allocation %s", allocation_id)
                    report.failures.append({"step": "expiry", "allocation_id": allocation_id, "error": str(e)})
                    continue
                if not released:
                    continue
                report.released.append(code)

                # la libération est acquise : l'email est best-effort
                try:
                    repo = MandateRepository(s)
                    user, _, params = self._params(repo, repo.get_allocation(allocation_id))
                    self.notifier.send(user.email, MANDATE_EXPIRED, params)
                except Exception as e:
                    logger.exception("[sweep] expiry notification failed for %s", code)
                    report.failures.append({"step": "expiry_notification", "allocation_id": allocation_id,
                                            "error": str(e)})

    # ------------------------------------------------------------
    # 2) et 3) Rappels
    # ------------------------------------------------------------
    def _draft_reminders(self, now: datetime, report: SweepReport):
        start, end = day_window(now, self.config.tz, self.config.reminder_after_days)
        with Session(self.engine) as s:
            ids = [a.id for a in MandateRepository(s).reserved_between(start, end)]
        self._remind(ids, "draft-reminder", DRAFT_REMINDER, report.draft_reminders, report)

    def _signed_reminders(self, now: datetime, report: SweepReport):
        start, end = day_window(now, self.config.tz, self.config.reminder_after_days)
        with Session(self.engine) as s:
            ids = [a.id for a in MandateRepository(s).first_draft_between(start, end)]
        self._remind(ids, "signed-reminder", SIGNED_REMINDER, report.signed_reminders, report)

    def _remind(self, allocation_ids, key_prefix: str, template: str, sent: list, report: SweepReport):
        for allocation_id in allocation_ids:
            key = f"{key_prefix}:{allocation_id}"
            with Session(self.engine) as s:
                try:
                    repo = MandateRepository(s)
                    if not repo.mark_notified(key):
                        continue
                    user, number, params = self._params(repo, repo.get_allocation(allocation_id))
                    code, email = number.code, user.email
                    self.notifier.send(email, template, params)
                    # la trace n'est validée que si l'envoi a réussi
                    s.commit()
                except Exception as e:
                    s.rollback()
                    logger.exception("[sweep] %s failed for allocation %s", key_prefix, allocation_id)
                    report.failures.append({"step": key_prefix, "allocation_id": allocation_id, "error": str(e)})
                    continue
            sent.append(code)
            logger.info("[sweep] %s sent: %s -> %s", key_prefix, code, email)


def build_scheduler(sweeper: ReminderScheduler) -> BackgroundScheduler:
    """Planifie le sweep chaque jour à l'heure locale configurée, sans chevauchement."""
    config = sweeper.config
    scheduler = BackgroundScheduler(timezone=config.tz)
    scheduler.add_job(
        sweeper.run_sweep_once,
        CronTrigger(hour=config.sweep_hour, minute=config.sweep_minute, timezone=config.tz),
        id="mandate_sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
