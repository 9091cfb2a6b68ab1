# ============================================================
# config.py — Configuration du service Mandate
# ------------------------------------------------------------
# Toutes les valeurs viennent des variables d'environnement,
# regroupées dans un objet explicite passé aux composants
# (SequencePool, AllocationLedger, ReminderScheduler).
# ============================================================
import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class MandateConfig:
    database_url: str = "sqlite:///./mandates.db"
    rabbitmq_host: str = "localhost"
    local_tz: str = "Europe/Paris"
    # numérotation : premier seq de l'année et taille des lots générés
    start_seq: int = 460
    batch: int = 100
    # délai de dépôt après réservation, et délai avant chaque rappel
    reservation_window_days: int = 7
    reminder_after_days: int = 7
    # déclenchement quotidien du sweep (heure locale)
    sweep_hour: int = 7
    sweep_minute: int = 0
    sweep_enabled: bool = True
    # seed initial
    seed_count: int = 200
    admin_email: str = "admin@sourcinginvest.local"
    agent_email: str = "agent@sourcinginvest.local"
    base_url: str = "http://localhost:5173"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.local_tz)

    @classmethod
    def from_env(cls) -> "MandateConfig":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            rabbitmq_host=os.getenv("RABBITMQ_HOST", cls.rabbitmq_host),
            local_tz=os.getenv("LOCAL_TZ", cls.local_tz),
            start_seq=_env_int("START_SEQ", cls.start_seq),
            batch=_env_int("SEED_BATCH", cls.batch),
            reservation_window_days=_env_int("RESERVATION_DAYS", cls.reservation_window_days),
            reminder_after_days=_env_int("REMINDER_DAYS", cls.reminder_after_days),
            sweep_hour=_env_int("SWEEP_HOUR", cls.sweep_hour),
            sweep_minute=_env_int("SWEEP_MINUTE", cls.sweep_minute),
            sweep_enabled=_env_bool("SWEEP_ENABLED", cls.sweep_enabled),
            seed_count=_env_int("SEED_COUNT", cls.seed_count),
            admin_email=os.getenv("ADMIN_EMAIL", cls.admin_email),
            agent_email=os.getenv("AGENT_EMAIL", cls.agent_email),
            base_url=os.getenv("BASE_URL", cls.base_url),
        )
