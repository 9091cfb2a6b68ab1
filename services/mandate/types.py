# ============================================================
# types.py — Types SQLAlchemy du service Mandate
# ------------------------------------------------------------
# UTCDateTime : les dates partent en base en UTC (avec tzinfo)
# et reviennent toujours en UTC aware, y compris sur SQLite qui
# ne conserve pas le fuseau.
# ============================================================
from datetime import timezone

from sqlalchemy import DateTime, TypeDecorator


class UTCDateTime(TypeDecorator):
    """DateTime stocké en UTC ; une date naïve est supposée déjà en UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
