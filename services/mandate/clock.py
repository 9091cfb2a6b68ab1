# ============================================================
# clock.py — Gestion des dates
# ------------------------------------------------------------
# Toutes les dates manipulées sont en UTC aware, comme en base
# (voir types.UTCDateTime).
# L'affichage et les calculs "au jour près" se font dans la
# timezone locale configurée (LOCAL_TZ).
# ============================================================
from datetime import datetime, time, timedelta, timezone, tzinfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """Normalise une date en UTC aware (une date naïve est supposée déjà en UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_local(dt: datetime, tz: tzinfo) -> datetime:
    return to_utc(dt).astimezone(tz)


def local_midnight(dt: datetime, tz: tzinfo, days_back: int = 0) -> datetime:
    # minuit local du jour (dt - days_back), renvoyé en UTC
    day = to_local(dt, tz).date() - timedelta(days=days_back)
    return to_utc(datetime.combine(day, time(0, 0), tzinfo=tz))


def day_window(now: datetime, tz: tzinfo, days: int) -> tuple[datetime, datetime]:
    """Intervalle [début, fin) couvrant le jour calendaire local situé `days` jours avant `now`."""
    return local_midnight(now, tz, days), local_midnight(now, tz, days - 1)
