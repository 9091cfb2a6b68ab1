from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from sqlmodel import Session, select

from services.mandate import seed
from services.mandate.clock import day_window, local_midnight, to_utc, utcnow
from services.mandate.config import MandateConfig
from services.mandate.models import ADMIN, AGENT, MandateAllocation, MandateNumber, User
from services.mandate.repository import MandateRepository

PARIS = ZoneInfo("Europe/Paris")


def test_config_from_env(monkeypatch) -> None:
    monkeypatch.setenv("START_SEQ", "1")
    monkeypatch.setenv("SEED_BATCH", "10")
    monkeypatch.setenv("LOCAL_TZ", "UTC")
    monkeypatch.setenv("SWEEP_ENABLED", "false")
    monkeypatch.delenv("RESERVATION_DAYS", raising=False)

    config = MandateConfig.from_env()
    assert (config.start_seq, config.batch, config.local_tz) == (1, 10, "UTC")
    assert config.sweep_enabled is False
    assert config.reservation_window_days == 7


def test_seed_is_rerunnable(engine) -> None:
    config = MandateConfig(seed_count=5, admin_email="root@example.com", agent_email="a@example.com")

    first = seed.run(engine, config)
    second = seed.run(engine, config)

    assert first["created"] == 5
    assert second["created"] == 0
    with Session(engine) as s:
        users = {u.email: u.role for u in s.exec(select(User)).all()}
        assert users == {"root@example.com": ADMIN, "a@example.com": AGENT}
        assert len(s.exec(select(MandateNumber)).all()) == 5


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_to_utc_converts_aware_dates() -> None:
    converted = to_utc(datetime(2025, 3, 10, 10, 0, tzinfo=PARIS))
    assert converted == utc(2025, 3, 10, 9, 0)
    assert converted.tzinfo is timezone.utc


def test_to_utc_reads_naive_dates_as_utc() -> None:
    assert to_utc(datetime(2025, 3, 10, 9, 0)) == utc(2025, 3, 10, 9, 0)


def test_utcnow_is_aware() -> None:
    assert utcnow().tzinfo is timezone.utc


def test_local_midnight_across_dst() -> None:
    # passage à l'heure d'été le 30 mars 2025
    assert local_midnight(utc(2025, 3, 29, 12, 0), PARIS) == utc(2025, 3, 28, 23, 0)
    assert local_midnight(utc(2025, 3, 31, 12, 0), PARIS) == utc(2025, 3, 30, 22, 0)


def test_day_window_covers_one_local_day() -> None:
    start, end = day_window(utc(2025, 4, 3, 7, 0), PARIS, 7)
    assert (start, end) == (utc(2025, 3, 26, 23, 0), utc(2025, 3, 27, 23, 0))


class TestStoredDates:
    def _store(self, engine, deadline):
        with Session(engine) as s:
            user = User(email="dates@example.com")
            number = MandateNumber(code="1 M 25", year=2025, seq=1)
            s.add(user)
            s.add(number)
            s.flush()
            allocation = MandateAllocation(mandate_number_id=number.id, user_id=user.id,
                                           reserved_at=utcnow(), deadline_at=deadline)
            s.add(allocation)
            s.commit()
            return allocation.id

    def _load(self, engine, allocation_id):
        with Session(engine) as s:
            return s.get(MandateAllocation, allocation_id)

    def test_aware_dates_come_back_in_utc(self, engine) -> None:
        allocation_id = self._store(engine, datetime(2025, 3, 17, 10, 0, tzinfo=PARIS))
        stored = self._load(engine, allocation_id)
        assert stored.deadline_at == utc(2025, 3, 17, 9, 0)
        assert stored.deadline_at.tzinfo == timezone.utc
        assert stored.reserved_at.tzinfo == timezone.utc

    def test_naive_dates_are_stored_as_utc(self, engine) -> None:
        allocation_id = self._store(engine, datetime(2025, 3, 17, 9, 0))
        assert self._load(engine, allocation_id).deadline_at == utc(2025, 3, 17, 9, 0)

    def test_window_queries_compare_instants(self, engine) -> None:
        self._store(engine, datetime(2025, 3, 17, 10, 0, tzinfo=PARIS))
        with Session(engine) as s:
            repo = MandateRepository(s)
            assert len(repo.overdue_allocations(utc(2025, 3, 17, 9, 1))) == 1
            assert repo.overdue_allocations(datetime(2025, 3, 17, 9, 59, tzinfo=PARIS)) == []
