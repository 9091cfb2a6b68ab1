# ============================================================
# pool.py — SequencePool : numérotation des mandats
# ------------------------------------------------------------
# Sert le plus petit numéro AVAILABLE d'une année. Si l'année
# est épuisée, génère un lot de `batch` numéros à partir de
# max(seq)+1 (ou start_seq pour une année vierge) puis relit.
# Le passage en RESERVED est fait par le ledger, dans la même
# transaction que la création de l'allocation.
# ============================================================
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from services.mandate.config import MandateConfig
from services.mandate.errors import InvalidTransition, NoAvailableNumber, NotFound, StoreConflict
from services.mandate.models import AVAILABLE, MandateNumber
from services.mandate.repository import MandateRepository

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


def format_code(seq: int, year: int) -> str:
    return f"{seq} M {year % 100:02d}"


class SequencePool:
    def __init__(self, session: Session, config: Optional[MandateConfig] = None):
        self.session = session
        self.config = config or MandateConfig()
        self.repo = MandateRepository(session)

    def next_seq(self, year: int) -> int:
        last = self.repo.max_seq(year)
        return last + 1 if last is not None else self.config.start_seq

    def reserve_next(self, year: int) -> MandateNumber:
        """Plus petit numéro AVAILABLE de l'année, en générant un lot si besoin."""
        number = self.repo.first_available(year)
        if number:
            return number

        try:
            self.seed_batch(year)
        except StoreConflict:
            # un autre appelant a généré le même lot : on relit simplement
            logger.info("[pool] concurrent batch for %s, re-reading", year)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise NoAvailableNumber(f"batch creation failed for {year}: {e}") from e

        number = self.repo.first_available(year)
        if not number:
            raise NoAvailableNumber(f"no available number for {year}")
        return number

    def seed_batch(self, year: int) -> list[MandateNumber]:
        begin = self.next_seq(year)
        numbers = [
            MandateNumber(code=format_code(seq, year), year=year, seq=seq, status=AVAILABLE)
            for seq in range(begin, begin + self.config.batch)
        ]
        try:
            self.session.add_all(numbers)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise StoreConflict(f"batch {begin}+{self.config.batch} for {year} already exists") from e
        logger.info("[pool] seeded %s numbers for %s starting at %s", len(numbers), year, begin)
        return numbers

    def seed(self, year: int, count: int) -> int:
        """Upsert idempotent de `count` numéros à partir de start_seq ; renvoie le nombre créé."""
        created = 0
        for seq in range(self.config.start_seq, self.config.start_seq + count):
            code = format_code(seq, year)
            if self.repo.get_number_by_code(code):
                continue
            self.session.add(MandateNumber(code=code, year=year, seq=seq, status=AVAILABLE))
            created += 1
        self.session.commit()
        return created

    # --------------------------------------------------------
    # Administration des numéros
    # --------------------------------------------------------
    def create_number(self, year: int, seq: Optional[int] = None, code: Optional[str] = None) -> MandateNumber:
        if seq is None:
            seq = self.next_seq(year)
        number = MandateNumber(code=code or format_code(seq, year), year=year, seq=seq, status=AVAILABLE)
        try:
            self.session.add(number)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise StoreConflict(f"number {number.code} already exists (duplicate code or seq)") from e
        self.session.refresh(number)
        return number

    def delete_number(self, number_id: int) -> None:
        number = self.repo.get_number(number_id)
        if not number:
            raise NotFound("mandate number not found")
        if self.repo.count_allocations_for_number(number_id) > 0:
            raise InvalidTransition("cannot delete: allocations exist")
        self.session.delete(number)
        self.session.commit()

    def list_numbers(self, status=None, year=None, q=None, page: int = 1, page_size: int = 50):
        page = max(1, page)
        page_size = min(MAX_PAGE_SIZE, max(1, page_size))
        total, items = self.repo.list_numbers(status=status, year=year, q=q, page=page, page_size=page_size)
        return {"total": total, "page": page, "page_size": page_size, "items": items}
