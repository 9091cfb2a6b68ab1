# ============================================================
# ledger.py — AllocationLedger
# ------------------------------------------------------------
# Applique les transitions décidées par lifecycle.py :
#   - reserve : claim d'un numéro + création de l'allocation
#   - record_deposit : dépôt brouillon / signé
#   - release : libération (idempotente) à l'échéance
#   - admin_override / sync_statuses : corrections de données
# Chaque opération = une transaction (un seul commit).
# ============================================================
import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from services.mandate.clock import to_local, to_utc, utcnow
from services.mandate.config import MandateConfig
from services.mandate.errors import Forbidden, InvalidTransition, NotFound, StoreConflict
from services.mandate.lifecycle import (
    AddDeposit,
    ClaimNumber,
    CreateAllocation,
    SetNumberStatus,
    Transition,
    UpdateAllocation,
    number_status_for,
    plan_deposit,
    plan_override,
    plan_release,
    plan_reservation,
)
from services.mandate.models import (
    ACTIVE_STATUSES,
    ADMIN,
    AGENT,
    AVAILABLE,
    OPEN_STATUSES,
    MandateAllocation,
    MandateFile,
    MandateNumber,
    User,
)
from services.mandate.pool import MAX_PAGE_SIZE, SequencePool
from services.mandate.repository import MandateRepository

logger = logging.getLogger(__name__)

# nombre de tentatives pour un claim perdu face à un writer concurrent
RESERVE_ATTEMPTS = 2
RELEASE_ATTEMPTS = 2


def _require_admin(actor: User):
    if actor is None or actor.role != ADMIN:
        raise Forbidden("admin role required")


class AllocationLedger:
    def __init__(self, session: Session, config: Optional[MandateConfig] = None,
                 pool: Optional[SequencePool] = None):
        self.session = session
        self.config = config or MandateConfig()
        self.pool = pool or SequencePool(session, self.config)
        self.repo = MandateRepository(session)

    # --------------------------------------------------------
    # Application des écritures d'une transition
    # --------------------------------------------------------
    def _apply(self, transition: Transition, number: MandateNumber,
               allocation: Optional[MandateAllocation] = None, user_id: Optional[int] = None,
               now: Optional[datetime] = None):
        expected = allocation.status if allocation else None
        for w in transition.writes:
            if isinstance(w, ClaimNumber):
                if not self.repo.claim_number(number.id):
                    raise StoreConflict(f"number {number.code} was claimed concurrently")
            elif isinstance(w, CreateAllocation):
                allocation = self.repo.add(MandateAllocation(
                    mandate_number_id=number.id,
                    user_id=user_id,
                    status=transition.status,
                    reserved_at=w.reserved_at,
                    deadline_at=w.deadline_at,
                ))
            elif isinstance(w, UpdateAllocation):
                if not self.repo.update_allocation(allocation.id, w.values, expected):
                    raise StoreConflict(f"allocation {allocation.id} changed concurrently")
            elif isinstance(w, AddDeposit):
                self.repo.add(MandateFile(allocation_id=allocation.id, kind=w.kind, storage_key=w.storage_key,
                                          created_at=now or utcnow()))
            elif isinstance(w, SetNumberStatus):
                self.repo.set_number_status(number.id, w.status)
        return allocation

    # --------------------------------------------------------
    # Réservation
    # --------------------------------------------------------
    def reserve(self, user: User, now: datetime):
        """Réserve le prochain numéro pour un agent ; renvoie (allocation, numéro)."""
        if user is None or user.role != AGENT:
            raise Forbidden("only agents can reserve a mandate number")
        now = to_utc(now)
        year = to_local(now, self.config.tz).year

        for attempt in range(1, RESERVE_ATTEMPTS + 1):
            try:
                number = self.pool.reserve_next(year)
                allocation = self._apply(
                    plan_reservation(now, self.config.reservation_window_days), number, user_id=user.id
                )
                self.session.commit()
            except StoreConflict:
                self.session.rollback()
                if attempt == RESERVE_ATTEMPTS:
                    raise
                logger.warning("[ledger] reservation conflict for user %s, retrying", user.id)
                continue
            self.session.refresh(number)
            logger.info("[ledger] %s reserved by user %s until %s", number.code, user.id, allocation.deadline_at)
            return allocation, number

    def allocate(self, actor: User, user_id: int, number_id: int, now: datetime):
        """Attribution manuelle d'un numéro AVAILABLE précis à un agent."""
        _require_admin(actor)
        now = to_utc(now)
        number = self.repo.get_number(number_id)
        if not number:
            raise NotFound("mandate number not found")
        if number.status != AVAILABLE:
            raise InvalidTransition(f"mandate number {number.code} is not available")
        user = self.repo.get_user(user_id)
        if not user:
            raise NotFound("user not found")
        if user.role != AGENT:
            raise InvalidTransition("user must be an agent")

        try:
            allocation = self._apply(
                plan_reservation(now, self.config.reservation_window_days), number, user_id=user.id
            )
            self.session.commit()
        except StoreConflict:
            self.session.rollback()
            raise
        self.session.refresh(number)
        logger.info("[ledger] %s allocated to user %s by admin %s", number.code, user.id, actor.id)
        return allocation, number

    # --------------------------------------------------------
    # Dépôts
    # --------------------------------------------------------
    def record_deposit(self, code: str, user: User, kind: str, now: datetime, storage_key: str = ""):
        allocation = self.repo.latest_allocation_for(user.id, code)
        if not allocation:
            raise NotFound("allocation not found")
        now = to_utc(now)
        transition = plan_deposit(allocation.status, kind, now, storage_key)
        number = self.repo.get_number(allocation.mandate_number_id)
        try:
            self._apply(transition, number, allocation, now=now)
            self.session.commit()
        except StoreConflict:
            self.session.rollback()
            raise
        self.session.refresh(allocation)
        logger.info("[ledger] %s deposit on %s, allocation %s now %s", kind, code, allocation.id, allocation.status)
        return allocation

    # --------------------------------------------------------
    # Libération
    # --------------------------------------------------------
    def release(self, allocation_id: int, now: datetime, reason: str = "released") -> bool:
        """Libère une allocation RESERVED/DRAFT. Renvoie False si elle l'était déjà."""
        now = to_utc(now)
        for attempt in range(1, RELEASE_ATTEMPTS + 1):
            allocation = self.repo.get_allocation(allocation_id)
            if not allocation:
                raise NotFound("allocation not found")
            # après un conflit on replanifie depuis le statut relu :
            # RELEASED -> no-op, SIGNED -> InvalidTransition, DRAFT -> on réessaie
            transition = plan_release(allocation.status, now, reason)
            if transition.noop:
                return False
            number = self.repo.get_number(allocation.mandate_number_id)
            try:
                self._apply(transition, number, allocation)
                self.session.commit()
            except StoreConflict:
                self.session.rollback()
                if attempt == RELEASE_ATTEMPTS:
                    raise
                logger.warning("[ledger] allocation %s changed during release, retrying", allocation_id)
                continue
            logger.info("[ledger] allocation %s (%s) released: %s", allocation_id, number.code, reason)
            return True

    def release_number(self, actor: User, number_id: int, now: datetime) -> bool:
        _require_admin(actor)
        active = self.repo.active_allocations_for_number(number_id, OPEN_STATUSES)
        if not active:
            raise NotFound("no active allocation")
        return self.release(active[0].id, now, "admin")

    # --------------------------------------------------------
    # Corrections administratives
    # --------------------------------------------------------
    def admin_override(self, actor: User, allocation_id: int, new_status: str, now: datetime):
        _require_admin(actor)
        allocation = self.repo.get_allocation(allocation_id)
        if not allocation:
            raise NotFound("allocation not found")
        transition = plan_override(allocation.status, new_status, to_utc(now))
        if new_status in ACTIVE_STATUSES:
            others = [a for a in self.repo.active_allocations_for_number(allocation.mandate_number_id)
                      if a.id != allocation.id]
            if others:
                raise InvalidTransition("another allocation is active on this number")
        number = self.repo.get_number(allocation.mandate_number_id)
        try:
            self._apply(transition, number, allocation)
            self.session.commit()
        except StoreConflict:
            self.session.rollback()
            raise
        self.session.refresh(allocation)
        logger.info("[ledger] admin %s forced allocation %s to %s", actor.id, allocation_id, new_status)
        return allocation

    def sync_statuses(self) -> int:
        """Recalcule le statut des numéros depuis les allocations actives. Renvoie le nombre de corrections."""
        changed = 0
        for allocation in self.repo.allocations_with_status(ACTIVE_STATUSES):
            expected = number_status_for(allocation.status)
            number = self.repo.get_number(allocation.mandate_number_id)
            if number and number.status != expected:
                number.status = expected
                changed += 1
        for number in self.repo.stale_numbers():
            number.status = AVAILABLE
            changed += 1
        self.session.commit()
        if changed:
            logger.info("[ledger] sync_statuses fixed %s mandate numbers", changed)
        return changed

    # --------------------------------------------------------
    # Lectures
    # --------------------------------------------------------
    def my_allocations(self, user: User):
        return [
            (allocation, number, self.repo.files_for(allocation.id))
            for allocation, number in self.repo.allocations_for_user(user.id)
        ]

    def list_allocations(self, status=None, q=None, page: int = 1, page_size: int = 50):
        page = max(1, page)
        page_size = min(MAX_PAGE_SIZE, max(1, page_size))
        total, rows = self.repo.list_allocations(status=status, q=q, page=page, page_size=page_size)
        return {"total": total, "page": page, "page_size": page_size, "items": rows}
