# ============================================================
# repository.py — Accès aux données Mandate
# ------------------------------------------------------------
# Design pattern "Repository" : isole les requêtes SQLModel de
# la logique métier (pool, ledger, scheduler).
# Le repository ne fait jamais de commit : c'est l'appelant qui
# délimite la transaction.
# ============================================================
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, update
from sqlmodel import Session, select

from services.mandate.models import (
    ACTIVE_STATUSES,
    AVAILABLE,
    DRAFT,
    OPEN_STATUSES,
    RESERVED,
    SIGNED,
    MandateAllocation,
    MandateFile,
    MandateNumber,
    SentNotification,
    User,
)


class MandateRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    # --------------------------------------------------------
    # Users
    # --------------------------------------------------------
    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.email == email)).first()

    # --------------------------------------------------------
    # Numéros
    # --------------------------------------------------------
    def get_number(self, number_id: int) -> Optional[MandateNumber]:
        return self.session.get(MandateNumber, number_id)

    def get_number_by_code(self, code: str) -> Optional[MandateNumber]:
        return self.session.exec(select(MandateNumber).where(MandateNumber.code == code)).first()

    def first_available(self, year: int) -> Optional[MandateNumber]:
        return self.session.exec(
            select(MandateNumber)
            .where(MandateNumber.year == year, MandateNumber.status == AVAILABLE)
            .order_by(MandateNumber.seq)
        ).first()

    def max_seq(self, year: int) -> Optional[int]:
        return self.session.exec(
            select(func.max(MandateNumber.seq)).where(MandateNumber.year == year)
        ).one()

    def claim_number(self, number_id: int) -> bool:
        # UPDATE conditionnel : un seul appelant peut gagner le claim
        result = self.session.exec(
            update(MandateNumber)
            .where(MandateNumber.id == number_id, MandateNumber.status == AVAILABLE)
            .values(status=RESERVED)
        )
        return result.rowcount == 1

    def set_number_status(self, number_id: int, status: str):
        n = self.get_number(number_id)
        if n and n.status != status:
            n.status = status
            self.session.flush()
        return n

    def list_numbers(self, status=None, year=None, q=None, page=1, page_size=50):
        conditions = []
        if status:
            conditions.append(MandateNumber.status == status)
        if year:
            conditions.append(MandateNumber.year == year)
        if q:
            conditions.append(MandateNumber.code.contains(q))
        total = self.session.exec(select(func.count(MandateNumber.id)).where(*conditions)).one()
        items = self.session.exec(
            select(MandateNumber)
            .where(*conditions)
            .order_by(MandateNumber.year.desc(), MandateNumber.seq)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return total, items

    def stale_numbers(self) -> list[MandateNumber]:
        """Numéros RESERVED/SIGNED sans aucune allocation active."""
        active = select(MandateAllocation.mandate_number_id).where(
            MandateAllocation.status.in_(ACTIVE_STATUSES)
        )
        return self.session.exec(
            select(MandateNumber).where(
                MandateNumber.status.in_([RESERVED, SIGNED]),
                MandateNumber.id.not_in(active),
            )
        ).all()

    # --------------------------------------------------------
    # Allocations
    # --------------------------------------------------------
    def get_allocation(self, allocation_id: int) -> Optional[MandateAllocation]:
        return self.session.get(MandateAllocation, allocation_id)

    def update_allocation(self, allocation_id: int, values: dict, expected_status: str) -> bool:
        # écriture gardée par le statut lu : si un autre writer est passé
        # entre-temps (sweep ou requête), rowcount vaut 0
        result = self.session.exec(
            update(MandateAllocation)
            .where(
                MandateAllocation.id == allocation_id,
                MandateAllocation.status == expected_status,
            )
            .values(**values)
        )
        return result.rowcount == 1

    def latest_allocation_for(self, user_id: int, code: str) -> Optional[MandateAllocation]:
        return self.session.exec(
            select(MandateAllocation)
            .join(MandateNumber, MandateNumber.id == MandateAllocation.mandate_number_id)
            .where(MandateAllocation.user_id == user_id, MandateNumber.code == code)
            .order_by(MandateAllocation.reserved_at.desc(), MandateAllocation.id.desc())
        ).first()

    def active_allocations_for_number(self, number_id: int, statuses=ACTIVE_STATUSES) -> list[MandateAllocation]:
        return self.session.exec(
            select(MandateAllocation).where(
                MandateAllocation.mandate_number_id == number_id,
                MandateAllocation.status.in_(statuses),
            )
        ).all()

    def count_allocations_for_number(self, number_id: int) -> int:
        return self.session.exec(
            select(func.count(MandateAllocation.id)).where(MandateAllocation.mandate_number_id == number_id)
        ).one()

    def allocations_with_status(self, statuses) -> list[MandateAllocation]:
        return self.session.exec(
            select(MandateAllocation).where(MandateAllocation.status.in_(statuses))
        ).all()

    def allocations_for_user(self, user_id: int):
        return self.session.exec(
            select(MandateAllocation, MandateNumber)
            .join(MandateNumber, MandateNumber.id == MandateAllocation.mandate_number_id)
            .where(MandateAllocation.user_id == user_id)
            .order_by(MandateAllocation.reserved_at.desc())
        ).all()

    def list_allocations(self, status=None, q=None, page=1, page_size=50):
        conditions = []
        if status:
            conditions.append(MandateAllocation.status == status)
        if q:
            conditions.append(or_(MandateNumber.code.contains(q), User.email.contains(q)))
        base = (
            select(MandateAllocation, MandateNumber, User)
            .join(MandateNumber, MandateNumber.id == MandateAllocation.mandate_number_id)
            .join(User, User.id == MandateAllocation.user_id)
            .where(*conditions)
        )
        total = self.session.exec(
            select(func.count(MandateAllocation.id))
            .select_from(MandateAllocation)
            .join(MandateNumber, MandateNumber.id == MandateAllocation.mandate_number_id)
            .join(User, User.id == MandateAllocation.user_id)
            .where(*conditions)
        ).one()
        rows = self.session.exec(
            base.order_by(MandateAllocation.reserved_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return total, rows

    def files_for(self, allocation_id: int) -> list[MandateFile]:
        return self.session.exec(
            select(MandateFile)
            .where(MandateFile.allocation_id == allocation_id)
            .order_by(MandateFile.created_at)
        ).all()

    # --------------------------------------------------------
    # Requêtes du sweep
    # --------------------------------------------------------
    def overdue_allocations(self, now: datetime) -> list[MandateAllocation]:
        return self.session.exec(
            select(MandateAllocation)
            .where(MandateAllocation.status.in_(OPEN_STATUSES), MandateAllocation.deadline_at < now)
            .order_by(MandateAllocation.id)
        ).all()

    def reserved_between(self, start: datetime, end: datetime) -> list[MandateAllocation]:
        return self.session.exec(
            select(MandateAllocation)
            .where(
                MandateAllocation.status == RESERVED,
                MandateAllocation.reserved_at >= start,
                MandateAllocation.reserved_at < end,
            )
            .order_by(MandateAllocation.id)
        ).all()

    def first_draft_between(self, start: datetime, end: datetime) -> list[MandateAllocation]:
        """Allocations DRAFT dont le premier dépôt brouillon tombe dans [start, end)."""
        first_draft = func.min(MandateFile.created_at)
        ids = (
            select(MandateFile.allocation_id)
            .where(MandateFile.kind == DRAFT)
            .group_by(MandateFile.allocation_id)
            .having(first_draft >= start, first_draft < end)
        )
        return self.session.exec(
            select(MandateAllocation)
            .where(MandateAllocation.status == DRAFT, MandateAllocation.id.in_(ids))
            .order_by(MandateAllocation.id)
        ).all()

    # --------------------------------------------------------
    # Notifications déjà envoyées
    # --------------------------------------------------------
    def already_notified(self, key: str) -> bool:
        return self.session.exec(
            select(SentNotification).where(SentNotification.key == key)
        ).first() is not None

    def mark_notified(self, key: str) -> bool:
        # la contrainte unique sur key tranche entre deux sweeps concurrents
        if self.already_notified(key):
            return False
        self.session.add(SentNotification(key=key))
        self.session.flush()
        return True
