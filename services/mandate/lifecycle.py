# ============================================================
# lifecycle.py — Machine à états d'une allocation
# ------------------------------------------------------------
#   AVAILABLE --reserve--> RESERVED --draft--> DRAFT --signed--> SIGNED
#   RESERVED --signed--> SIGNED
#   RESERVED | DRAFT --release--> RELEASED (terminal)
#
# Les fonctions de ce module sont pures : elles prennent l'état
# courant + l'événement et renvoient le nouvel état avec la liste
# des écritures à appliquer dans une même transaction.
# Aucune dépendance vers la base (voir ledger.py pour l'application).
# ============================================================
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from services.mandate.errors import InvalidTransition
from services.mandate.models import (
    ALLOCATION_STATUSES,
    AVAILABLE,
    DEPOSIT_KINDS,
    DRAFT,
    OPEN_STATUSES,
    RELEASED,
    RESERVED,
    SIGNED,
)


# Écritures produites par une transition
@dataclass(frozen=True)
class ClaimNumber:
    """Passage AVAILABLE → RESERVED du numéro, conditionnel (claim atomique)."""


@dataclass(frozen=True)
class CreateAllocation:
    reserved_at: datetime
    deadline_at: datetime


@dataclass(frozen=True)
class UpdateAllocation:
    values: dict


@dataclass(frozen=True)
class AddDeposit:
    kind: str
    storage_key: str = ""


@dataclass(frozen=True)
class SetNumberStatus:
    status: str


@dataclass(frozen=True)
class Transition:
    status: str
    writes: list = field(default_factory=list)

    @property
    def noop(self) -> bool:
        return not self.writes


def number_status_for(allocation_status: Optional[str]) -> str:
    """Statut du numéro correspondant au statut de son allocation."""
    if allocation_status in (RESERVED, DRAFT):
        return RESERVED
    if allocation_status == SIGNED:
        return SIGNED
    return AVAILABLE


def plan_reservation(now: datetime, window_days: int) -> Transition:
    return Transition(
        status=RESERVED,
        writes=[
            ClaimNumber(),
            CreateAllocation(reserved_at=now, deadline_at=now + timedelta(days=window_days)),
        ],
    )


def plan_deposit(status: str, kind: str, now: datetime, storage_key: str = "") -> Transition:
    if kind not in DEPOSIT_KINDS:
        raise InvalidTransition(f"unknown deposit kind {kind!r}")
    if status not in OPEN_STATUSES:
        raise InvalidTransition(f"cannot deposit {kind} on a {status} allocation")

    deposit = AddDeposit(kind=kind, storage_key=storage_key)
    if kind == SIGNED:
        return Transition(
            status=SIGNED,
            writes=[
                deposit,
                UpdateAllocation({"status": SIGNED, "signed_at": now}),
                SetNumberStatus(SIGNED),
            ],
        )
    # brouillons supplémentaires : on ajoute juste le fichier
    if status == DRAFT:
        return Transition(status=DRAFT, writes=[deposit])
    return Transition(status=DRAFT, writes=[deposit, UpdateAllocation({"status": DRAFT})])


def plan_release(status: str, now: datetime, reason: str) -> Transition:
    if status == RELEASED:
        return Transition(status=RELEASED)
    if status not in OPEN_STATUSES:
        raise InvalidTransition(f"cannot release a {status} allocation")
    return Transition(
        status=RELEASED,
        writes=[
            UpdateAllocation({"status": RELEASED, "released_at": now, "release_reason": reason}),
            SetNumberStatus(AVAILABLE),
        ],
    )


def plan_override(status: str, new_status: str, now: datetime) -> Transition:
    """Correction administrative : tout statut est accepté, le numéro suit."""
    if new_status not in ALLOCATION_STATUSES:
        raise InvalidTransition(f"unknown allocation status {new_status!r}")
    values = {"status": new_status}
    if new_status == RELEASED and status != RELEASED:
        values.update(released_at=now, release_reason="admin_override")
    elif new_status == SIGNED and status != SIGNED:
        values["signed_at"] = now
    return Transition(
        status=new_status,
        writes=[UpdateAllocation(values), SetNumberStatus(number_status_for(new_status))],
    )
