# ============================================================
# Mandate API Router
# ------------------------------------------------------------
# Expose les opérations du ledger en REST :
#   - côté agent : réserver un numéro, déposer brouillon/signé,
#     lister ses mandats
#   - côté admin : numéros, allocations, sweep et resynchro
# L'identité est fournie par l'en-tête X-User-Id.
# Les erreurs métier sont traduites en HTTP par app.py.
# ============================================================
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlmodel import Session, SQLModel

from services.mandate import db
from services.mandate.clock import to_local, utcnow
from services.mandate.config import MandateConfig
from services.mandate.ledger import AllocationLedger
from services.mandate.models import ADMIN, MandateAllocation, MandateNumber
from services.mandate.pool import SequencePool
from services.mandate.publisher import EventNotifier
from services.mandate.repository import MandateRepository
from services.mandate.scheduler import ReminderScheduler

router = APIRouter()


# ------------------------------------------------------------
# Dépendances (surchargées dans les tests)
# ------------------------------------------------------------
def get_config() -> MandateConfig:
    return db.CONFIG


def get_engine():
    return db.engine


def get_notifier(config: MandateConfig = Depends(get_config)):
    return EventNotifier(config.rabbitmq_host)


def get_now() -> datetime:
    return utcnow()


def current_user(x_user_id: int = Header(...), s: Session = Depends(db.get_session)):
    user = MandateRepository(s).get_user(x_user_id)
    if not user or not user.active:
        raise HTTPException(401, "unauthenticated")
    return user


def admin_user(user=Depends(current_user)):
    if user.role != ADMIN:
        raise HTTPException(403, "forbidden")
    return user


# ------------------------------------------------------------
# Corps de requêtes
# ------------------------------------------------------------
class DepositIn(SQLModel):
    kind: str
    storage_key: str = ""


class NumberIn(SQLModel):
    year: Optional[int] = None
    seq: Optional[int] = None
    code: Optional[str] = None


class AllocateIn(SQLModel):
    user_id: int
    mandate_number_id: int


class StatusIn(SQLModel):
    status: str


# On convertit une date stockée (UTC) en affichage local
def _iso(dt: Optional[datetime], config: MandateConfig) -> Optional[str]:
    return to_local(dt, config.tz).isoformat() if dt else None


def _allocation_out(a: MandateAllocation, n: MandateNumber, config: MandateConfig) -> dict:
    return {
        "id": a.id,
        "code": n.code,
        "mandate_number_id": n.id,
        "user_id": a.user_id,
        "status": a.status,
        "reserved_at": _iso(a.reserved_at, config),
        "deadline_at": _iso(a.deadline_at, config),
        "signed_at": _iso(a.signed_at, config),
        "released_at": _iso(a.released_at, config),
        "release_reason": a.release_reason,
    }


# ------------------------------------------------------------
# POST /v1/mandates/reserve — Réserver le prochain numéro
# ------------------------------------------------------------
@router.post("/v1/mandates/reserve", status_code=201)
def reserve(user=Depends(current_user), s: Session = Depends(db.get_session),
            config: MandateConfig = Depends(get_config), now: datetime = Depends(get_now)):
    allocation, number = AllocationLedger(s, config).reserve(user, now)
    return {"code": number.code, "deadline_at": _iso(allocation.deadline_at, config)}


# ------------------------------------------------------------
# POST /v1/mandates/{code}/deposits — Dépôt brouillon ou signé
# ------------------------------------------------------------
# La clé de stockage est opaque : l'upload lui-même se fait
# directement sur le stockage objet.
# ------------------------------------------------------------
@router.post("/v1/mandates/{code}/deposits")
def deposit(code: str, body: DepositIn, user=Depends(current_user), s: Session = Depends(db.get_session),
            config: MandateConfig = Depends(get_config), now: datetime = Depends(get_now)):
    allocation = AllocationLedger(s, config).record_deposit(code, user, body.kind, now, body.storage_key)
    return {"id": allocation.id, "code": code, "status": allocation.status}


@router.get("/v1/mandates/my")
def my_mandates(user=Depends(current_user), s: Session = Depends(db.get_session),
                config: MandateConfig = Depends(get_config)):
    rows = AllocationLedger(s, config).my_allocations(user)
    return [
        {
            **_allocation_out(a, n, config),
            "files": [{"id": f.id, "kind": f.kind, "storage_key": f.storage_key,
                       "created_at": _iso(f.created_at, config)} for f in files],
        }
        for a, n, files in rows
    ]


# ------------------------------------------------------------
# Admin — numéros de mandat
# ------------------------------------------------------------
@router.get("/v1/admin/mandate-numbers")
def list_numbers(status: Optional[str] = None, year: Optional[int] = None, q: Optional[str] = None,
                 page: int = 1, page_size: int = 50, admin=Depends(admin_user),
                 s: Session = Depends(db.get_session), config: MandateConfig = Depends(get_config)):
    return SequencePool(s, config).list_numbers(status=status, year=year, q=q, page=page, page_size=page_size)


@router.post("/v1/admin/mandate-numbers", status_code=201)
def create_number(body: NumberIn, admin=Depends(admin_user), s: Session = Depends(db.get_session),
                  config: MandateConfig = Depends(get_config), now: datetime = Depends(get_now)):
    year = body.year or to_local(now, config.tz).year
    return SequencePool(s, config).create_number(year, seq=body.seq, code=body.code)


@router.delete("/v1/admin/mandate-numbers/{number_id}")
def delete_number(number_id: int, admin=Depends(admin_user), s: Session = Depends(db.get_session),
                  config: MandateConfig = Depends(get_config)):
    SequencePool(s, config).delete_number(number_id)
    return {"ok": True}


@router.post("/v1/admin/mandate-numbers/{number_id}/release")
def release_number(number_id: int, admin=Depends(admin_user), s: Session = Depends(db.get_session),
                   config: MandateConfig = Depends(get_config), now: datetime = Depends(get_now)):
    released = AllocationLedger(s, config).release_number(admin, number_id, now)
    return {"ok": True, "released": released}


# ------------------------------------------------------------
# Admin — allocations
# ------------------------------------------------------------
@router.post("/v1/admin/allocations", status_code=201)
def allocate(body: AllocateIn, admin=Depends(admin_user), s: Session = Depends(db.get_session),
             config: MandateConfig = Depends(get_config), now: datetime = Depends(get_now)):
    allocation, number = AllocationLedger(s, config).allocate(admin, body.user_id, body.mandate_number_id, now)
    return _allocation_out(allocation, number, config)


@router.get("/v1/admin/allocations")
def list_allocations(status: Optional[str] = None, q: Optional[str] = None, page: int = 1,
                     page_size: int = 50, admin=Depends(admin_user), s: Session = Depends(db.get_session),
                     config: MandateConfig = Depends(get_config)):
    result = AllocationLedger(s, config).list_allocations(status=status, q=q, page=page, page_size=page_size)
    result["items"] = [
        {**_allocation_out(a, n, config), "user_email": u.email}
        for a, n, u in result["items"]
    ]
    return result


@router.patch("/v1/admin/allocations/{allocation_id}")
def override_allocation(allocation_id: int, body: StatusIn, admin=Depends(admin_user),
                        s: Session = Depends(db.get_session), config: MandateConfig = Depends(get_config),
                        now: datetime = Depends(get_now)):
    ledger = AllocationLedger(s, config)
    allocation = ledger.admin_override(admin, allocation_id, body.status, now)
    number = ledger.repo.get_number(allocation.mandate_number_id)
    return _allocation_out(allocation, number, config)


@router.post("/v1/admin/allocations/{allocation_id}/release")
def release_allocation(allocation_id: int, admin=Depends(admin_user), s: Session = Depends(db.get_session),
                       config: MandateConfig = Depends(get_config), now: datetime = Depends(get_now)):
    released = AllocationLedger(s, config).release(allocation_id, now, "admin")
    return {"ok": True, "released": released}


# ------------------------------------------------------------
# Admin — sweep manuel et resynchronisation des statuts
# ------------------------------------------------------------
@router.post("/v1/admin/sweep")
def run_sweep(admin=Depends(admin_user), engine=Depends(get_engine), notifier=Depends(get_notifier),
              config: MandateConfig = Depends(get_config), now: datetime = Depends(get_now)):
    return ReminderScheduler(engine, notifier, config).run_sweep_once(now).as_dict()


@router.post("/v1/admin/sync-statuses")
def sync_statuses(admin=Depends(admin_user), s: Session = Depends(db.get_session),
                  config: MandateConfig = Depends(get_config)):
    changed = AllocationLedger(s, config).sync_statuses()
    return {"ok": True, "changed": changed}
