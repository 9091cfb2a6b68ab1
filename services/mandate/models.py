# ============================================================
# models.py — Modèles de données SQLModel (Mandate Service)
# ------------------------------------------------------------
# Définit les tables :
#   1️. User : projection minimale de l'annuaire (id, email, rôle)
#   2️. MandateNumber : numéro de mandat "<seq> M <yy>"
#   3️. MandateAllocation : réservation d'un numéro par un agent
#   4️. MandateFile : dépôt (brouillon ou signé) rattaché à une allocation
#   5️. SentNotification : trace des rappels déjà envoyés
# ============================================================
from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from services.mandate.clock import utcnow
from services.mandate.types import UTCDateTime

# Rôles
AGENT = "AGENT"
ADMIN = "ADMIN"

# Statuts d'un numéro
AVAILABLE = "AVAILABLE"
RESERVED = "RESERVED"
SIGNED = "SIGNED"

# Statuts d'une allocation (RESERVED et SIGNED sont partagés avec le numéro)
DRAFT = "DRAFT"
RELEASED = "RELEASED"

ALLOCATION_STATUSES = (RESERVED, DRAFT, SIGNED, RELEASED)
ACTIVE_STATUSES = (RESERVED, DRAFT, SIGNED)
OPEN_STATUSES = (RESERVED, DRAFT)

# Types de dépôt
DEPOSIT_KINDS = (DRAFT, SIGNED)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    first_name: Optional[str] = None
    role: str = AGENT                   # AGENT | ADMIN
    active: bool = True


# ------------------------------------------------------------
# MandateNumber
# ------------------------------------------------------------
# Un seul numéro par (year, seq), code dérivé de (seq, year).
# Le statut est une projection de l'allocation active :
#   AVAILABLE (aucune), RESERVED (RESERVED/DRAFT), SIGNED.
# ------------------------------------------------------------
class MandateNumber(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("year", "seq", name="uq_mandate_year_seq"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)
    year: int = Field(index=True)
    seq: int
    status: str = Field(default=AVAILABLE, index=True)   # AVAILABLE|RESERVED|SIGNED


# ------------------------------------------------------------
# MandateAllocation
# ------------------------------------------------------------
# Cycle de vie : RESERVED → DRAFT → SIGNED, ou RELEASED à
# l'échéance. RELEASED est terminal.
# ------------------------------------------------------------
class MandateAllocation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    mandate_number_id: int = Field(foreign_key="mandatenumber.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    status: str = Field(default=RESERVED, index=True)
    reserved_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    deadline_at: datetime = Field(sa_type=UTCDateTime)
    signed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    released_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    release_reason: Optional[str] = None


class MandateFile(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    allocation_id: int = Field(foreign_key="mandateallocation.id", index=True)
    kind: str                           # DRAFT | SIGNED
    storage_key: str = ""
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class SentNotification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(index=True, unique=True)
    sent_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
