# ============================================================
# errors.py — Erreurs métier du cycle de vie des mandats
# ------------------------------------------------------------
# Levées par le pool, le ledger et le scheduler ; la couche API
# les traduit en codes HTTP (voir api.py).
# ============================================================


class MandateError(Exception):
    """Base de toutes les erreurs métier."""

    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NoAvailableNumber(MandateError):
    """Le pool est vide et la génération d'un lot a échoué."""

    status_code = 409


class InvalidTransition(MandateError):
    """Étape du cycle de vie demandée dans le mauvais ordre."""

    status_code = 409


class Forbidden(MandateError):
    status_code = 403


class NotFound(MandateError):
    status_code = 404


class StoreConflict(MandateError):
    """Écriture concurrente perdue (claim ou contrainte d'unicité)."""

    status_code = 409
