"""Unit tests for the allocation state machine (pure decisions, no database)."""

from datetime import datetime, timedelta, timezone

import pytest

from services.mandate.errors import InvalidTransition
from services.mandate.lifecycle import (
    AddDeposit,
    ClaimNumber,
    CreateAllocation,
    SetNumberStatus,
    UpdateAllocation,
    number_status_for,
    plan_deposit,
    plan_override,
    plan_release,
    plan_reservation,
)
from services.mandate.models import AVAILABLE, DRAFT, RELEASED, RESERVED, SIGNED

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


class TestReservation:
    def test_claims_then_creates_allocation(self) -> None:
        t = plan_reservation(NOW, 7)
        assert t.status == RESERVED
        assert isinstance(t.writes[0], ClaimNumber)
        create = t.writes[1]
        assert isinstance(create, CreateAllocation)
        assert create.reserved_at == NOW
        assert create.deadline_at == NOW + timedelta(days=7)

    def test_window_is_configurable(self) -> None:
        create = plan_reservation(NOW, 3).writes[1]
        assert create.deadline_at == NOW + timedelta(days=3)


class TestDeposit:
    def test_first_draft_moves_to_draft(self) -> None:
        t = plan_deposit(RESERVED, DRAFT, NOW, "460 M 25/draft.pdf")
        assert t.status == DRAFT
        assert t.writes == [
            AddDeposit(kind=DRAFT, storage_key="460 M 25/draft.pdf"),
            UpdateAllocation({"status": DRAFT}),
        ]

    def test_additional_draft_only_appends_file(self) -> None:
        t = plan_deposit(DRAFT, DRAFT, NOW)
        assert t.status == DRAFT
        assert t.writes == [AddDeposit(kind=DRAFT)]

    @pytest.mark.parametrize("status", [RESERVED, DRAFT])
    def test_signed_flips_allocation_and_number(self, status) -> None:
        t = plan_deposit(status, SIGNED, NOW)
        assert t.status == SIGNED
        assert UpdateAllocation({"status": SIGNED, "signed_at": NOW}) in t.writes
        assert SetNumberStatus(SIGNED) in t.writes

    @pytest.mark.parametrize("status", [SIGNED, RELEASED])
    @pytest.mark.parametrize("kind", [DRAFT, SIGNED])
    def test_terminal_allocation_rejects_deposit(self, status, kind) -> None:
        with pytest.raises(InvalidTransition):
            plan_deposit(status, kind, NOW)

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(InvalidTransition):
            plan_deposit(RESERVED, "SCAN", NOW)


class TestRelease:
    @pytest.mark.parametrize("status", [RESERVED, DRAFT])
    def test_open_allocation_is_released(self, status) -> None:
        t = plan_release(status, NOW, "deadline_expired")
        assert t.status == RELEASED
        assert t.writes == [
            UpdateAllocation({"status": RELEASED, "released_at": NOW, "release_reason": "deadline_expired"}),
            SetNumberStatus(AVAILABLE),
        ]

    def test_release_of_released_is_noop(self) -> None:
        t = plan_release(RELEASED, NOW, "deadline_expired")
        assert t.status == RELEASED
        assert t.noop

    def test_signed_cannot_be_released(self) -> None:
        with pytest.raises(InvalidTransition):
            plan_release(SIGNED, NOW, "deadline_expired")


class TestOverride:
    @pytest.mark.parametrize("new_status,number_status", [
        (RESERVED, RESERVED),
        (DRAFT, RESERVED),
        (SIGNED, SIGNED),
        (RELEASED, AVAILABLE),
    ])
    def test_number_follows_forced_status(self, new_status, number_status) -> None:
        t = plan_override(RESERVED, new_status, NOW)
        assert t.status == new_status
        assert SetNumberStatus(number_status) in t.writes

    def test_override_can_leave_terminal_state(self) -> None:
        t = plan_override(RELEASED, DRAFT, NOW)
        assert t.writes[0] == UpdateAllocation({"status": DRAFT})

    def test_forced_release_stamps_audit_fields(self) -> None:
        values = plan_override(DRAFT, RELEASED, NOW).writes[0].values
        assert values["released_at"] == NOW
        assert values["release_reason"] == "admin_override"

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(InvalidTransition):
            plan_override(RESERVED, "LOST", NOW)


def test_number_status_projection() -> None:
    assert number_status_for(RESERVED) == RESERVED
    assert number_status_for(DRAFT) == RESERVED
    assert number_status_for(SIGNED) == SIGNED
    assert number_status_for(RELEASED) == AVAILABLE
    assert number_status_for(None) == AVAILABLE
