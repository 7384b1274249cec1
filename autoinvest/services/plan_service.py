"""
Plan service — lifecycle and configuration of auto-invest plans.

Lifecycle::

    create ─▶ active ◀──resume── paused
                │  └────pause────▶ │
                └──cancel──▶ cancelled ◀──cancel──┘   (terminal)

Every transition is written with a status-guarded update, so a plan that
another request cancelled between our read and our write surfaces as a
:class:`ConcurrencyError` instead of being silently resurrected.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from autoinvest.core.exceptions import (
    NotFoundException,
    PlanStateError,
    ValidationError,
)
from autoinvest.engine.allocation import validate_percentages
from autoinvest.engine.recurrence import compute_resume_date, monthly_equivalent
from autoinvest.models.plan import (
    AutoInvestAllocation,
    AutoInvestPlan,
    FundingSource,
    PlanStatus,
    TargetType,
)
from autoinvest.repositories.plan_repo import AllocationRepository, PlanRepository
from autoinvest.schemas.plan import (
    AllocationIn,
    AllocationResponse,
    PlanCreate,
    PlanDetailResponse,
    PlanStatsResponse,
    PlanUpdate,
)

logger = logging.getLogger(__name__)


class PlanService:
    """Encapsulates CRUD + lifecycle rules for :class:`AutoInvestPlan`."""

    def __init__(self, plan_repo: PlanRepository, allocation_repo: AllocationRepository):
        self._plan_repo = plan_repo
        self._allocation_repo = allocation_repo

    # ── Queries ──

    async def get_plan(self, plan_id: UUID) -> PlanDetailResponse:
        """Return a plan with its allocations.  404 if it does not exist."""
        plan = await self._get_or_404(plan_id)
        allocations = await self._allocation_repo.list_by_plan(plan_id)
        detail = PlanDetailResponse.model_validate(plan)
        detail.allocations = [AllocationResponse.model_validate(a) for a in allocations]
        return detail

    async def list_plans(self, user_id: UUID) -> List[AutoInvestPlan]:
        return await self._plan_repo.list_by_user(user_id)

    async def get_stats(self, user_id: UUID) -> PlanStatsResponse:
        """Dashboard totals: active plans, monthly equivalent, lifetime totals."""
        plans = await self._plan_repo.list_by_user(user_id)
        active = [p for p in plans if p.status == PlanStatus.ACTIVE]
        return PlanStatsResponse(
            active_plans=len(active),
            monthly_amount=sum(
                (monthly_equivalent(p.frequency, p.amount) for p in active), Decimal("0")
            ),
            total_invested=sum((p.total_invested for p in plans), Decimal("0")),
            total_executions=sum(p.total_executions for p in plans),
        )

    # ── Commands ──

    async def create_plan(self, user_id: UUID, plan_in: PlanCreate, now: datetime) -> AutoInvestPlan:
        """
        Validate and persist a new plan with its allocations.

        The plan starts ``active`` with ``next_execution_date = start_date``
        and zeroed totals.  Raises :class:`ValidationError` (or its subclass
        :class:`InvalidAllocationError`) naming the offending field.
        """
        _validate_name(plan_in.name)
        _validate_amount(plan_in.amount)
        _validate_funding(plan_in.funding_source, plan_in.linked_account_id)
        _validate_allocations(plan_in.allocations)

        plan = AutoInvestPlan(
            user_id=user_id,
            name=plan_in.name.strip(),
            frequency=plan_in.frequency,
            amount=plan_in.amount,
            funding_source=plan_in.funding_source,
            linked_account_id=plan_in.linked_account_id,
            insufficient_funds_action=plan_in.insufficient_funds_action,
            start_date=plan_in.start_date,
            schedule_anchor=plan_in.start_date,
            next_execution_date=plan_in.start_date,
            status=PlanStatus.ACTIVE,
            total_invested=Decimal("0"),
            total_executions=0,
            created_at=now,
            updated_at=now,
        )
        allocations = [
            AutoInvestAllocation(
                plan_id=plan.id,
                target_type=a.target_type,
                target_id=a.target_id if a.target_type != TargetType.CATEGORY else None,
                category=a.category if a.target_type == TargetType.CATEGORY else None,
                allocation_percent=a.allocation_percent,
            )
            for a in plan_in.allocations
        ]
        try:
            created = await self._plan_repo.create_with_allocations(plan, allocations)
        except IntegrityError as exc:
            await self._plan_repo.db.rollback()
            logger.warning("IntegrityError creating plan for user %s: %s", user_id, exc)
            raise ValidationError("Plan data violates a database constraint. Check all fields.")

        logger.info(
            "Created plan %s (%s) for user %s: $%s %s from %s",
            created.id,
            created.name,
            created.user_id,
            created.amount,
            created.frequency.value,
            created.start_date,
            extra={"plan_id": str(created.id), "user_id": str(created.user_id)},
        )
        return created

    async def update_plan(self, plan_id: UUID, plan_update: PlanUpdate, now: datetime) -> AutoInvestPlan:
        """
        Partially update a non-cancelled plan.

        Allocation weights are edited in place; the edited set must still
        sum to 100.
        """
        plan = await self._get_or_404(plan_id)
        if plan.status == PlanStatus.CANCELLED:
            raise PlanStateError(f"Plan '{plan.name}' is cancelled and can no longer be edited")

        changes = plan_update.model_dump(exclude_unset=True, exclude={"allocation_percents"})
        if "name" in changes:
            _validate_name(changes["name"])
            changes["name"] = changes["name"].strip()
        if "amount" in changes:
            _validate_amount(changes["amount"])
        if "funding_source" in changes or "linked_account_id" in changes:
            funding_source = changes.get("funding_source", plan.funding_source)
            linked_account_id = changes.get("linked_account_id", plan.linked_account_id)
            if funding_source == FundingSource.WALLET and "linked_account_id" not in changes:
                linked_account_id = None
                changes["linked_account_id"] = None
            _validate_funding(funding_source, linked_account_id)

        if plan_update.allocation_percents:
            allocations = await self._allocation_repo.list_by_plan(plan_id)
            known = {a.id for a in allocations}
            unknown = set(plan_update.allocation_percents) - known
            if unknown:
                raise ValidationError(
                    f"Allocations {sorted(str(u) for u in unknown)} do not belong to this plan",
                    field="allocation_percents",
                )
            validate_percentages(
                [plan_update.allocation_percents.get(a.id, a.allocation_percent) for a in allocations],
                field="allocation_percents",
            )
            await self._allocation_repo.update_percents(plan_id, plan_update.allocation_percents)

        changes["updated_at"] = now
        updated = await self._plan_repo.update_fields(plan_id, changes, [plan.status])
        logger.info(
            "Updated plan %s (%s)",
            plan_id,
            ", ".join(sorted(k for k in changes if k != "updated_at")) or "allocations",
            extra={"plan_id": str(plan_id)},
        )
        return updated

    async def pause_plan(
        self, plan_id: UUID, now: datetime, pause_until: Optional[date] = None
    ) -> AutoInvestPlan:
        """
        Pause an active plan, or re-pause a paused one (idempotent).

        Re-pausing keeps the original ``paused_at`` and replaces
        ``pause_until``.  ``pause_until=None`` means indefinitely; either way
        only an explicit resume reactivates the plan.
        """
        plan = await self._get_or_404(plan_id)
        _validate_status_transition(plan, PlanStatus.PAUSED, "pause")
        if pause_until is not None and pause_until < now.date():
            raise ValidationError("pause_until must not be in the past", field="pause_until")

        values = {"status": PlanStatus.PAUSED, "pause_until": pause_until, "updated_at": now}
        if plan.status == PlanStatus.ACTIVE:
            values["paused_at"] = now
        paused = await self._plan_repo.update_fields(
            plan_id, values, [PlanStatus.ACTIVE, PlanStatus.PAUSED]
        )
        logger.info(
            "Paused plan %s until %s",
            plan_id,
            pause_until or "manual resume",
            extra={"plan_id": str(plan_id)},
        )
        return paused

    async def resume_plan(self, plan_id: UUID, now: datetime) -> AutoInvestPlan:
        """
        Reactivate a paused plan.

        The next execution is scheduled for the day after ``now`` (never
        before ``start_date``) and the cadence is re-anchored on that date.
        """
        plan = await self._get_or_404(plan_id)
        _validate_status_transition(plan, PlanStatus.ACTIVE, "resume")

        next_date = max(plan.start_date, compute_resume_date(plan.frequency, now))
        resumed = await self._plan_repo.update_fields(
            plan_id,
            {
                "status": PlanStatus.ACTIVE,
                "paused_at": None,
                "pause_until": None,
                "next_execution_date": next_date,
                "schedule_anchor": next_date,
                "updated_at": now,
            },
            [PlanStatus.PAUSED],
        )
        logger.info(
            "Resumed plan %s; next execution %s",
            plan_id,
            next_date,
            extra={"plan_id": str(plan_id)},
        )
        return resumed

    async def cancel_plan(self, plan_id: UUID, now: datetime) -> AutoInvestPlan:
        """Cancel an active or paused plan.  Terminal; past purchases are untouched."""
        plan = await self._get_or_404(plan_id)
        _validate_status_transition(plan, PlanStatus.CANCELLED, "cancel")

        cancelled = await self._plan_repo.update_fields(
            plan_id,
            {
                "status": PlanStatus.CANCELLED,
                "paused_at": None,
                "pause_until": None,
                "updated_at": now,
            },
            [PlanStatus.ACTIVE, PlanStatus.PAUSED],
        )
        logger.info("Cancelled plan %s", plan_id, extra={"plan_id": str(plan_id)})
        return cancelled

    async def delete_plan(self, plan_id: UUID) -> None:
        """Hard-delete a plan and its allocations.  Execution history is kept."""
        await self._get_or_404(plan_id)
        deleted = await self._plan_repo.delete_with_allocations(plan_id)
        if not deleted:
            raise NotFoundException("Auto-invest plan", plan_id)
        logger.info("Deleted plan %s", plan_id, extra={"plan_id": str(plan_id)})

    # ── Helpers ──

    async def _get_or_404(self, plan_id: UUID) -> AutoInvestPlan:
        plan = await self._plan_repo.get(plan_id)
        if not plan:
            raise NotFoundException("Auto-invest plan", plan_id)
        return plan


_ALLOWED_TRANSITIONS: dict[PlanStatus, set[PlanStatus]] = {
    PlanStatus.ACTIVE: {PlanStatus.PAUSED, PlanStatus.CANCELLED},
    PlanStatus.PAUSED: {PlanStatus.PAUSED, PlanStatus.ACTIVE, PlanStatus.CANCELLED},
    PlanStatus.CANCELLED: set(),  # terminal
}


def _validate_status_transition(plan: AutoInvestPlan, requested: PlanStatus, action: str) -> None:
    """Raise :class:`PlanStateError` unless ``plan`` may move to ``requested``."""
    if requested not in _ALLOWED_TRANSITIONS.get(plan.status, set()):
        raise PlanStateError(
            f"Cannot {action} plan '{plan.name}' while it is {plan.status.value}"
        )


def _validate_name(name: str) -> None:
    if not name or not name.strip():
        raise ValidationError("Plan name must not be empty", field="name")


def _validate_amount(amount: Decimal) -> None:
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be greater than zero", field="amount")


def _validate_funding(funding_source: FundingSource, linked_account_id: Optional[UUID]) -> None:
    if funding_source == FundingSource.LINKED_ACCOUNT and linked_account_id is None:
        raise ValidationError(
            "A linked account is required when funding from a linked account",
            field="linked_account_id",
        )
    if funding_source == FundingSource.WALLET and linked_account_id is not None:
        raise ValidationError(
            "linked_account_id must be empty when funding from the wallet",
            field="linked_account_id",
        )


def _validate_allocations(allocations: List[AllocationIn]) -> None:
    """Target fields must match the target type; targets are unique; weights sum to 100."""
    seen = set()
    for index, allocation in enumerate(allocations):
        field = f"allocations[{index}]"
        if allocation.target_type == TargetType.CATEGORY:
            if not allocation.category:
                raise ValidationError("Category allocations require a category", field=field)
            key = ("category", allocation.category)
        else:
            if not allocation.target_id:
                raise ValidationError(
                    f"{allocation.target_type.value.capitalize()} allocations require a target_id",
                    field=field,
                )
            key = (allocation.target_type.value, allocation.target_id)
        if key in seen:
            raise ValidationError(f"Duplicate allocation target '{key[1]}'", field=field)
        seen.add(key)

    validate_percentages([a.allocation_percent for a in allocations])
