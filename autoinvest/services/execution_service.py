"""
Execution service — records one scheduled run of an auto-invest plan.

The trade pipeline is external.  When a plan's ``next_execution_date`` is
reached it looks up the funding source, places the trades and reports back
through :meth:`ExecutionService.record_execution` with the amount it could
fund and the per-target outcomes.  This service turns that report into an
execution record, applies the plan's insufficient-funds policy and moves the
plan to its next cycle.

Insufficient funds never surface to the caller: ``skip`` and ``pause`` record
a failed execution, ``partial`` invests what is available.
"""

import logging
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from autoinvest.core.exceptions import (
    InsufficientFundsError,
    NotFoundException,
    PlanStateError,
)
from autoinvest.engine.allocation import CENT, AllocationTarget, allocate, tokens_for
from autoinvest.engine.recurrence import compute_next_execution
from autoinvest.models.execution import (
    INSUFFICIENT_FUNDS,
    AutoInvestExecution,
    AutoInvestExecutionDetail,
    DetailStatus,
    ExecutionStatus,
)
from autoinvest.models.plan import (
    AutoInvestAllocation,
    AutoInvestPlan,
    InsufficientFundsAction,
    PlanStatus,
)
from autoinvest.repositories.execution_repo import ExecutionRepository
from autoinvest.repositories.plan_repo import AllocationRepository, PlanRepository
from autoinvest.schemas.execution import (
    ExecutionDetailedResponse,
    ExecutionDetailResponse,
    ExecutionRequest,
    TargetResult,
)

logger = logging.getLogger(__name__)

TARGET_FAILED = "target_failed"
ALL_TARGETS_FAILED = "all_targets_failed"
NOT_EXECUTED = "not_executed"

_ALLOWED_TRANSITIONS: dict[ExecutionStatus, set[ExecutionStatus]] = {
    ExecutionStatus.PENDING: {ExecutionStatus.PROCESSING},
    ExecutionStatus.PROCESSING: {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.PARTIAL,
        ExecutionStatus.FAILED,
    },
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.PARTIAL: set(),
    ExecutionStatus.FAILED: set(),
}


def _transition(execution: AutoInvestExecution, requested: ExecutionStatus) -> None:
    if requested not in _ALLOWED_TRANSITIONS[execution.status]:
        raise PlanStateError(
            f"Execution cannot move from {execution.status.value} to {requested.value}"
        )
    execution.status = requested


class ExecutionService:
    """Execution recording and execution history."""

    def __init__(
        self,
        plan_repo: PlanRepository,
        allocation_repo: AllocationRepository,
        execution_repo: ExecutionRepository,
    ):
        self._plan_repo = plan_repo
        self._allocation_repo = allocation_repo
        self._execution_repo = execution_repo

    # ── Queries ──

    async def list_executions(
        self,
        user_id: UUID,
        plan_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AutoInvestExecution]:
        return await self._execution_repo.list_for_user(user_id, plan_id, skip=skip, limit=limit)

    async def get_execution(self, execution_id: UUID) -> ExecutionDetailedResponse:
        """An execution with its per-target details.  404 if unknown."""
        execution = await self._execution_repo.get(execution_id)
        if not execution:
            raise NotFoundException("Execution", execution_id)
        details = await self._execution_repo.list_details(execution_id)
        return _detailed(execution, details)

    # ── Commands ──

    async def record_execution(
        self, plan_id: UUID, request: ExecutionRequest, now: datetime
    ) -> ExecutionDetailedResponse:
        """
        Record one execution of ``plan_id``.

        The plan must be active and due, and the report must be for the
        cycle the plan is scheduled for.  The execution rows and the plan
        update are written in one transaction guarded on
        ``next_execution_date``, so two reports for the same cycle cannot
        both count; the loser gets a :class:`ConcurrencyError`.
        """
        plan = await self._plan_repo.get(plan_id)
        if not plan:
            raise NotFoundException("Auto-invest plan", plan_id)
        if plan.status != PlanStatus.ACTIVE:
            raise PlanStateError(
                f"Plan '{plan.name}' is {plan.status.value}; only active plans execute"
            )
        if plan.next_execution_date > now.date():
            raise PlanStateError(
                f"Plan '{plan.name}' is not due until {plan.next_execution_date.isoformat()}"
            )
        requested_date = request.execution_date
        if requested_date is not None and requested_date != plan.next_execution_date:
            raise PlanStateError(
                f"Execution date {requested_date.isoformat()} does not match the "
                f"scheduled cycle {plan.next_execution_date.isoformat()}"
            )

        execution = AutoInvestExecution(
            plan_id=plan.id,
            user_id=plan.user_id,
            execution_date=plan.next_execution_date,
            total_amount=plan.amount,
            actual_amount=Decimal("0"),
            status=ExecutionStatus.PENDING,
            created_at=now,
        )
        _transition(execution, ExecutionStatus.PROCESSING)

        funded = False
        try:
            amount = _fundable_amount(plan.amount, request.available_amount)
            funded = True
        except InsufficientFundsError as exc:
            logger.warning(
                "Plan %s: %s (policy=%s)",
                plan.id,
                exc,
                plan.insufficient_funds_action.value,
                extra={"plan_id": str(plan.id), "user_id": str(plan.user_id)},
            )
            amount = request.available_amount.quantize(CENT, rounding=ROUND_DOWN)
            if plan.insufficient_funds_action != InsufficientFundsAction.PARTIAL or amount <= 0:
                return await self._record_unfunded(plan, execution, now)

        allocations = await self._allocation_repo.list_by_plan(plan.id)
        details = _build_details(execution.id, amount, allocations, request.target_results)
        actual = sum((d.actual_amount for d in details), Decimal("0"))
        execution.actual_amount = actual

        if actual == 0:
            _transition(execution, ExecutionStatus.FAILED)
            execution.failure_reason = ALL_TARGETS_FAILED
        elif not funded:
            _transition(execution, ExecutionStatus.PARTIAL)
            execution.failure_reason = INSUFFICIENT_FUNDS
        elif any(d.status == DetailStatus.FAILED for d in details):
            _transition(execution, ExecutionStatus.PARTIAL)
            execution.failure_reason = TARGET_FAILED
        else:
            _transition(execution, ExecutionStatus.COMPLETED)
        if execution.status != ExecutionStatus.FAILED:
            execution.completed_at = now

        created = await self._advance(plan, execution, details, now, invested=actual)
        logger.info(
            "Recorded execution %s for plan %s: %s $%s of $%s across %d target(s)",
            created.id,
            plan.id,
            created.status.value,
            actual,
            plan.amount,
            len(details),
            extra={"plan_id": str(plan.id), "execution_id": str(created.id)},
        )
        return _detailed(created, details)

    # ── Helpers ──

    async def _record_unfunded(
        self, plan: AutoInvestPlan, execution: AutoInvestExecution, now: datetime
    ) -> ExecutionDetailedResponse:
        """Failed execution for ``skip``/``pause`` (or ``partial`` with nothing available)."""
        _transition(execution, ExecutionStatus.FAILED)
        execution.failure_reason = INSUFFICIENT_FUNDS

        if plan.insufficient_funds_action == InsufficientFundsAction.PAUSE:
            created = await self._plan_repo.pause_on_execution(
                plan.id,
                execution,
                expected_next_execution_date=plan.next_execution_date,
                paused_at=now,
            )
            logger.warning(
                "Paused plan %s after insufficient funds",
                plan.id,
                extra={"plan_id": str(plan.id)},
            )
        else:
            created = await self._advance(plan, execution, [], now, invested=Decimal("0"))
        return _detailed(created, [])

    async def _advance(
        self,
        plan: AutoInvestPlan,
        execution: AutoInvestExecution,
        details: Sequence[AutoInvestExecutionDetail],
        now: datetime,
        invested: Decimal,
    ) -> AutoInvestExecution:
        reference = max(now.date(), execution.execution_date)
        next_date = compute_next_execution(plan.frequency, plan.schedule_anchor, reference)
        return await self._plan_repo.apply_execution(
            plan.id,
            execution,
            details,
            expected_next_execution_date=plan.next_execution_date,
            next_execution_date=next_date,
            invested=invested,
            executions=1 if invested > 0 else 0,
            executed_at=now if invested > 0 else None,
            updated_at=now,
        )


def _fundable_amount(required: Decimal, available: Decimal) -> Decimal:
    if available < required:
        raise InsufficientFundsError(required=required, available=available)
    return required


def _build_details(
    execution_id: UUID,
    amount: Decimal,
    allocations: Sequence[AutoInvestAllocation],
    target_results: Sequence[TargetResult],
) -> List[AutoInvestExecutionDetail]:
    """One detail per allocation; targets without a reported result are not executed."""
    results: Dict[str, TargetResult] = {r.target_id: r for r in target_results}
    shares = allocate(
        amount,
        [AllocationTarget(key=a.target_key, percent=a.allocation_percent) for a in allocations],
    )
    details = []
    for allocation, share in zip(allocations, shares):
        result = results.get(share.key)
        detail = AutoInvestExecutionDetail(
            execution_id=execution_id,
            target_type=allocation.target_type,
            target_id=share.key,
            target_name=(result.target_name if result and result.target_name else share.key),
            intended_amount=share.amount,
            actual_amount=Decimal("0"),
            status=DetailStatus.FAILED,
        )
        if result is None:
            detail.failure_reason = NOT_EXECUTED
        elif not result.success:
            detail.failure_reason = result.failure_reason or TARGET_FAILED
        else:
            detail.status = DetailStatus.SUCCESS
            detail.actual_amount = share.amount
            detail.token_price = result.token_price
            detail.tokens_purchased = tokens_for(share.amount, result.token_price)
            detail.transaction_id = result.transaction_id
        details.append(detail)
    return details


def _detailed(
    execution: AutoInvestExecution, details: Sequence[AutoInvestExecutionDetail]
) -> ExecutionDetailedResponse:
    response = ExecutionDetailedResponse.model_validate(execution)
    response.details = [ExecutionDetailResponse.model_validate(d) for d in details]
    return response
