"""
Workflow executor.

Runs a ``WorkflowPlan`` as a dependency graph:

- A step starts once all of its dependencies have finished; independent
  steps run concurrently, at most ``plan.max_parallel_nodes`` at a time.
- Each step has its own retry policy and per-attempt timeout.
- A step whose required dependency did not succeed is SKIPPED. A failed
  optional dependency is soft: the step runs with the upstream results that
  did succeed.
- Results carried over from an earlier revision are reused, not re-run.
- A failed (or skipped) required step aborts the plan: nothing new is
  scheduled, in-flight steps finish, the remainder is SKIPPED.
- Side-effect-free steps with no mutating ancestors are served from the
  plan cache when their plan signature matches.
- Cancellation (``cancel_event`` or cancelling the awaiting task) stops
  scheduling; in-flight steps are left to finish and results are discarded.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Optional

from ..agents.registry import AgentRegistry
from ..config import WorkflowConfig
from ..domain.entities import (
    AggregatedResult,
    BackupPlan,
    ComponentHealth,
    HealthStatus,
    PlanStatus,
    RequestContext,
    Step,
    StepContext,
    StepKind,
    StepResult,
    StepStatus,
    WorkflowPlan,
)
from ..exceptions import ConfigurationError, StepFailedError
from ..providers.cache import ResponseCache
from ..providers.manager import ProviderManager
from ..resilience import retry_async, with_timeout

logger = logging.getLogger(__name__)


class WorkflowExecutor:
    """Dependency-scheduled plan execution with a plan result cache.

    Example:
        executor = WorkflowExecutor(registry, provider_manager, WorkflowConfig())
        result = await executor.execute(plan, context)
    """

    def __init__(
        self,
        agents: AgentRegistry,
        providers: ProviderManager,
        config: Optional[WorkflowConfig] = None,
        plan_cache: Optional[ResponseCache] = None,
    ):
        self.agents = agents
        self.providers = providers
        self.config = config or WorkflowConfig()
        self.plan_cache = plan_cache or ResponseCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            name="workflow",
        )

        self._executions = 0
        self._completed = 0
        self._failed = 0
        self._cancelled = 0
        self._total_execution_ms = 0.0
        self._step_cache_lookups = 0
        self._step_cache_hits = 0

        # Steps left running after the awaiting task was cancelled
        self._detached: set[asyncio.Task] = set()

    # ============================================
    # Plan Execution
    # ============================================

    async def execute(
        self,
        plan: WorkflowPlan,
        context: RequestContext,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AggregatedResult:
        """Execute ``plan`` and aggregate the step results.

        Raises:
            asyncio.CancelledError: If the awaiting task is cancelled
        """
        self._executions += 1
        started = time.perf_counter()
        cacheable = self._cacheable_steps(plan)

        results: dict[str, StepResult] = {}
        pending: dict[str, Step] = {s.step_id: s for s in plan.topological_order()}
        for step_id, carried in plan.carried_results.items():
            if pending.pop(step_id, None) is not None:
                results[step_id] = carried
        running: dict[asyncio.Task, str] = {}
        aborted_by: Optional[str] = None
        cancelled = False

        try:
            while pending or running:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True

                if not cancelled and aborted_by is None:
                    aborted_by = self._schedule(plan, context, pending, running, results, cacheable)

                if not running:
                    break

                waiters: set[asyncio.Task] = set(running)
                cancel_waiter = None
                if cancel_event is not None and not cancelled:
                    cancel_waiter = asyncio.create_task(cancel_event.wait())
                    waiters.add(cancel_waiter)

                try:
                    done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    if cancel_waiter is not None and not cancel_waiter.done():
                        cancel_waiter.cancel()

                for task in done:
                    if task is cancel_waiter:
                        continue
                    step_id = running.pop(task)
                    result = task.result()
                    results[step_id] = result
                    if (
                        result.status == StepStatus.FAILED
                        and plan.get_step(step_id).required
                        and aborted_by is None
                    ):
                        aborted_by = step_id
                        logger.warning(
                            f"Required step '{step_id}' failed in plan {plan.plan_id}: "
                            f"{result.error}"
                        )

        except asyncio.CancelledError:
            # In-flight step tasks are not cancelled; they run to completion
            self._cancelled += 1
            for task in running:
                self._detached.add(task)
                task.add_done_callback(self._detached.discard)
            logger.info(f"Plan {plan.plan_id} cancelled by caller ({len(running)} in flight)")
            raise

        latency_ms = (time.perf_counter() - started) * 1000
        self._total_execution_ms += latency_ms

        if cancelled:
            self._cancelled += 1
            logger.info(f"Plan {plan.plan_id} cancelled")
            return AggregatedResult(
                plan_id=plan.plan_id,
                status=PlanStatus.CANCELLED,
                latency_ms=latency_ms,
                revision=plan.revision,
            )

        for step_id in pending:
            results[step_id] = StepResult(
                step_id=step_id,
                status=StepStatus.SKIPPED,
                error=f"plan aborted after '{aborted_by}' failed",
            )

        aggregated = self._aggregate(plan, results, latency_ms, aborted_by)
        if aggregated.status == PlanStatus.COMPLETED:
            self._completed += 1
        else:
            self._failed += 1
        return aggregated

    def _schedule(
        self,
        plan: WorkflowPlan,
        context: RequestContext,
        pending: dict[str, Step],
        running: dict[asyncio.Task, str],
        results: dict[str, StepResult],
        cacheable: set[str],
    ) -> Optional[str]:
        """Start every ready step (within the parallelism bound).

        Returns:
            The id of a required step that had to be skipped, if any
        """
        progressed = True
        while progressed:
            progressed = False
            for step_id, step in list(pending.items()):
                if len(running) >= plan.max_parallel_nodes:
                    return None
                if any(dep not in results for dep in step.depends_on):
                    continue

                del pending[step_id]
                progressed = True
                unmet = [
                    d
                    for d in step.depends_on
                    if not results[d].succeeded and plan.get_step(d).required
                ]
                if unmet:
                    results[step_id] = StepResult(
                        step_id=step_id,
                        status=StepStatus.SKIPPED,
                        error=f"dependencies not satisfied: {unmet}",
                    )
                    if step.required:
                        logger.warning(
                            f"Required step '{step_id}' skipped in plan {plan.plan_id} "
                            f"(unmet: {unmet})"
                        )
                        return step_id
                    continue

                upstream = {d: results[d] for d in step.depends_on if results[d].succeeded}
                task = asyncio.create_task(
                    self._run_step(plan, step, context, upstream, step_id in cacheable)
                )
                running[task] = step_id
        return None

    # ============================================
    # Single Step
    # ============================================

    async def _run_step(
        self,
        plan: WorkflowPlan,
        step: Step,
        context: RequestContext,
        upstream: dict[str, StepResult],
        cacheable: bool,
    ) -> StepResult:
        """Run one step with its retry policy; never raises (except cancellation)."""
        cache_key = f"{plan.signature}:{step.step_id}"
        if cacheable:
            self._step_cache_lookups += 1
            cached = self.plan_cache.get(cache_key)
            if cached is not None:
                self._step_cache_hits += 1
                logger.debug(f"Step '{step.step_id}' served from plan cache")
                return dataclasses.replace(
                    cached,
                    status=StepStatus.CACHED,
                    cache_hit=True,
                    cost=0.0,
                    latency_ms=0.0,
                    attempts=0,
                )

        step_context = StepContext(
            request=context,
            intent=plan.intent,
            slots=dict(plan.slots),
            upstream=upstream,
        )
        policy = step.retry_policy
        attempts = 0
        started = time.perf_counter()

        async def attempt() -> StepResult:
            nonlocal attempts
            attempts += 1
            return await with_timeout(self._dispatch, step.timeout_seconds, step, step_context)

        try:
            result = await retry_async(
                attempt,
                max_attempts=policy.max_attempts,
                backoff_factor=policy.backoff_factor,
                initial_delay=policy.initial_delay,
                max_delay=policy.max_delay,
                retryable_exceptions=(Exception,),
            )
        except Exception as e:
            failure = StepFailedError(
                f"Step '{step.step_id}' failed after {attempts} attempt(s): {e}",
                step_id=step.step_id,
                attempts=attempts,
                required=step.required,
                cause=e,
            )
            logger.warning(str(failure))
            return StepResult(
                step_id=step.step_id,
                status=StepStatus.FAILED,
                attempts=attempts,
                latency_ms=(time.perf_counter() - started) * 1000,
                error=failure.message,
                agent_tag=step.capability_tag if step.kind == StepKind.AGENT else None,
            )

        result.attempts = attempts
        result.latency_ms = (time.perf_counter() - started) * 1000
        if cacheable and result.status == StepStatus.SUCCEEDED and not result.degraded:
            self.plan_cache.set(cache_key, result)
        return result

    async def _dispatch(self, step: Step, context: StepContext) -> StepResult:
        if step.kind == StepKind.DISAMBIGUATION:
            return self._disambiguate(step)

        if step.kind == StepKind.AGENT:
            agent = self.agents.get(step.capability_tag)
            if agent is None:
                raise ConfigurationError(
                    f"No agent registered for '{step.capability_tag}'",
                    invalid_keys=[step.capability_tag],
                )
            return await agent.handle(step, context)

        payload = self._provider_payload(step, context)
        response = await self.providers.invoke(step.capability_tag, payload, step.quality_floor)
        return StepResult(
            step_id=step.step_id,
            status=StepStatus.SUCCEEDED,
            output={"text": response.text, "tokens": response.tokens},
            cost=response.cost,
            provider_id=response.provider_id,
            cache_hit=response.cache_hit,
            degraded=response.degraded,
        )

    @staticmethod
    def _provider_payload(step: Step, context: StepContext) -> dict[str, Any]:
        """Step payload plus upstream context appended to the prompt."""
        payload = dict(step.payload)
        notes = [r.text for r in context.upstream.values() if r.succeeded and r.text]
        if notes:
            payload["prompt"] = (
                payload.get("prompt", "") + "\n\nRelevant context:\n" + "\n".join(notes)
            )
        return payload

    @staticmethod
    def _disambiguate(step: Step) -> StepResult:
        candidates = [c.replace("_", " ") for c in step.payload.get("candidates", [])]
        if len(candidates) > 1:
            options = ", ".join(candidates[:-1]) + f" or {candidates[-1]}"
            question = f"Just to be sure I help with the right thing: are you looking for {options}?"
        else:
            question = (
                "Could you tell me a bit more about what you're looking for? "
                "I can plan trips, find flights or hotels, and suggest places to eat or visit."
            )
        return StepResult(
            step_id=step.step_id,
            status=StepStatus.SUCCEEDED,
            output={"text": question, "candidates": step.payload.get("candidates", [])},
        )

    # ============================================
    # Aggregation
    # ============================================

    def _cacheable_steps(self, plan: WorkflowPlan) -> set[str]:
        """Side-effect-free steps with no mutating ancestor."""
        cacheable: set[str] = set()
        if not self.config.cache_enabled:
            return cacheable
        for step in plan.topological_order():
            if step.kind == StepKind.DISAMBIGUATION or not plan.signature:
                continue
            if step.side_effect_free and all(d in cacheable for d in step.depends_on):
                cacheable.add(step.step_id)
        return cacheable

    def _aggregate(
        self,
        plan: WorkflowPlan,
        results: dict[str, StepResult],
        latency_ms: float,
        aborted_by: Optional[str],
    ) -> AggregatedResult:
        failed_required = aborted_by
        if failed_required is None:
            for step in plan.steps:
                if step.required and not results[step.step_id].succeeded:
                    failed_required = step.step_id
                    break

        message = ""
        for step_id in plan.response_steps:
            result = results.get(step_id)
            if result is not None and result.succeeded and result.text:
                message = result.text
                break

        clarification = None
        for step in plan.steps:
            if step.kind == StepKind.DISAMBIGUATION and results[step.step_id].succeeded:
                clarification = results[step.step_id].text
        if clarification:
            message = f"{message}\n\n{clarification}" if message else clarification

        agents_used: list[str] = []
        backup_plans: list[BackupPlan] = []
        emotional_impacts: list[float] = []
        carbon: list[float] = []
        for step in plan.steps:
            result = results[step.step_id]
            if not result.succeeded:
                continue
            used = result.provider_id if step.kind == StepKind.PROVIDER else result.agent_tag
            if used and used not in agents_used:
                agents_used.append(used)
            backup_plans.extend(result.backup_plans)
            if result.emotional_impact is not None:
                emotional_impacts.append(result.emotional_impact)
            if result.carbon_saved is not None:
                carbon.append(result.carbon_saved)

        provider_results = [
            results[s.step_id] for s in plan.steps if s.kind == StepKind.PROVIDER
        ]
        status = PlanStatus.FAILED if failed_required else PlanStatus.COMPLETED

        return AggregatedResult(
            plan_id=plan.plan_id,
            status=status,
            step_results=results,
            message=message,
            total_cost=round(sum(r.cost for r in results.values()), 6),
            latency_ms=latency_ms,
            cache_hit=any(r.cache_hit for r in provider_results),
            degraded=status == PlanStatus.FAILED
            or any(r.degraded for r in results.values() if r.succeeded),
            failed_required_step=failed_required,
            agents_used=agents_used,
            emotional_impact=max(emotional_impacts) if emotional_impacts else None,
            carbon_saved=round(sum(carbon), 2) if carbon else None,
            backup_plans=backup_plans,
            revision=plan.revision,
        )

    # ============================================
    # Metrics and Health
    # ============================================

    def get_metrics(self) -> dict[str, Any]:
        finished = self._completed + self._failed
        return {
            "executions": self._executions,
            "completed": self._completed,
            "failed": self._failed,
            "cancelled": self._cancelled,
            "avg_execution_ms": self._total_execution_ms / finished if finished else 0.0,
            "success_rate": self._completed / finished if finished else 1.0,
            "cache_hit_rate": (
                self._step_cache_hits / self._step_cache_lookups
                if self._step_cache_lookups
                else 0.0
            ),
            "plan_cache": self.plan_cache.get_stats(),
        }

    def health_check(self) -> ComponentHealth:
        metrics = self.get_metrics()
        finished = self._completed + self._failed
        status = HealthStatus.HEALTHY
        if finished >= 5 and metrics["success_rate"] < 0.9:
            status = HealthStatus.DEGRADED
        return ComponentHealth(
            name="workflow",
            status=status,
            details={
                "success_rate": round(metrics["success_rate"], 4),
                "avg_execution_ms": round(metrics["avg_execution_ms"], 2),
            },
        )

    def cleanup(self) -> int:
        return self.plan_cache.purge_expired()
