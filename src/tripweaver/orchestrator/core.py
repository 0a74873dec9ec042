"""
Orchestration Core.

Drives one request end to end:

1. Build the immutable ``RequestContext``.
2. Score intents; an ambiguous set still gets a plan, led by a clarifying
   question.
3. Synthesize and execute the plan. A failed required step triggers a
   contingency re-plan, up to the revision cap.
4. Reply. Failures produce a well-formed apology, never an exception.
5. Dispatch an outcome record to the learning optimizer through the
   background worker, off the request path.

Cancellation by the caller dispatches a CANCELLED outcome and re-raises.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional, Union

from ..agents.contingency import ContingencyReplanner
from ..background_worker import BackgroundWorker
from ..config import OrchestrationConfig
from ..domain.entities import (
    AggregatedResult,
    ComponentHealth,
    HealthStatus,
    IntentHypothesisSet,
    OutcomeRecord,
    OutcomeSignal,
    PlanStatus,
    RequestContext,
    StepKind,
    StepMetric,
    StepStatus,
    WorkflowPlan,
)
from ..exceptions import ReplanningExhaustedError
from ..intent.analyzer import IntentAnalyzer
from ..learning.optimizer import LearningOptimizer
from ..learning.reward import SIGNAL_QUALITY
from ..providers.manager import ProviderManager
from ..schemas import (
    BackupPlanSchema,
    ComponentHealthSchema,
    HealthSummary,
    InboundRequest,
    OrchestrationResponse,
)
from ..workflow.synthesizer import WorkflowSynthesizer
from .lifecycle import RequestLifecycle, RequestState

logger = logging.getLogger(__name__)


class OrchestrationCore:
    """Request orchestration across intent, workflow, providers and learning.

    Usage:
        core = create_orchestration_core(Settings())
        await core.start()
        response = await core.process(InboundRequest(userId="u1", utterance="..."))
        await core.stop()
    """

    def __init__(
        self,
        analyzer: IntentAnalyzer,
        synthesizer: WorkflowSynthesizer,
        providers: ProviderManager,
        optimizer: LearningOptimizer,
        replanner: Optional[ContingencyReplanner] = None,
        worker: Optional[BackgroundWorker] = None,
        config: Optional[OrchestrationConfig] = None,
    ):
        self.analyzer = analyzer
        self.synthesizer = synthesizer
        self.providers = providers
        self.optimizer = optimizer
        self.config = config or OrchestrationConfig()
        self.replanner = replanner or ContingencyReplanner(self.config.max_revisions)
        self.worker = worker or BackgroundWorker(
            max_queue_size=self.config.learning_queue_size,
            max_concurrent=self.config.learning_workers,
        )

        self._started = False
        self._requests = 0
        self._completed = 0
        self._failed = 0
        self._cancelled = 0
        self._replans = 0
        self._total_latency_ms = 0.0
        self._total_cost = 0.0

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self) -> None:
        """Load learned state and start outcome dispatch."""
        if self._started:
            return
        self._started = True
        await self.optimizer.load()
        self.providers.refresh_weights(self.optimizer)
        await self.worker.start()
        logger.info("Orchestration core started")

    async def stop(self, timeout: float = 30.0) -> None:
        """Flush pending outcome records and release backends."""
        if not self._started:
            return
        self._started = False
        await self.worker.stop(timeout=timeout)
        await self.providers.close()
        logger.info("Orchestration core stopped")

    async def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for all dispatched outcome records to be applied."""
        return await self.worker.drain(timeout)

    # ============================================
    # Request Processing
    # ============================================

    async def process(
        self,
        request: Union[InboundRequest, RequestContext],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OrchestrationResponse:
        """Process one request.

        Args:
            request: Inbound request (or a prepared context)
            cancel_event: Set by the caller to abandon the request

        Returns:
            OrchestrationResponse (also for failed requests)

        Raises:
            asyncio.CancelledError: If the awaiting task is cancelled
        """
        if not self._started:
            await self.start()

        context = request.to_context() if isinstance(request, InboundRequest) else request
        self._requests += 1
        started = time.perf_counter()
        lifecycle = RequestLifecycle(context.request_id)
        hypotheses: Optional[IntentHypothesisSet] = None
        results: list[tuple[WorkflowPlan, AggregatedResult]] = []

        try:
            hypotheses = self.analyzer.analyze(context.utterance, context)
            lifecycle.transition(
                RequestState.INTENT_RESOLVED
                if hypotheses.is_resolved
                else RequestState.INTENT_AMBIGUOUS
            )

            plan = self.synthesizer.synthesize(hypotheses, context)
            lifecycle.transition(RequestState.PLAN_SYNTHESIZED)

            while True:
                lifecycle.transition(RequestState.EXECUTING)
                result = await self.synthesizer.execute(plan, context, cancel_event)
                results.append((plan, result))

                if result.status != PlanStatus.FAILED:
                    break
                try:
                    plan = self.replanner.replan(plan, result)
                except ReplanningExhaustedError as e:
                    logger.warning(f"Request {context.request_id}: {e}")
                    break
                self._replans += 1
                lifecycle.transition(RequestState.PLAN_SYNTHESIZED)

        except asyncio.CancelledError:
            lifecycle.transition(RequestState.CANCELLED)
            self._cancelled += 1
            self._dispatch_outcome(
                context, hypotheses, results, OutcomeSignal.CANCELLED, started
            )
            logger.info(f"Request {context.request_id} cancelled by caller")
            raise

        except Exception as e:
            logger.exception(f"Request {context.request_id} failed: {e}")
            lifecycle.transition(RequestState.FAILED)
            return self._finish_failed(context, hypotheses, results, started)

        final = results[-1][1]
        if final.status == PlanStatus.CANCELLED:
            lifecycle.transition(RequestState.CANCELLED)
            self._cancelled += 1
            self._dispatch_outcome(
                context, hypotheses, results, OutcomeSignal.CANCELLED, started
            )
            return self._response(
                context, hypotheses, results, started, state=RequestState.CANCELLED,
                message="Request cancelled.",
            )

        if final.status == PlanStatus.FAILED:
            lifecycle.transition(RequestState.FAILED)
            return self._finish_failed(context, hypotheses, results, started)

        lifecycle.transition(RequestState.COMPLETED)
        self._completed += 1
        degraded = final.degraded or final.revision > 0
        self._dispatch_outcome(
            context,
            hypotheses,
            results,
            OutcomeSignal.DEGRADED if degraded else OutcomeSignal.COMPLETED,
            started,
        )
        return self._response(
            context,
            hypotheses,
            results,
            started,
            state=RequestState.COMPLETED,
            message=final.message or self.config.apology_message,
            degraded=degraded,
        )

    def _finish_failed(
        self,
        context: RequestContext,
        hypotheses: Optional[IntentHypothesisSet],
        results: list[tuple[WorkflowPlan, AggregatedResult]],
        started: float,
    ) -> OrchestrationResponse:
        self._failed += 1
        self._dispatch_outcome(context, hypotheses, results, OutcomeSignal.FAILED, started)
        return self._response(
            context,
            hypotheses,
            results,
            started,
            state=RequestState.FAILED,
            message=self.config.apology_message,
            degraded=True,
        )

    def _response(
        self,
        context: RequestContext,
        hypotheses: Optional[IntentHypothesisSet],
        results: list[tuple[WorkflowPlan, AggregatedResult]],
        started: float,
        state: RequestState,
        message: str,
        degraded: bool = False,
    ) -> OrchestrationResponse:
        latency_ms = (time.perf_counter() - started) * 1000
        cost = round(sum(r.total_cost for _, r in results), 6)
        self._total_latency_ms += latency_ms
        self._total_cost += cost

        final = results[-1][1] if results else None
        succeeded = state == RequestState.COMPLETED
        return OrchestrationResponse(
            request_id=context.request_id,
            message=message,
            intent=hypotheses.intent if hypotheses else None,
            related_intents=[r.label for r in hypotheses.related_intents] if hypotheses else [],
            language=hypotheses.language if hypotheses else None,
            state=state.value,
            agents_used=final.agents_used if final else [],
            cost=cost,
            latency_ms=round(latency_ms, 2),
            emotional_impact=final.emotional_impact if final and succeeded else None,
            carbon_saved=final.carbon_saved if final and succeeded else None,
            cache_hit=bool(final and final.cache_hit),
            degraded=degraded,
            revision=final.revision if final else 0,
            backup_plans=[
                BackupPlanSchema(**p.to_dict()) for p in final.backup_plans
            ] if final and succeeded else [],
        )

    # ============================================
    # Outcome Dispatch
    # ============================================

    def _dispatch_outcome(
        self,
        context: RequestContext,
        hypotheses: Optional[IntentHypothesisSet],
        results: list[tuple[WorkflowPlan, AggregatedResult]],
        signal: OutcomeSignal,
        started: float,
    ) -> None:
        record = self._outcome_record(context, hypotheses, results, signal, started)
        job_id = self.worker.submit(self._learn, record, name="learning.record")
        if job_id is None:
            logger.warning(f"Outcome {record.record_id} not dispatched")

    def _outcome_record(
        self,
        context: RequestContext,
        hypotheses: Optional[IntentHypothesisSet],
        results: list[tuple[WorkflowPlan, AggregatedResult]],
        signal: OutcomeSignal,
        started: float,
    ) -> OutcomeRecord:
        metrics: list[StepMetric] = []
        for plan, result in results:
            for step in plan.steps:
                if step.step_id in plan.carried_results:
                    continue
                step_result = result.step_results.get(step.step_id)
                if step_result is None or step_result.status == StepStatus.SKIPPED:
                    continue
                metrics.append(
                    StepMetric(
                        step_id=step.step_id,
                        capability_tag=step.capability_tag,
                        success=step_result.succeeded,
                        cost=step_result.cost,
                        latency_ms=step_result.latency_ms,
                        provider_id=(
                            step_result.provider_id if step.kind == StepKind.PROVIDER else None
                        ),
                    )
                )

        final_plan, final = results[-1] if results else (None, None)
        quality = SIGNAL_QUALITY[signal]
        if signal == OutcomeSignal.COMPLETED and hypotheses is not None and not hypotheses.is_resolved:
            # Needed a clarifying question
            quality = 0.75

        return OutcomeRecord(
            request_id=context.request_id,
            user_id=context.user_id,
            intent=hypotheses.intent if hypotheses else "unknown",
            signal=signal,
            quality_signal=quality,
            step_metrics=metrics,
            plan_summary={
                "plan_id": final_plan.plan_id if final_plan else None,
                "steps": final_plan.step_ids if final_plan else [],
                "revisions": len(results),
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            },
            emotional_impact=final.emotional_impact if final else None,
            carbon_delta=final.carbon_saved if final else None,
            total_cost=round(sum(r.total_cost for _, r in results), 6),
        )

    async def _learn(self, record: OutcomeRecord) -> bool:
        applied = await self.optimizer.record(record)
        if applied:
            self.providers.refresh_weights(self.optimizer)
        return applied

    # ============================================
    # Administration
    # ============================================

    def get_metrics(self) -> dict[str, Any]:
        finished = self._completed + self._failed
        return {
            "requests": self._requests,
            "completed": self._completed,
            "failed": self._failed,
            "cancelled": self._cancelled,
            "replans": self._replans,
            "avg_latency_ms": self._total_latency_ms / finished if finished else 0.0,
            "total_cost": round(self._total_cost, 6),
            "providers": self.providers.get_metrics(),
            "workflow": self.synthesizer.get_metrics(),
            "learning": self.optimizer.get_metrics(),
            "background_worker": self.worker.get_metrics(),
        }

    def health_check(self) -> HealthSummary:
        components: list[ComponentHealth] = [
            self.providers.health_check(),
            self.synthesizer.health_check(),
            self.optimizer.health_check(),
            ComponentHealth(
                name="background_worker",
                status=HealthStatus.HEALTHY if self.worker.is_running else HealthStatus.DEGRADED,
                details=self.worker.get_metrics(),
            ),
        ]
        worst = max(components, key=lambda c: c.status.severity).status
        return HealthSummary(
            status=worst.value,
            components=[ComponentHealthSchema(**c.to_dict()) for c in components],
        )

    def cleanup(self) -> dict[str, int]:
        """Purge expired caches and learning history past retention."""
        return {
            "provider_cache": self.providers.cleanup(),
            "plan_cache": self.synthesizer.cleanup(),
            "learning_history": self.optimizer.cleanup(),
        }


__all__ = ["OrchestrationCore"]
