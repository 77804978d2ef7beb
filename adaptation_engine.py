"""Run the six adaptation passes against one learner's current plan.

Runs for the same learner are serialized by an in-process lock; runs for
different learners proceed concurrently. Each pass works on its own copy of
the snapshot (sharing only the busy-window list), is bounded by its own
timeout and reports its own outcome, so one failing heuristic never hides
the writes of the others.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from difficulty_adjuster import DifficultyAdjuster
from errors import PreconditionError
from missed_tasks import MissedTaskRescheduler
from models import (
    AdaptationAction,
    AdaptationActionType,
    AdaptationResult,
    AdaptationSnapshot,
    PassOutcome,
)
from pattern_adapter import PatternAdapter
from remedial_injector import RemedialInjector
from spaced_repetition import SpacedRepetitionManager
from store import PlanStore
from workload_rebalancer import WorkloadRebalancer

logger = logging.getLogger(__name__)

DEFAULT_PASS_TIMEOUT = 30.0
DEFAULT_RUN_TIMEOUT = 120.0

SUMMARY_COUNTS = {
    AdaptationActionType.RESCHEDULE_MISSED_TASK: "rescheduled_tasks",
    AdaptationActionType.ADJUST_DIFFICULTY: "difficulty_adjustments",
    AdaptationActionType.ADD_REVIEW_SESSION: "review_sessions_added",
    AdaptationActionType.ADD_REMEDIAL_CONTENT: "remedial_content_added",
    AdaptationActionType.ADJUST_TO_STUDY_PATTERN: "pattern_adjustments",
}


def default_passes() -> List[Any]:
    return [
        MissedTaskRescheduler(),
        DifficultyAdjuster(),
        SpacedRepetitionManager(),
        RemedialInjector(),
        WorkloadRebalancer(),
        PatternAdapter(),
    ]


def summarize_actions(actions: List[AdaptationAction]) -> Dict[str, Any]:
    summary: Dict[str, Any] = {"total_adaptations": len(actions)}
    for key in SUMMARY_COUNTS.values():
        summary[key] = 0
    for action in actions:
        key = SUMMARY_COUNTS.get(action.action_type)
        if key:
            summary[key] += len(action.affected_task_ids)
    summary["workload_rebalanced"] = any(a.action_type == AdaptationActionType.REBALANCE_WORKLOAD for a in actions)
    return summary


class AdaptationEngine:
    def __init__(
        self,
        store: PlanStore,
        passes: Optional[List[Any]] = None,
        pass_timeout: float = DEFAULT_PASS_TIMEOUT,
        run_timeout: float = DEFAULT_RUN_TIMEOUT,
        insight_generator: Optional[Any] = None,
    ):
        self.store = store
        self.passes = passes if passes is not None else default_passes()
        self.pass_timeout = pass_timeout
        self.run_timeout = run_timeout
        self.insight_generator = insight_generator
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def run(self, learner_id: str, now: Optional[datetime] = None) -> AdaptationResult:
        async with self._locks[learner_id]:
            return await self._run_locked(learner_id, now or datetime.now())

    async def load_snapshot(self, learner_id: str, now: datetime) -> AdaptationSnapshot:
        learner = await self.store.get_learner(learner_id)
        if learner is None:
            raise PreconditionError(f"Unknown learner: {learner_id}")
        plan = await self.store.get_plan_by_learner(learner_id)
        if plan is None:
            raise PreconditionError(f"Learner {learner_id} has no study plan")
        topics = await self.store.list_topics()
        return AdaptationSnapshot(
            learner=learner,
            plan=plan,
            topics={t.topic_id: t for t in topics},
            tasks=await self.store.list_tasks(plan.plan_id),
            performances=await self.store.list_performances(learner_id),
            alerts=await self.store.list_unresolved_alerts(learner_id),
            now=now,
        )

    async def _run_locked(self, learner_id: str, now: datetime) -> AdaptationResult:
        snapshot = await self.load_snapshot(learner_id, now)
        logger.info(
            "Adapting plan %s for %s: %d tasks, %d performance records, %d open alerts",
            snapshot.plan.plan_id,
            learner_id,
            len(snapshot.tasks),
            len(snapshot.performances),
            len(snapshot.alerts),
        )

        futures = [
            asyncio.ensure_future(self._run_pass(p, self._pass_snapshot(snapshot))) for p in self.passes
        ]
        _, pending = await asyncio.wait(futures, timeout=self.run_timeout)
        for future in pending:
            future.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        result = AdaptationResult(learner_id=learner_id, plan_id=snapshot.plan.plan_id)
        for adaptation_pass, future in zip(self.passes, futures):
            if future in pending:
                logger.warning("Adaptation pass %s cancelled by the run timeout", adaptation_pass.name)
                result.pass_outcomes.append(
                    PassOutcome(adaptation_pass.name, succeeded=False, timed_out=True, error="run timeout")
                )
                continue
            outcome, actions = future.result()
            result.pass_outcomes.append(outcome)
            result.actions.extend(actions)
        result.summary = summarize_actions(result.actions)

        if self.insight_generator is not None:
            result.insights = await self.insight_generator.generate(result, snapshot)

        logger.info(
            "Adaptation for %s finished: %d actions, failed passes: %s",
            learner_id,
            len(result.actions),
            result.failed_passes or "none",
        )
        return result

    @staticmethod
    def _pass_snapshot(snapshot: AdaptationSnapshot) -> AdaptationSnapshot:
        return dataclasses.replace(
            snapshot,
            learner=copy.deepcopy(snapshot.learner),
            tasks=copy.deepcopy(snapshot.tasks),
            performances=copy.deepcopy(snapshot.performances),
            alerts=copy.deepcopy(snapshot.alerts),
        )

    async def _run_pass(self, adaptation_pass: Any, snapshot: AdaptationSnapshot) -> Tuple[PassOutcome, List[AdaptationAction]]:
        name = adaptation_pass.name
        try:
            actions = await asyncio.wait_for(adaptation_pass.run(self.store, snapshot), timeout=self.pass_timeout)
        except asyncio.TimeoutError:
            logger.warning("Adaptation pass %s timed out after %.1fs", name, self.pass_timeout)
            return PassOutcome(name, succeeded=False, timed_out=True, error="pass timeout"), []
        except Exception as exc:
            logger.exception("Adaptation pass %s failed", name)
            return PassOutcome(name, succeeded=False, error=f"{type(exc).__name__}: {exc}"), []
        logger.debug("Adaptation pass %s produced %d actions", name, len(actions))
        return PassOutcome(name, succeeded=True, action_count=len(actions)), actions
