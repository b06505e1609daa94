"""
DAG Planner.

Orders a workflow's steps topologically (Kahn's algorithm, ties broken by
declaration order), groups them into parallel waves and annotates each step
with cost and priority metadata.

Waves are built greedily over the topological order: a step joins the
current wave when every dependency was scheduled in an earlier wave;
otherwise the wave is closed and a new one started.
"""

from __future__ import annotations

import heapq
import logging
import re
from collections import Counter
from typing import Any

from kgflow.errors import CycleError

from .models import PlannedStep, Step, StepType

logger = logging.getLogger(__name__)

# Base cost estimates in milliseconds
BASE_COSTS: dict[StepType, float] = {
    StepType.SPARQL: 1000.0,
    StepType.TEMPLATE: 500.0,
    StepType.FILE: 200.0,
    StepType.HTTP: 2000.0,
    StepType.CLI: 1000.0,
    StepType.OUTPUT: 800.0,
}

MAX_PRIORITY = 10.0

_SPARQL_FEATURES = re.compile(r"\b(UNION|OPTIONAL|FILTER|COUNT|SUM|AVG|MAX|MIN|GROUP\s+BY)\b", re.IGNORECASE)
_TEMPLATE_FEATURES = re.compile(r"{%\s*(for|if)\b|\||{{")


def sparql_complexity(query: str) -> str:
    score = len(_SPARQL_FEATURES.findall(query))
    if score > 10:
        return "high"
    if score > 5:
        return "medium"
    return "low"


def template_complexity(template: str) -> str:
    score = len(_TEMPLATE_FEATURES.findall(template))
    if score > 20:
        return "high"
    if score > 10:
        return "medium"
    return "low"


def step_complexity(step: Step) -> str:
    if step.type == StepType.SPARQL:
        return sparql_complexity(str(step.config.get("query", "")))
    if step.type in (StepType.TEMPLATE, StepType.OUTPUT):
        return template_complexity(str(step.config.get("template", "")))
    return "low"


def estimate_cost(step: Step) -> float:
    cost = BASE_COSTS.get(step.type, 1000.0)
    if len(str(step.config.get("query", ""))) > 1000:
        cost *= 2
    if len(str(step.config.get("template", ""))) > 5000:
        cost *= 1.5
    return cost


class DAGPlanner:
    def topological_order(self, steps: list[Step]) -> list[Step]:
        """
        Kahn's algorithm; among ready steps the earliest declared goes first.

        Raises:
            CycleError: Listing the steps that could not be ordered
        """
        index = {step.id: i for i, step in enumerate(steps)}
        indegree = {step.id: 0 for step in steps}
        dependents: dict[str, list[str]] = {step.id: [] for step in steps}
        for step in steps:
            for dependency in dict.fromkeys(step.depends_on):
                if dependency in index:
                    indegree[step.id] += 1
                    dependents[dependency].append(step.id)
                else:
                    logger.warning(f"[planner] {step.id} depends on unknown step {dependency}")

        ready = [index[sid] for sid, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)
        order: list[Step] = []
        while ready:
            current = steps[heapq.heappop(ready)]
            order.append(current)
            for dependent in dependents[current.id]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heapq.heappush(ready, index[dependent])

        if len(order) != len(steps):
            placed = {s.id for s in order}
            remaining = [s.id for s in steps if s.id not in placed]
            logger.warning(f"[planner] cycle among {remaining}")
            raise CycleError(remaining)
        return order

    def waves(self, order: list[Step]) -> list[list[Step]]:
        waves: list[list[Step]] = []
        scheduled: set[str] = set()
        current: list[Step] = []
        for step in order:
            if all(dep in scheduled for dep in step.depends_on):
                current.append(step)
                continue
            if current:
                waves.append(current)
                scheduled.update(s.id for s in current)
            current = [step]
        if current:
            waves.append(current)
        return waves

    def plan(self, steps: list[Step]) -> list[PlannedStep]:
        order = self.topological_order(steps)
        wave_of = {step.id: n for n, wave in enumerate(self.waves(order)) for step in wave}

        dependents: dict[str, list[str]] = {step.id: [] for step in steps}
        for step in steps:
            for dependency in dict.fromkeys(step.depends_on):
                if dependency in dependents:
                    dependents[dependency].append(step.id)

        total = len(order)
        planned = []
        for position, step in enumerate(order):
            priority = 1.0 + (total - position) * 0.1 + len(dependents[step.id]) * 0.2
            if step.type in (StepType.SPARQL, StepType.TEMPLATE):
                priority += 0.3
            planned.append(
                PlannedStep(
                    step=step,
                    index=position,
                    wave=wave_of[step.id],
                    estimated_cost=estimate_cost(step),
                    complexity=step_complexity(step),
                    blocking=bool(dependents[step.id]),
                    priority=round(min(priority, MAX_PRIORITY), 3),
                    dependents=list(dependents[step.id]),
                )
            )
        logger.debug(f"[planner] {total} steps in {len(set(wave_of.values()))} waves")
        return planned

    @staticmethod
    def group_waves(plan: list[PlannedStep]) -> list[list[PlannedStep]]:
        groups: dict[int, list[PlannedStep]] = {}
        for planned in plan:
            groups.setdefault(planned.wave, []).append(planned)
        return [groups[w] for w in sorted(groups)]

    @staticmethod
    def stats(plan: list[PlannedStep]) -> dict[str, Any]:
        wave_sizes = Counter(p.wave for p in plan)
        complexity = Counter(p.complexity for p in plan)
        return {
            "totalSteps": len(plan),
            "parallelSteps": sum(size for size in wave_sizes.values() if size > 1),
            "waves": len(wave_sizes),
            "estimatedCost": sum(p.estimated_cost for p in plan),
            "complexityDistribution": {level: complexity.get(level, 0) for level in ("high", "medium", "low")},
        }


__all__ = ["BASE_COSTS", "DAGPlanner", "estimate_cost", "sparql_complexity", "step_complexity", "template_complexity"]
