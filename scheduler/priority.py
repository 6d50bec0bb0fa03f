"""
PriorityEngine - Recommends the next task from weighted urgency signals.
优先级引擎 —— 基于加权紧迫度信号推荐下一个任务。

score = w_priority    * (priority - 1) / 4
      + w_due_date    * urgency(time until due)
      + w_fan_out     * dependents / max dependents in the graph
      + w_in_progress * (1 if in_progress else 0)

urgency is 1.0 once a task is overdue and halves every
URGENCY_HALF_LIFE_HOURS before the due date; no due date contributes 0.
urgency 在逾期后为 1.0，距截止每增加 URGENCY_HALF_LIFE_HOURS 小时减半；无截止日期则为 0。

Selection is argmax by score; ties go to the earliest due date, then to the
lexicographically smallest ID, so results are deterministic.
按分数取最大值；分数相同时截止日期早者优先，再按 ID 字典序，保证结果确定。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

import config
from schema import (
    PriorityLevel,
    PriorityScore,
    Recommendation,
    RecommendationFilters,
    TaskNode,
    TaskStatus,
)
from scheduler.graph import TaskGraph

logger = logging.getLogger(__name__)

# 不参与推荐的状态
EXCLUDED_STATUSES = {TaskStatus.BLOCKED, TaskStatus.ARCHIVED, TaskStatus.DONE}

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


class PriorityEngine:
    """
    Scores tasks and picks the next one to work on.
    为任务打分并挑选下一个要做的任务。
    """

    def __init__(
        self,
        weights: dict[str, float] | None = None,
        half_life_hours: float | None = None,
        thresholds: tuple[float, float, float] | None = None,
    ):
        self.weights = {
            "priority": config.WEIGHT_PRIORITY,
            "due_date": config.WEIGHT_DUE_DATE,
            "fan_out": config.WEIGHT_FAN_OUT,
            "in_progress": config.WEIGHT_IN_PROGRESS,
        }
        if weights:
            self.weights.update(weights)
        self.half_life_hours = half_life_hours or config.URGENCY_HALF_LIFE_HOURS
        self.thresholds = thresholds or config.LEVEL_THRESHOLDS

    # ------------------------------------------------------------------
    # Scoring
    # 打分
    # ------------------------------------------------------------------

    def score(
        self,
        task: TaskNode,
        graph: TaskGraph,
        now: datetime | None = None,
        max_fan_out: int | None = None,
    ) -> PriorityScore:
        """
        Weighted-signal score of one task, with the reasons that mattered.
        计算单个任务的加权分数，并给出有实质贡献的原因。

        `max_fan_out` normalises the blocking signal and is computed from
        the graph when omitted.
        """
        now = _utc(now or datetime.now(timezone.utc))
        reasons: list[str] = []

        # --- priority ---
        priority = (task.priority - 1) / 4
        if task.priority >= 5:
            reasons.append("Critical priority level set")
        elif task.priority == 4:
            reasons.append("High priority level set")

        # --- due date ---
        urgency = 0.0
        if task.due_date is not None:
            hours = (task.due_date - now).total_seconds() / 3600
            if hours <= 0:
                urgency = 1.0
                reasons.append(f"Overdue by {round(abs(hours))} hours")
            else:
                urgency = 0.5 ** (hours / self.half_life_hours)
                if hours <= 24:
                    reasons.append("Due within 24 hours")
                elif hours <= 72:
                    reasons.append("Due within 3 days")
                elif hours <= 168:
                    reasons.append("Due this week")

        # --- blocking fan-out ---
        dependents = len(graph.dependents_of(task.id)) if task.id in graph else 0
        if max_fan_out is None:
            max_fan_out = graph.max_fan_out()
        fan_out = dependents / max_fan_out if max_fan_out else 0.0
        if dependents:
            reasons.append(f"Blocks {dependents} other task{'s' if dependents != 1 else ''}")

        # --- status ---
        in_progress = 1.0 if task.status == TaskStatus.IN_PROGRESS else 0.0
        if in_progress:
            reasons.append("Already in progress")

        signals = {
            "priority": priority,
            "due_date": urgency,
            "fan_out": fan_out,
            "in_progress": in_progress,
        }
        total = sum(self.weights[name] * value for name, value in signals.items())
        return PriorityScore(
            task_id=task.id,
            score=round(total, 6),
            level=self.level_for(total),
            reasons=reasons,
            signals=signals,
        )

    def level_for(self, score: float) -> PriorityLevel:
        low, medium, high = self.thresholds
        if score < low:
            return PriorityLevel.LOW
        if score < medium:
            return PriorityLevel.MEDIUM
        if score < high:
            return PriorityLevel.HIGH
        return PriorityLevel.CRITICAL

    # ------------------------------------------------------------------
    # Recommendation
    # 推荐
    # ------------------------------------------------------------------

    def eligible(
        self,
        graph: TaskGraph,
        completed: Iterable[str] | None = None,
        filters: RecommendationFilters | None = None,
    ) -> list[TaskNode]:
        """
        Tasks that may be recommended: not completed, not blocked/archived,
        all blocks dependencies satisfied, and matching the filters.
        可被推荐的任务：未完成、非 blocked/archived、BLOCKS 依赖全部满足且符合过滤条件。
        """
        done = set(completed or ()) | graph.completed_ids()
        result = []
        for task in graph.tasks:
            if task.id in done or task.status in EXCLUDED_STATUSES:
                continue
            if filters is not None and not _matches(task, filters):
                continue
            if not graph.is_satisfied(task.id, done):
                continue
            result.append(task)
        return result

    def rank(
        self,
        graph: TaskGraph,
        completed: Iterable[str] | None = None,
        filters: RecommendationFilters | None = None,
        now: datetime | None = None,
    ) -> list[Recommendation]:
        """
        All eligible tasks, best first.
        按推荐顺序返回所有候选任务。
        """
        now = _utc(now or datetime.now(timezone.utc))
        max_fan_out = graph.max_fan_out()
        ranked = [
            Recommendation(task=task, score=self.score(task, graph, now, max_fan_out))
            for task in self.eligible(graph, completed, filters)
        ]
        ranked.sort(key=lambda r: (-r.score.score, r.task.due_date or _FAR_FUTURE, r.task.id))
        return ranked

    def recommend_next(
        self,
        graph: TaskGraph,
        completed: Iterable[str] | None = None,
        filters: RecommendationFilters | None = None,
        now: datetime | None = None,
    ) -> Recommendation | None:
        """
        The single best task to work on next, or None if nothing is eligible.
        返回最值得下一步处理的任务；没有候选时返回 None。
        """
        ranked = self.rank(graph, completed, filters, now)
        if not ranked:
            logger.info("[Priority] No eligible task for filters %s", filters)
            return None
        best = ranked[0]
        logger.info(
            "[Priority] Recommending %s (score=%.3f, level=%s)",
            best.task.id, best.score.score, best.score.level.value,
        )
        return best


def _matches(task: TaskNode, filters: RecommendationFilters) -> bool:
    if filters.assignee is not None and task.assignee != filters.assignee:
        return False
    if filters.status is not None and task.status not in filters.status:
        return False
    if filters.board_id is not None and task.board_id != filters.board_id:
        return False
    return True


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
