"""
Simulated Action - Sleeps in proportion to task size.
模拟 action —— 按任务尺寸休眠相应时长。

Used by `kanban-scheduler run` when no command is given, to preview how a
plan behaves under a concurrency cap without touching anything.
在未提供命令时由 `kanban-scheduler run` 使用，用于在不产生任何副作用的情况下预览并发上限下的执行情况。
"""

from __future__ import annotations

import asyncio
import logging

import config
from actions.base import BaseAction
from schema import ActionResult, TaskNode

logger = logging.getLogger(__name__)


class SimulatedAction(BaseAction):
    """Simulate work by sleeping SIZE_UNITS[size] * seconds_per_unit."""

    def __init__(self, seconds_per_unit: float | None = None, fail_ids: set[str] | None = None):
        self._seconds_per_unit = (
            config.SIMULATED_SECONDS_PER_UNIT if seconds_per_unit is None else seconds_per_unit
        )
        self._fail_ids = fail_ids or set()  # 强制失败的任务 ID（用于演示 exit_on_error）

    @property
    def name(self) -> str:
        return "simulate"

    async def execute(self, task: TaskNode) -> ActionResult:
        duration = config.SIZE_UNITS.get(task.size.value, 1.0) * self._seconds_per_unit
        logger.debug("Simulating %s for %.2fs", task.id, duration)
        await asyncio.sleep(duration)
        if task.id in self._fail_ids:
            return ActionResult(task_id=task.id, success=False, output=f"Simulated failure for {task.id}")
        return ActionResult(task_id=task.id, success=True, output=f"Simulated {task.size.value} task in {duration:.2f}s")
