"""
WavePlanner - Partitions a TaskGraph into ordered execution waves.
Wave 规划器 —— 将 TaskGraph 划分为有序的执行 Wave。

Iterative topological peeling (a level-by-level Kahn's algorithm):
  1. remaining = every task not yet completed
  2. eligible  = tasks in remaining whose blocks dependencies are all in
                 (completed ∪ tasks peeled so far)
  3. emit eligible as the next wave, add it to the virtual completed set
  4. repeat until remaining is empty, or nothing is eligible (stalemate)

迭代式拓扑剥离（按层的 Kahn 算法）：
  1. remaining = 所有尚未完成的任务
  2. eligible  = remaining 中 BLOCKS 依赖全部位于（已完成 ∪ 已剥离任务）的任务
  3. 将 eligible 作为下一个 Wave 输出，并加入虚拟已完成集合
  4. 重复直到 remaining 为空，或没有任何任务可调度（僵局）

Cycles are rejected when edges are inserted, so a stalemate here can only
come from a dependency on a task that was never supplied.
环在插边时就已被拒绝，因此这里的僵局只可能源于依赖了未提供的任务。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from schema import PlanResult, Stalemate, Wave
from scheduler.graph import TaskGraph

logger = logging.getLogger(__name__)

UNKNOWN_PHASE = "Unknown"


class WavePlanner:
    """
    Computes the wave sequence for one graph.
    为单个依赖图计算 Wave 序列。

    Planning is read-only: the graph is never mutated, so calling plan()
    twice with the same completed set yields the same waves. Tasks inside
    a wave keep graph insertion order for stable display, but callers must
    not rely on that order for correctness.
    规划是只读的：不修改图，因此对同一已完成集合调用两次 plan() 得到相同结果。
    Wave 内任务按插入顺序排列仅为展示稳定，调用方不应依赖该顺序。
    """

    def plan(self, graph: TaskGraph, completed: Iterable[str] | None = None) -> PlanResult:
        """
        Produce waves for every incomplete task.
        为所有未完成任务生成 Wave。

        Args:
            graph:     The dependency graph.
            completed: Task IDs already completed before planning begins.
                       Tasks flagged completed on the graph are added to it.

        Returns:
            PlanResult with the ordered waves and, when planning got stuck,
            a Stalemate listing the stuck tasks and the missing IDs they wait on.
            包含有序 Wave 的 PlanResult；规划卡住时附带 Stalemate（卡住的任务及其缺失依赖）。
        """
        done: set[str] = set(completed or ()) | graph.completed_ids()
        remaining = [tid for tid in graph.nodes if tid not in done]

        waves: list[Wave] = []
        while remaining:
            eligible = [tid for tid in remaining if graph.is_satisfied(tid, done)]
            if not eligible:
                stalemate = self._stalemate(graph, remaining, done)
                logger.warning(
                    "[Planner] Stalemate after %d wave(s): %d task(s) stuck on missing dependencies %s",
                    len(waves), len(remaining), sorted({m for ids in stalemate.missing.values() for m in ids}),
                )
                return PlanResult(waves=waves, stalemate=stalemate)

            waves.append(Wave(index=len(waves) + 1, task_ids=eligible))
            done.update(eligible)
            eligible_set = set(eligible)
            remaining = [tid for tid in remaining if tid not in eligible_set]

        logger.info("[Planner] Planned %d task(s) in %d wave(s)", sum(len(w.task_ids) for w in waves), len(waves))
        return PlanResult(waves=waves)

    @staticmethod
    def _stalemate(graph: TaskGraph, remaining: list[str], done: set[str]) -> Stalemate:
        # 直接缺失依赖的任务，以及经由其他卡住任务间接被阻塞的任务，一并列出
        missing: dict[str, list[str]] = {}
        for tid in remaining:
            absent = [dep for dep in graph.dependencies_of(tid) if dep not in done]
            if absent:
                missing[tid] = absent
        return Stalemate(stuck_task_ids=list(remaining), missing=missing)

    # ------------------------------------------------------------------
    # Presentation
    # 展示分组
    # ------------------------------------------------------------------

    @staticmethod
    def group_by_phase(graph: TaskGraph, wave: Wave) -> dict[str, list[str]]:
        """
        Group one wave's tasks by their phase label, for display only.
        Tasks without a phase fall under "Unknown".
        按阶段标签对单个 Wave 内的任务分组，仅用于展示。无阶段标签的任务归入 "Unknown"。
        """
        groups: dict[str, list[str]] = {}
        for tid in wave.task_ids:
            node = graph.nodes.get(tid)
            phase = (node.phase if node is not None else None) or UNKNOWN_PHASE
            groups.setdefault(phase, []).append(tid)
        return groups
