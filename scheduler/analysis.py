"""
Dependency analysis - critical path, bottlenecks and task impact.
依赖分析 —— 关键路径、瓶颈任务与影响范围。
"""

from __future__ import annotations

import logging
from collections import deque

import config
from schema import CriticalPathResult, DependencyType, TaskImpact
from scheduler.graph import TaskGraph

logger = logging.getLogger(__name__)

BOTTLENECK_MIN_DEPENDENTS = 3  # 阻塞至少 3 个任务即视为瓶颈


def task_weight(graph: TaskGraph, task_id: str) -> float:
    """Effort units of a task, from its size class. 按尺寸换算的工作量单位。"""
    return config.SIZE_UNITS.get(graph.nodes[task_id].size.value, 1.0)


def critical_path(graph: TaskGraph) -> CriticalPathResult:
    """
    Longest size-weighted chain of blocks dependencies.
    按工作量加权的最长 BLOCKS 依赖链。

    Kahn's algorithm over the blocks subgraph, relaxing the longest distance
    into each dependent and remembering which predecessor produced it.
    在 BLOCKS 子图上运行 Kahn 算法，对每个下游任务松弛最长距离并记录前驱。
    """
    if not graph.nodes:
        return CriticalPathResult()

    in_degree: dict[str, int] = {}
    longest: dict[str, float] = {}
    previous: dict[str, str | None] = {}
    for tid in graph.nodes:
        in_degree[tid] = sum(1 for dep in graph.dependencies_of(tid) if dep in graph)
        longest[tid] = task_weight(graph, tid)
        previous[tid] = None

    roots = [tid for tid, degree in in_degree.items() if degree == 0]
    queue = deque(roots)
    while queue:
        current = queue.popleft()
        for dependent in graph.dependents_of(current):
            candidate = longest[current] + task_weight(graph, dependent)
            if candidate > longest[dependent]:
                longest[dependent] = candidate
                previous[dependent] = current
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    end = max(graph.nodes, key=lambda tid: longest[tid])
    path = [end]
    while previous[path[-1]] is not None:
        path.append(previous[path[-1]])
    path.reverse()

    blocks_edges = [e for e in graph.edges if e.type == DependencyType.BLOCKS]
    result = CriticalPathResult(
        critical_path=path,
        total_duration=longest[end],
        starting_tasks=roots,
        ending_tasks=[tid for tid in graph.nodes if not graph.dependents_of(tid)],
        bottlenecks=[
            tid for tid in graph.nodes
            if len(graph.dependents_of(tid)) >= BOTTLENECK_MIN_DEPENDENTS
        ],
        dependency_count=len(blocks_edges),
    )
    logger.info(
        "[Analysis] Critical path: %s (%.1f units)",
        " -> ".join(result.critical_path), result.total_duration,
    )
    return result


def task_impact(graph: TaskGraph, task_id: str) -> TaskImpact:
    """
    Tasks that would stay blocked if `task_id` never finished.
    若 `task_id` 无法完成，会被阻塞的全部下游任务。

    Raises ResourceNotFoundError for an unknown task.
    """
    graph.get_task(task_id)
    direct = graph.dependents_of(task_id)
    direct_set = set(direct)
    indirect: list[str] = []
    visited = {task_id}

    stack = list(reversed(direct))
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        if current not in direct_set:
            indirect.append(current)
        stack.extend(reversed(graph.dependents_of(current)))

    return TaskImpact(task_id=task_id, direct_dependents=direct, indirect_dependents=indirect)


def dependency_levels(graph: TaskGraph) -> dict[int, list[str]]:
    """
    Group tasks by depth: 0 for tasks with no blocks dependency in the
    graph, otherwise one more than the deepest dependency.
    按深度分组任务：图内没有 BLOCKS 依赖的任务为 0 层，其余为最深依赖层数 + 1。
    """
    in_degree = {
        tid: sum(1 for dep in graph.dependencies_of(tid) if dep in graph)
        for tid in graph.nodes
    }
    depth = {tid: 0 for tid in graph.nodes}
    queue = deque(tid for tid, degree in in_degree.items() if degree == 0)
    while queue:
        current = queue.popleft()
        for dependent in graph.dependents_of(current):
            depth[dependent] = max(depth[dependent], depth[current] + 1)
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    levels: dict[int, list[str]] = {}
    for tid in graph.nodes:
        levels.setdefault(depth[tid], []).append(tid)
    return dict(sorted(levels.items()))
