"""
Cycle detection for blocks edges.
BLOCKS 边的环检测。

A proposed edge from -> to (from depends on to) closes a cycle iff `to`
can already reach `from` by following existing blocks edges. The check
is a BFS starting at `to`, run before the graph is mutated, so a rejected
edge never leaves residue.
候选边 from -> to（from 依赖 to）会形成环，当且仅当沿已有 BLOCKS 边 `to` 已能到达 `from`。
检测是从 `to` 出发的 BFS，在修改图之前执行，被拒绝的边不会留下任何痕迹。
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scheduler.graph import TaskGraph


def find_dependency_path(graph: TaskGraph, start: str, goal: str) -> list[str] | None:
    """
    Return a chain start -> ... -> goal along blocks dependencies, or None.
    返回沿 BLOCKS 依赖从 start 到 goal 的路径，不存在时返回 None。

    The search visits each node at most once, so it is bounded by the
    current node count.
    每个节点最多访问一次，搜索规模以当前节点数为上界。
    """
    if start == goal:
        return [start]

    parents: dict[str, str] = {}
    visited = {start}
    queue: deque[str] = deque([start])

    while queue:
        current = queue.popleft()
        for dep in graph.dependencies_of(current):
            if dep in visited:
                continue
            parents[dep] = current
            if dep == goal:
                # 回溯父指针重建路径
                path = [goal]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                path.reverse()
                return path
            visited.add(dep)
            queue.append(dep)
    return None


def would_create_cycle(graph: TaskGraph, from_id: str, to_id: str) -> bool:
    """
    True if adding the blocks edge from_id -> to_id would create a cycle.
    若添加 BLOCKS 边 from_id -> to_id 会形成环则返回 True。自环总是环。
    """
    if from_id == to_id:
        return True
    return find_dependency_path(graph, to_id, from_id) is not None
