"""
TaskGraph - In-memory dependency graph over kanban tasks.
TaskGraph —— 看板任务的内存依赖图。

The TaskGraph holds:
  - nodes: arena of TaskNode keyed by task ID
  - edges: every DependencyEdge (blocks / relates_to / duplicates)
  - blocks adjacency (forward and reverse), computed on build and kept in
    sync on every edge insertion or removal

TaskGraph 包含：
  - nodes:  以任务 ID 为键的 TaskNode 存储
  - edges:  全部依赖边（blocks / relates_to / duplicates）
  - BLOCKS 邻接表（正向与反向），建图时计算，插边/删边时同步维护

Key operations:
  - build():            validate records and insert their edges (cycle check per edge)
  - add_edge():         insert one edge; blocks edges are cycle-checked first
  - dependencies_of():  blocks dependencies of a task
  - dependents_of():    tasks blocked by a task (used by the PriorityEngine)
  - is_satisfied():     all blocks dependencies are in a completed set

核心操作：
  - build():            校验任务记录并逐条插入依赖边（每条边都做环检测）
  - add_edge():         插入单条边；BLOCKS 边先做环检测
  - dependencies_of():  任务的 BLOCKS 依赖
  - dependents_of():    被该任务阻塞的任务（供优先级引擎计算扇出）
  - is_satisfied():     所有 BLOCKS 依赖是否都在已完成集合中
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Any

from pydantic import ValidationError

from schema import (
    BulkEdgeResult,
    DependencyEdge,
    DependencyRef,
    DependencyType,
    EdgeOperation,
    EdgeOperationFailure,
    TaskNode,
    TaskStatus,
)
from scheduler.cycle import find_dependency_path
from scheduler.errors import (
    CircularDependencyError,
    ResourceNotFoundError,
    SchedulerError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)


class TaskGraph:
    """
    Dependency graph for one planning/execution session.
    单次规划/执行会话使用的依赖图。

    The graph owns node storage and adjacency. Only the BLOCKS subgraph
    constrains scheduling, and it is acyclic at all times: an edge that
    would close a cycle is rejected before anything is mutated.
    图拥有节点存储与邻接表。只有 BLOCKS 子图约束调度，且始终无环：
    会形成环的边在任何修改发生之前就被拒绝。
    """

    def __init__(self) -> None:
        self.nodes: dict[str, TaskNode] = {}
        self._edges: dict[tuple[str, str, DependencyType], DependencyEdge] = {}
        self._blocks: dict[str, list[str]] = {}      # task -> tasks it depends on
        self._dependents: dict[str, list[str]] = {}  # task -> tasks it blocks
        self.rejected_edges: list[DependencyEdge] = []

    # ------------------------------------------------------------------
    # Construction
    # 建图
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, tasks: Iterable[TaskNode | dict[str, Any]], strict: bool = True) -> TaskGraph:
        """
        Build a graph from task records.
        根据任务记录构建依赖图。

        Raw dicts are validated into TaskNode here, once. Each record's
        dependencies are inserted through the same path as add_edge, so
        the cycle check runs per edge. Dependencies on IDs missing from
        the supplied set are kept as dangling references; the planner
        reports them as a stalemate.
        原始 dict 在此处一次性校验为 TaskNode。每条依赖都走与 add_edge 相同的插入路径，
        因此逐边做环检测。指向集合外任务 ID 的依赖被保留为悬挂引用，由规划器报告为僵局。

        Args:
            tasks:  TaskNode objects or raw records.
            strict: When False, cycle-closing edges are dropped (and listed
                    in `rejected_edges`) instead of raising.
            tasks:  TaskNode 对象或原始记录。
            strict: 为 False 时，形成环的边被丢弃（记录在 rejected_edges 中）而不是抛异常。

        Raises:
            ValidationFailedError: malformed record or duplicate ID.
            CircularDependencyError: a record's edge closes a cycle (strict only).
        """
        graph = cls()
        nodes: list[TaskNode] = []
        for raw in tasks:
            node = raw if isinstance(raw, TaskNode) else _validate_record(raw)
            if node.id in graph.nodes:
                raise ValidationFailedError(
                    f"Duplicate task ID '{node.id}'",
                    details={"task_id": node.id},
                )
            graph.nodes[node.id] = node
            graph._blocks[node.id] = []
            graph._dependents.setdefault(node.id, [])
            nodes.append(node)

        for node in nodes:
            for ref in list(node.dependencies):
                try:
                    graph._insert_edge(node.id, ref.task_id, ref.type)
                except CircularDependencyError:
                    if strict:
                        raise
                    rejected = DependencyEdge(from_task_id=node.id, to_task_id=ref.task_id, type=ref.type)
                    graph.rejected_edges.append(rejected)
                    node.dependencies = [d for d in node.dependencies if d != ref]
                    logger.warning("[Graph] Dropped cycle-closing edge %s -> %s", node.id, ref.task_id)

        logger.info("[Graph] Built %s", graph.summary())
        return graph

    # ------------------------------------------------------------------
    # Edge mutation
    # 边的增删
    # ------------------------------------------------------------------

    def add_edge(self, from_id: str, to_id: str, dep_type: DependencyType | str = DependencyType.BLOCKS) -> bool:
        """
        Insert the edge from_id -> to_id (from depends on to).
        插入边 from_id -> to_id（from 依赖 to）。

        Returns True when the edge was added, False when it already existed
        (duplicates are idempotent). The owning TaskNode's dependency list
        is kept in sync.
        新增返回 True，已存在返回 False（重复插入是幂等的）。同步更新所属 TaskNode 的依赖列表。

        Raises:
            ValidationFailedError:   dep_type is not a known dependency type.
            ResourceNotFoundError:   either endpoint is unknown.
            CircularDependencyError: a blocks edge would close a cycle.
        """
        dep_type = _coerce_type(dep_type)
        for tid in (from_id, to_id):
            if tid not in self.nodes:
                raise ResourceNotFoundError(f"Task '{tid}' not found", details={"task_id": tid})

        added = self._insert_edge(from_id, to_id, dep_type)
        if added:
            ref = DependencyRef(task_id=to_id, type=dep_type)
            node = self.nodes[from_id]
            if ref not in node.dependencies:
                node.dependencies.append(ref)
            logger.info("[Graph] Edge added: %s -> %s (%s)", from_id, to_id, dep_type.value)
        else:
            logger.debug("[Graph] Edge %s -> %s (%s) already exists", from_id, to_id, dep_type.value)
        return added

    def remove_edge(self, from_id: str, to_id: str, dep_type: DependencyType | str = DependencyType.BLOCKS) -> None:
        """
        Remove an existing edge. Raises ResourceNotFoundError if absent.
        删除已有的边，不存在时抛出 ResourceNotFoundError。
        """
        dep_type = _coerce_type(dep_type)
        key = (from_id, to_id, dep_type)
        if key not in self._edges:
            raise ResourceNotFoundError(
                f"Dependency {from_id} -> {to_id} ({dep_type.value}) not found",
                details={"from_task_id": from_id, "to_task_id": to_id, "type": dep_type.value},
            )
        del self._edges[key]
        if dep_type == DependencyType.BLOCKS:
            self._blocks[from_id].remove(to_id)
            dependents = self._dependents.get(to_id, [])
            if from_id in dependents:
                dependents.remove(from_id)
        node = self.nodes.get(from_id)
        if node is not None:
            node.dependencies = [
                d for d in node.dependencies if not (d.task_id == to_id and d.type == dep_type)
            ]
        logger.info("[Graph] Edge removed: %s -> %s (%s)", from_id, to_id, dep_type.value)

    def apply_edge_operations(self, operations: Iterable[EdgeOperation]) -> BulkEdgeResult:
        """
        Apply add/remove operations one by one, collecting failures
        instead of stopping at the first one.
        逐条执行增删操作，收集失败项而不是遇错即停。
        """
        result = BulkEdgeResult()
        for op in operations:
            try:
                if op.action == "add":
                    self.add_edge(op.from_task_id, op.to_task_id, op.type)
                else:
                    self.remove_edge(op.from_task_id, op.to_task_id, op.type)
            except SchedulerError as exc:
                result.failed.append(EdgeOperationFailure(operation=op, code=exc.code.value, error=exc.message))
                continue
            result.successful.append(op)

        logger.info(
            "[Graph] Bulk dependency operations: %d ok, %d failed",
            len(result.successful), len(result.failed),
        )
        return result

    def _insert_edge(self, from_id: str, to_id: str, dep_type: DependencyType) -> bool:
        """
        Shared insertion path: cycle check first, then mutate.
        公共插入路径：先做环检测，通过后才修改图。
        """
        key = (from_id, to_id, dep_type)
        if key in self._edges:
            return False

        if dep_type == DependencyType.BLOCKS:
            # to 已能沿 BLOCKS 边到达 from，则新边会闭合成环
            path = find_dependency_path(self, to_id, from_id)
            if path is not None:
                cycle = [from_id] + path if from_id != to_id else [from_id, to_id]
                raise CircularDependencyError(
                    f"Cannot add dependency {from_id} -> {to_id}: would create a cycle "
                    f"({' -> '.join(cycle)})",
                    details={"from_task_id": from_id, "to_task_id": to_id, "cycle": cycle},
                )
            self._blocks.setdefault(from_id, []).append(to_id)
            self._dependents.setdefault(to_id, []).append(from_id)

        self._edges[key] = DependencyEdge(from_task_id=from_id, to_task_id=to_id, type=dep_type)
        return True

    # ------------------------------------------------------------------
    # Queries
    # 查询
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> TaskNode:
        try:
            return self.nodes[task_id]
        except KeyError:
            raise ResourceNotFoundError(f"Task '{task_id}' not found", details={"task_id": task_id}) from None

    def has_task(self, task_id: str) -> bool:
        return task_id in self.nodes

    def dependencies_of(self, task_id: str) -> list[str]:
        """
        Blocks dependencies of a task, in insertion order. May include
        dangling IDs that are not part of the graph.
        任务的 BLOCKS 依赖（按插入顺序），可能包含不在图中的悬挂 ID。
        """
        return list(self._blocks.get(task_id, ()))

    def dependents_of(self, task_id: str) -> list[str]:
        """
        Tasks whose blocks dependency is `task_id` (reverse adjacency).
        以 `task_id` 为 BLOCKS 依赖的任务（反向邻接）。
        """
        return [d for d in self._dependents.get(task_id, ()) if d in self.nodes]

    def is_satisfied(self, task_id: str, completed: Iterable[str]) -> bool:
        """
        True iff every blocks dependency of `task_id` is in `completed`.
        当且仅当 `task_id` 的全部 BLOCKS 依赖都在 `completed` 中时返回 True。
        """
        done = completed if isinstance(completed, (set, frozenset)) else set(completed)
        return all(dep in done for dep in self._blocks.get(task_id, ()))

    def missing_dependencies(self, task_id: str) -> list[str]:
        """Blocks dependencies that are not part of the graph. 不在图中的 BLOCKS 依赖。"""
        return [dep for dep in self._blocks.get(task_id, ()) if dep not in self.nodes]

    def completed_ids(self) -> set[str]:
        """IDs of tasks already flagged completed or in the done column. 已完成任务的 ID。"""
        return {
            tid for tid, node in self.nodes.items()
            if node.completed or node.status == TaskStatus.DONE
        }

    def max_fan_out(self) -> int:
        return max((len(self.dependents_of(tid)) for tid in self.nodes), default=0)

    @property
    def edges(self) -> list[DependencyEdge]:
        return list(self._edges.values())

    @property
    def tasks(self) -> list[TaskNode]:
        return list(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.nodes

    def __iter__(self) -> Iterator[TaskNode]:
        return iter(self.nodes.values())

    # ------------------------------------------------------------------
    # State mutation
    # 状态变更
    # ------------------------------------------------------------------

    def mark_completed(self, task_id: str) -> None:
        """
        Flag a task completed in place. Persisting it is the caller's job.
        原地将任务标记为已完成；持久化由调用方负责。
        """
        node = self.get_task(task_id)
        node.completed = True
        node.status = TaskStatus.DONE
        logger.debug("[Graph] %s marked completed", task_id)

    # ------------------------------------------------------------------
    # Serialization / display
    # 序列化与展示
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [n.model_dump(mode="json") for n in self.nodes.values()],
            "edges": [e.model_dump(mode="json") for e in self._edges.values()],
        }

    def summary(self) -> str:
        """
        One-line summary for logging, e.g. Graph[5 tasks, 4 edges (3 blocks): 2 done, 3 todo]
        生成单行摘要，用于日志输出。
        """
        status_counts: dict[str, int] = {}
        for n in self.nodes.values():
            status_counts[n.status.value] = status_counts.get(n.status.value, 0) + 1
        blocks = sum(1 for key in self._edges if key[2] == DependencyType.BLOCKS)
        parts = [f"{v} {k}" for k, v in status_counts.items()]
        return (
            f"Graph[{len(self.nodes)} tasks, {len(self._edges)} edges ({blocks} blocks): "
            f"{', '.join(parts)}]"
        )


def _validate_record(raw: Any) -> TaskNode:
    try:
        return TaskNode.model_validate(raw)
    except ValidationError as exc:
        task_id = raw.get("id") if isinstance(raw, dict) else None
        raise ValidationFailedError(
            f"Invalid task record {task_id!r}: {exc.error_count()} validation error(s)",
            details={"task_id": task_id, "errors": exc.errors(include_url=False)},
        ) from exc


def _coerce_type(dep_type: DependencyType | str) -> DependencyType:
    try:
        return DependencyType(dep_type)
    except ValueError:
        raise ValidationFailedError(
            f"Invalid dependency type {dep_type!r}",
            details={"type": str(dep_type), "allowed": [t.value for t in DependencyType]},
        ) from None
