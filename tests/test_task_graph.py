"""
TaskGraph 与环检测测试 — 覆盖：
  1. 建图与记录校验 (Build & Validation)
  2. 插边语义：未知任务、非法类型、幂等重复 (Edge Semantics)
  3. 环检测：自环、两点环、长环，拒绝后图不变 (Cycle Rejection)
  4. 删边与批量操作 (Remove & Bulk Operations)

运行方式:
    python -m pytest tests/test_task_graph.py -v
"""

from __future__ import annotations

import pytest

from schema import DependencyType, EdgeOperation, TaskNode, TaskStatus
from scheduler.cycle import find_dependency_path, would_create_cycle
from scheduler.errors import (
    CircularDependencyError,
    ErrorCode,
    ResourceNotFoundError,
    ValidationFailedError,
)
from scheduler.graph import TaskGraph


def _chain_graph() -> TaskGraph:
    """A -> B -> C (A 依赖 B，B 依赖 C)"""
    return TaskGraph.build([
        {"id": "A", "dependencies": ["B"]},
        {"id": "B", "dependencies": ["C"]},
        {"id": "C"},
    ])


def _edge_keys(graph: TaskGraph) -> set[tuple[str, str, str]]:
    return {(e.from_task_id, e.to_task_id, e.type.value) for e in graph.edges}


# ======================================================================
# 1. Build & Validation
# ======================================================================


class TestBuild:

    def test_build_from_dicts_and_nodes(self):
        graph = TaskGraph.build([
            TaskNode(id="A", dependencies=["B"]),
            {"id": "B", "priority": "P1", "size": "XL"},
        ])
        assert len(graph) == 2
        assert "A" in graph and "B" in graph
        assert graph.get_task("B").priority == 5, "P1 应映射为最高优先级 5"
        assert graph.dependencies_of("A") == ["B"]
        assert graph.dependents_of("B") == ["A"]

    def test_malformed_record_is_validation_failed(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            TaskGraph.build([{"id": "A", "priority": 9}])
        assert exc_info.value.code == ErrorCode.VALIDATION_FAILED
        assert exc_info.value.details["task_id"] == "A"

    def test_invalid_dependency_type_is_validation_failed(self):
        with pytest.raises(ValidationFailedError):
            TaskGraph.build([
                {"id": "A", "dependencies": [{"task_id": "B", "type": "follows"}]},
                {"id": "B"},
            ])

    def test_duplicate_id_rejected(self):
        with pytest.raises(ValidationFailedError, match="Duplicate"):
            TaskGraph.build([{"id": "A"}, {"id": "A"}])

    def test_duplicate_dependencies_are_collapsed(self):
        graph = TaskGraph.build([{"id": "A", "dependencies": ["B", "B"]}, {"id": "B"}])
        assert graph.dependencies_of("A") == ["B"]
        assert len(graph.edges) == 1

    def test_dangling_dependency_is_kept(self):
        """依赖集合外的任务不报错，留给规划器报告僵局"""
        graph = TaskGraph.build([{"id": "A", "dependencies": ["ghost"]}])
        assert graph.dependencies_of("A") == ["ghost"]
        assert graph.missing_dependencies("A") == ["ghost"]
        assert not graph.is_satisfied("A", set())

    def test_cycle_in_records_raises(self):
        with pytest.raises(CircularDependencyError):
            TaskGraph.build([
                {"id": "A", "dependencies": ["B"]},
                {"id": "B", "dependencies": ["A"]},
            ])

    def test_non_strict_build_drops_cycle_closing_edge(self):
        graph = TaskGraph.build(
            [
                {"id": "A", "dependencies": ["B"]},
                {"id": "B", "dependencies": ["A"]},
            ],
            strict=False,
        )
        assert _edge_keys(graph) == {("A", "B", "blocks")}
        assert [(e.from_task_id, e.to_task_id) for e in graph.rejected_edges] == [("B", "A")]
        assert graph.get_task("B").dependencies == []

    def test_informational_edges_do_not_block(self):
        graph = TaskGraph.build([
            {"id": "A", "dependencies": [{"task_id": "B", "type": "relates_to"}]},
            {"id": "B", "dependencies": [{"task_id": "A", "type": "duplicates"}]},
        ])
        assert graph.dependencies_of("A") == []
        assert graph.is_satisfied("A", set())
        assert len(graph.edges) == 2

    def test_completed_ids(self):
        graph = TaskGraph.build([
            {"id": "A", "completed": True},
            {"id": "B", "status": "done"},
            {"id": "C"},
        ])
        assert graph.completed_ids() == {"A", "B"}


# ======================================================================
# 2. Edge Semantics
# ======================================================================


class TestAddEdge:

    def test_add_edge_updates_adjacency_and_node(self):
        graph = TaskGraph.build([{"id": "A"}, {"id": "B"}])
        assert graph.add_edge("A", "B") is True
        assert graph.dependencies_of("A") == ["B"]
        assert graph.dependents_of("B") == ["A"]
        assert graph.get_task("A").blocking_dependency_ids == ["B"]

    def test_duplicate_edge_is_idempotent(self):
        graph = TaskGraph.build([{"id": "A"}, {"id": "B"}])
        graph.add_edge("A", "B")
        assert graph.add_edge("A", "B") is False
        assert len(graph.edges) == 1
        assert len(graph.get_task("A").dependencies) == 1

    def test_unknown_task_is_resource_not_found(self):
        graph = TaskGraph.build([{"id": "A"}])
        with pytest.raises(ResourceNotFoundError) as exc_info:
            graph.add_edge("A", "missing")
        assert exc_info.value.code == ErrorCode.RESOURCE_NOT_FOUND
        assert exc_info.value.to_dict()["details"] == {"task_id": "missing"}
        assert graph.edges == []

    def test_invalid_type_is_validation_failed(self):
        graph = TaskGraph.build([{"id": "A"}, {"id": "B"}])
        with pytest.raises(ValidationFailedError):
            graph.add_edge("A", "B", "depends_on")

    def test_type_accepts_plain_string(self):
        graph = TaskGraph.build([{"id": "A"}, {"id": "B"}])
        graph.add_edge("A", "B", "relates_to")
        assert graph.edges[0].type == DependencyType.RELATES_TO
        assert graph.dependencies_of("A") == []


# ======================================================================
# 3. Cycle Rejection
# ======================================================================


class TestCycleRejection:

    def test_two_node_cycle_rejected(self):
        """A→B 之后再加 B→A 必须失败，且图只保留 A→B"""
        graph = TaskGraph.build([{"id": "A"}, {"id": "B"}])
        graph.add_edge("A", "B", DependencyType.BLOCKS)
        with pytest.raises(CircularDependencyError) as exc_info:
            graph.add_edge("B", "A", DependencyType.BLOCKS)

        assert exc_info.value.code == ErrorCode.CIRCULAR_DEPENDENCY
        assert _edge_keys(graph) == {("A", "B", "blocks")}
        assert graph.dependencies_of("B") == []
        assert graph.get_task("B").dependencies == []

    def test_self_loop_rejected(self):
        graph = TaskGraph.build([{"id": "A"}])
        assert would_create_cycle(graph, "A", "A")
        with pytest.raises(CircularDependencyError):
            graph.add_edge("A", "A")
        assert graph.edges == []

    def test_long_cycle_rejected_with_path(self):
        graph = _chain_graph()
        before = _edge_keys(graph)
        with pytest.raises(CircularDependencyError) as exc_info:
            graph.add_edge("C", "A")
        assert exc_info.value.details["cycle"] == ["C", "A", "B", "C"]
        assert _edge_keys(graph) == before, "拒绝后边集合必须保持不变"

    def test_rejection_is_repeatable(self):
        graph = _chain_graph()
        for _ in range(3):
            with pytest.raises(CircularDependencyError):
                graph.add_edge("C", "A")
        assert len(graph.edges) == 2

    def test_informational_edge_may_close_loop(self):
        graph = _chain_graph()
        graph.add_edge("C", "A", DependencyType.RELATES_TO)
        assert len(graph.edges) == 3

    def test_would_create_cycle_helpers(self):
        graph = _chain_graph()
        assert would_create_cycle(graph, "C", "A")
        assert not would_create_cycle(graph, "A", "C")
        assert find_dependency_path(graph, "A", "C") == ["A", "B", "C"]
        assert find_dependency_path(graph, "C", "A") is None

    def test_search_ignores_dangling_ids(self):
        graph = TaskGraph.build([
            {"id": "A", "dependencies": ["ghost", "B"]},
            {"id": "B"},
        ])
        assert not would_create_cycle(graph, "B", "ghost")
        with pytest.raises(CircularDependencyError):
            graph.add_edge("B", "A")


# ======================================================================
# 4. Remove & Bulk Operations
# ======================================================================


class TestEdgeOperations:

    def test_remove_edge(self):
        graph = _chain_graph()
        graph.remove_edge("A", "B")
        assert graph.dependencies_of("A") == []
        assert graph.dependents_of("B") == []
        assert graph.get_task("A").dependencies == []
        # 删除后原本成环的边可以加入
        graph.add_edge("B", "A")
        assert graph.dependencies_of("B") == ["C", "A"]

    def test_remove_missing_edge(self):
        graph = _chain_graph()
        with pytest.raises(ResourceNotFoundError):
            graph.remove_edge("C", "A")

    def test_bulk_operations_collect_failures(self):
        graph = TaskGraph.build([{"id": "A"}, {"id": "B"}, {"id": "C"}])
        result = graph.apply_edge_operations([
            EdgeOperation(from_task_id="A", to_task_id="B"),
            EdgeOperation(from_task_id="B", to_task_id="A"),
            EdgeOperation(from_task_id="A", to_task_id="nope"),
            EdgeOperation(from_task_id="B", to_task_id="C"),
            EdgeOperation(from_task_id="A", to_task_id="B", action="remove"),
        ])
        assert len(result.successful) == 3
        assert [f.code for f in result.failed] == ["CIRCULAR_DEPENDENCY", "RESOURCE_NOT_FOUND"]
        assert _edge_keys(graph) == {("B", "C", "blocks")}

    def test_mark_completed(self):
        graph = _chain_graph()
        graph.mark_completed("C")
        node = graph.get_task("C")
        assert node.completed is True
        assert node.status == TaskStatus.DONE
        assert graph.is_satisfied("B", graph.completed_ids())

    def test_summary_and_to_dict(self):
        graph = _chain_graph()
        assert graph.summary().startswith("Graph[3 tasks, 2 edges (2 blocks)")
        data = graph.to_dict()
        assert len(data["tasks"]) == 3
        assert {"from_task_id": "A", "to_task_id": "B", "type": "blocks"} in data["edges"]
