"""
PriorityEngine 测试 — 覆盖：
  1. 信号计算与原因说明 (Signals & Reasons)
  2. 等级阈值 (Level Buckets)
  3. 推荐：资格过滤、依赖满足、确定性平局打破 (Recommendation)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from schema import PriorityLevel, RecommendationFilters, TaskStatus
from scheduler.graph import TaskGraph
from scheduler.priority import PriorityEngine

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _scenario_graph() -> TaskGraph:
    """X: 优先级 5，2 小时后到期，阻塞 3 个任务；Y: 优先级 1，30 天后到期，无下游"""
    return TaskGraph.build([
        {"id": "X", "priority": 5, "due_date": NOW + timedelta(hours=2)},
        {"id": "Y", "priority": 1, "due_date": NOW + timedelta(days=30)},
        {"id": "d1", "dependencies": ["X"]},
        {"id": "d2", "dependencies": ["X"]},
        {"id": "d3", "dependencies": ["X"]},
    ])


class TestScoring:

    def test_urgent_blocking_task_outranks_idle_one(self):
        graph = _scenario_graph()
        engine = PriorityEngine()
        x = engine.score(graph.get_task("X"), graph, NOW)
        y = engine.score(graph.get_task("Y"), graph, NOW)

        assert x.score > y.score
        assert x.score == pytest.approx(0.3 + 0.3 * 0.5 ** (2 / 24) + 0.25, abs=1e-6)
        assert x.level == PriorityLevel.CRITICAL
        assert y.level == PriorityLevel.LOW
        assert x.reasons == ["Critical priority level set", "Due within 24 hours", "Blocks 3 other tasks"]
        assert y.reasons == []

        rec = engine.recommend_next(graph, set(), None, NOW)
        assert rec.task.id == "X"

    def test_overdue_saturates_urgency(self):
        graph = TaskGraph.build([{"id": "late", "due_date": NOW - timedelta(hours=5)}])
        score = PriorityEngine().score(graph.get_task("late"), graph, NOW)
        assert score.signals["due_date"] == 1.0
        assert "Overdue by 5 hours" in score.reasons

    def test_urgency_decreases_with_time_remaining(self):
        graph = TaskGraph.build([
            {"id": "soon", "due_date": NOW + timedelta(hours=1)},
            {"id": "later", "due_date": NOW + timedelta(hours=50)},
            {"id": "week", "due_date": NOW + timedelta(days=6)},
            {"id": "none"},
        ])
        engine = PriorityEngine()
        signals = {tid: engine.score(graph.get_task(tid), graph, NOW).signals["due_date"] for tid in graph.nodes}
        assert signals["soon"] > signals["later"] > signals["week"] > signals["none"] == 0.0
        assert "Due within 3 days" in engine.score(graph.get_task("later"), graph, NOW).reasons
        assert "Due this week" in engine.score(graph.get_task("week"), graph, NOW).reasons

    def test_in_progress_boost(self):
        graph = TaskGraph.build([
            {"id": "a", "status": "in_progress"},
            {"id": "b", "status": "todo"},
        ])
        engine = PriorityEngine()
        a = engine.score(graph.get_task("a"), graph, NOW)
        b = engine.score(graph.get_task("b"), graph, NOW)
        assert a.score - b.score == pytest.approx(0.15)
        assert "Already in progress" in a.reasons

    def test_naive_now_is_treated_as_utc(self):
        graph = _scenario_graph()
        engine = PriorityEngine()
        aware = engine.score(graph.get_task("X"), graph, NOW)
        naive = engine.score(graph.get_task("X"), graph, NOW.replace(tzinfo=None))
        assert aware.score == naive.score

    def test_custom_weights(self):
        graph = _scenario_graph()
        engine = PriorityEngine(weights={"due_date": 0.0, "fan_out": 0.0})
        y = engine.score(graph.get_task("Y"), graph, NOW)
        x = engine.score(graph.get_task("X"), graph, NOW)
        assert x.score == pytest.approx(0.3)
        assert y.score == 0.0


class TestLevels:

    @pytest.mark.parametrize("score,level", [
        (0.0, PriorityLevel.LOW),
        (0.29, PriorityLevel.LOW),
        (0.3, PriorityLevel.MEDIUM),
        (0.55, PriorityLevel.HIGH),
        (0.79, PriorityLevel.HIGH),
        (0.8, PriorityLevel.CRITICAL),
        (1.0, PriorityLevel.CRITICAL),
    ])
    def test_level_thresholds(self, score, level):
        assert PriorityEngine().level_for(score) == level


class TestRecommendation:

    def test_blocked_archived_and_done_are_excluded(self):
        graph = TaskGraph.build([
            {"id": "blocked", "priority": 5, "status": "blocked"},
            {"id": "archived", "priority": 5, "status": "archived"},
            {"id": "done", "priority": 5, "status": "done"},
            {"id": "flagged", "priority": 5, "completed": True},
            {"id": "plain", "priority": 1},
        ])
        rec = PriorityEngine().recommend_next(graph, now=NOW)
        assert rec.task.id == "plain"

    def test_unsatisfied_tasks_are_not_eligible(self):
        graph = TaskGraph.build([
            {"id": "high", "priority": 5, "dependencies": ["low"]},
            {"id": "low", "priority": 1},
        ])
        engine = PriorityEngine()
        assert engine.recommend_next(graph, now=NOW).task.id == "low"
        assert engine.recommend_next(graph, {"low"}, now=NOW).task.id == "high"

    def test_filters(self):
        graph = TaskGraph.build([
            {"id": "a", "priority": 5, "assignee": "alice", "board_id": "b1"},
            {"id": "b", "priority": 3, "assignee": "bob", "board_id": "b1", "status": "in_progress"},
            {"id": "c", "priority": 1, "assignee": "bob", "board_id": "b2"},
        ])
        engine = PriorityEngine()
        assert engine.recommend_next(graph, filters=RecommendationFilters(assignee="bob"), now=NOW).task.id == "b"
        assert engine.recommend_next(graph, filters=RecommendationFilters(board_id="b2"), now=NOW).task.id == "c"
        only_todo = RecommendationFilters(status=TaskStatus.TODO, assignee="bob")
        assert engine.recommend_next(graph, filters=only_todo, now=NOW).task.id == "c"
        assert engine.recommend_next(graph, filters=RecommendationFilters(assignee="carol"), now=NOW) is None

    def test_ties_break_by_due_date_then_id(self):
        graph = TaskGraph.build([
            {"id": "b"},
            {"id": "a"},
            {"id": "c"},
        ])
        engine = PriorityEngine(weights={"due_date": 0.0})
        graph.get_task("c").due_date = NOW + timedelta(days=1)
        ranked = engine.rank(graph, now=NOW)
        assert [r.task.id for r in ranked] == ["c", "a", "b"]

        first = engine.recommend_next(graph, now=NOW)
        second = engine.recommend_next(graph, now=NOW)
        assert first == second

    def test_nothing_eligible_returns_none(self):
        graph = TaskGraph.build([{"id": "a", "completed": True}])
        assert PriorityEngine().recommend_next(graph, now=NOW) is None

    def test_rank_computes_max_fan_out_once(self):
        graph = _scenario_graph()
        engine = PriorityEngine()
        with patch.object(graph, "max_fan_out", wraps=graph.max_fan_out) as spy:
            ranked = engine.rank(graph, now=NOW)
        assert len(ranked) == 2
        assert spy.call_count == 1, "rank 只应计算一次最大扇出"

        x = next(r for r in ranked if r.task.id == "X")
        assert x.score == engine.score(graph.get_task("X"), graph, NOW), "传入与内部计算的扇出结果一致"
