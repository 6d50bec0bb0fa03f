"""
Action 测试 — SimulatedAction 与 CommandAction（真实子进程，超时与非零退出码）。
"""

from __future__ import annotations

import pytest

from actions import CommandAction, SimulatedAction
from schema import TaskNode
from scheduler.executor import BoundedExecutor
from scheduler.graph import TaskGraph


class TestSimulatedAction:

    @pytest.mark.asyncio
    async def test_simulated_success_and_forced_failure(self):
        action = SimulatedAction(seconds_per_unit=0.0, fail_ids={"bad"})
        ok = await action.execute(TaskNode(id="good", size="XL"))
        bad = await action(TaskNode(id="bad"))
        assert ok.success and "XL" in ok.output
        assert not bad.success
        assert action.name == "simulate"

    @pytest.mark.asyncio
    async def test_simulated_action_in_executor(self):
        graph = TaskGraph.build([{"id": "a"}, {"id": "b", "dependencies": ["a"]}])
        report = await BoundedExecutor(max_concurrent=2).execute(graph, SimulatedAction(seconds_per_unit=0.001))
        assert report.success
        assert report.succeeded == ["a", "b"]


class TestCommandAction:

    def test_render_template(self):
        action = CommandAction("deploy {board_id}/{id} --size {size}")
        task = TaskNode(id="T-1", size="L", board_id="web")
        assert action.render(task) == "deploy web/T-1 --size L"
        assert action.render(TaskNode(id="x")) == "deploy ''/x --size M"

    def test_render_quotes_field_values(self):
        action = CommandAction("echo {title}")
        assert action.render(TaskNode(id="t", title="a; rm -rf ~")) == "echo 'a; rm -rf ~'"

    @pytest.mark.asyncio
    async def test_hostile_title_is_not_executed(self, tmp_path):
        marker = tmp_path / "pwned"
        task = TaskNode(id="t", title=f"hello; touch {marker}")
        result = await CommandAction("echo {title}").execute(task)
        assert result.success
        assert not marker.exists(), "任务标题不应被当作 shell 代码执行"
        assert f"hello; touch {marker}" in result.output

    @pytest.mark.asyncio
    async def test_successful_command(self):
        result = await CommandAction("echo building {id}").execute(TaskNode(id="api"))
        assert result.success
        assert "building api" in result.output

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_failure(self):
        result = await CommandAction("echo oops >&2; exit 3").execute(TaskNode(id="api"))
        assert not result.success
        assert "oops" in result.output
        assert "Exit code: 3" in result.output

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self):
        result = await CommandAction("sleep 5", timeout=0.2).execute(TaskNode(id="slow"))
        assert not result.success
        assert "timed out" in result.output
