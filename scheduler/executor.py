"""
BoundedExecutor - Runs execution waves under a concurrency cap.
有界执行器 —— 在并发上限约束下逐 Wave 执行任务。

Execution model (one wave = one super-step):
  1. Resync the completed set at the wave boundary
  2. Skip tasks whose blocks dependencies failed or were skipped
  3. Run the rest concurrently via asyncio.gather, each worker holding a
     slot of an asyncio.Semaphore of width max_concurrent
  4. Workers only report outcomes back; the loop that owns the graph
     applies them (marks succeeded tasks completed) after the barrier
  5. Stop scheduling new work once exit_on_error has been triggered

执行模型（一个 Wave = 一个 Super-step）：
  1. 在 Wave 边界同步已完成集合
  2. 跳过 BLOCKS 依赖失败或被跳过的任务
  3. 其余任务通过 asyncio.gather 并发执行，每个 worker 占用宽度为 max_concurrent 的信号量的一个槽位
  4. worker 只回报结果；持有图的主循环在屏障之后统一应用（标记成功任务为已完成）
  5. exit_on_error 触发后不再调度任何新任务

Per-task action failures never escape as exceptions: they are captured
into the ExecutionReport. No task is retried.
单个任务的失败不会以异常形式逃逸，而是记录进 ExecutionReport。不做任何重试。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Iterable
from typing import Any, Awaitable, Callable, Union

import config
from schema import (
    ActionResult,
    ExecutionReport,
    PlanResult,
    TaskExecutionRecord,
    TaskNode,
    TaskOutcome,
    Wave,
    WaveReport,
)
from scheduler.errors import ValidationFailedError
from scheduler.graph import TaskGraph
from scheduler.planner import WavePlanner
from scheduler.state_machine import ExecutionStateMachine

logger = logging.getLogger(__name__)

# An action receives the TaskNode and returns (or resolves to) a bool, an
# ActionResult, or anything else (treated as success). Raising means failure.
# action 接收 TaskNode，返回 bool / ActionResult / 其他值（视为成功）；抛异常即失败。
Action = Callable[[TaskNode], Union[Any, Awaitable[Any]]]

ABORTED_REASON = "Run aborted after a task failure (exit_on_error)"


class _RunState:
    """Mutable state owned by a single run() call. 单次 run() 调用独占的可变状态。"""

    __slots__ = ("aborted",)

    def __init__(self):
        self.aborted = False


class BoundedExecutor:
    """
    Runs waves strictly in order, with bounded concurrency inside a wave.
    严格按顺序执行 Wave，Wave 内部并发受上限约束。
    """

    def __init__(
        self,
        max_concurrent: int | None = None,
        exit_on_error: bool | None = None,
        dry_run: bool | None = None,
        on_event: Callable[[str, Any], None] | None = None,
    ):
        """
        Args:
            max_concurrent: Max actions in flight within one wave. None falls back
                            to config.MAX_CONCURRENT; if that is unset too, a wave
                            runs fully concurrent.
            exit_on_error:  Stop scheduling further work after the first failure.
            dry_run:        Plan and report without invoking the action.
            on_event:       Optional callback(event, data) for UI updates.
            max_concurrent: 单个 Wave 内同时执行的最大任务数；None 时使用 config.MAX_CONCURRENT，
                            若仍未设置则不限制。
            exit_on_error:  首个失败后停止调度后续任务。
            dry_run:        只规划和生成报告，不调用 action。
            on_event:       可选事件回调 callback(event, data)，用于 UI 实时更新。
        """
        if max_concurrent is None:
            max_concurrent = config.MAX_CONCURRENT
        if max_concurrent is not None and (isinstance(max_concurrent, bool) or max_concurrent < 1):
            raise ValidationFailedError(
                f"max_concurrent must be a positive integer, got {max_concurrent!r}",
                details={"max_concurrent": max_concurrent},
            )
        self.max_concurrent: int | None = max_concurrent
        self.exit_on_error = config.EXIT_ON_ERROR if exit_on_error is None else exit_on_error
        self.dry_run = config.DRY_RUN if dry_run is None else dry_run
        self._emit = on_event or (lambda *_: None)
        self._sm = ExecutionStateMachine()

    # ------------------------------------------------------------------
    # Entry points
    # 入口
    # ------------------------------------------------------------------

    async def execute(
        self,
        graph: TaskGraph,
        action: Action,
        completed: Iterable[str] | None = None,
    ) -> ExecutionReport:
        """
        Plan the graph and run the resulting waves.
        规划依赖图并执行得到的 Wave。
        """
        plan = WavePlanner().plan(graph, completed)
        return await self.run(plan, action, graph=graph, completed=completed)

    async def run(
        self,
        waves: PlanResult | list[Wave],
        action: Action,
        graph: TaskGraph | None = None,
        completed: Iterable[str] | None = None,
    ) -> ExecutionReport:
        """
        Run the waves in order and return the aggregated report.
        按顺序执行 Wave 并返回汇总报告。

        Without a graph, tasks are passed to the action as bare TaskNodes
        (ID only) and no dependency-based skipping happens.
        不提供 graph 时，action 收到只有 ID 的 TaskNode，且不做基于依赖的跳过。
        """
        stalemate = None
        if isinstance(waves, PlanResult):
            stalemate = waves.stalemate
            waves = waves.waves

        state = _RunState()
        semaphore = asyncio.Semaphore(self.max_concurrent) if self.max_concurrent else None
        done: set[str] = set(completed or ())
        if graph is not None:
            done |= graph.completed_ids()

        report = ExecutionReport(dry_run=self.dry_run, stalemate=stalemate)
        started = time.perf_counter()
        logger.info(
            "[Executor] Running %d wave(s) (max_concurrent=%s, exit_on_error=%s, dry_run=%s)",
            len(waves), self.max_concurrent or "unbounded", self.exit_on_error, self.dry_run,
        )

        for wave in waves:
            wave_report = WaveReport(index=wave.index)
            report.waves.append(wave_report)
            records = {tid: TaskExecutionRecord(task_id=tid, wave=wave.index) for tid in wave.task_ids}
            wave_report.records.extend(records.values())

            if state.aborted:
                for record in records.values():
                    self._skip(record, ABORTED_REASON)
                continue

            # --- Wave boundary: decide what can run ---
            # --- Wave 边界：判定哪些任务可以执行 ---
            runnable: list[TaskExecutionRecord] = []
            for tid, record in records.items():
                waiting = self._unsatisfied(graph, tid, done)
                if waiting:
                    self._skip(record, f"Waiting for: {', '.join(waiting)}")
                else:
                    runnable.append(record)

            self._emit("wave_start", {"wave": wave.index, "tasks": [r.task_id for r in runnable]})

            # --- Super-step: bounded parallel execution ---
            # --- Super-step：有界并发执行 ---
            await asyncio.gather(*[
                self._run_task(record, self._task_for(graph, record.task_id), action, semaphore, state)
                for record in runnable
            ])

            # --- Barrier: apply outcomes on the owning coroutine ---
            # --- 屏障：由持有图的协程统一应用结果 ---
            for record in runnable:
                if record.outcome != TaskOutcome.SUCCEEDED:
                    continue
                done.add(record.task_id)
                if graph is not None and not self.dry_run and record.task_id in graph:
                    graph.mark_completed(record.task_id)

            self._emit("wave_done", {"wave": wave.index, "report": wave_report})
            logger.info(
                "[Executor] Wave %d done: %d succeeded, %d failed, %d skipped",
                wave.index,
                sum(1 for r in wave_report.records if r.outcome == TaskOutcome.SUCCEEDED),
                sum(1 for r in wave_report.records if r.outcome == TaskOutcome.FAILED),
                sum(1 for r in wave_report.records if r.outcome == TaskOutcome.SKIPPED),
            )

        report.aborted = state.aborted
        report.elapsed = time.perf_counter() - started
        logger.info(
            "[Executor] Finished in %.2fs: %d succeeded, %d failed, %d skipped%s",
            report.elapsed, len(report.succeeded), len(report.failed), len(report.skipped),
            " (aborted)" if report.aborted else "",
        )
        return report

    # ------------------------------------------------------------------
    # Per-task execution
    # 单任务执行
    # ------------------------------------------------------------------

    async def _run_task(
        self,
        record: TaskExecutionRecord,
        task: TaskNode,
        action: Action,
        semaphore: asyncio.Semaphore | None,
        state: _RunState,
    ) -> None:
        if semaphore is None:
            await self._invoke(record, task, action, state)
            return
        async with semaphore:
            await self._invoke(record, task, action, state)

    async def _invoke(
        self,
        record: TaskExecutionRecord,
        task: TaskNode,
        action: Action,
        state: _RunState,
    ) -> None:
        # 中止后，排队中尚未开始的任务直接跳过；已在执行的任务允许完成
        if state.aborted:
            self._skip(record, ABORTED_REASON)
            return

        self._sm.transition(record, TaskOutcome.RUNNING)
        record.started_at = time.perf_counter()
        self._emit("task_running", {"task_id": record.task_id, "wave": record.wave})

        if self.dry_run:
            record.finished_at = record.started_at
            record.output = "dry run: no-op"
            self._sm.transition(record, TaskOutcome.SUCCEEDED)
            self._emit("task_succeeded", {"task_id": record.task_id, "record": record})
            return

        try:
            result = await _call_action(action, task)
            success, output = _interpret(result)
            error = None if success else (output or "Action reported failure")
        except Exception as exc:
            logger.warning("[Executor] Task %s raised %s: %s", record.task_id, type(exc).__name__, exc)
            success, output, error = False, "", f"{type(exc).__name__}: {exc}"
        record.finished_at = time.perf_counter()
        record.output = output

        if success:
            self._sm.transition(record, TaskOutcome.SUCCEEDED)
            self._emit("task_succeeded", {"task_id": record.task_id, "record": record})
            return

        record.error = error
        self._sm.transition(record, TaskOutcome.FAILED)
        logger.warning("[Executor] Task %s failed: %s", record.task_id, error)
        self._emit("task_failed", {"task_id": record.task_id, "record": record})
        if self.exit_on_error and not state.aborted:
            state.aborted = True
            logger.warning("[Executor] exit_on_error: no further tasks will be scheduled")
            self._emit("aborted", {"task_id": record.task_id, "wave": record.wave})

    def _skip(self, record: TaskExecutionRecord, reason: str) -> None:
        record.skip_reason = reason
        self._sm.transition(record, TaskOutcome.SKIPPED)
        logger.info("[Executor] Task %s SKIPPED (%s)", record.task_id, reason)
        self._emit("task_skipped", {"task_id": record.task_id, "reason": reason})

    @staticmethod
    def _unsatisfied(graph: TaskGraph | None, task_id: str, done: set[str]) -> list[str]:
        if graph is None:
            return []
        return [dep for dep in graph.dependencies_of(task_id) if dep not in done]

    @staticmethod
    def _task_for(graph: TaskGraph | None, task_id: str) -> TaskNode:
        if graph is not None and task_id in graph:
            return graph.nodes[task_id]
        return TaskNode(id=task_id)


async def _call_action(action: Action, task: TaskNode) -> Any:
    """
    Invoke the action once. Coroutine functions are awaited directly;
    plain callables run in a worker thread so blocking work does not
    stall the event loop.
    调用一次 action。协程函数直接 await；普通可调用对象放到线程中执行，避免阻塞事件循环。
    """
    if inspect.iscoroutinefunction(action) or inspect.iscoroutinefunction(getattr(action, "__call__", None)):
        return await action(task)
    result = await asyncio.to_thread(action, task)
    if inspect.isawaitable(result):
        result = await result
    return result


def _interpret(result: Any) -> tuple[bool, str]:
    if isinstance(result, ActionResult):
        return result.success, result.output
    if result is False:
        return False, ""
    if result is None or result is True:
        return True, ""
    return True, str(result)
