"""
Base Action - Abstract interface for the work run once per task.
BaseAction —— 每个任务执行一次的工作单元的抽象接口。

Each action exposes:
  - name / description for CLI listing and logs
  - execute() to actually do the work for one TaskNode

每个 action 暴露：
  - name / description：用于 CLI 展示与日志
  - execute()：对单个 TaskNode 实际执行工作

Actions report failure through ActionResult.success or by raising; the
BoundedExecutor captures both into the ExecutionReport. Actions are not
retried, so anything with side effects should be safe to run again at
the caller's discretion.
action 通过 ActionResult.success 或抛异常报告失败，BoundedExecutor 会将两者都记录进执行报告。
不做自动重试，带副作用的 action 应保证由调用方决定重跑时是安全的。
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from schema import ActionResult, TaskNode


class BaseAction(ABC):
    """
    Abstract base class for task actions.
    所有任务 action 的抽象基类。
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique action name, used to pick an action from the CLI.
        action 唯一名称，CLI 通过该名称选择 action。
        """

    @property
    def description(self) -> str:
        return self.__class__.__doc__.strip().splitlines()[0] if self.__class__.__doc__ else self.name

    @abstractmethod
    async def execute(self, task: TaskNode) -> ActionResult:
        """
        Do the work for one task and report the outcome.
        对单个任务执行工作并返回结果。
        """

    async def __call__(self, task: TaskNode) -> ActionResult:
        return await self.execute(task)
