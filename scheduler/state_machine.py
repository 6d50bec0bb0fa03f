"""
Execution State Machine - Enforces per-task lifecycle transitions during a run.
执行状态机 —— 在一次执行中强制单个任务的合法生命周期转移。

Transition graph:
转移图：
    PENDING ──> RUNNING ──> SUCCEEDED
                        ──> FAILED
    PENDING ──> SKIPPED      (dependency failed/skipped, or run aborted / 依赖失败或被跳过，或执行已中止)

Dry-run tasks go PENDING -> RUNNING -> SUCCEEDED without invoking the action.
Dry-run 模式下任务同样经过 PENDING -> RUNNING -> SUCCEEDED，只是不调用 action。
"""

from __future__ import annotations

import logging
from typing import Callable

from schema import TaskExecutionRecord, TaskOutcome

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """
    Raised when an illegal outcome transition is attempted.
    当尝试非法状态转移时抛出此异常。
    """


VALID_TRANSITIONS: dict[TaskOutcome, set[TaskOutcome]] = {
    TaskOutcome.PENDING:   {TaskOutcome.RUNNING, TaskOutcome.SKIPPED},
    TaskOutcome.RUNNING:   {TaskOutcome.SUCCEEDED, TaskOutcome.FAILED},
    # 终态
    TaskOutcome.SUCCEEDED: set(),
    TaskOutcome.FAILED:    set(),
    TaskOutcome.SKIPPED:   set(),
}


class ExecutionStateMachine:
    """
    Validates and applies outcome transitions on TaskExecutionRecords.
    校验并应用 TaskExecutionRecord 的状态转移。
    """

    def __init__(self, on_transition: Callable[[str, TaskOutcome, TaskOutcome], None] | None = None):
        """
        Args:
            on_transition: Optional callback(task_id, old_outcome, new_outcome).
            on_transition: 可选回调 callback(任务 ID, 旧状态, 新状态)。
        """
        self._on_transition = on_transition

    @staticmethod
    def can_transition(record: TaskExecutionRecord, new_outcome: TaskOutcome) -> bool:
        return new_outcome in VALID_TRANSITIONS.get(record.outcome, set())

    def transition(self, record: TaskExecutionRecord, new_outcome: TaskOutcome) -> None:
        """
        Apply a transition. Raises InvalidTransitionError if illegal.
        应用状态转移，非法时抛出 InvalidTransitionError。
        """
        if not self.can_transition(record, new_outcome):
            raise InvalidTransitionError(
                f"Task '{record.task_id}': cannot transition from {record.outcome.value} to {new_outcome.value}. "
                f"Valid targets: {sorted(s.value for s in VALID_TRANSITIONS.get(record.outcome, set()))}"
            )

        old_outcome = record.outcome
        record.outcome = new_outcome
        logger.debug("[SM] %s: %s -> %s", record.task_id, old_outcome.value, new_outcome.value)

        if self._on_transition:
            self._on_transition(record.task_id, old_outcome, new_outcome)
