"""
Pydantic data models for the Kanban Scheduler.
Defines the core data structures shared by the graph, planner, executor,
priority engine and CLI.
Kanban Scheduler 的 Pydantic 数据模型。
定义了贯穿图模型、Wave 规划器、执行器、优先级引擎与 CLI 的核心数据结构。

Task records coming from the task store (JSON, API payloads) are loosely
shaped; they are validated into a strict TaskNode exactly once, at the
boundary, so the scheduler internals can assume well-formed input.
来自任务存储的记录格式松散，在边界处一次性校验为严格的 TaskNode，
调度器内部因此可以假定输入合法。
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


# ======================================================================
# Task records
# 任务记录
# ======================================================================

class TaskStatus(str, Enum):
    """
    Kanban column status of a task.
    任务在看板上的状态。
    """
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"
    ARCHIVED = "archived"


class TaskSize(str, Enum):
    """Effort class. 工作量等级。"""
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"


class DependencyType(str, Enum):
    """
    Relationship carried by a dependency edge.
    依赖边的类型。

    Only BLOCKS edges constrain execution order and take part in cycle
    checks; the other two are informational.
    只有 BLOCKS 边参与执行顺序与环检测，其余两种仅作信息展示。
    """
    BLOCKS = "blocks"           # 阻塞：被依赖任务必须先完成
    RELATES_TO = "relates_to"   # 相关：仅信息
    DUPLICATES = "duplicates"   # 重复：仅信息


class DependencyRef(BaseModel):
    """
    One dependency of a task: the task it depends on and the edge type.
    任务的一条依赖：被依赖的任务 ID 与边类型。
    """
    task_id: str = Field(min_length=1, description="ID of the task that is depended on")  # 被依赖任务 ID
    type: DependencyType = DependencyType.BLOCKS


class TaskNode(BaseModel):
    """
    A single task as handed to the scheduler for one planning session.
    一次规划会话中交给调度器的单个任务。

    `completed` is mutated in place as tasks finish; writing it back to
    storage is the caller's responsibility.
    `completed` 会在任务执行成功后被原地修改；写回存储由调用方负责。
    """
    id: str = Field(min_length=1, description="Unique task identifier")       # 任务唯一 ID
    title: str = ""                                                            # 任务标题
    completed: bool = False                                                    # 是否已完成
    priority: int = Field(default=3, ge=1, le=5, description="1 (lowest) .. 5 (highest)")  # 优先级 1~5
    size: TaskSize = TaskSize.M                                                # 工作量等级
    due_date: datetime | None = None                                           # 截止时间
    assignee: str | None = None                                                # 负责人
    status: TaskStatus = TaskStatus.TODO                                       # 看板状态
    board_id: str | None = None                                                # 所属看板
    phase: str | None = Field(default=None, description="Presentation-only grouping label")  # 阶段标签（仅用于展示分组）
    dependencies: list[DependencyRef] = Field(default_factory=list)            # 有序、去重的依赖列表

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Any:
        # "P1" is the most urgent on a P-scale, so P1 -> 5 ... P5 -> 1
        if isinstance(value, str):
            text = value.strip().upper()
            if text.startswith("P") and text[1:].isdigit():
                return 6 - int(text[1:])
            if text.isdigit():
                return int(text)
        return value

    @field_validator("due_date")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("dependencies", mode="before")
    @classmethod
    def _normalize_dependencies(cls, value: Any) -> Any:
        """
        Accept bare IDs as shorthand for BLOCKS refs and drop duplicates.
        允许直接写任务 ID（视为 BLOCKS 依赖），并去除重复项。
        """
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        normalized: list[Any] = []
        seen: set[tuple[str, str]] = set()
        for item in value:
            if isinstance(item, str):
                item = {"task_id": item, "type": DependencyType.BLOCKS.value}
            if isinstance(item, dict):
                key = (str(item.get("task_id")), str(item.get("type", DependencyType.BLOCKS.value)))
            elif isinstance(item, DependencyRef):
                key = (item.task_id, item.type.value)
            else:
                normalized.append(item)  # let pydantic report it
                continue
            if key in seen:
                continue
            seen.add(key)
            normalized.append(item)
        return normalized

    @property
    def blocking_dependency_ids(self) -> list[str]:
        """IDs this task is blocked by. 阻塞当前任务的任务 ID 列表。"""
        return [d.task_id for d in self.dependencies if d.type == DependencyType.BLOCKS]


class DependencyEdge(BaseModel):
    """
    A directed edge: from_task_id depends on to_task_id.
    有向依赖边：from_task_id 依赖 to_task_id（BLOCKS 时 to 必须先完成）。
    """
    from_task_id: str
    to_task_id: str
    type: DependencyType = DependencyType.BLOCKS


class EdgeOperation(BaseModel):
    """One entry of a bulk dependency request. 批量依赖操作中的一项。"""
    from_task_id: str
    to_task_id: str
    type: DependencyType = DependencyType.BLOCKS
    action: str = Field(default="add", pattern="^(add|remove)$")


class EdgeOperationFailure(BaseModel):
    operation: EdgeOperation
    code: str
    error: str


class BulkEdgeResult(BaseModel):
    """Outcome of a bulk dependency request. 批量依赖操作的结果。"""
    successful: list[EdgeOperation] = Field(default_factory=list)
    failed: list[EdgeOperationFailure] = Field(default_factory=list)


# ======================================================================
# Planning
# 规划结果
# ======================================================================

class Wave(BaseModel):
    """
    A set of tasks schedulable together: every blocking dependency is
    either completed before planning began or sits in an earlier wave.
    可以一起调度的一组任务：所有阻塞依赖要么在规划前已完成，要么位于更早的 Wave。
    """
    index: int = Field(ge=1, description="1-based position in the plan")  # 从 1 开始的 Wave 序号
    task_ids: list[str] = Field(default_factory=list)


class Stalemate(BaseModel):
    """
    Planning dead-end: the remaining tasks wait on identifiers that were
    never supplied. Reported, never raised.
    规划僵局：剩余任务依赖了从未提供的任务 ID。以结构化数据返回，不抛异常。
    """
    code: str = "UNRESOLVABLE_DEPENDENCY"
    stuck_task_ids: list[str] = Field(default_factory=list)                # 无法调度的任务
    missing: dict[str, list[str]] = Field(default_factory=dict)            # 任务 ID -> 其尚未满足的依赖（缺失或同样卡住）


class PlanResult(BaseModel):
    """Ordered waves plus an optional stalemate. 有序 Wave 列表及可能的僵局。"""
    waves: list[Wave] = Field(default_factory=list)
    stalemate: Stalemate | None = None

    @property
    def task_ids(self) -> list[str]:
        return [tid for wave in self.waves for tid in wave.task_ids]

    @property
    def is_complete(self) -> bool:
        return self.stalemate is None


# ======================================================================
# Execution
# 执行结果
# ======================================================================

class TaskOutcome(str, Enum):
    """
    Lifecycle of one task inside an execution run, managed by
    ExecutionStateMachine.
    单个任务在一次执行中的生命周期，由 ExecutionStateMachine 管理合法转移。

        PENDING -> RUNNING -> SUCCEEDED
                           -> FAILED
        PENDING -> SKIPPED
    """
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class ActionResult(BaseModel):
    """
    What an action reports for one task.
    action 对单个任务的执行结果。
    """
    task_id: str
    success: bool
    output: str = ""


class TaskExecutionRecord(BaseModel):
    """
    Per-task entry of an ExecutionReport.
    执行报告中单个任务的记录。

    started_at / finished_at are perf_counter readings, comparable only
    within one run.
    started_at / finished_at 为 perf_counter 读数，仅在同一次执行内可比较。
    """
    task_id: str
    wave: int
    outcome: TaskOutcome = TaskOutcome.PENDING
    started_at: float | None = None
    finished_at: float | None = None
    error: str | None = None             # 捕获的异常或失败信息
    skip_reason: str | None = None       # 跳过原因
    output: str = ""

    @property
    def elapsed(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at


class WaveReport(BaseModel):
    index: int
    records: list[TaskExecutionRecord] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(r.outcome == TaskOutcome.FAILED for r in self.records)


class ExecutionReport(BaseModel):
    """
    Aggregated outcome of a run: per wave, per task.
    一次执行的汇总报告：按 Wave、按任务记录结果。
    """
    waves: list[WaveReport] = Field(default_factory=list)
    dry_run: bool = False
    aborted: bool = False                          # exit_on_error 是否触发
    stalemate: Stalemate | None = None             # 规划阶段的僵局（若有）
    created_at: float = Field(default_factory=time.time)
    elapsed: float = 0.0

    @property
    def records(self) -> list[TaskExecutionRecord]:
        return [r for w in self.waves for r in w.records]

    def record_for(self, task_id: str) -> TaskExecutionRecord | None:
        for r in self.records:
            if r.task_id == task_id:
                return r
        return None

    def _ids(self, outcome: TaskOutcome) -> list[str]:
        return [r.task_id for r in self.records if r.outcome == outcome]

    @property
    def succeeded(self) -> list[str]:
        return self._ids(TaskOutcome.SUCCEEDED)

    @property
    def failed(self) -> list[str]:
        return self._ids(TaskOutcome.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._ids(TaskOutcome.SKIPPED)

    @property
    def success(self) -> bool:
        return not self.failed and not self.skipped and self.stalemate is None


# ======================================================================
# Priority recommendation
# 优先级推荐
# ======================================================================

class PriorityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PriorityScore(BaseModel):
    """
    Weighted-signal urgency score of one task.
    单个任务的加权紧迫度评分。
    """
    task_id: str
    score: float = Field(ge=0.0)
    level: PriorityLevel
    reasons: list[str] = Field(default_factory=list)           # 对评分有实质贡献的信号说明
    signals: dict[str, float] = Field(default_factory=dict)    # 各信号归一化后的原始值（0~1）


class RecommendationFilters(BaseModel):
    """Narrow the eligible set before scoring. 评分前缩小候选集合。"""
    assignee: str | None = None
    status: list[TaskStatus] | None = None
    board_id: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _single_status(cls, value: Any) -> Any:
        if isinstance(value, (str, TaskStatus)):
            return [value]
        return value


class Recommendation(BaseModel):
    """Result of recommend_next. 下一个推荐任务。"""
    task: TaskNode
    score: PriorityScore


# ======================================================================
# Dependency analysis
# 依赖分析
# ======================================================================

class CriticalPathResult(BaseModel):
    critical_path: list[str] = Field(default_factory=list)    # 最长阻塞链（按工作量加权）
    total_duration: float = 0.0                               # 关键路径总工作量（单位）
    starting_tasks: list[str] = Field(default_factory=list)   # 无依赖的起点任务
    ending_tasks: list[str] = Field(default_factory=list)     # 无下游的终点任务
    bottlenecks: list[str] = Field(default_factory=list)      # 阻塞了 >= 3 个任务的瓶颈
    dependency_count: int = 0


class TaskImpact(BaseModel):
    task_id: str
    direct_dependents: list[str] = Field(default_factory=list)
    indirect_dependents: list[str] = Field(default_factory=list)

    @property
    def total_impact(self) -> int:
        return len(self.direct_dependents) + len(self.indirect_dependents)

    @property
    def would_block_count(self) -> int:
        """Tasks blocked immediately if this one stalls. 直接被阻塞的任务数。"""
        return len(self.direct_dependents)
