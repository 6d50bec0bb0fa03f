"""
Scheduler errors.
调度器异常定义。

Graph-construction and edge-insertion errors are synchronous and local:
the rejected operation leaves the rest of the graph untouched. Planning
stalemates are reported as data (see schema.Stalemate), and per-task
action failures are aggregated into the ExecutionReport, so neither has
an exception class here.
建图与插边错误是同步且局部的：被拒绝的操作不会影响图的其余部分。
规划僵局以数据形式返回（见 schema.Stalemate），任务动作失败汇总进 ExecutionReport，
因此两者都不在此处定义异常类。
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    UNRESOLVABLE_DEPENDENCY = "UNRESOLVABLE_DEPENDENCY"
    VALIDATION_FAILED = "VALIDATION_FAILED"


class SchedulerError(Exception):
    """
    Base class for errors raised by the scheduler core.
    调度核心抛出的所有异常的基类，携带错误码与结构化细节。
    """

    code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class CircularDependencyError(SchedulerError):
    """Adding the edge would close a cycle of blocks edges. 插入该边会形成环。"""
    code = ErrorCode.CIRCULAR_DEPENDENCY


class ResourceNotFoundError(SchedulerError):
    """An edge references an unknown task. 边引用了不存在的任务。"""
    code = ErrorCode.RESOURCE_NOT_FOUND


class ValidationFailedError(SchedulerError):
    """Malformed task record, option or dependency type. 任务记录、参数或依赖类型不合法。"""
    code = ErrorCode.VALIDATION_FAILED
