"""
Scheduler module - Dependency-aware task scheduling core.
调度模块 —— 依赖感知的任务调度核心。

Components:
  - graph.py:         TaskGraph data structure and edge validation
  - cycle.py:         Cycle detection for blocks edges
  - planner.py:       WavePlanner (iterative topological peeling)
  - state_machine.py: Per-task execution lifecycle
  - executor.py:      BoundedExecutor (semaphore + wave barrier)
  - priority.py:      PriorityEngine (weighted-signal recommendation)
  - analysis.py:      Critical path and impact analysis
  - report.py:        Markdown / JSON output

模块组成：
  - graph.py:         TaskGraph 数据结构与边校验
  - cycle.py:         BLOCKS 边环检测
  - planner.py:       Wave 规划器（迭代式拓扑剥离）
  - state_machine.py: 单任务执行生命周期
  - executor.py:      有界执行器（信号量 + Wave 屏障）
  - priority.py:      优先级引擎（加权信号推荐）
  - analysis.py:      关键路径与影响分析
  - report.py:        Markdown / JSON 输出
"""

from scheduler.errors import (
    CircularDependencyError,
    ErrorCode,
    ResourceNotFoundError,
    SchedulerError,
    ValidationFailedError,
)
from scheduler.cycle import would_create_cycle     # 环检测
from scheduler.graph import TaskGraph               # 任务依赖图
from scheduler.planner import WavePlanner           # Wave 规划器
from scheduler.state_machine import ExecutionStateMachine, InvalidTransitionError
from scheduler.executor import BoundedExecutor      # 有界执行器
from scheduler.priority import PriorityEngine       # 优先级引擎

__all__ = [
    "BoundedExecutor",
    "CircularDependencyError",
    "ErrorCode",
    "ExecutionStateMachine",
    "InvalidTransitionError",
    "PriorityEngine",
    "ResourceNotFoundError",
    "SchedulerError",
    "TaskGraph",
    "ValidationFailedError",
    "WavePlanner",
    "would_create_cycle",
]
