"""
Kanban Scheduler - Command-line entry point.
Kanban Scheduler —— 命令行入口。

Loads a JSON task file, builds the dependency graph and runs one of the
scheduler operations with a rich console UI:
加载 JSON 任务文件，构建依赖图，并通过 Rich 控制台 UI 执行以下操作之一：

  plan           wave plan (optionally grouped by phase)    / Wave 规划（可按阶段分组）
  run            execute the waves under a concurrency cap   / 在并发上限下逐 Wave 执行
  next           recommend the next task to work on          / 推荐下一个要做的任务
  critical-path  longest size-weighted dependency chain      / 按工作量加权的最长依赖链
  impact         direct and indirect dependents of a task    / 任务的直接与间接下游
  graph          dependency tree, or Graphviz DOT with --dot / 依赖树视图，或 --dot 输出 Graphviz DOT

Examples:
  kanban-scheduler plan tasks.json --group-by-phase --completed a,b
  kanban-scheduler run tasks.json --max-concurrent 2 --exit-on-error --command "make {id}"
  kanban-scheduler next tasks.json --assignee alice --status todo,in_progress
  kanban-scheduler impact tasks.json design
  kanban-scheduler graph tasks.json --dot > deps.dot
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from actions import CommandAction, SimulatedAction
from schema import (
    ExecutionReport,
    PlanResult,
    Recommendation,
    RecommendationFilters,
    TaskExecutionRecord,
)
from scheduler import BoundedExecutor, PriorityEngine, SchedulerError, TaskGraph, WavePlanner
from scheduler.analysis import critical_path, dependency_levels, task_impact
from scheduler.errors import ValidationFailedError
from scheduler.report import graph_to_dot, save_report

console = Console()

# Outcome / level -> Rich style mapping
# 执行结果与优先级等级 -> Rich 样式映射
_OUTCOME_STYLES = {
    "pending": "dim",
    "running": "bold yellow",
    "succeeded": "green",
    "failed": "red",
    "skipped": "dim strike",
}
_LEVEL_STYLES = {
    "low": "dim",
    "medium": "cyan",
    "high": "yellow",
    "critical": "bold red",
}
_STATUS_STYLES = {
    "todo": "blue",
    "in_progress": "yellow",
    "done": "green",
    "blocked": "red",
    "archived": "dim",
}


# ======================================================================
# Argument parsing / input
# 参数解析与输入
# ======================================================================

class _ArgumentParser(argparse.ArgumentParser):
    """Raises ValidationFailedError instead of exiting on bad arguments. 参数错误时抛出异常而非退出进程。"""

    def error(self, message: str):
        raise ValidationFailedError(
            f"{message}\n{self.format_usage().strip()}",
            details={"prog": self.prog, "error": message},
        )


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expects a positive integer, got {raw!r}") from None
    if value < 1:
        raise argparse.ArgumentTypeError(f"expects a positive integer, got {raw!r}")
    return value


def _csv(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse parser with one sub-parser per command.
    构建命令行解析器，每个子命令一个子解析器；未知选项会被拒绝。
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("tasks", help="JSON task file: a list of tasks or {\"tasks\": [...]}")
    common.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    completed = argparse.ArgumentParser(add_help=False)
    completed.add_argument("--completed", type=_csv, default=[], metavar="ID,ID",
                           help="Task IDs to treat as already completed")

    as_json = argparse.ArgumentParser(add_help=False)
    as_json.add_argument("--json", action="store_true", help="Print machine-readable JSON")

    parser = _ArgumentParser(
        prog="kanban-scheduler",
        description="Dependency-aware wave scheduler and next-task recommender",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:" + __doc__.split("Examples:")[1].rstrip(),
    )
    subparsers = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p_plan = subparsers.add_parser("plan", parents=[common, completed, as_json], help="Show the wave plan")
    p_plan.add_argument("--group-by-phase", action="store_true", help="Group each wave by phase")

    p_run = subparsers.add_parser("run", parents=[common, completed, as_json], help="Execute the waves")
    p_run.add_argument("--max-concurrent", type=_positive_int, help="Max actions in flight per wave")
    p_run.add_argument("--exit-on-error", action="store_true", help="Stop after the first failure")
    p_run.add_argument("--dry-run", action="store_true", help="Report without invoking any action")
    p_run.add_argument("--command", dest="command_template", help="Shell command template per task, e.g. \"make {id}\"")
    p_run.add_argument("--report", action="store_true", help="Save Markdown and JSON reports")
    p_run.add_argument("--group-by-phase", action="store_true", help="Group each wave by phase")

    p_next = subparsers.add_parser("next", parents=[common, completed, as_json], help="Recommend the next task")
    p_next.add_argument("--assignee", help="Only tasks assigned to NAME")
    p_next.add_argument("--status", type=_csv, metavar="STATUS,STATUS", help="Only tasks in these statuses")
    p_next.add_argument("--board", help="Only tasks on this board")

    subparsers.add_parser("critical-path", parents=[common, as_json], help="Longest dependency chain")

    p_impact = subparsers.add_parser("impact", parents=[common, as_json], help="Dependents of a task")
    p_impact.add_argument("task_id", help="Task to analyse")

    p_graph = subparsers.add_parser("graph", parents=[common], help="Dependency tree or DOT export")
    p_graph.add_argument("--dot", action="store_true", help="Print Graphviz DOT instead of a tree")
    p_graph.add_argument("--details", action="store_true", help="Include status, assignee and due date")

    return parser


def parse_args(argv: list[str]) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def load_tasks(path: str) -> list[dict[str, Any]]:
    """
    Read task records from a JSON file: either a list or {"tasks": [...]}.
    从 JSON 文件读取任务记录：顶层为列表，或 {"tasks": [...]}。
    """
    file = Path(path)
    if not file.exists():
        raise ValidationFailedError(f"Task file not found: {path}", details={"path": path})
    try:
        data = json.loads(file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValidationFailedError(f"Invalid JSON in {path}: {exc}", details={"path": path}) from exc

    if isinstance(data, dict):
        data = data.get("tasks")
    if not isinstance(data, list):
        raise ValidationFailedError(
            f"{path} must contain a list of tasks or an object with a 'tasks' list",
            details={"path": path},
        )
    return data


# ======================================================================
# Rendering
# 渲染
# ======================================================================

def _task_label(graph: TaskGraph, task_id: str) -> str:
    node = graph.nodes.get(task_id)
    if node is None:
        return f"[red]{task_id}[/red]"
    title = f" {escape(node.title)}" if node.title else ""
    return f"[cyan]{task_id}[/cyan]{title} [dim]({node.size.value}, P{6 - node.priority})[/dim]"


def render_plan(graph: TaskGraph, plan: PlanResult, group_by_phase: bool = False) -> None:
    """
    Show the wave plan as a Rich Tree: Plan > Waves > (Phases >) Tasks.
    以 Rich Tree 展示 Wave 规划：Plan > Waves >（Phases >）Tasks。
    """
    tree = Tree(f"[bold]Execution Plan[/bold] [dim]{len(plan.task_ids)} task(s), {len(plan.waves)} wave(s)[/dim]")
    for wave in plan.waves:
        parallel_note = " (parallel)" if len(wave.task_ids) > 1 else ""
        branch = tree.add(f"[bold yellow]Wave {wave.index}[/bold yellow]{parallel_note}")
        if group_by_phase:
            for phase, ids in WavePlanner.group_by_phase(graph, wave).items():
                phase_branch = branch.add(f"[magenta]{phase}[/magenta]")
                for tid in ids:
                    phase_branch.add(_task_label(graph, tid))
        else:
            for tid in wave.task_ids:
                branch.add(_task_label(graph, tid))
    console.print(Panel(tree, title="[bold magenta]Plan[/bold magenta]", border_style="magenta"))
    console.print(f"  [dim]{graph.summary()}[/dim]")

    if plan.stalemate:
        lines = [
            f"[red]{tid}[/red] waits on {', '.join(plan.stalemate.missing.get(tid, []))}"
            for tid in plan.stalemate.stuck_task_ids
        ]
        console.print(Panel(
            "\n".join(lines),
            title=f"[bold red]Unresolvable dependencies ({plan.stalemate.code})[/bold red]",
            border_style="red",
        ))


def render_report(report: ExecutionReport) -> None:
    table = Table(title="Execution Report" + (" (dry run)" if report.dry_run else ""), border_style="cyan")
    table.add_column("Wave", style="cyan", width=6)
    table.add_column("Task", style="white")
    table.add_column("Outcome", width=10)
    table.add_column("Elapsed", justify="right", width=9)
    table.add_column("Detail", style="dim")
    for r in report.records:
        style = _OUTCOME_STYLES.get(r.outcome.value, "white")
        detail = r.error or r.skip_reason or ""
        table.add_row(str(r.wave), r.task_id, f"[{style}]{r.outcome.value}[/{style}]", f"{r.elapsed:.2f}s", escape(detail[:80]))
    console.print(table)

    style = "green" if report.success else "red"
    verdict = "SUCCESS" if report.success else ("ABORTED" if report.aborted else "INCOMPLETE")
    console.print(
        f"[{style}]{verdict}[/{style}]  succeeded={len(report.succeeded)} "
        f"failed={len(report.failed)} skipped={len(report.skipped)}  [dim]{report.elapsed:.2f}s[/dim]"
    )


def render_recommendation(rec: Recommendation) -> None:
    task, score = rec.task, rec.score
    style = _LEVEL_STYLES.get(score.level.value, "white")
    body = (
        f"[bold]{task.id}[/bold] {task.title}\n"
        f"Score: {score.score:.3f}  |  Level: [{style}]{score.level.value}[/{style}]  |  Status: {task.status.value}"
    )
    if task.due_date:
        body += f"\nDue: {task.due_date.isoformat()}"
    if score.reasons:
        body += "\n\nReasons:\n" + "\n".join(f"  - {reason}" for reason in score.reasons)
    console.print(Panel(body, title="[bold green]Next Task[/bold green]", border_style="green"))


def on_event(event: str, data: Any) -> None:
    """
    Handle events from the BoundedExecutor and display them.
    处理来自 BoundedExecutor 的事件并在控制台展示。
    """
    if event == "wave_start":
        tasks = data["tasks"]
        parallel_note = " (parallel)" if len(tasks) > 1 else ""
        console.print(
            f"\n  [bold yellow]--- Wave {data['wave']} ---[/bold yellow] "
            f"Running {len(tasks)} task(s){parallel_note}: [cyan]{', '.join(tasks)}[/cyan]"
        )

    elif event == "task_running":
        console.print(f"    [yellow]>> {data['task_id']}[/yellow]")

    elif event == "task_succeeded":
        record: TaskExecutionRecord = data["record"]
        console.print(f"    [green]<< {record.task_id} succeeded[/green] [dim]({record.elapsed:.2f}s)[/dim]")

    elif event == "task_failed":
        record: TaskExecutionRecord = data["record"]
        console.print(f"    [red]<< {record.task_id} FAILED.[/red]")
        if record.error:
            console.print(Panel(escape(record.error[:500]), title=f"{record.task_id} Error", border_style="red"))

    elif event == "task_skipped":
        console.print(f"    [dim]-- {data['task_id']} skipped: {data['reason']}[/dim]")

    elif event == "aborted":
        console.print(f"  [bold red]Aborting after failure of {data['task_id']} (exit on error)[/bold red]")


# ======================================================================
# Commands
# 子命令
# ======================================================================

def cmd_plan(graph: TaskGraph, args: argparse.Namespace) -> int:
    plan = WavePlanner().plan(graph, args.completed)
    if args.json:
        console.print_json(plan.model_dump_json())
    else:
        render_plan(graph, plan, group_by_phase=args.group_by_phase)
    return 0 if plan.is_complete else 2


async def cmd_run(graph: TaskGraph, args: argparse.Namespace) -> int:
    action = CommandAction(args.command_template) if args.command_template else SimulatedAction()
    executor = BoundedExecutor(
        max_concurrent=args.max_concurrent,
        exit_on_error=True if args.exit_on_error else None,
        dry_run=True if args.dry_run else None,
        on_event=None if args.json else on_event,
    )
    plan = WavePlanner().plan(graph, args.completed)
    if not args.json:
        render_plan(graph, plan, group_by_phase=args.group_by_phase)
    report = await executor.run(plan, action, graph=graph, completed=args.completed)

    if args.json:
        console.print_json(report.model_dump_json())
    else:
        console.print()
        render_report(report)
    if args.report:
        json_path, md_path = save_report(graph, report)
        console.print(f"[dim]Report saved: {md_path} / {json_path}[/dim]")
    return 0 if report.success else 1


def cmd_next(graph: TaskGraph, args: argparse.Namespace) -> int:
    try:
        filters = RecommendationFilters(
            assignee=args.assignee,
            status=args.status or None,
            board_id=args.board,
        )
    except ValidationError as exc:
        raise ValidationFailedError(
            f"Invalid filter: {','.join(args.status or [])!r} is not a task status",
            details={"errors": exc.errors(include_url=False)},
        ) from exc
    rec = PriorityEngine().recommend_next(graph, args.completed, filters)
    if rec is None:
        console.print("[yellow]No tasks available matching your criteria.[/yellow]")
        return 0
    if args.json:
        console.print_json(rec.model_dump_json())
    else:
        render_recommendation(rec)
    return 0


def cmd_critical_path(graph: TaskGraph, args: argparse.Namespace) -> int:
    result = critical_path(graph)
    if args.json:
        console.print_json(result.model_dump_json())
        return 0
    table = Table(title="Critical Path", border_style="magenta", show_lines=True)
    table.add_column("#", style="cyan", width=4)
    table.add_column("Task", style="white")
    for i, tid in enumerate(result.critical_path, 1):
        table.add_row(str(i), _task_label(graph, tid))
    console.print(table)
    console.print(f"  Total effort: [bold]{result.total_duration:.1f}[/bold] units")
    if result.bottlenecks:
        console.print(f"  Bottlenecks: [red]{', '.join(result.bottlenecks)}[/red]")
    return 0


def cmd_impact(graph: TaskGraph, args: argparse.Namespace) -> int:
    impact = task_impact(graph, args.task_id)
    if args.json:
        console.print_json(json.dumps({
            **impact.model_dump(),
            "total_impact": impact.total_impact,
            "would_block_count": impact.would_block_count,
        }))
        return 0
    tree = Tree(_task_label(graph, args.task_id))
    direct = tree.add(f"[bold]Direct dependents[/bold] ({len(impact.direct_dependents)})")
    for tid in impact.direct_dependents:
        direct.add(_task_label(graph, tid))
    indirect = tree.add(f"[bold]Indirect dependents[/bold] ({len(impact.indirect_dependents)})")
    for tid in impact.indirect_dependents:
        indirect.add(_task_label(graph, tid))
    console.print(Panel(tree, title=f"[bold]Impact: {impact.total_impact} task(s)[/bold]", border_style="yellow"))
    console.print(f"  Would block: [bold]{impact.would_block_count}[/bold] task(s) immediately")
    return 0


def cmd_graph(graph: TaskGraph, args: argparse.Namespace) -> int:
    """
    Show the dependency graph as a Rich Tree grouped by depth, or print DOT.
    以按深度分层的 Rich Tree 展示依赖图，或输出 Graphviz DOT 文本。
    """
    if args.dot:
        console.print(graph_to_dot(graph, show_details=args.details), markup=False, highlight=False, soft_wrap=True)
        return 0
    if not graph.nodes:
        console.print("[yellow]No tasks found.[/yellow]")
        return 0

    levels = dependency_levels(graph)
    tree = Tree("[bold]Task Dependency Tree[/bold]")
    for depth, ids in levels.items():
        level = tree.add(f"[bold yellow]Level {depth}[/bold yellow]")
        for tid in ids:
            node = graph.nodes[tid]
            style = _STATUS_STYLES.get(node.status.value, "white")
            branch = level.add(f"[{style}]{node.status.value}[/{style}] {_task_label(graph, tid)}")
            if not args.details:
                continue
            if node.assignee:
                branch.add(f"Assigned to: {escape(node.assignee)}")
            if node.due_date:
                branch.add(f"Due: {node.due_date.date().isoformat()}")
            if graph.dependencies_of(tid):
                branch.add(f"Depends on: {', '.join(graph.dependencies_of(tid))}")
            if graph.dependents_of(tid):
                branch.add(f"Blocks: {len(graph.dependents_of(tid))} task(s)")
    console.print(Panel(tree, title="[bold magenta]Dependencies[/bold magenta]", border_style="magenta"))

    roots = [tid for tid in graph.nodes if not any(dep in graph for dep in graph.dependencies_of(tid))]
    leaves = [tid for tid in graph.nodes if not graph.dependents_of(tid)]
    console.print(
        f"  Tasks: {len(graph)}  |  Dependencies: {len(graph.edges)}  |  Roots: {len(roots)}"
        f"  |  Leaves: {len(leaves)}  |  Max depth: {max(levels)}"
    )
    return 0


COMMANDS = {
    "plan": cmd_plan,
    "next": cmd_next,
    "critical-path": cmd_critical_path,
    "impact": cmd_impact,
    "graph": cmd_graph,
}


# ======================================================================
# Main
# 主函数
# ======================================================================

def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统。verbose=True 时启用 DEBUG 级别；
    quiet=True（JSON / DOT 输出）时只输出 WARNING 及以上，保持 stdout 可被程序解析。
    """
    if verbose:
        level = logging.DEBUG
    else:
        level = logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )


def main(argv: list[str] | None = None) -> int:
    """
    程序入口：解析命令行参数并分发子命令。
    - 退出码 0：成功；1：错误或执行失败（含未知选项）；2：规划存在无法解析的依赖
    - -v / --verbose：启用调试日志
    """
    argv = sys.argv[1:] if argv is None else argv
    args = None
    try:
        args = parse_args(argv)
        setup_logging(args.verbose, quiet=getattr(args, "json", False) or getattr(args, "dot", False))
        graph = TaskGraph.build(load_tasks(args.tasks))
        if args.command == "run":
            return asyncio.run(cmd_run(graph, args))
        return COMMANDS[args.command](graph, args)
    except SchedulerError as exc:
        console.print(f"[red]Error {escape(f'[{exc.code.value}]')}: {escape(exc.message)}[/red]")
        if args is not None and args.verbose and exc.details:
            console.print_json(json.dumps(exc.details, default=str))
        return 1


if __name__ == "__main__":
    sys.exit(main())
