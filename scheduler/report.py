"""Output formatters for plans and execution reports."""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from pathlib import Path

import config
from schema import DependencyType, ExecutionReport, PlanResult, TaskOutcome, TaskStatus
from scheduler.graph import TaskGraph
from scheduler.planner import WavePlanner

_OUTCOME_MARK = {
    TaskOutcome.SUCCEEDED: "ok",
    TaskOutcome.FAILED: "FAILED",
    TaskOutcome.SKIPPED: "skipped",
    TaskOutcome.PENDING: "pending",
    TaskOutcome.RUNNING: "running",
}

# Graphviz fill colour per kanban status
_STATUS_COLORS = {
    TaskStatus.TODO: "lightblue",
    TaskStatus.IN_PROGRESS: "yellow",
    TaskStatus.DONE: "lightgreen",
    TaskStatus.BLOCKED: "red",
    TaskStatus.ARCHIVED: "gray",
}


def effort_units(graph: TaskGraph, task_ids) -> float:
    """Sum of size-class effort units for the given tasks."""
    return sum(
        config.SIZE_UNITS.get(graph.nodes[tid].size.value, 1.0)
        for tid in task_ids if tid in graph
    )


def _label(graph: TaskGraph, task_id: str) -> str:
    node = graph.nodes.get(task_id)
    if node is None or not node.title:
        return task_id
    return f"{task_id}: {node.title}"


def plan_to_markdown(graph: TaskGraph, plan: PlanResult, group_by_phase: bool = False) -> str:
    """Render a wave plan as a Markdown document."""
    lines: list[str] = []

    lines.append("# Execution Plan")
    lines.append("")
    lines.append(f"*{len(plan.task_ids)} task(s) in {len(plan.waves)} wave(s), "
                 f"{effort_units(graph, plan.task_ids):.1f} effort units*")
    lines.append("")

    for wave in plan.waves:
        lines.append(f"## Wave {wave.index}")
        lines.append("")
        if group_by_phase:
            for phase, ids in WavePlanner.group_by_phase(graph, wave).items():
                lines.append(f"### {phase}")
                lines.append("")
                for tid in ids:
                    lines.append(f"- {_label(graph, tid)}")
                lines.append("")
        else:
            for tid in wave.task_ids:
                lines.append(f"- {_label(graph, tid)}")
            lines.append("")

    if plan.stalemate:
        lines.append("## Unresolvable")
        lines.append("")
        for tid in plan.stalemate.stuck_task_ids:
            missing = plan.stalemate.missing.get(tid)
            suffix = f" (missing: {', '.join(missing)})" if missing else ""
            lines.append(f"- {_label(graph, tid)}{suffix}")
        lines.append("")

    return "\n".join(lines)


def _dot_quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n") + '"'


def graph_to_dot(graph: TaskGraph, show_details: bool = False) -> str:
    """
    Export the dependency graph in Graphviz DOT format.

    Nodes are filled by kanban status. Blocks edges are drawn solid red from
    the prerequisite to the dependent; informational edges are dashed blue.
    Dependencies on unknown tasks appear as dashed placeholder nodes.
    """
    lines: list[str] = []
    lines.append("digraph TaskDependencies {")
    lines.append("  rankdir=TB;")
    lines.append("  node [shape=box, style=rounded];")
    lines.append("")

    for node in graph.tasks:
        label = node.title or node.id
        if show_details:
            label += f"\n{node.status.value}\nPriority: {node.priority}"
        color = _STATUS_COLORS.get(node.status, "white")
        lines.append(
            f"  {_dot_quote(node.id)} [label={_dot_quote(label)}, fillcolor=\"{color}\", style=\"rounded,filled\"];"
        )

    missing = sorted({e.to_task_id for e in graph.edges if e.to_task_id not in graph})
    for tid in missing:
        lines.append(f"  {_dot_quote(tid)} [label={_dot_quote(tid + ' (missing)')}, style=dashed];")

    lines.append("")
    for edge in graph.edges:
        if edge.type == DependencyType.BLOCKS:
            attrs = "style=solid, color=red"
        else:
            attrs = "style=dashed, color=blue"
        lines.append(f"  {_dot_quote(edge.to_task_id)} -> {_dot_quote(edge.from_task_id)} [{attrs}];")

    lines.append("}")
    return "\n".join(lines) + "\n"


def report_to_markdown(graph: TaskGraph, report: ExecutionReport) -> str:
    """Render an ExecutionReport as an implementation report."""
    # dry-run successes are no-ops and complete nothing
    done = graph.completed_ids()
    if not report.dry_run:
        done |= set(report.succeeded)
    completed = [tid for tid in graph.nodes if tid in done]
    pending = [tid for tid in graph.nodes if tid not in done]
    total = len(graph.nodes)
    rate = (len(completed) / total * 100) if total else 0.0
    generated = datetime.fromtimestamp(report.created_at, tz=timezone.utc).isoformat()

    lines: list[str] = []
    title = "# Implementation Report (dry run)" if report.dry_run else "# Implementation Report"
    lines.append(title)
    lines.append("")
    lines.append(f"Generated: {generated}")
    lines.append("")

    lines.append("## Summary")
    lines.append("")
    lines.append("| Metric | Value |")
    lines.append("|--------|-------|")
    lines.append(f"| Total Tasks | {total} |")
    lines.append(f"| Completed | {len(completed)} |")
    lines.append(f"| Pending | {len(pending)} |")
    lines.append(f"| Completion Rate | {rate:.1f}% |")
    lines.append(f"| Succeeded / Failed / Skipped | "
                 f"{len(report.succeeded)} / {len(report.failed)} / {len(report.skipped)} |")
    lines.append(f"| Elapsed | {report.elapsed:.2f}s |")
    if report.aborted:
        lines.append("| Aborted | yes (exit on error) |")
    lines.append("")

    for wave in report.waves:
        lines.append(f"## Wave {wave.index}")
        lines.append("")
        for r in wave.records:
            detail = ""
            if r.outcome == TaskOutcome.FAILED and r.error:
                detail = f" - {r.error}"
            elif r.outcome == TaskOutcome.SKIPPED and r.skip_reason:
                detail = f" - {r.skip_reason}"
            lines.append(f"- `{_OUTCOME_MARK[r.outcome]}` {_label(graph, r.task_id)} ({r.elapsed:.2f}s){detail}")
        lines.append("")

    lines.append("## Completed Tasks")
    lines.append("")
    lines.extend(f"- [x] {_label(graph, tid)}" for tid in completed)
    lines.append("")
    lines.append("## Pending Tasks")
    lines.append("")
    lines.extend(f"- [ ] {_label(graph, tid)}" for tid in pending)
    lines.append("")

    if report.stalemate:
        lines.append("## Unresolvable Dependencies")
        lines.append("")
        for tid, missing in report.stalemate.missing.items():
            lines.append(f"- {tid} waits on {', '.join(missing)}")
        lines.append("")

    lines.append("## Time Estimates")
    lines.append("")
    lines.append(f"- Completed: {effort_units(graph, completed):.1f} units")
    lines.append(f"- Remaining: {effort_units(graph, pending):.1f} units")
    lines.append("")

    return "\n".join(lines)


def report_to_json(report: ExecutionReport, indent: int = 2) -> str:
    data = report.model_dump(mode="json")
    data["summary"] = {
        "succeeded": report.succeeded,
        "failed": report.failed,
        "skipped": report.skipped,
        "success": report.success,
    }
    return json.dumps(data, indent=indent)


def save_report(graph: TaskGraph, report: ExecutionReport, output_dir: str | None = None) -> tuple[str, str]:
    """Save an execution report as both JSON and Markdown files."""
    path = Path(output_dir or config.REPORT_DIR)
    path.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S", time.localtime(report.created_at))
    json_path = path / f"report_{stamp}.json"
    md_path = path / f"report_{stamp}.md"

    json_path.write_text(report_to_json(report))
    md_path.write_text(report_to_markdown(graph, report))

    return str(json_path), str(md_path)
