"""
Command Action - Runs a shell command per task.
命令 action —— 为每个任务运行一条 shell 命令。

The command is a template formatted with the task's fields, e.g.
"make {id}" or "./scripts/deploy.sh {board_id} {id}". A non-zero exit code
or a timeout is reported as a failure. Field values are shell-quoted, so a
template must not wrap placeholders in its own quotes.
命令是一个模板，使用任务字段格式化，例如 "make {id}"。非零退出码或超时均视为失败。
"""

from __future__ import annotations

import asyncio
import logging
import shlex

import config
from actions.base import BaseAction
from schema import ActionResult, TaskNode

logger = logging.getLogger(__name__)


class CommandAction(BaseAction):
    """
    Execute a shell command for each task with timeout protection.
    在带超时保护的子进程中为每个任务执行 shell 命令。
    """

    def __init__(self, template: str, timeout: float | None = None):
        self._template = template
        self._timeout = timeout or config.ACTION_TIMEOUT

    @property
    def name(self) -> str:
        return "command"

    def render(self, task: TaskNode) -> str:
        """
        Format the template with shell-quoted task fields.
        用经过 shell 转义的任务字段格式化命令模板，字段值不会被当作 shell 代码执行。
        """
        fields = task.model_dump(mode="json", exclude={"dependencies"})
        fields = {k: shlex.quote("" if v is None else str(v)) for k, v in fields.items()}
        return self._template.format(**fields)

    async def execute(self, task: TaskNode) -> ActionResult:
        command = self.render(task)
        logger.info("Running command for %s: %s", task.id, command)

        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            # 使用 asyncio.wait_for 实现异步超时控制
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return ActionResult(
                task_id=task.id,
                success=False,
                output=f"Command timed out after {self._timeout}s: {command}",
            )

        output_parts = []
        if stdout:
            output_parts.append(stdout.decode(errors="replace").strip())
        if stderr:
            output_parts.append(f"Errors:\n{stderr.decode(errors='replace').strip()}")
        if proc.returncode != 0:
            output_parts.append(f"Exit code: {proc.returncode}")  # 非零退出码即失败

        return ActionResult(
            task_id=task.id,
            success=proc.returncode == 0,
            output="\n".join(output_parts),
        )
