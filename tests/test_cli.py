"""
命令行入口测试 — 参数解析、任务文件加载与各子命令的退出码。
"""

from __future__ import annotations

import json

import pytest

import main
from scheduler.errors import ValidationFailedError


@pytest.fixture
def tasks_file(tmp_path):
    path = tmp_path / "tasks.json"
    path.write_text(json.dumps({"tasks": [
        {"id": "design", "title": "Design", "priority": "P2", "phase": "Phase 1"},
        {"id": "api", "title": "API", "dependencies": ["design"], "assignee": "bob"},
        {"id": "ui", "title": "UI", "dependencies": ["design"], "assignee": "alice"},
        {"id": "release", "dependencies": ["api", "ui"]},
    ]}))
    return str(path)


class TestParsing:

    def test_parse_args(self):
        args = main.parse_args(
            ["run", "t.json", "--max-concurrent", "2", "--dry-run", "--command", "make {id}", "--completed", "a,b"]
        )
        assert args.command == "run" and args.tasks == "t.json"
        assert args.max_concurrent == 2
        assert args.dry_run and not args.exit_on_error
        assert args.command_template == "make {id}"
        assert args.completed == ["a", "b"]

    def test_equals_form_is_honoured(self):
        args = main.parse_args(["run", "t.json", "--max-concurrent=1", "--command=make {id}"])
        assert args.max_concurrent == 1
        assert args.command_template == "make {id}"

    def test_missing_option_value(self):
        with pytest.raises(ValidationFailedError):
            main.parse_args(["next", "t.json", "--assignee"])

    @pytest.mark.parametrize("argv", [
        ["run", "t.json", "--dryrun"],
        ["plan", "t.json", "--max-concurrent", "2"],
        ["run", "t.json", "--max-concurrent", "0"],
        ["frobnicate", "t.json"],
        [],
    ])
    def test_bad_arguments_are_rejected(self, argv):
        with pytest.raises(ValidationFailedError):
            main.parse_args(argv)

    def test_load_tasks_accepts_list_and_object(self, tmp_path, tasks_file):
        assert len(main.load_tasks(tasks_file)) == 4
        plain = tmp_path / "plain.json"
        plain.write_text(json.dumps([{"id": "a"}]))
        assert main.load_tasks(str(plain)) == [{"id": "a"}]

    def test_load_tasks_errors(self, tmp_path):
        with pytest.raises(ValidationFailedError):
            main.load_tasks(str(tmp_path / "missing.json"))
        broken = tmp_path / "broken.json"
        broken.write_text("{not json")
        with pytest.raises(ValidationFailedError):
            main.load_tasks(str(broken))


class TestCommands:

    def test_plan(self, tasks_file, capsys):
        assert main.main(["plan", tasks_file, "--group-by-phase"]) == 0
        out = capsys.readouterr().out
        assert "Wave 1" in out and "Wave 3" in out
        assert "Phase 1" in out

    def test_plan_with_stalemate_exits_2(self, tmp_path):
        path = tmp_path / "stuck.json"
        path.write_text(json.dumps([{"id": "a", "dependencies": ["ghost"]}]))
        assert main.main(["plan", str(path)]) == 2

    def test_dry_run(self, tasks_file, capsys):
        assert main.main(["run", tasks_file, "--dry-run"]) == 0
        assert "SUCCESS" in capsys.readouterr().out

    def test_run_with_failing_command(self, tasks_file, capsys):
        code = main.main(["run", tasks_file, "--command", "test {id} != api", "--exit-on-error"])
        assert code == 1
        assert "ABORTED" in capsys.readouterr().out

    def test_run_rejects_bad_concurrency(self, tasks_file, capsys):
        assert main.main(["run", tasks_file, "--max-concurrent", "zero"]) == 1
        assert "VALIDATION_FAILED" in capsys.readouterr().out

    def test_misspelled_flag_does_not_run_actions(self, tmp_path, tasks_file, capsys):
        """拼错的选项（--dryrun）必须报错，而不是在非 dry run 模式下真正执行。"""
        marker = tmp_path / "ran"
        code = main.main(["run", tasks_file, "--dryrun", "--max-concurrent=1", "--command", f"touch {marker}"])
        assert code == 1
        assert not marker.exists(), "未知选项不应触发任何 action"
        out = capsys.readouterr().out
        assert "VALIDATION_FAILED" in out and "--dryrun" in out

    def test_next(self, tasks_file, capsys):
        assert main.main(["next", tasks_file]) == 0
        assert "design" in capsys.readouterr().out

    def test_next_with_filters(self, tasks_file, capsys):
        assert main.main(["next", tasks_file, "--assignee", "bob", "--completed", "design"]) == 0
        assert "api" in capsys.readouterr().out
        assert main.main(["next", tasks_file, "--assignee", "carol"]) == 0
        assert "No tasks available" in capsys.readouterr().out

    def test_next_rejects_unknown_status(self, tasks_file):
        assert main.main(["next", tasks_file, "--status", "waiting"]) == 1

    def test_critical_path_and_impact(self, tasks_file, capsys):
        assert main.main(["critical-path", tasks_file]) == 0
        assert "release" in capsys.readouterr().out
        assert main.main(["impact", tasks_file, "design", "--json"]) == 0
        assert '"total_impact": 3' in capsys.readouterr().out

    def test_cycle_in_file_is_reported(self, tmp_path, capsys):
        path = tmp_path / "cycle.json"
        path.write_text(json.dumps([
            {"id": "a", "dependencies": ["b"]},
            {"id": "b", "dependencies": ["a"]},
        ]))
        assert main.main(["plan", str(path)]) == 1
        assert "CIRCULAR_DEPENDENCY" in capsys.readouterr().out

    def test_usage_on_unknown_command(self, tasks_file):
        assert main.main(["frobnicate", tasks_file]) == 1

    def test_impact_reports_would_block_count(self, tasks_file, capsys):
        assert main.main(["impact", tasks_file, "design", "--json"]) == 0
        assert '"would_block_count": 2' in capsys.readouterr().out

    def test_graph_tree(self, tasks_file, capsys):
        assert main.main(["graph", tasks_file, "--details"]) == 0
        out = capsys.readouterr().out
        assert "Level 0" in out and "Level 2" in out
        assert "Assigned to: bob" in out
        assert "Max depth: 2" in out

    def test_graph_dot(self, tasks_file, capsys):
        assert main.main(["graph", tasks_file, "--dot"]) == 0
        out = capsys.readouterr().out
        assert "digraph TaskDependencies {" in out
        assert '"design" -> "api" [style=solid, color=red];' in out
