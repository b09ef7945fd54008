from pathlib import Path

import pytest
from typer.testing import CliRunner

from graphrun.cli import app
from graphrun.cli_utils.loading import _load_registry, _parse_json_object
from graphrun.registry import ExecutorRegistry

FIXTURES = Path(__file__).parent.parent / "fixtures"
FLOWS = FIXTURES / "flows"


@pytest.fixture(autouse=True)
def sample_nodes_on_path(monkeypatch):
    monkeypatch.syspath_prepend(str(FIXTURES))


def _execution_id(output: str) -> str:
    for line in output.splitlines():
        if line.startswith("Execution ID:"):
            return line.split(":", 1)[1].strip()
    raise AssertionError(f"No execution id in output: {output}")


def test_workflow_validate_reports_valid_flow():
    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "validate", str(FLOWS / "branching.yaml")])

    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "Workflow wf-branching is valid" in result.stdout
    assert "entry nodes: enrich" in result.stdout


def test_workflow_validate_reports_errors():
    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "validate", str(FLOWS / "broken.yaml")])

    assert result.exit_code == 1
    assert 'non-existent target node "ghost"' in result.stdout

    missing = runner.invoke(app, ["workflow", "validate", "nowhere.yaml"])
    assert missing.exit_code == 1
    assert "Specified path does not exist" in missing.stdout


def test_workflow_validate_cycles_follow_policy(tmp_path, monkeypatch):
    runner = CliRunner()
    allowed = runner.invoke(app, ["workflow", "validate", str(FLOWS / "cyclic.yaml")])
    assert allowed.exit_code == 0
    assert "warning: Workflow contains a cycle" in allowed.stdout

    config_path = tmp_path / "strict.yaml"
    config_path.write_text("execution:\n  cycle_policy: reject\n")
    monkeypatch.setenv("GRAPHRUN_CONFIG", str(config_path))
    rejected = runner.invoke(app, ["workflow", "validate", str(FLOWS / "cyclic.yaml")])
    assert rejected.exit_code == 1
    assert "cycles are rejected" in rejected.stdout


def test_workflow_run_follows_branch():
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "workflow",
            "run",
            str(FLOWS / "branching.yaml"),
            "--executors",
            "sample_nodes:registry",
            "--input",
            '{"score": 80}',
        ],
    )

    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "Status: COMPLETED" in result.stdout
    assert "Checkpoints: 3" in result.stdout
    assert '"hot": "done"' in result.stdout
    assert '"cold"' not in result.stdout


def test_pause_list_show_and_resume():
    runner = CliRunner()
    run = runner.invoke(
        app,
        [
            "workflow",
            "run",
            str(FLOWS / "approval.json"),
            "--executors",
            "sample_nodes:registry",
        ],
    )
    assert run.exit_code == 0, f"Output: {run.stdout}"
    assert "Status: PAUSED" in run.stdout
    execution_id = _execution_id(run.stdout)

    listed = runner.invoke(app, ["execution", "list", "--workflow-id", "wf-approval"])
    assert listed.exit_code == 0
    assert execution_id in listed.stdout
    assert "PAUSED" in listed.stdout

    shown = runner.invoke(app, ["execution", "show", execution_id])
    assert shown.exit_code == 0
    assert f"Execution {execution_id}: PAUSED (step 2/3)" in shown.stdout
    assert "1. step 1 ACTION" in shown.stdout
    assert "2. step 2 Manager review" in shown.stdout

    resumed = runner.invoke(
        app,
        [
            "execution",
            "resume",
            execution_id,
            "--workflow",
            str(FLOWS / "approval.json"),
            "--executors",
            "sample_nodes:registry",
            "--data",
            '{"approved": true}',
        ],
    )
    assert resumed.exit_code == 0, f"Output: {resumed.stdout}"
    assert "Status: COMPLETED" in resumed.stdout
    assert '"approved": true' in resumed.stdout
    assert '"publish": "done"' in resumed.stdout

    completed = runner.invoke(app, ["execution", "list", "--status", "COMPLETED"])
    assert execution_id in completed.stdout


def test_failed_run_exits_non_zero_and_is_inspectable():
    runner = CliRunner()
    run = runner.invoke(
        app,
        [
            "workflow",
            "run",
            str(FLOWS / "failing.yaml"),
            "--executors",
            "sample_nodes:registry",
        ],
    )

    assert run.exit_code == 1
    assert "Error: exploded on purpose" in run.stdout
    execution_id = _execution_id(run.stdout)

    shown = runner.invoke(app, ["execution", "show", execution_id])
    assert "FAILED" in shown.stdout
    assert "2. step 1 BOOM FAILED: exploded on purpose" in shown.stdout


def test_execution_commands_handle_missing_data():
    runner = CliRunner()

    empty = runner.invoke(app, ["execution", "list"])
    assert empty.exit_code == 0
    assert "No executions found" in empty.stdout

    missing = runner.invoke(app, ["execution", "show", "missing-id"])
    assert missing.exit_code == 1
    assert "Execution not found" in missing.stdout


def test_run_rejects_bad_arguments():
    runner = CliRunner()
    bad_target = runner.invoke(
        app,
        ["workflow", "run", str(FLOWS / "branching.yaml"), "--executors", "sample_nodes"],
    )
    assert bad_target.exit_code == 1
    assert "Expected 'module:attribute'" in bad_target.stdout

    bad_input = runner.invoke(
        app,
        [
            "workflow",
            "run",
            str(FLOWS / "branching.yaml"),
            "--executors",
            "sample_nodes:registry",
            "--input",
            "[1, 2]",
        ],
    )
    assert bad_input.exit_code == 1
    assert "--input must be a JSON object" in bad_input.stdout


def test_load_registry_accepts_factories_and_mappings():
    assert isinstance(_load_registry("sample_nodes:make_registry"), ExecutorRegistry)
    from_mapping = _load_registry("sample_nodes:executors_by_type")
    assert from_mapping.node_types() == ["ACTION"]

    with pytest.raises(ValueError):
        _load_registry("sample_nodes:missing")


def test_parse_json_object():
    assert _parse_json_object(None, "--data") == {}
    assert _parse_json_object('{"a": 1}', "--data") == {"a": 1}
    with pytest.raises(ValueError):
        _parse_json_object("{not json", "--data")
