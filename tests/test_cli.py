"""
Tests for the stagecore CLI.
"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from stagecore.cli import main
from stagecore.scenarios import cloud_sql_mysql

from conftest import FakeProvisioner


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture
def fake_terraform(provisioner):
    with patch("stagecore.cli.run.TerraformProvisioner.from_config", return_value=provisioner):
        yield provisioner


@pytest.fixture
def deterministic_bootstrap(monkeypatch):
    monkeypatch.setenv("GOOGLE_PROJECT", "proj-1")
    monkeypatch.setattr(cloud_sql_mysql, "instance_name", lambda prefix, rng=None: f"{prefix}-abc123")
    monkeypatch.setattr(cloud_sql_mysql, "random_region", lambda rng=None: "us-central1")


class TestRunCommand:

    def test_run_with_skipped_sql_tests(self, cli_runner, test_dir, fake_terraform, deterministic_bootstrap):
        result = cli_runner.invoke(
            main, ["run", "cloud-sql-mysql", "--test-dir", str(test_dir), "--skip", "sql_tests"]
        )

        assert result.exit_code == 0, result.output
        assert "PASSED" in result.output
        assert "SKIP sql_tests" in result.output
        assert fake_terraform.calls == ["apply", "outputs", "destroy"]

    def test_failed_stage_sets_exit_code(self, cli_runner, test_dir, mysql_outputs, deterministic_bootstrap):
        failing = FakeProvisioner(outputs=mysql_outputs, fail_apply=True)
        with patch("stagecore.cli.run.TerraformProvisioner.from_config", return_value=failing):
            result = cli_runner.invoke(main, ["run", "cloud-sql-mysql", "--test-dir", str(test_dir)])

        assert result.exit_code == 1
        assert "FAIL deploy" in result.output
        assert failing.calls == ["apply", "destroy"]

    def test_env_directive_skips_stage(self, cli_runner, test_dir, fake_terraform, deterministic_bootstrap, monkeypatch):
        monkeypatch.setenv("SKIP_TEARDOWN", "true")
        monkeypatch.setenv("SKIP_SQL_TESTS", "true")

        result = cli_runner.invoke(main, ["run", "cloud-sql-mysql", "--test-dir", str(test_dir)])

        assert result.exit_code == 0, result.output
        assert "destroy" not in fake_terraform.calls

    def test_copies_root_into_work_dir(self, cli_runner, tmp_path, fake_terraform, deterministic_bootstrap):
        root = tmp_path / "infra"
        (root / "examples" / "cloud-sql-mysql").mkdir(parents=True)
        (root / "examples" / "cloud-sql-mysql" / "main.tf").write_text("# module\n")
        work_dir = tmp_path / "runs"

        result = cli_runner.invoke(
            main,
            [
                "run", "cloud-sql-mysql",
                "--root", str(root),
                "--work-dir", str(work_dir),
                "--skip", "sql_tests",
            ],
        )

        assert result.exit_code == 0, result.output
        copied = work_dir / "infra" / "examples" / "cloud-sql-mysql"
        assert (copied / "main.tf").is_file()
        assert (copied / ".test-data" / "instance-name.json").is_file()
        assert fake_terraform.applied[0].module_dir == str(copied.resolve())

    def test_requires_root_or_test_dir(self, cli_runner):
        result = cli_runner.invoke(main, ["run", "cloud-sql-mysql"])
        assert result.exit_code == 2
        assert "--root or --test-dir" in result.output

    def test_missing_module(self, cli_runner, tmp_path):
        result = cli_runner.invoke(main, ["run", "cloud-sql-mysql", "--root", str(tmp_path)])
        assert result.exit_code == 1
        assert "Module folder not found" in result.output


class TestStagesCommand:

    def test_lists_stages(self, cli_runner, monkeypatch):
        monkeypatch.setenv("SKIP_DEPLOY", "true")

        result = cli_runner.invoke(main, ["stages", "cloud-sql-mysql"])

        assert result.exit_code == 0
        lines = result.output.strip().splitlines()
        assert [line.split()[0] for line in lines] == list(cloud_sql_mysql.STAGES)
        deploy = next(line for line in lines if line.startswith("deploy"))
        assert deploy.split() == ["deploy", "SKIP_DEPLOY", "skip"]


class TestStateCommands:

    def test_show_table(self, cli_runner, store, test_dir):
        store.save_string(test_dir, "region", "us-central1")

        result = cli_runner.invoke(main, ["state", "show", str(test_dir)])

        assert result.exit_code == 0
        assert "region" in result.output
        assert '"us-central1"' in result.output

    def test_show_json(self, cli_runner, store, test_dir):
        store.save_string(test_dir, "region", "us-central1")
        store.save_int(test_dir, "port", 3306)

        result = cli_runner.invoke(main, ["state", "show", str(test_dir), "--format", "json"])

        assert result.exit_code == 0
        assert json.loads(result.output) == {"region": "us-central1", "port": 3306}

    def test_show_empty(self, cli_runner, test_dir):
        result = cli_runner.invoke(main, ["state", "show", str(test_dir)])
        assert result.exit_code == 0
        assert "No test data" in result.output

    def test_get(self, cli_runner, store, test_dir):
        store.save_string(test_dir, "instance-name", "mysql-test-abc123")

        result = cli_runner.invoke(main, ["state", "get", str(test_dir), "instance-name"])

        assert result.exit_code == 0
        assert result.output.strip() == "mysql-test-abc123"

    def test_get_missing(self, cli_runner, test_dir):
        result = cli_runner.invoke(main, ["state", "get", str(test_dir), "instance-name"])
        assert result.exit_code == 1
        assert "No test data saved" in result.output

    def test_get_invalid_key(self, cli_runner, test_dir):
        result = cli_runner.invoke(main, ["state", "get", str(test_dir), "../x"])
        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)
        assert "Invalid test data key" in result.output

    def test_clean(self, cli_runner, store, test_dir):
        store.save_string(test_dir, "region", "us-central1")

        result = cli_runner.invoke(main, ["state", "clean", str(test_dir), "--yes"])

        assert result.exit_code == 0
        assert store.keys(test_dir) == []

    def test_clean_aborts_without_confirmation(self, cli_runner, store, test_dir):
        store.save_string(test_dir, "region", "us-central1")

        result = cli_runner.invoke(main, ["state", "clean", str(test_dir)], input="n\n")

        assert result.exit_code == 1
        assert store.keys(test_dir) == ["region"]
