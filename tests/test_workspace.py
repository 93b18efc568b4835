"""
Tests for test directory preparation.
"""

import pytest

from stagecore.errors import ConfigurationError
from stagecore.workspace import prepare_test_directory, remove_test_directory

MODULE = "examples/cloud-sql-mysql"


@pytest.fixture
def repo_root(tmp_path):
    root = tmp_path / "terraform-google-sql"
    module = root / MODULE
    module.mkdir(parents=True)
    (module / "main.tf").write_text('module "mysql" { source = "../../modules/mysql" }\n')
    (root / "modules" / "mysql").mkdir(parents=True)
    (root / "modules" / "mysql" / "main.tf").write_text("# mysql module\n")
    (module / ".terraform").mkdir()
    (module / "terraform.tfstate").write_text("{}")
    (module / ".test-data").mkdir()
    return root


class TestPrepare:

    def test_temp_copy(self, repo_root):
        test_dir = prepare_test_directory(repo_root, MODULE)
        try:
            assert (test_dir / "main.tf").is_file()
            # relative module sources still resolve in the copy
            assert (test_dir / "../../modules/mysql/main.tf").resolve().is_file()
            assert test_dir.parent.parent.parent.name.startswith("stagecore-")
        finally:
            remove_test_directory(test_dir, MODULE)
        assert not test_dir.exists()

    def test_ignores_local_state(self, repo_root, tmp_path):
        test_dir = prepare_test_directory(repo_root, MODULE, work_dir=tmp_path / "runs")

        assert not (test_dir / ".terraform").exists()
        assert not (test_dir / "terraform.tfstate").exists()
        assert not (test_dir / ".test-data").exists()

    def test_work_dir_is_reused(self, repo_root, tmp_path):
        work_dir = tmp_path / "runs"
        first = prepare_test_directory(repo_root, MODULE, work_dir=work_dir)
        (first / "marker").write_text("kept")

        second = prepare_test_directory(repo_root, MODULE, work_dir=work_dir)

        assert second == first
        assert (second / "marker").read_text() == "kept"

    def test_missing_module(self, repo_root):
        with pytest.raises(ConfigurationError, match="Module folder not found"):
            prepare_test_directory(repo_root, "examples/does-not-exist")

    def test_remove_work_dir_copy(self, repo_root, tmp_path):
        work_dir = tmp_path / "runs"
        test_dir = prepare_test_directory(repo_root, MODULE, work_dir=work_dir)

        remove_test_directory(test_dir, MODULE)

        assert not (work_dir / repo_root.name).exists()
        assert work_dir.exists()
