"""
Pytest configuration and fixtures for StageCore tests.
"""

from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Any, Dict, Generator, List, Mapping, Optional

import pytest

from stagecore.config import reset_config
from stagecore.errors import ProvisioningError, ResourceConnectionError
from stagecore.outputs import Outputs
from stagecore.provisioning.base import ProvisioningConfig
from stagecore.resource.base import ConnectionDescriptor, ExecResult
from stagecore.state import StateStore


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> Generator[None, None, None]:
    """Drop skip directives and StageCore settings inherited from the shell."""
    for key in list(os.environ):
        if key.startswith("SKIP_") or key.startswith("STAGECORE_"):
            monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def captured_stage_logs() -> Generator[io.StringIO, None, None]:
    """Capture stage event lines written to the stagecore.stages logger."""
    output = io.StringIO()
    stage_logger = logging.getLogger("stagecore.stages")
    original = list(stage_logger.handlers)
    stage_logger.handlers.clear()
    handler = logging.StreamHandler(output)
    handler.setFormatter(logging.Formatter("%(message)s"))
    stage_logger.addHandler(handler)
    yield output
    stage_logger.handlers.clear()
    stage_logger.handlers.extend(original)


# ============================================================================
# State Fixtures
# ============================================================================


@pytest.fixture
def test_dir(tmp_path) -> Path:
    """An empty test directory."""
    directory = tmp_path / "examples" / "cloud-sql-mysql"
    directory.mkdir(parents=True)
    return directory


@pytest.fixture
def store() -> StateStore:
    return StateStore()


# ============================================================================
# Collaborator Fakes
# ============================================================================


class FakeProvisioner:
    """Records calls and serves canned outputs."""

    def __init__(
        self,
        outputs: Optional[Mapping[str, Any]] = None,
        fail_apply: bool = False,
        fail_destroy: bool = False,
    ):
        self._outputs = dict(outputs or {})
        self.fail_apply = fail_apply
        self.fail_destroy = fail_destroy
        self.calls: List[str] = []
        self.applied: List[ProvisioningConfig] = []
        self.destroyed: List[ProvisioningConfig] = []

    def init_and_apply(self, config: ProvisioningConfig) -> Outputs:
        self.calls.append("apply")
        self.applied.append(config)
        if self.fail_apply:
            raise ProvisioningError("terraform apply failed", returncode=1, stderr="quota exceeded")
        return Outputs(self._outputs)

    def destroy(self, config: ProvisioningConfig) -> None:
        self.calls.append("destroy")
        self.destroyed.append(config)
        if self.fail_destroy:
            raise ProvisioningError("terraform destroy failed", returncode=1)

    def outputs(self, config: ProvisioningConfig) -> Outputs:
        self.calls.append("outputs")
        return Outputs(self._outputs)

    def output(self, config: ProvisioningConfig, key: str) -> str:
        self.calls.append(f"output:{key}")
        return str(Outputs(self._outputs)[key])


class FakeMySQLClient:
    """Simulates a server configured with auto_increment_increment/offset."""

    def __init__(self, increment: int = 5, offset: int = 5, fail_ping: bool = False):
        self.increment = increment
        self.offset = offset
        self.fail_ping = fail_ping
        self.statements: List[str] = []
        self.params: List[Optional[Dict[str, Any]]] = []
        self.closed = False
        self.insert_ids: List[int] = []
        self._next_id = offset

    def ping(self) -> None:
        if self.fail_ping:
            raise ResourceConnectionError("Failed to ping MySQL: connection refused")

    def execute(self, statement: str, params=None) -> ExecResult:
        self.statements.append(statement)
        self.params.append(dict(params) if params else None)
        if statement.startswith("INSERT"):
            row_id = self._next_id
            self._next_id += self.increment
            self.insert_ids.append(row_id)
            return ExecResult(lastrowid=row_id, rowcount=1)
        return ExecResult(lastrowid=0, rowcount=0)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def mysql_outputs() -> Dict[str, Any]:
    return {
        "instance_name": "mysql-test-abc123",
        "db_name": "testdb",
        "proxy_connection": "proj-1:us-central1:mysql-test-abc123",
        "public_ip": "203.0.113.10",
    }


@pytest.fixture
def provisioner(mysql_outputs) -> FakeProvisioner:
    return FakeProvisioner(outputs=mysql_outputs)


@pytest.fixture
def mysql_client() -> FakeMySQLClient:
    return FakeMySQLClient()


@pytest.fixture
def descriptors() -> List[ConnectionDescriptor]:
    """Connection descriptors passed to the client factory."""
    return []
