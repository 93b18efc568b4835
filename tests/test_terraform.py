"""
Tests for the Terraform adapter, with subprocess patched out.
"""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from stagecore.config import StageCoreConfig
from stagecore.errors import ProvisioningError
from stagecore.provisioning.base import Provisioner, ProvisioningConfig
from stagecore.provisioning.terraform import TerraformProvisioner, format_args, format_var


def _completed(returncode=0, stdout="", stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def config(tmp_path):
    return ProvisioningConfig(
        module_dir=str(tmp_path),
        vars={"region": "us-central1", "name": "mysql-test-abc123"},
        env_vars={"GOOGLE_CREDENTIALS": "creds"},
    )


@pytest.fixture
def mock_run():
    with patch("stagecore.provisioning.terraform.shutil.which", return_value="/usr/bin/terraform"), \
         patch("stagecore.provisioning.terraform.time.sleep") as mock_sleep, \
         patch("stagecore.provisioning.terraform.subprocess.run") as run:
        run.sleep = mock_sleep
        yield run


class TestFormatting:

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("us-central1", "us-central1"),
            (5, "5"),
            (True, "true"),
            (False, "false"),
            (None, "null"),
            (["a", "b"], '["a", "b"]'),
            ({"k": 1}, '{"k": 1}'),
        ],
    )
    def test_format_var(self, value, expected):
        assert format_var(value) == expected

    def test_format_args_sorted(self, tmp_path):
        config = ProvisioningConfig(
            module_dir=str(tmp_path),
            vars={"region": "us-east1", "name": "x"},
            var_files=["extra.tfvars"],
        )
        assert format_args(config) == [
            "-var", "name=x",
            "-var", "region=us-east1",
            "-var-file", "extra.tfvars",
            "-no-color",
        ]


class TestCommands:

    def test_satisfies_protocol(self):
        assert isinstance(TerraformProvisioner(), Provisioner)

    def test_init_and_apply(self, mock_run, config):
        outputs_json = json.dumps({"public_ip": {"sensitive": False, "type": "string", "value": "203.0.113.10"}})
        mock_run.side_effect = [_completed(), _completed(), _completed(stdout=outputs_json)]

        outputs = TerraformProvisioner().init_and_apply(config)

        assert outputs.get_str("public_ip") == "203.0.113.10"
        commands = [c.args[0][1] for c in mock_run.call_args_list]
        assert commands == ["init", "apply", "output"]

        apply_call = mock_run.call_args_list[1]
        cmd = apply_call.args[0]
        assert cmd[:4] == ["terraform", "apply", "-input=false", "-auto-approve"]
        assert "region=us-central1" in cmd
        assert apply_call.kwargs["cwd"] == config.module_dir
        env = apply_call.kwargs["env"]
        assert env["TF_IN_AUTOMATION"] == "1"
        assert env["GOOGLE_CREDENTIALS"] == "creds"

    def test_destroy(self, mock_run, config):
        mock_run.return_value = _completed()

        TerraformProvisioner(binary="tofu").destroy(config)

        cmd = mock_run.call_args.args[0]
        assert cmd[:2] == ["tofu", "destroy"]
        assert "-auto-approve" in cmd

    def test_output_renders_non_strings_as_json(self, mock_run, config):
        payload = {
            "public_ip": {"value": "203.0.113.10"},
            "ports": {"value": [3306]},
        }
        mock_run.return_value = _completed(stdout=json.dumps(payload))
        provisioner = TerraformProvisioner()

        assert provisioner.output(config, "public_ip") == "203.0.113.10"
        assert provisioner.output(config, "ports") == "[3306]"

    def test_output_missing_key(self, mock_run, config):
        mock_run.return_value = _completed(stdout="{}")
        with pytest.raises(ProvisioningError, match="public_ip"):
            TerraformProvisioner().output(config, "public_ip")

    def test_outputs_invalid_json(self, mock_run, config):
        mock_run.return_value = _completed(stdout="not json")
        with pytest.raises(ProvisioningError, match="invalid JSON"):
            TerraformProvisioner().outputs(config)


class TestFailures:

    def test_nonzero_exit(self, mock_run, config):
        mock_run.return_value = _completed(returncode=1, stderr="Error: quota exceeded")

        with pytest.raises(ProvisioningError) as exc_info:
            TerraformProvisioner().destroy(config)

        error = exc_info.value
        assert error.returncode == 1
        assert error.cmd[:2] == ["terraform", "destroy"]
        assert "quota exceeded" in str(error)
        assert mock_run.call_count == 1

    def test_binary_missing(self, config):
        with patch("stagecore.provisioning.terraform.shutil.which", return_value=None):
            with pytest.raises(ProvisioningError, match="not found in PATH"):
                TerraformProvisioner(binary="no-such-terraform").destroy(config)

    def test_timeout(self, mock_run, config):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="terraform", timeout=1)
        with pytest.raises(ProvisioningError, match="timed out"):
            TerraformProvisioner().outputs(config)

    def test_retries_transient_errors(self, mock_run, config):
        mock_run.side_effect = [
            _completed(returncode=1, stderr="Error: connection reset by peer"),
            _completed(),
        ]

        TerraformProvisioner(max_retries=2, retry_sleep_seconds=0.5).destroy(config)

        assert mock_run.call_count == 2
        mock_run.sleep.assert_called_once_with(0.5)

    def test_retries_are_bounded(self, mock_run, config):
        mock_run.return_value = _completed(returncode=1, stderr="Error: connection reset by peer")

        with pytest.raises(ProvisioningError):
            TerraformProvisioner(max_retries=2).destroy(config)

        assert mock_run.call_count == 3

    def test_custom_retryable_errors(self, mock_run, config):
        mock_run.return_value = _completed(returncode=1, stderr="Error: connection reset by peer")

        with pytest.raises(ProvisioningError):
            TerraformProvisioner(retryable_errors={}).destroy(config)

        assert mock_run.call_count == 1


class TestFromConfig:

    def test_from_config(self):
        settings = StageCoreConfig(
            terraform_binary="tofu",
            terraform_max_retries=1,
            terraform_retry_sleep_seconds=0.0,
        )
        provisioner = TerraformProvisioner.from_config(settings)

        assert provisioner.binary == "tofu"
        assert provisioner.max_retries == 1
        assert provisioner.retry_sleep_seconds == 0.0
