"""
StageCore - Staged integration tests for infrastructure-as-code modules.

A test is split into named stages (bootstrap, deploy, validate, exercise,
teardown). Any stage can be skipped with an environment directive, and
values produced by one stage are persisted in the test directory so a
later stage, or a later process, can reuse them. Cleanup stages are
deferred and run even when earlier stages fail.

Example usage:
    from stagecore import SkipPolicy, StageRunner, StateStore

    store = StateStore()
    with StageRunner("my-module") as runner:
        runner.defer_stage("teardown", lambda: destroy(store.load_provisioning_config(test_dir)))
        runner.run_stage("deploy", deploy)
        runner.run_stage("validate", validate)

    runner.raise_on_failure()
"""

__version__ = "0.1.0"
__all__ = [
    "StageRunner",
    "StageResult",
    "StageStatus",
    "SkipPolicy",
    "StateStore",
    "Outputs",
    "ProvisioningConfig",
    "__version__",
]


# Lazy imports to avoid loading OpenTelemetry and pydantic at import time
def __getattr__(name: str):
    if name in ("StageRunner", "StageResult", "StageStatus"):
        from stagecore import runner
        return getattr(runner, name)
    if name == "SkipPolicy":
        from stagecore.skip import SkipPolicy
        return SkipPolicy
    if name == "StateStore":
        from stagecore.state import StateStore
        return StateStore
    if name == "Outputs":
        from stagecore.outputs import Outputs
        return Outputs
    if name == "ProvisioningConfig":
        from stagecore.provisioning.base import ProvisioningConfig
        return ProvisioningConfig
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
