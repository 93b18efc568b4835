"""StageCore CLI - run staged scenarios and inspect their stages."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from stagecore.config import get_config
from stagecore.errors import StageCoreError
from stagecore.logger import StageLogger
from stagecore.provisioning.terraform import TerraformProvisioner
from stagecore.runner import StageRunner
from stagecore.scenarios import SCENARIOS
from stagecore.skip import SkipPolicy
from stagecore.state import StateStore
from stagecore.workspace import prepare_test_directory

logger = logging.getLogger(__name__)

ALL_STAGE_NAMES = sorted({stage for scenario in SCENARIOS.values() for stage in scenario.stages})


def _configure_tracing(console: bool, service_name: str) -> bool:
    """
    Install a TracerProvider that prints stage spans to stderr.

    Returns:
        True if configuration succeeded, False otherwise
    """
    if not console:
        return False
    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

        resource = Resource.create({
            "service.name": service_name,
            "service.namespace": "stagecore",
        })
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter(out=sys.stderr)))
        trace.set_tracer_provider(provider)
        return True
    except Exception as e:
        click.echo(f"Warning: Failed to configure tracing: {e}", err=True)
        return False


def _flush_tracing() -> None:
    """Flush and shut down the tracer provider so every span is printed."""
    from opentelemetry import trace

    provider = trace.get_tracer_provider()
    if hasattr(provider, "shutdown"):
        provider.shutdown()


@click.command("run")
@click.argument("scenario", type=click.Choice(sorted(SCENARIOS)))
@click.option(
    "--root",
    "root_folder",
    type=click.Path(exists=True, file_okay=False),
    help="Repository root holding the infrastructure code (copied before use)",
)
@click.option(
    "--module",
    "module_folder",
    default=None,
    help="Module path relative to --root (defaults to the scenario's module)",
)
@click.option(
    "--work-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Persistent parent for the test directory; reused across invocations",
)
@click.option(
    "--test-dir",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Use an existing test directory as is (no copy)",
)
@click.option(
    "--skip",
    "skip_stages",
    multiple=True,
    type=click.Choice(ALL_STAGE_NAMES),
    help="Skip a stage (repeatable); adds to SKIP_<STAGE> environment directives",
)
@click.option(
    "--no-halt",
    is_flag=True,
    help="Keep running later stages after a stage fails",
)
@click.option(
    "--log-format",
    type=click.Choice(["json", "text"]),
    default=None,
    help="Stage event format (defaults to STAGECORE_LOG_FORMAT)",
)
@click.option(
    "--trace-console",
    is_flag=True,
    help="Print an OpenTelemetry span per stage to stderr",
)
@click.pass_context
def run(
    ctx: click.Context,
    scenario: str,
    root_folder: Optional[str],
    module_folder: Optional[str],
    work_dir: Optional[str],
    test_dir: Optional[str],
    skip_stages: Tuple[str, ...],
    no_halt: bool,
    log_format: Optional[str],
    trace_console: bool,
):
    """Run a staged scenario.

    Every stage can be skipped with SKIP_<STAGE>=true or --skip, and
    values persisted by earlier stages are reloaded from the test
    directory, so stages can be re-run in isolation.

    Examples:

        # Full run in a fresh temp directory
        stagecore run cloud-sql-mysql --root ./terraform-google-sql

        # Deploy now, keep the instance, validate later
        stagecore run cloud-sql-mysql --root . --work-dir ~/runs --skip teardown
        SKIP_BOOTSTRAP=true SKIP_DEPLOY=true stagecore run cloud-sql-mysql --root . --work-dir ~/runs
    """
    config = get_config()
    logging.basicConfig(level=config.log_level.upper())
    scenario_cls = SCENARIOS[scenario]

    if test_dir is None:
        if root_folder is None:
            raise click.UsageError("Either --root or --test-dir is required")
        try:
            directory = prepare_test_directory(
                root_folder,
                module_folder or scenario_cls.module_folder,
                work_dir or config.work_dir,
            )
        except (StageCoreError, OSError) as e:
            raise click.ClickException(str(e))
    else:
        directory = Path(test_dir).resolve()

    tracing = _configure_tracing(trace_console, config.service_name)

    stage_logger = StageLogger(
        test_name=scenario,
        service_name=config.service_name,
        log_format=log_format or config.log_format,
    )
    skip_policy = SkipPolicy.from_overrides(
        skip_stages,
        prefix=config.skip_prefix,
        skip_value=config.skip_value,
    )
    runner = StageRunner(
        scenario,
        skip_policy=skip_policy,
        stage_logger=stage_logger,
        halt_on_failure=not no_halt,
    )
    instance = scenario_cls(
        directory,
        provisioner=TerraformProvisioner.from_config(config),
        store=StateStore(data_folder=config.test_data_folder),
        stage_logger=stage_logger,
        mysql_port=config.mysql_port,
    )
    try:
        instance.run(runner)
    finally:
        if tracing:
            _flush_tracing()

    click.echo(runner.summary(use_colors=sys.stdout.isatty()))
    click.echo(f"Test directory: {directory}")
    ctx.exit(runner.exit_code())


@click.command("stages")
@click.argument("scenario", type=click.Choice(sorted(SCENARIOS)))
def stages(scenario: str):
    """List a scenario's stages with their skip directives."""
    config = get_config()
    policy = SkipPolicy.from_config(config)
    for stage in SCENARIOS[scenario].stages:
        state = "skip" if policy.should_skip(stage) else "run"
        click.echo(f"{stage:<20} {policy.directive_key(stage):<28} {state}")
