"""StageCore CLI - inspect and clean values persisted in a test directory."""

from __future__ import annotations

import json

import click

from stagecore.config import get_config
from stagecore.errors import StateError
from stagecore.state import StateStore


def _store() -> StateStore:
    return StateStore(data_folder=get_config().test_data_folder)


@click.group()
def state():
    """Persisted stage values."""
    pass


@state.command("show")
@click.argument("test_dir", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def state_show(test_dir: str, output_format: str):
    """Show every value saved for TEST_DIR."""
    store = _store()
    values = {}
    try:
        for key in store.keys(test_dir):
            values[key] = store.load(test_dir, key)
    except StateError as e:
        raise click.ClickException(str(e))

    if output_format == "json":
        click.echo(json.dumps(values, indent=2, sort_keys=True))
        return

    if not values:
        click.echo(f"No test data in {store.data_dir(test_dir)}")
        return
    for key, value in values.items():
        click.echo(f"{key:<24} {json.dumps(value, sort_keys=True)}")


@state.command("get")
@click.argument("test_dir", type=click.Path(exists=True, file_okay=False))
@click.argument("key")
def state_get(test_dir: str, key: str):
    """Print one value saved for TEST_DIR."""
    try:
        value = _store().load(test_dir, key)
    except StateError as e:
        raise click.ClickException(str(e))
    click.echo(value if isinstance(value, str) else json.dumps(value, indent=2, sort_keys=True))


@state.command("clean")
@click.argument("test_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def state_clean(test_dir: str, yes: bool):
    """Delete every value saved for TEST_DIR."""
    store = _store()
    if not yes:
        click.confirm(f"Delete all test data in {store.data_dir(test_dir)}?", abort=True)
    try:
        store.clean_up_test_data(test_dir)
    except StateError as e:
        raise click.ClickException(str(e))
    click.echo(f"Removed test data in {store.data_dir(test_dir)}")
