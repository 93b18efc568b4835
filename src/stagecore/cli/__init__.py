"""
StageCore CLI - Run staged infrastructure tests and inspect their state.

Commands:
    stagecore run       Run a scenario's stages (skippable, resumable)
    stagecore stages    List a scenario's stages and skip directives
    stagecore state     Show, get, or clean persisted stage values
"""

import click

from .run import run, stages
from .state import state


@click.group()
@click.version_option(package_name="stagecore")
def main():
    """StageCore - Staged integration tests for infrastructure modules."""
    pass


main.add_command(run)
main.add_command(stages)
main.add_command(state)


if __name__ == "__main__":
    main()
