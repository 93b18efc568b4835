"""Staged integration tests runnable from the CLI, keyed by name."""

from stagecore.scenarios.cloud_sql_mysql import CloudSqlMySqlScenario

SCENARIOS = {
    CloudSqlMySqlScenario.name: CloudSqlMySqlScenario,
}

__all__ = ["SCENARIOS", "CloudSqlMySqlScenario"]
