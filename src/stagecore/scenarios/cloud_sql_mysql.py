"""
Staged integration test for the Cloud SQL MySQL example module.

Stages, each skippable with SKIP_<STAGE>=true:

    bootstrap         pick a unique instance name, a region and the project
    teardown          (deferred) terraform destroy, runs even if stages fail
    deploy            build terraform vars, persist them, terraform apply
    validate_outputs  compare terraform outputs with the bootstrap values
    sql_tests         connect over MySQL and check auto-increment behaviour

Every value a later stage needs is persisted in the test directory, so the
stages can be split across invocations while debugging:

    SKIP_TEARDOWN=true stagecore run cloud-sql-mysql --work-dir ~/runs ...
    SKIP_BOOTSTRAP=true SKIP_DEPLOY=true stagecore run cloud-sql-mysql --work-dir ~/runs ...
"""

from __future__ import annotations

import random
from pathlib import Path
from typing import Callable, Optional, Union

from stagecore.errors import AssertionFailure, assert_equal
from stagecore.logger import StageLogger
from stagecore.naming import google_project_id, instance_name, random_region
from stagecore.provisioning.base import Provisioner, ProvisioningConfig
from stagecore.resource.base import ClientFactory, ConnectionDescriptor
from stagecore.runner import StageRunner
from stagecore.state import (
    KEY_INSTANCE_NAME,
    KEY_PROJECT_ID,
    KEY_REGION,
    StateStore,
)

SCENARIO_NAME = "cloud-sql-mysql"
MODULE_FOLDER = "examples/cloud-sql-mysql"

STAGE_BOOTSTRAP = "bootstrap"
STAGE_TEARDOWN = "teardown"
STAGE_DEPLOY = "deploy"
STAGE_VALIDATE_OUTPUTS = "validate_outputs"
STAGE_SQL_TESTS = "sql_tests"

# Execution order; teardown is registered first but runs last
STAGES = (STAGE_BOOTSTRAP, STAGE_DEPLOY, STAGE_VALIDATE_OUTPUTS, STAGE_SQL_TESTS, STAGE_TEARDOWN)

INSTANCE_NAME_PREFIX = "mysql-test"
MYSQL_VERSION = "MYSQL_5_7"
DB_NAME = "testdb"
DB_USER = "testuser"
DB_PASS = "testpassword"

# The example module sets auto_increment_increment and auto_increment_offset to 5
AUTO_INCREMENT_STEP = 5

MYSQL_CREATE_TEST_TABLE_WITH_AUTO_INCREMENT_STATEMENT = (
    "CREATE TABLE IF NOT EXISTS test ("
    "id int NOT NULL AUTO_INCREMENT, "
    "name varchar(10) NOT NULL, "
    "PRIMARY KEY (id))"
)
MYSQL_EMPTY_TEST_TABLE_STATEMENT = "DELETE FROM test"
MYSQL_INSERT_TEST_ROW = "INSERT INTO test(name) VALUES (:name)"
TEST_ROW_NAME = "Grunt"

ProjectIdResolver = Callable[[], str]
RegionSelector = Callable[[str], str]


def build_provisioning_config(
    module_dir: Union[str, Path],
    project_id: str,
    region: str,
    name: str,
) -> ProvisioningConfig:
    """Terraform inputs for the example module."""
    return ProvisioningConfig(
        module_dir=str(module_dir),
        vars={
            "region": region,
            "project": project_id,
            "name": name,
            "mysql_version": MYSQL_VERSION,
            "db_name": DB_NAME,
            "master_username": DB_USER,
            "master_password": DB_PASS,
        },
    )


def expected_proxy_connection(project_id: str, region: str, name: str) -> str:
    """Cloud SQL connection name: ``<project>:<region>:<instance>``."""
    return f"{project_id}:{region}:{name}"


def _open_mysql(descriptor: ConnectionDescriptor):
    from stagecore.resource.mysql import MySQLClient

    return MySQLClient.open(descriptor)


class CloudSqlMySqlScenario:
    """
    The five stages of the Cloud SQL MySQL test, bound to one test directory.

    Collaborators are injected so the same stages run against fakes in unit
    tests and against Terraform and a live instance in CI.
    """

    name = SCENARIO_NAME
    module_folder = MODULE_FOLDER
    stages = STAGES

    def __init__(
        self,
        test_dir: Union[str, Path],
        provisioner: Provisioner,
        store: Optional[StateStore] = None,
        client_factory: Optional[ClientFactory] = None,
        project_id_resolver: Optional[ProjectIdResolver] = None,
        region_selector: Optional[RegionSelector] = None,
        stage_logger: Optional[StageLogger] = None,
        mysql_port: int = 3306,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            test_dir: Directory holding the module copy and its persisted values
            provisioner: Terraform (or a fake) implementing the Provisioner protocol
            store: State store; a default StateStore when None
            client_factory: Opens a MySQL client; the SQLAlchemy client when None
            project_id_resolver: Returns the GCP project; read from env when None
            region_selector: Picks a region for a project; random when None
            stage_logger: Logger for statement-level progress
            mysql_port: Port of the provisioned instance
            rng: Random source for naming and region choice
        """
        self.test_dir = Path(test_dir)
        self.provisioner = provisioner
        self.store = store or StateStore()
        self.client_factory = client_factory or _open_mysql
        self.rng = rng
        self.project_id_resolver = project_id_resolver or google_project_id
        self.region_selector = region_selector or (lambda project_id: random_region(rng=self.rng))
        self.stage_logger = stage_logger or StageLogger(test_name=self.name)
        self.mysql_port = mysql_port

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def run(self, runner: StageRunner) -> StageRunner:
        """
        Run every stage in order on ``runner``.

        Teardown is registered before any stage body runs, so it executes
        when the runner's scope closes even if bootstrap itself fails.
        """
        with runner:
            runner.defer_stage(STAGE_TEARDOWN, self.teardown)
            runner.run_stage(STAGE_BOOTSTRAP, self.bootstrap)
            runner.run_stage(STAGE_DEPLOY, self.deploy)
            runner.run_stage(STAGE_VALIDATE_OUTPUTS, self.validate_outputs)
            runner.run_stage(STAGE_SQL_TESTS, self.sql_tests)
        return runner

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def bootstrap(self) -> None:
        name = instance_name(INSTANCE_NAME_PREFIX, rng=self.rng)
        project_id = self.project_id_resolver()
        region = self.region_selector(project_id)

        self.store.save_string(self.test_dir, KEY_INSTANCE_NAME, name)
        self.store.save_string(self.test_dir, KEY_REGION, region)
        self.store.save_string(self.test_dir, KEY_PROJECT_ID, project_id)
        self.stage_logger.log_message(
            STAGE_BOOTSTRAP, "bootstrapped", instance_name=name, region=region, project_id=project_id
        )

    def teardown(self) -> None:
        # A missing config is NotFoundError: the instance may still be live
        config = self.store.load_provisioning_config(self.test_dir)
        self.provisioner.destroy(config)

    def deploy(self) -> None:
        region = self.store.load_string(self.test_dir, KEY_REGION)
        project_id = self.store.load_string(self.test_dir, KEY_PROJECT_ID)
        name = self.store.load_string(self.test_dir, KEY_INSTANCE_NAME)

        config = build_provisioning_config(self.test_dir, project_id, region, name)
        self.store.save_provisioning_config(self.test_dir, config)

        self.provisioner.init_and_apply(config)

    def validate_outputs(self) -> None:
        config = self.store.load_provisioning_config(self.test_dir)
        name = self.store.load_string(self.test_dir, KEY_INSTANCE_NAME)
        region = self.store.load_string(self.test_dir, KEY_REGION)
        project_id = self.store.load_string(self.test_dir, KEY_PROJECT_ID)

        outputs = self.provisioner.outputs(config)
        assert_equal(name, outputs.get_str("instance_name"), "output instance_name")
        assert_equal(DB_NAME, outputs.get_str("db_name"), "output db_name")
        assert_equal(
            expected_proxy_connection(project_id, region, name),
            outputs.get_str("proxy_connection"),
            "output proxy_connection",
        )

    def sql_tests(self) -> None:
        config = self.store.load_provisioning_config(self.test_dir)
        public_ip = self.provisioner.output(config, "public_ip")

        descriptor = ConnectionDescriptor(
            host=public_ip,
            port=self.mysql_port,
            user=DB_USER,
            password=DB_PASS,
            database=DB_NAME,
        )
        self.stage_logger.log_message(STAGE_SQL_TESTS, f"Connecting to: {public_ip}")
        client = self.client_factory(descriptor)
        try:
            self.stage_logger.log_message(STAGE_SQL_TESTS, "Ping the DB")
            client.ping()

            self._execute(client, "Create table", MYSQL_CREATE_TEST_TABLE_WITH_AUTO_INCREMENT_STATEMENT)
            self._execute(client, "Empty table", MYSQL_EMPTY_TEST_TABLE_STATEMENT)
            result = self._execute(client, "Insert data", MYSQL_INSERT_TEST_ROW, {"name": TEST_ROW_NAME})

            if result.lastrowid is None:
                raise AssertionFailure("Insert did not report a server-assigned id")
            assert_equal(
                0,
                result.lastrowid % AUTO_INCREMENT_STEP,
                f"last insert id {result.lastrowid} modulo {AUTO_INCREMENT_STEP}",
            )
        finally:
            client.close()

    def _execute(self, client, action: str, statement: str, params=None):
        self.stage_logger.log_statement(STAGE_SQL_TESTS, action=action, statement=statement)
        return client.execute(statement, params)
