"""PostgreSQL installation, configuration and verification."""

from pathlib import PurePosixPath
from typing import List

from stackprovisioner.constants import PG_HBA_MARKER, POSTGRES_ADMIN_USER, POSTGRES_HOST
from stackprovisioner.errors import ProvisionerError
from stackprovisioner.errors_catalog import actionable_error
from stackprovisioner.models import Credentials
from stackprovisioner.services.resources import (
    Action,
    AptPackages,
    BlockInFile,
    ReplaceInFile,
    Resource,
    ServiceState,
)

LISTEN_ADDRESSES_PATTERN = r"^#listen_addresses = 'localhost'"
LISTEN_ADDRESSES_VALUE = "listen_addresses = '*'"


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class PostgresDatabase(Resource):
    kind = "database"

    def __init__(self, database_service, name: str):
        super().__init__(name)
        self.database_service = database_service

    def observe(self) -> bool:
        return self.database_service.database_exists(self.name)

    def plan(self, observed: bool) -> List[Action]:
        if observed:
            return []
        return [
            Action(
                f"create database {self.name}",
                lambda: self.database_service.run_as_admin(["createdb", self.name]),
            )
        ]


class PostgresRole(Resource):
    """A login role whose password always matches the run's credentials.

    Passwords cannot be observed, so an existing role gets its password
    re-applied on every run.
    """

    kind = "role"

    def __init__(self, database_service, name: str, password: str):
        super().__init__(name)
        self.database_service = database_service
        self.password = password

    def observe(self) -> bool:
        return self.database_service.role_exists(self.name)

    def plan(self, observed: bool) -> List[Action]:
        role = quote_identifier(self.name)
        password = quote_literal(self.password)
        if observed:
            return [
                Action(
                    f"set password of {self.name}",
                    lambda: self.database_service.execute_sql(f"ALTER USER {role} PASSWORD {password};"),
                )
            ]
        return [
            Action(
                f"create role {self.name}",
                lambda: self.database_service.execute_sql(
                    f"CREATE USER {role} WITH CREATEDB PASSWORD {password};"
                ),
            )
        ]


class SqlStatement(Resource):
    """A statement re-applied on every run whose failure is tolerated."""

    kind = "sql"

    def __init__(self, database_service, name: str, sql: str):
        super().__init__(name)
        self.database_service = database_service
        self.sql = sql

    def observe(self):
        return None

    def plan(self, observed) -> List[Action]:
        return [
            Action(
                f"apply {self.name}",
                lambda: self.database_service.execute_sql(self.sql),
                soft=True,
            )
        ]


class DatabaseService:
    """Handles PostgreSQL installation, access rules, roles and connectivity checks."""

    def __init__(self, logger, console, command_runner, filesystem, platform, postgres_version: str):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.filesystem = filesystem
        self.platform = platform
        self.postgres_version = postgres_version

    @property
    def config_dir(self) -> PurePosixPath:
        return PurePosixPath("/etc/postgresql", self.postgres_version, "main")

    def run_as_admin(self, cmd: List[str], **kwargs):
        return self.command_runner.sudo(["-u", POSTGRES_ADMIN_USER] + list(cmd), **kwargs)

    def query(self, sql: str) -> str:
        result = self.run_as_admin(["psql", "-tAc", sql], check=False, capture_output=True)
        if result.returncode != 0:
            return ""
        return (result.stdout or "").strip()

    def execute_sql(self, sql: str):
        """Runs a statement through stdin so secrets stay out of the process list."""
        self.run_as_admin(
            ["psql", "-v", "ON_ERROR_STOP=1", "-q"],
            input_text=sql,
            capture_output=True,
            redact=True,
        )

    def database_exists(self, name: str) -> bool:
        return self.query(f"SELECT 1 FROM pg_database WHERE datname = {quote_literal(name)}") == "1"

    def role_exists(self, name: str) -> bool:
        return self.query(f"SELECT 1 FROM pg_roles WHERE rolname = {quote_literal(name)}") == "1"

    def is_installed(self) -> bool:
        active, _ = self.platform.service_status("postgresql")
        return active and self.command_runner.which("psql")

    def install_resources(self) -> List[Resource]:
        resources: List[Resource] = []
        if self.platform.postgres_prerequisites:
            resources.append(
                AptPackages(self.platform, self.platform.postgres_prerequisites, label="postgresql prerequisites")
            )
        resources.append(self.platform.postgres_repository())
        resources.append(
            AptPackages(
                self.platform,
                self.platform.postgres_packages(self.postgres_version),
                label=f"postgresql {self.postgres_version}",
            )
        )
        return resources

    def service_resources(self) -> List[Resource]:
        return [ServiceState(self.platform, "postgresql")]

    def configuration_resources(self, credentials: Credentials) -> List[Resource]:
        user = credentials.app_username
        database = credentials.database_name
        hba_body = "\n".join(
            [
                f"local   {database}          {user}                                   md5",
                f"host    {database}          {user}           127.0.0.1/32            md5",
                f"host    {database}          {user}           ::1/128                 md5",
            ]
        )
        return [
            ReplaceInFile(
                self.filesystem,
                str(self.config_dir / "postgresql.conf"),
                LISTEN_ADDRESSES_PATTERN,
                LISTEN_ADDRESSES_VALUE,
            ),
            BlockInFile(
                self.filesystem,
                str(self.config_dir / "pg_hba.conf"),
                PG_HBA_MARKER,
                hba_body,
            ),
        ]

    def account_resources(self, credentials: Credentials) -> List[Resource]:
        return [
            PostgresDatabase(self, credentials.database_name),
            PostgresRole(self, credentials.app_username, credentials.app_password),
        ]

    def admin_resources(self, credentials: Credentials) -> List[Resource]:
        return [
            SqlStatement(
                self,
                f"password of {credentials.admin_username}",
                f"ALTER USER {quote_identifier(credentials.admin_username)} "
                f"PASSWORD {quote_literal(credentials.admin_password)};",
            )
        ]

    def grant_resources(self, credentials: Credentials) -> List[Resource]:
        return [
            SqlStatement(
                self,
                f"privileges on {credentials.database_name}",
                f"GRANT ALL PRIVILEGES ON DATABASE {quote_identifier(credentials.database_name)} "
                f"TO {quote_identifier(credentials.app_username)};",
            )
        ]

    def verify_server(self) -> str:
        server_version = self.query("SELECT version();")
        if not server_version:
            raise ProvisionerError(actionable_error("postgres_verification_failed"))
        self.console.print(f"[green]PostgreSQL is working: {server_version}[/green]")
        self.logger.info("PostgreSQL server: %s", server_version)
        return server_version

    def verify_app_login(self, credentials: Credentials) -> bool:
        ok = self.command_runner.succeeds(
            [
                "psql",
                "-h",
                POSTGRES_HOST,
                "-U",
                credentials.app_username,
                "-d",
                credentials.database_name,
                "-c",
                "SELECT 1;",
            ],
            env={"PGPASSWORD": credentials.app_password},
        )
        if ok:
            self.logger.info(
                "User '%s' connected to database '%s'",
                credentials.app_username,
                credentials.database_name,
            )
        else:
            self.logger.warning(
                "Login as '%s' failed (expected on a first installation before the server reload)",
                credentials.app_username,
            )
        return ok

