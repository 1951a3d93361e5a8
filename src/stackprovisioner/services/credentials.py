"""Database credential generation and persistence."""

import secrets
from datetime import datetime
from typing import Dict, List, Optional

from stackprovisioner.constants import (
    PASSWORD_ALPHABET,
    PASSWORD_LENGTH,
    POSTGRES_ADMIN_USER,
    POSTGRES_HOST,
    PRIVATE_FILE_MODE,
)
from stackprovisioner.models import Credentials, HostLayout, pgpass_key, pgpass_line
from stackprovisioner.services.resources import LineInFile, Resource

CREDENTIAL_POLICIES = ("preserve", "rotate")


def generate_password(length: int = PASSWORD_LENGTH, alphabet: str = PASSWORD_ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


class CredentialService:
    """Produces the run's credentials and serializes them to disk.

    ``preserve`` reuses the passwords already recorded in the per-user
    password file so a re-run does not invalidate running applications;
    ``rotate`` always draws new ones.
    """

    def __init__(self, logger, filesystem, layout: HostLayout, policy: str = "preserve"):
        if policy not in CREDENTIAL_POLICIES:
            raise ValueError(f"Unknown credential policy: {policy}")
        self.logger = logger
        self.filesystem = filesystem
        self.layout = layout
        self.policy = policy

    def _recorded_passwords(self, database_name: str, app_username: str) -> Dict[str, str]:
        content = self.filesystem.read_text(self.layout.pgpass_file) or ""
        wanted = {
            pgpass_key("*", POSTGRES_ADMIN_USER): "admin",
            pgpass_key(database_name, app_username): "app",
        }
        found: Dict[str, str] = {}
        for line in content.splitlines():
            for key, role in wanted.items():
                if line.startswith(key) and len(line) > len(key):
                    found[role] = line[len(key):]
        return found

    def obtain(self, database_name: str, app_username: Optional[str] = None) -> Credentials:
        app_username = app_username or self.layout.user

        if self.policy == "preserve":
            recorded = self._recorded_passwords(database_name, app_username)
            if "admin" in recorded and "app" in recorded:
                self.logger.info("Reusing database passwords recorded in %s", self.layout.pgpass_file)
                return Credentials(
                    admin_username=POSTGRES_ADMIN_USER,
                    admin_password=recorded["admin"],
                    app_username=app_username,
                    app_password=recorded["app"],
                    database_name=database_name,
                )

        self.logger.info("Generating new database passwords")
        return Credentials(
            admin_username=POSTGRES_ADMIN_USER,
            admin_password=generate_password(),
            app_username=app_username,
            app_password=generate_password(),
            database_name=database_name,
        )

    def pgpass_resources(self, credentials: Credentials) -> List[Resource]:
        path = self.layout.pgpass_file
        return [
            LineInFile(
                self.filesystem,
                path,
                pgpass_line("*", credentials.admin_username, credentials.admin_password),
                key=pgpass_key("*", credentials.admin_username),
                mode=PRIVATE_FILE_MODE,
            ),
            LineInFile(
                self.filesystem,
                path,
                pgpass_line(
                    credentials.database_name, credentials.app_username, credentials.app_password
                ),
                key=pgpass_key(credentials.database_name, credentials.app_username),
                mode=PRIVATE_FILE_MODE,
            ),
        ]

    def render_reference(self, credentials: Credentials, generated_at: Optional[datetime] = None) -> str:
        timestamp = (generated_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
        return (
            "# PostgreSQL connection details generated by stackprovisioner\n"
            f"# Generated: {timestamp}\n"
            "#\n"
            "# PostgreSQL administrator:\n"
            f"#   User: {credentials.admin_username}\n"
            f"#   Password: {credentials.admin_password}\n"
            "#\n"
            "# Development user:\n"
            f"#   User: {credentials.app_username}\n"
            f"#   Password: {credentials.app_password}\n"
            f"#   Database: {credentials.database_name}\n"
            "#\n"
            "# ASP.NET Core connection string:\n"
            f'# "{credentials.connection_string()}"\n'
            "#\n"
            "# psql command:\n"
            f"# PGPASSWORD='{credentials.app_password}' psql -h {POSTGRES_HOST} "
            f"-U {credentials.app_username} -d {credentials.database_name}\n"
        )

    def write_reference(self, credentials: Credentials):
        path = self.layout.credentials_file
        new_content = self.render_reference(credentials)
        current = self.filesystem.read_text(path)
        if current is not None and _strip_timestamp(current) == _strip_timestamp(new_content):
            self.logger.info("Credential reference %s is up to date", path)
            self.filesystem.set_permissions(path, PRIVATE_FILE_MODE)
            return
        self.filesystem.write_text(path, new_content, mode=PRIVATE_FILE_MODE)
        self.logger.info("Database credentials saved to %s", path)


def _strip_timestamp(content: str) -> str:
    return "\n".join(line for line in content.splitlines() if not line.startswith("# Generated:"))
