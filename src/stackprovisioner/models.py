"""Shared domain models for stackprovisioner."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .constants import (
    CREDENTIALS_FILE_NAME,
    PGPASS_FILE_NAME,
    POSTGRES_HOST,
    POSTGRES_PORT,
    TEST_PROJECT_DIR_NAME,
)


@dataclass(frozen=True)
class DistroDescriptor:
    """Distribution identity read once from os-release."""

    id: str
    version: str
    codename: str = ""

    def __str__(self) -> str:
        if self.codename:
            return f"{self.id} {self.version} ({self.codename})"
        return f"{self.id} {self.version}"


@dataclass(frozen=True)
class Credentials:
    """Database accounts generated or recovered for one run."""

    admin_username: str
    admin_password: str
    app_username: str
    app_password: str
    database_name: str

    def connection_string(self) -> str:
        return (
            f"Host={POSTGRES_HOST};Database={self.database_name};"
            f"Username={self.app_username};Password={self.app_password}"
        )


@dataclass(frozen=True)
class HostLayout:
    """Per-user locations touched by provisioning."""

    user: str
    home: Path

    @classmethod
    def for_current_user(cls, home: Optional[Path] = None) -> "HostLayout":
        user = os.environ.get("USER") or os.environ.get("LOGNAME") or Path.home().name
        return cls(user=user, home=home or Path.home())

    @property
    def shell_profile(self) -> Path:
        return self.home / ".bashrc"

    @property
    def pgpass_file(self) -> Path:
        return self.home / PGPASS_FILE_NAME

    @property
    def credentials_file(self) -> Path:
        return self.home / CREDENTIALS_FILE_NAME

    @property
    def dotnet_root(self) -> Path:
        return self.home / ".dotnet"

    @property
    def dotnet_tools_dir(self) -> Path:
        return self.dotnet_root / "tools"

    @property
    def test_project_root(self) -> Path:
        return self.home / TEST_PROJECT_DIR_NAME


@dataclass(frozen=True)
class ProjectResult:
    """Sample project produced by the scaffolder."""

    name: str
    path: Path
    used_template: bool


@dataclass
class ReconcileResult:
    """Outcome of converging one declared resource."""

    resource: str
    status: str
    actions: List[str] = field(default_factory=list)


def pgpass_line(database: str, user: str, password: str) -> str:
    return f"{POSTGRES_HOST}:{POSTGRES_PORT}:{database}:{user}:{password}"


def pgpass_key(database: str, user: str) -> str:
    return f"{POSTGRES_HOST}:{POSTGRES_PORT}:{database}:{user}:"
