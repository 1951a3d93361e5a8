"""Per-distribution package, service and firewall operations."""

from abc import ABCMeta, abstractmethod
from typing import Dict, List, Optional, Tuple

from stackprovisioner.constants import (
    MICROSOFT_PACKAGES_BASE_URL,
    POSTGRES_APT_URL,
    POSTGRES_KEY_URL,
    POSTGRES_KEYRING,
    POSTGRES_SOURCE_FILE,
    SUDOERS_FILE_MODE,
)
from stackprovisioner.errors import ProvisionerError
from stackprovisioner.errors_catalog import actionable_error
from stackprovisioner.models import DistroDescriptor
from stackprovisioner.services.resources import Action, ManagedFile, Resource

MICROSOFT_REPO_PACKAGE = "packages-microsoft-prod"
FIREWALL_PACKAGE = "ufw"


class Platform(metaclass=ABCMeta):
    """Capabilities that differ between supported distributions.

    One instance is selected at startup by :func:`select_platform`; call sites
    never branch on the distribution id themselves.
    """

    name = "generic"
    # ufw rule -> token that starts its line in ``ufw status`` once applied
    firewall_rules: Dict[str, str] = {}
    postgres_prerequisites: List[str] = []
    postgres_extra_packages: List[str] = []

    def __init__(self, distro: DistroDescriptor, command_runner, filesystem, download_service, logger, console):
        self.distro = distro
        self.command_runner = command_runner
        self.filesystem = filesystem
        self.download_service = download_service
        self.logger = logger
        self.console = console

    def _apt(self, args: List[str]):
        self.command_runner.sudo(["DEBIAN_FRONTEND=noninteractive", "apt-get"] + args)

    def update_index(self):
        self._apt(["update"])

    def upgrade_packages(self):
        self._apt(["upgrade", "-y"])

    def install_packages(self, packages: List[str]):
        self._apt(["install", "-y"] + list(packages))

    def missing_packages(self, packages: List[str]) -> List[str]:
        missing = []
        for package in packages:
            status = self.command_runner.output(["dpkg-query", "-W", "-f=${Status}", package])
            if status != "install ok installed":
                missing.append(package)
        return missing

    def install_deb(self, deb_path):
        self.command_runner.sudo(["dpkg", "-i", str(deb_path)])

    @abstractmethod
    def microsoft_repo_config(self) -> Tuple[str, Optional[str]]:
        """Returns the Microsoft repo package URL and an optional fallback warning."""

    def add_microsoft_repository(self):
        url, warning = self.microsoft_repo_config()
        if warning:
            self.logger.warning(warning)

        if not self.missing_packages([MICROSOFT_REPO_PACKAGE]):
            self.logger.info("Microsoft package repository already configured")
            return

        with self.download_service.temporary_download(
            url, "Downloading Microsoft repository configuration..."
        ) as deb_path:
            self.install_deb(deb_path)

    def release_codename(self) -> str:
        if self.distro.codename:
            return self.distro.codename
        codename = self.command_runner.output(["lsb_release", "-cs"])
        if not codename:
            raise ProvisionerError(f"Could not determine the release codename of {self.distro}.")
        return codename

    def postgres_repository(self) -> "AptRepository":
        source_line = (
            f"deb [signed-by={POSTGRES_KEYRING}] {POSTGRES_APT_URL} "
            f"{self.release_codename()}-pgdg main"
        )
        return AptRepository(
            self,
            name="pgdg",
            key_url=POSTGRES_KEY_URL,
            keyring=POSTGRES_KEYRING,
            source_file=POSTGRES_SOURCE_FILE,
            source_line=source_line,
        )

    def import_signing_key(self, key_url: str, keyring: str):
        with self.download_service.temporary_download(key_url, "Downloading signing key...") as key_path:
            self.command_runner.sudo(
                ["gpg", "--batch", "--yes", "--dearmor", "-o", keyring, str(key_path)]
            )

    def postgres_packages(self, version: str) -> List[str]:
        return [
            f"postgresql-{version}",
            f"postgresql-client-{version}",
            f"postgresql-contrib-{version}",
            f"postgresql-server-dev-{version}",
        ] + list(self.postgres_extra_packages)

    def service_status(self, service: str) -> Tuple[bool, bool]:
        active = self.command_runner.succeeds(["systemctl", "is-active", "--quiet", service])
        enabled = self.command_runner.succeeds(["systemctl", "is-enabled", "--quiet", service])
        return active, enabled

    def control_service(self, service: str, action: str):
        self.command_runner.sudo(["systemctl", action, service])

    def start_postgres_cluster(self, version: str):
        """Hook for distributions that manage clusters explicitly."""

    def restart_postgres(self, version: str):
        self.control_service("postgresql", "restart")

    def group_exists(self, group: str) -> bool:
        return self.command_runner.succeeds(["getent", "group", group])

    def user_groups(self, user: str) -> List[str]:
        return self.command_runner.output(["id", "-nG", user]).split()

    def ensure_group(self, group: str):
        self.command_runner.sudo(["groupadd", "-f", group])

    def add_user_to_group(self, user: str, group: str):
        self.command_runner.sudo(["usermod", "-a", "-G", group, user])

    def firewall(self) -> "Firewall":
        return Firewall(self, self.firewall_rules)

    def production_resources(self, user: str) -> List[Resource]:
        return []


class UbuntuPlatform(Platform):
    name = "ubuntu"
    supported_version = "24.04"
    firewall_rules = {
        "ssh": "22/tcp",
        "Nginx Full": "Nginx Full",
        "5000": "5000",
    }

    def microsoft_repo_config(self) -> Tuple[str, Optional[str]]:
        url = f"{MICROSOFT_PACKAGES_BASE_URL}/ubuntu/{self.supported_version}/packages-microsoft-prod.deb"
        if self.distro.version == self.supported_version:
            return url, None
        return url, (
            f"Untested Ubuntu version {self.distro.version or '<unknown>'}; "
            f"using the Ubuntu {self.supported_version} repository configuration."
        )


class DebianPlatform(Platform):
    name = "debian"
    repo_config_version = "12"
    firewall_rules = {
        "ssh/tcp": "22/tcp",
        "80/tcp": "80/tcp",
        "443/tcp": "443/tcp",
        "5000/tcp": "5000/tcp",
    }
    postgres_prerequisites = ["gnupg2"]
    postgres_extra_packages = ["postgresql-common"]

    def microsoft_repo_config(self) -> Tuple[str, Optional[str]]:
        url = f"{MICROSOFT_PACKAGES_BASE_URL}/debian/{self.repo_config_version}/packages-microsoft-prod.deb"
        if self.distro.version == "13" or self.distro.codename == "trixie":
            return url, (
                "Debian 13 detected; using the Debian 12 repository configuration "
                "until official support is published."
            )
        return url, None

    def start_postgres_cluster(self, version: str):
        self.command_runner.sudo(["pg_ctlcluster", version, "main", "start"], check=False, capture_output=True)

    def restart_postgres(self, version: str):
        self.command_runner.sudo(["pg_ctlcluster", version, "main", "restart"])

    def production_resources(self, user: str) -> List[Resource]:
        if self.command_runner.succeeds(["sudo", "-n", "true"]):
            return []
        self.logger.warning(
            "Passwordless sudo is unavailable; make sure your user belongs to the sudo group."
        )
        return [
            ManagedFile(
                self.filesystem,
                f"/etc/sudoers.d/{user}",
                f"{user} ALL=(ALL:ALL) ALL\n",
                mode=SUDOERS_FILE_MODE,
            )
        ]


_PLATFORMS = {
    UbuntuPlatform.name: UbuntuPlatform,
    DebianPlatform.name: DebianPlatform,
}


def select_platform(distro: DistroDescriptor, **kwargs) -> Platform:
    platform_cls = _PLATFORMS.get(distro.id)
    if platform_cls is None:
        raise ProvisionerError(actionable_error("unsupported_distro", distro=str(distro)))
    return platform_cls(distro, **kwargs)


class AptRepository(Resource):
    """A signed third-party APT source; the index is refreshed when it is added."""

    kind = "repository"

    def __init__(self, platform: Platform, name: str, key_url: str, keyring: str, source_file: str, source_line: str):
        super().__init__(name)
        self.platform = platform
        self.key_url = key_url
        self.keyring = keyring
        self.source_file = source_file
        self.source_line = source_line

    def observe(self) -> Tuple[bool, bool]:
        filesystem = self.platform.filesystem
        return (
            filesystem.exists(self.keyring, privileged=True),
            filesystem.exists(self.source_file, privileged=True),
        )

    def plan(self, observed) -> List[Action]:
        has_key, has_source = observed
        actions: List[Action] = []
        if not has_key:
            actions.append(
                Action(
                    f"import signing key into {self.keyring}",
                    lambda: self.platform.import_signing_key(self.key_url, self.keyring),
                )
            )
        if not has_source:
            actions.append(Action(f"add source {self.source_file}", self._add_source))
        return actions

    def _add_source(self):
        self.platform.filesystem.write_text(self.source_file, self.source_line + "\n", privileged=True)
        self.platform.update_index()


class Firewall(Resource):
    """ufw installed, enabled, and allowing the platform's rule set."""

    kind = "firewall"

    def __init__(self, platform: Platform, rules: Dict[str, str]):
        super().__init__(FIREWALL_PACKAGE)
        self.platform = platform
        self.rules = rules

    def observe(self) -> Tuple[bool, str]:
        installed = not self.platform.missing_packages([FIREWALL_PACKAGE])
        status = ""
        if installed:
            status = self.platform.command_runner.output(["sudo", "ufw", "status"])
        return installed, status

    def plan(self, observed) -> List[Action]:
        installed, status = observed
        runner = self.platform.command_runner
        actions: List[Action] = []

        if not installed:
            actions.append(
                Action("install ufw", lambda: self.platform.install_packages([FIREWALL_PACKAGE]))
            )
        if "Status: active" not in status:
            actions.append(Action("enable ufw", lambda: runner.sudo(["ufw", "--force", "enable"])))

        applied = [line.strip() for line in status.splitlines()]
        for rule, token in self.rules.items():
            if any(line.startswith(token) for line in applied):
                continue
            actions.append(
                Action(f"allow {rule}", lambda rule=rule: runner.sudo(["ufw", "allow", rule]))
            )
        return actions
