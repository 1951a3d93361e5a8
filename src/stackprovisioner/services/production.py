"""Production hardening: environment, firewall, reverse proxy and kernel tuning."""

from typing import List

from stackprovisioner.constants import (
    LIMITS_CONTENT,
    LIMITS_FILE,
    NGINX_SITE_CONTENT,
    NGINX_SITE_FILE,
    NGINX_SITES_ENABLED_DIR,
    PRODUCTION_ENVIRONMENT,
    PRODUCTION_ENVIRONMENT_FILE,
    SYSCTL_CONTENT,
    SYSCTL_FILE,
    WEB_GROUP,
)
from stackprovisioner.models import HostLayout
from stackprovisioner.services.resources import (
    AptPackages,
    GroupMembership,
    LineInFile,
    ManagedFile,
    Resource,
    ServiceState,
)


class ProductionService:
    """Declares the extra state of a production host."""

    def __init__(self, logger, console, command_runner, filesystem, platform, layout: HostLayout):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.filesystem = filesystem
        self.platform = platform
        self.layout = layout

    def environment_resources(self) -> List[Resource]:
        return [
            LineInFile(
                self.filesystem,
                PRODUCTION_ENVIRONMENT_FILE,
                f"{name}={value}",
                key=f"{name}=",
                privileged=True,
            )
            for name, value in PRODUCTION_ENVIRONMENT.items()
        ]

    def access_resources(self) -> List[Resource]:
        return [
            self.platform.firewall(),
            GroupMembership(self.platform, self.layout.user, WEB_GROUP),
        ] + self.platform.production_resources(self.layout.user)

    def check_systemd(self):
        if not self.command_runner.succeeds(["systemctl", "--version"]):
            self.logger.warning("systemd not detected, installing it...")
            self.platform.install_packages(["systemd"])

        if not self.command_runner.succeeds(["systemctl", "is-system-running", "--quiet"]):
            self.logger.warning("systemd is not fully initialized; a reboot may be required")

    def proxy_resources(self) -> List[Resource]:
        return [
            AptPackages(self.platform, ["nginx"]),
            ServiceState(self.platform, "nginx"),
            ManagedFile(self.filesystem, NGINX_SITE_FILE, NGINX_SITE_CONTENT),
        ]

    def tuning_resources(self) -> List[Resource]:
        return [
            ManagedFile(self.filesystem, LIMITS_FILE, LIMITS_CONTENT),
            ManagedFile(self.filesystem, SYSCTL_FILE, SYSCTL_CONTENT),
        ]

    def activation_hint(self) -> str:
        return f"sudo ln -s {NGINX_SITE_FILE} {NGINX_SITES_ENABLED_DIR}"
