"""Installation of the .NET SDK through the bootstrap script or the package repository."""

from typing import List

from packaging import version

from stackprovisioner.constants import (
    DOTNET_CHANNEL,
    DOTNET_INSTALL_SCRIPT_URL,
    DOTNET_MIN_MAJOR,
    DOTNET_REPO_PACKAGES,
    FSHARP_TEMPLATES_PACKAGE,
)
from stackprovisioner.errors import ProvisionerError
from stackprovisioner.errors_catalog import actionable_error
from stackprovisioner.models import HostLayout
from stackprovisioner.services.resources import LineInFile, Resource


class RuntimeService:
    """Installs and verifies the .NET SDK."""

    def __init__(self, logger, console, command_runner, filesystem, download_service, platform, layout: HostLayout):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.filesystem = filesystem
        self.download_service = download_service
        self.platform = platform
        self.layout = layout

    def profile_resources(self) -> List[Resource]:
        profile = self.layout.shell_profile
        return [
            LineInFile(self.filesystem, profile, 'export PATH="$HOME/.dotnet:$PATH"'),
            LineInFile(self.filesystem, profile, 'export DOTNET_ROOT="$HOME/.dotnet"'),
        ]

    def install_with_bootstrap(self) -> str:
        self.console.print("[blue]Installing .NET with the official install script...[/blue]")
        with self.download_service.temporary_download(
            DOTNET_INSTALL_SCRIPT_URL, "Downloading dotnet-install.sh..."
        ) as script_path:
            script_path.chmod(0o755)
            self.command_runner.run(
                [
                    "bash",
                    str(script_path),
                    "--channel",
                    DOTNET_CHANNEL,
                    "--install-dir",
                    str(self.layout.dotnet_root),
                ]
            )

        self.command_runner.prepend_path(self.layout.dotnet_root)
        dotnet_binary = str(self.layout.dotnet_root / "dotnet")
        installed = self.verify([dotnet_binary, "--version"])

        self.logger.info("Installing F# templates...")
        self.command_runner.run(
            [dotnet_binary, "new", "install", FSHARP_TEMPLATES_PACKAGE],
            env={"DOTNET_ROOT": str(self.layout.dotnet_root)},
        )
        return installed

    def install_with_repository(self) -> str:
        self.console.print("[blue]Installing .NET from the Microsoft package repository...[/blue]")
        self.platform.add_microsoft_repository()
        self.platform.update_index()
        self.platform.install_packages(DOTNET_REPO_PACKAGES)
        return self.verify(["dotnet", "--version"])

    def verify(self, cmd: List[str]) -> str:
        """Runs the version probe; failure aborts the run."""
        try:
            result = self.command_runner.run(cmd, capture_output=True)
        except ProvisionerError as exc:
            raise ProvisionerError(
                actionable_error("dotnet_verification_failed", command=" ".join(cmd))
            ) from exc

        installed = (result.stdout or "").strip()
        if not installed:
            raise ProvisionerError(
                actionable_error("dotnet_verification_failed", command=" ".join(cmd))
            )

        self.check_minimum_version(installed)
        self.console.print(f"[green].NET installed: {installed}[/green]")
        self.logger.info(".NET SDK version %s", installed)
        return installed

    def check_minimum_version(self, installed: str) -> bool:
        try:
            parsed = version.parse(installed)
        except version.InvalidVersion:
            self.logger.warning("Could not parse .NET SDK version '%s'", installed)
            return False

        if parsed.major < DOTNET_MIN_MAJOR:
            self.logger.warning(
                ".NET SDK %s is older than the supported %s.0 line", installed, DOTNET_MIN_MAJOR
            )
            return False
        return True
