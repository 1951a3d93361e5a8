"""Sample F#/ASP.NET Core project generation."""

from pathlib import Path

from stackprovisioner.constants import (
    GIRAFFE_PROJECT_NAME,
    GIRAFFE_TEMPLATE_NAME,
    WEBAPI_PROJECT_NAME,
)
from stackprovisioner.errors import ProvisionerError
from stackprovisioner.errors_catalog import actionable_error
from stackprovisioner.models import HostLayout, ProjectResult
from stackprovisioner.services.tooling import is_template_available


class ScaffoldService:
    """Creates the test project and proves it builds."""

    def __init__(self, logger, console, command_runner, filesystem, layout: HostLayout):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.filesystem = filesystem
        self.layout = layout

    def _build(self, project_dir: Path) -> bool:
        result = self.command_runner.run(["dotnet", "build"], check=False, cwd=project_dir)
        return result.returncode == 0

    def _create_giraffe_project(self, root: Path) -> bool:
        self.logger.info("Creating a Giraffe project...")
        self.command_runner.run(
            ["dotnet", "new", GIRAFFE_TEMPLATE_NAME, "-n", GIRAFFE_PROJECT_NAME], cwd=root
        )
        return self._build(root / GIRAFFE_PROJECT_NAME)

    def _create_webapi_project(self, root: Path) -> ProjectResult:
        project_dir = root / WEBAPI_PROJECT_NAME
        self.command_runner.run(
            ["dotnet", "new", "webapi", "-lang", "F#", "-n", WEBAPI_PROJECT_NAME], cwd=root
        )
        self.logger.info("Adding Giraffe to the WebAPI project...")
        self.command_runner.run(["dotnet", "add", "package", "Giraffe"], cwd=project_dir)

        if not self._build(project_dir):
            raise ProvisionerError(actionable_error("project_build_failed", path=str(project_dir)))

        return ProjectResult(name=WEBAPI_PROJECT_NAME, path=project_dir, used_template=False)

    def create_test_project(self) -> ProjectResult:
        self.console.print("[blue]Creating the F#/ASP.NET Core test project...[/blue]")
        root = self.layout.test_project_root
        self.filesystem.cleanup_dir(root)
        root.mkdir(parents=True, exist_ok=True)

        if is_template_available(self.command_runner, GIRAFFE_TEMPLATE_NAME):
            if self._create_giraffe_project(root):
                result = ProjectResult(
                    name=GIRAFFE_PROJECT_NAME,
                    path=root / GIRAFFE_PROJECT_NAME,
                    used_template=True,
                )
                self.console.print(f"[green]Giraffe project built in {result.path}[/green]")
                return result

            self.logger.warning(
                "The Giraffe project failed to build; creating a standard WebAPI project instead"
            )
            self.filesystem.cleanup_dir(root / GIRAFFE_PROJECT_NAME)
        else:
            self.logger.warning(
                "Giraffe template not available; creating a WebAPI project with Giraffe added"
            )

        result = self._create_webapi_project(root)
        self.console.print(f"[green]WebAPI project with Giraffe built in {result.path}[/green]")
        return result
