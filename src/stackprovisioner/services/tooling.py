"""F# global tools and project templates."""

from typing import List

from stackprovisioner.constants import (
    DOTNET_GLOBAL_TOOLS,
    GIRAFFE_TEMPLATE_NAME,
    GIRAFFE_TEMPLATE_PACKAGE,
)
from stackprovisioner.models import HostLayout
from stackprovisioner.services.resources import Action, LineInFile, Resource


class DotnetTool(Resource):
    """A .NET global tool, matched by name in ``dotnet tool list -g``."""

    kind = "dotnet-tool"

    def __init__(self, command_runner, tool: str):
        super().__init__(tool)
        self.command_runner = command_runner
        self.tool = tool

    def observe(self) -> bool:
        listing = self.command_runner.output(["dotnet", "tool", "list", "-g"]).lower()
        return self.tool.lower() in listing

    def plan(self, observed: bool) -> List[Action]:
        if observed:
            return []
        return [
            Action(
                f"install global tool {self.tool}",
                lambda: self.command_runner.run(["dotnet", "tool", "install", "-g", self.tool]),
            )
        ]


class DotnetTemplate(Resource):
    """A ``dotnet new`` template pack, matched by short name in ``dotnet new list``."""

    kind = "dotnet-template"

    def __init__(self, command_runner, short_name: str, package: str):
        super().__init__(short_name)
        self.command_runner = command_runner
        self.short_name = short_name
        self.package = package

    def observe(self) -> bool:
        return is_template_available(self.command_runner, self.short_name)

    def plan(self, observed: bool) -> List[Action]:
        if observed:
            return []
        return [
            Action(
                f"install template {self.package}",
                lambda: self.command_runner.run(["dotnet", "new", "install", self.package]),
            )
        ]


def is_template_available(command_runner, short_name: str) -> bool:
    listing = command_runner.output(["dotnet", "new", "list"]).lower()
    return short_name.lower() in listing


class ToolingService:
    """Declares the developer tooling expected on the host."""

    def __init__(self, logger, console, command_runner, filesystem, layout: HostLayout):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.filesystem = filesystem
        self.layout = layout

    def tool_resources(self) -> List[Resource]:
        return [DotnetTool(self.command_runner, tool) for tool in DOTNET_GLOBAL_TOOLS]

    def profile_resources(self) -> List[Resource]:
        return [
            LineInFile(
                self.filesystem,
                self.layout.shell_profile,
                'export PATH="$HOME/.dotnet/tools:$PATH"',
            )
        ]

    def activate_tools_path(self):
        self.command_runner.prepend_path(self.layout.dotnet_tools_dir)

    def template_resources(self) -> List[Resource]:
        return [DotnetTemplate(self.command_runner, GIRAFFE_TEMPLATE_NAME, GIRAFFE_TEMPLATE_PACKAGE)]

    def verify_templates(self) -> bool:
        if is_template_available(self.command_runner, GIRAFFE_TEMPLATE_NAME):
            self.console.print("[green]Giraffe templates available.[/green]")
            return True

        self.logger.warning("Giraffe templates do not appear to be installed correctly")
        self.logger.warning(
            "You can install them manually with: dotnet new install giraffe-template"
        )
        return False
