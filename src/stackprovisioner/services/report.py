"""Final installation summary."""

from typing import Optional

from stackprovisioner.models import Credentials, HostLayout, ProjectResult

NOT_AVAILABLE = "Not available"


class ReportService:
    """Prints what was installed and where the credentials live."""

    def __init__(self, console, command_runner, database_service, layout: HostLayout):
        self.console = console
        self.command_runner = command_runner
        self.database_service = database_service
        self.layout = layout

    def collect_versions(self) -> dict:
        fsc_help = self.command_runner.output(["dotnet", "fsc", "--help"])
        return {
            "dotnet": self.command_runner.output(["dotnet", "--version"]) or NOT_AVAILABLE,
            "fsharp": fsc_help.splitlines()[0] if fsc_help else NOT_AVAILABLE,
            "postgresql": self.database_service.query("SELECT version();") or NOT_AVAILABLE,
        }

    def show(
        self,
        credentials: Credentials,
        project: Optional[ProjectResult],
        production: bool,
        nginx_hint: Optional[str] = None,
    ):
        versions = self.collect_versions()
        project_path = project.path if project else self.layout.test_project_root
        user = credentials.app_username
        database = credentials.database_name
        credentials_file = self.layout.credentials_file

        self.console.print()
        self.console.print("[bold blue]=== Installation summary ===[/bold blue]")
        self.console.print(f"- .NET version: {versions['dotnet']}")
        self.console.print(f"- F# compiler: {versions['fsharp']}")
        self.console.print(f"- Test project: {project_path}")
        self.console.print(f"- PostgreSQL: {versions['postgresql']}")
        self.console.print(f"- Test database: {database} (user: {user})")
        self.console.print(f"- Connection details: {credentials_file}")
        self.console.print(f"- Password file: {self.layout.pgpass_file}")
        self.console.print()
        self.console.print("[yellow]To load the environment variables:[/yellow]")
        self.console.print(f"source {self.layout.shell_profile}")
        self.console.print()
        self.console.print("[yellow]To try the installation:[/yellow]")
        self.console.print(f"cd {project_path}")
        self.console.print("dotnet run")
        self.console.print()
        self.console.print("[yellow]To start a new F#/ASP.NET Core project with Giraffe and PostgreSQL:[/yellow]")
        self.console.print("dotnet new giraffe -n MyGiraffeProject")
        self.console.print("cd MyGiraffeProject")
        self.console.print("dotnet add package Npgsql.EntityFrameworkCore.PostgreSQL")
        self.console.print()
        self.console.print("[yellow]PostgreSQL connection:[/yellow]")
        self.console.print(f"psql -h localhost -U {user} -d {database}")
        self.console.print(f"# password in {credentials_file}")

        if production:
            self.console.print()
            self.console.print("[bold blue]=== Production configuration ===[/bold blue]")
            self.console.print("- Environment variables configured in /etc/environment")
            self.console.print("- nginx installed and configured")
            self.console.print("- UFW firewall enabled")
            self.console.print("- Open ports: SSH, HTTP/HTTPS (80/443), ASP.NET (5000)")
            if nginx_hint:
                self.console.print(f"- Enable the site with: {nginx_hint}")
