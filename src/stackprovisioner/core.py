import logging
import os
import signal
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from rich.console import Console

from . import __version__
from .constants import BASE_PACKAGES, DEFAULT_DATABASE_NAME, POSTGRES_VERSION
from .errors import ProvisionerError
from .models import Credentials, DistroDescriptor, HostLayout, ProjectResult, ReconcileResult
from .services.command_runner import CommandRunner
from .services.credentials import CredentialService
from .services.database import DatabaseService
from .services.download import DownloadService
from .services.environment import EnvironmentService
from .services.filesystem import FileSystemService
from .services.manifest import ManifestService
from .services.platforms import Platform, select_platform
from .services.production import ProductionService
from .services.report import ReportService
from .services.resources import AptPackages, Reconciler, Resource
from .services.runtime import RuntimeService
from .services.scaffold import ScaffoldService
from .services.tooling import ToolingService

console = Console()
logger = logging.getLogger("stackprovisioner")

DEFAULT_MANIFEST_FILE = os.path.join(
    "~", ".local", "state", "stackprovisioner", "run-manifest.json"
)


class StackProvisioner:
    """Runs the provisioning pipeline from environment probe to summary."""

    def __init__(
        self,
        production: bool = False,
        repo_method: bool = False,
        rotate_credentials: bool = False,
        upgrade_packages: bool = True,
        verbose: bool = False,
        manifest_file: Optional[str] = None,
        database_name: str = DEFAULT_DATABASE_NAME,
        postgres_version: str = POSTGRES_VERSION,
        download_timeout: float = 60.0,
        layout: Optional[HostLayout] = None,
        environment_service: Optional[EnvironmentService] = None,
    ):
        self.production = production
        self.repo_method = repo_method
        self.credential_policy = "rotate" if rotate_credentials else "preserve"
        self.upgrade_packages = upgrade_packages
        self.verbose = verbose
        self.database_name = database_name
        self.postgres_version = str(postgres_version)

        self.layout = layout or HostLayout.for_current_user()
        self.manifest_file = os.path.expanduser(manifest_file or DEFAULT_MANIFEST_FILE)
        self.manifest_service = ManifestService(manifest_file=self.manifest_file, logger=logger)
        self.current_step_name: Optional[str] = None

        self.command_runner = CommandRunner(logger=logger)
        self.filesystem_service = FileSystemService(
            logger=logger, console=console, command_runner=self.command_runner
        )
        self.download_service = DownloadService(
            logger=logger,
            console=console,
            requests_module=requests,
            timeout=download_timeout,
        )
        self.environment_service = environment_service or EnvironmentService(logger=logger)
        self.reconciler = Reconciler(logger=logger, console=console)
        self.credential_service = CredentialService(
            logger=logger,
            filesystem=self.filesystem_service,
            layout=self.layout,
            policy=self.credential_policy,
        )
        self.tooling_service = ToolingService(
            logger=logger,
            console=console,
            command_runner=self.command_runner,
            filesystem=self.filesystem_service,
            layout=self.layout,
        )
        self.scaffold_service = ScaffoldService(
            logger=logger,
            console=console,
            command_runner=self.command_runner,
            filesystem=self.filesystem_service,
            layout=self.layout,
        )

        self.distro: Optional[DistroDescriptor] = None
        self.platform: Optional[Platform] = None
        self.runtime_service: Optional[RuntimeService] = None
        self.database_service: Optional[DatabaseService] = None
        self.production_service: Optional[ProductionService] = None
        self.report_service: Optional[ReportService] = None

    def _build_metadata(self) -> Dict[str, Any]:
        return {
            "version": __version__,
            "user": self.layout.user,
            "production": self.production,
            "install_method": "repository" if self.repo_method else "bootstrap",
            "credential_policy": self.credential_policy,
            "database_name": self.database_name,
            "postgres_version": self.postgres_version,
        }

    def _run_step(self, name: str, callback, *args, **kwargs):
        self.manifest_service.step_started(name)
        self.current_step_name = name

        try:
            result = callback(*args, **kwargs)
        except BaseException as exc:
            self.manifest_service.step_finished(
                name,
                "failed",
                resources=self.reconciler.drain_results(),
                error=str(exc) or exc.__class__.__name__,
            )
            raise

        self.manifest_service.step_finished(
            name, "success", resources=self.reconciler.drain_results()
        )
        self.current_step_name = None
        return result

    def _reconcile(self, resources: List[Resource]) -> List[ReconcileResult]:
        return self.reconciler.reconcile_all(resources)

    @staticmethod
    def _changed(results: List[ReconcileResult]) -> bool:
        return any(result.status == "changed" for result in results)

    def _build_platform_services(self, platform: Platform):
        self.platform = platform
        self.runtime_service = RuntimeService(
            logger=logger,
            console=console,
            command_runner=self.command_runner,
            filesystem=self.filesystem_service,
            download_service=self.download_service,
            platform=platform,
            layout=self.layout,
        )
        self.database_service = DatabaseService(
            logger=logger,
            console=console,
            command_runner=self.command_runner,
            filesystem=self.filesystem_service,
            platform=platform,
            postgres_version=self.postgres_version,
        )
        self.production_service = ProductionService(
            logger=logger,
            console=console,
            command_runner=self.command_runner,
            filesystem=self.filesystem_service,
            platform=platform,
            layout=self.layout,
        )
        self.report_service = ReportService(
            console=console,
            command_runner=self.command_runner,
            database_service=self.database_service,
            layout=self.layout,
        )

    def probe_environment(self) -> DistroDescriptor:
        distro = self.environment_service.detect_distro()
        self.environment_service.check_privileges()
        platform = select_platform(
            distro,
            command_runner=self.command_runner,
            filesystem=self.filesystem_service,
            download_service=self.download_service,
            logger=logger,
            console=console,
        )
        self.distro = distro
        self._build_platform_services(platform)
        console.print(f"[green]Distribution: {distro}[/green]")
        return distro

    def install_base_packages(self):
        console.print("[blue]Updating the system...[/blue]")
        self.platform.update_index()
        if self.upgrade_packages:
            self.platform.upgrade_packages()
        self._reconcile([AptPackages(self.platform, BASE_PACKAGES, label="base packages")])

    def install_runtime(self) -> str:
        if self.repo_method:
            return self.runtime_service.install_with_repository()

        installed = self.runtime_service.install_with_bootstrap()
        self._reconcile(self.runtime_service.profile_resources())
        return installed

    def install_dev_tools(self):
        console.print("[blue]Installing F# development tools...[/blue]")
        self.tooling_service.activate_tools_path()
        self._reconcile(self.tooling_service.tool_resources())
        self._reconcile(self.tooling_service.profile_resources())

    def install_templates(self):
        results = self._reconcile(self.tooling_service.template_resources())
        if self._changed(results):
            self.tooling_service.verify_templates()

    def provision_database(self) -> Credentials:
        console.print(f"[blue]Provisioning PostgreSQL {self.postgres_version}...[/blue]")
        database = self.database_service

        if database.is_installed():
            logger.info("PostgreSQL is already installed and active")
        else:
            self._reconcile(database.install_resources())

        self._reconcile(database.service_resources())
        self.platform.start_postgres_cluster(self.postgres_version)

        credentials = self.credential_service.obtain(self.database_name)
        self._reconcile(self.credential_service.pgpass_resources(credentials))
        self.credential_service.write_reference(credentials)

        self._reconcile(database.admin_resources(credentials))
        if self._changed(self._reconcile(database.configuration_resources(credentials))):
            self.platform.restart_postgres(self.postgres_version)

        self._reconcile(database.account_resources(credentials))
        self._reconcile(database.grant_resources(credentials))

        database.verify_server()
        database.verify_app_login(credentials)
        return credentials

    def harden_production(self):
        console.print("[blue]Applying production configuration...[/blue]")
        production = self.production_service
        self._reconcile(production.environment_resources())
        production.check_systemd()
        # the "Nginx Full" ufw profile only exists once nginx is installed
        self._reconcile(production.proxy_resources())
        logger.info("To enable the site: %s", production.activation_hint())
        self._reconcile(production.access_resources())
        self._reconcile(production.tuning_resources())

    def scaffold_project(self) -> ProjectResult:
        return self.scaffold_service.create_test_project()

    def report(self, credentials: Credentials, project: ProjectResult):
        console.print("[bold green]Installation completed successfully![/bold green]")
        self.report_service.show(
            credentials,
            project,
            production=self.production,
            nginx_hint=self.production_service.activation_hint() if self.production else None,
        )

    @staticmethod
    def _handle_termination(signum, _frame):
        raise KeyboardInterrupt(f"Received signal {signum}")

    def _install_signal_handlers(self):
        try:
            return signal.signal(signal.SIGTERM, self._handle_termination)
        except ValueError:
            # Not on the main thread; interruption then only arrives as SIGINT.
            return None

    def run(self) -> int:
        exit_code = 1
        manifest_status = "failed"
        manifest_error: Optional[str] = None
        previous_handler = self._install_signal_handlers()

        try:
            console.print(f"[bold blue]=== stackprovisioner v{__version__} ===[/bold blue]")
            console.print("F#/ASP.NET Core + Giraffe + PostgreSQL for Ubuntu 24.04 and Debian 13")
            logger.info("Starting provisioning...")

            self.manifest_service.start_run(metadata=self._build_metadata())

            self._run_step("probe_environment", self.probe_environment)
            self._run_step("install_base_packages", self.install_base_packages)
            self._run_step("install_runtime", self.install_runtime)
            self._run_step("install_dev_tools", self.install_dev_tools)
            self._run_step("install_templates", self.install_templates)
            credentials = self._run_step("provision_database", self.provision_database)

            if self.production:
                self._run_step("harden_production", self.harden_production)

            project = self._run_step("scaffold_project", self.scaffold_project)
            self._run_step("report", self.report, credentials, project)

            self.manifest_service.add_artifact("credentials_file", str(self.layout.credentials_file))
            self.manifest_service.add_artifact("pgpass_file", str(self.layout.pgpass_file))
            self.manifest_service.add_artifact("project_dir", str(Path(project.path)))
            manifest_status = "success"
            exit_code = 0
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Provisioning interrupted.[/bold red]")
            logger.error("Provisioning interrupted; completed steps are left in place")
            manifest_status = "aborted"
            manifest_error = "Provisioning interrupted."
            return exit_code
        except ProvisionerError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            manifest_error = str(exc)
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            manifest_error = str(exc)
            return exit_code
        finally:
            self.manifest_service.finalize(manifest_status, error=manifest_error)
            if previous_handler is not None:
                signal.signal(signal.SIGTERM, previous_handler)
