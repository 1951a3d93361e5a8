import json
import signal
import subprocess
import tempfile
from pathlib import Path

import pytest

import stackprovisioner.core as core_module
from stackprovisioner.constants import (
    DOTNET_REPO_PACKAGES,
    LIMITS_FILE,
    NGINX_SITE_FILE,
    PG_HBA_MARKER,
    PRODUCTION_ENVIRONMENT,
    SYSCTL_FILE,
)
from stackprovisioner.core import ProvisionerError, StackProvisioner
from stackprovisioner.models import HostLayout
from stackprovisioner.services.command_runner import CommandRunner
from stackprovisioner.services.environment import EnvironmentService
from stackprovisioner.services.platforms import UbuntuPlatform

UBUNTU_OS_RELEASE = 'ID=ubuntu\nVERSION_ID="24.04"\nVERSION_CODENAME=noble\n'


class FakeResponse:
    headers = {"Content-Length": "12"}

    def raise_for_status(self):
        return None

    def iter_content(self, chunk_size=8192):
        yield b"#!/bin/bash\n"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeRequestsModule:
    class RequestException(Exception):
        pass

    def get(self, *_args, **_kwargs):
        return FakeResponse()


class FakeHost:
    """Answers external commands the way a provisioned Ubuntu host would.

    Packages named in ``missing`` stay uninstalled until apt-get installs them.
    Privileged reads and writes go to ``files``, and ufw keeps its rule list.
    """

    def __init__(self, interrupt_on=None, missing=()):
        self.interrupt_on = interrupt_on
        self.missing = set(missing)
        self.files = {
            "/etc/postgresql/17/main/postgresql.conf": "listen_addresses = '*'\n",
            "/etc/postgresql/17/main/pg_hba.conf": f"local all postgres peer\n{PG_HBA_MARKER}\n",
        }
        self.groups = {"dev", "sudo"}
        self.firewall_active = False
        self.firewall_rules = []
        self.commands = []

    def run(self, _runner, cmd, check=True, capture_output=False, input_text=None, **_kwargs):
        parts = [str(part) for part in cmd]
        command = " ".join(parts)
        self.commands.append(command)
        if self.interrupt_on and command.startswith(self.interrupt_on):
            raise KeyboardInterrupt()

        returncode, stdout, stderr = self._answer(parts, command, input_text)
        if returncode != 0 and check:
            raise ProvisionerError(f"Command failed ({returncode}): {command}\n{stderr}")
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)

    def _answer(self, parts, command, input_text):
        if parts[0] == "dpkg-query":
            if parts[-1] in self.missing:
                return 1, "", f"dpkg-query: no packages found matching {parts[-1]}"
            return 0, "install ok installed", ""
        if parts[:4] == ["sudo", "DEBIAN_FRONTEND=noninteractive", "apt-get", "install"]:
            self.missing.difference_update(parts[5:])
            return 0, "", ""
        if parts[:2] == ["sudo", "tee"]:
            self.files[parts[2]] = input_text or ""
            return 0, "", ""
        if parts[:2] == ["sudo", "cat"]:
            if parts[2] in self.files:
                return 0, self.files[parts[2]], ""
            return 1, "", f"cat: {parts[2]}: No such file or directory"
        if parts[:3] == ["sudo", "test", "-e"]:
            return (0 if parts[3] in self.files else 1), "", ""
        if parts[:2] == ["sudo", "ufw"]:
            return self._ufw(parts[2:])
        if parts[:2] == ["sudo", "usermod"]:
            self.groups.add(parts[-2])
            return 0, "", ""
        if parts[:2] == ["id", "-nG"]:
            return 0, " ".join(sorted(self.groups)), ""

        stdout = ""
        if command.endswith("--version"):
            stdout = "8.0.404"
        elif "tool list" in command:
            stdout = "fsautocomplete fantomas fsharp-analyzers"
        elif "new list" in command:
            stdout = "giraffe"
        elif "SELECT version();" in command:
            stdout = "PostgreSQL 17.2"
        elif "-tAc" in command:
            stdout = "1"
        return 0, stdout, ""

    def _ufw(self, args):
        if args == ["status"]:
            if not self.firewall_active:
                return 0, "Status: inactive", ""
            lines = ["Status: active", "", "To                         Action      From"]
            lines += [
                f"{UbuntuPlatform.firewall_rules[rule]:<27}ALLOW       Anywhere"
                for rule in self.firewall_rules
            ]
            return 0, "\n".join(lines), ""
        if args == ["--force", "enable"]:
            self.firewall_active = True
            return 0, "Firewall is active and enabled on system startup", ""
        if args[0] == "allow":
            if args[1] == "Nginx Full" and "nginx" in self.missing:
                return 1, "", "ERROR: Could not find a profile matching 'Nginx Full'"
            self.firewall_rules.append(args[1])
            return 0, "Rule added", ""
        return 0, "", ""


@pytest.fixture
def isolated_tempdir(tmp_path, monkeypatch):
    temp_root = tmp_path / "tmp"
    temp_root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(temp_root))
    return temp_root


def build_provisioner(tmp_path, os_release=UBUNTU_OS_RELEASE, euid=1000, **kwargs):
    os_release_file = tmp_path / "os-release"
    os_release_file.write_text(os_release, encoding="utf-8")
    home = tmp_path / "home"
    home.mkdir(exist_ok=True)

    provisioner = StackProvisioner(
        manifest_file=str(tmp_path / "run-manifest.json"),
        layout=HostLayout(user="dev", home=home),
        environment_service=EnvironmentService(
            logger=core_module.logger,
            os_release_path=str(os_release_file),
            geteuid=lambda: euid,
            which=lambda _name: "/usr/bin/sudo",
        ),
        **kwargs,
    )
    provisioner.download_service.requests = FakeRequestsModule()
    return provisioner


def install_fake_host(monkeypatch, host):
    monkeypatch.setattr(CommandRunner, "run", lambda runner, cmd, **kwargs: host.run(runner, cmd, **kwargs))
    monkeypatch.setattr(CommandRunner, "which", lambda runner, name: True)


def read_manifest(tmp_path):
    return json.loads((tmp_path / "run-manifest.json").read_text(encoding="utf-8"))


def test_running_as_root_fails_before_any_package_command(tmp_path, monkeypatch):
    host = FakeHost()
    install_fake_host(monkeypatch, host)

    exit_code = build_provisioner(tmp_path, euid=0).run()

    assert exit_code == 1
    assert host.commands == []
    manifest = read_manifest(tmp_path)
    assert manifest["status"] == "failed"
    assert "must not be run as root" in manifest["error"]


def test_unsupported_distribution_fails_at_probe(tmp_path, monkeypatch):
    host = FakeHost()
    install_fake_host(monkeypatch, host)

    exit_code = build_provisioner(tmp_path, os_release='ID=fedora\nVERSION_ID="40"\n').run()

    assert exit_code == 1
    assert host.commands == []
    manifest = read_manifest(tmp_path)
    assert [step["name"] for step in manifest["steps"]] == ["probe_environment"]
    assert manifest["steps"][0]["status"] == "failed"


def test_full_run_on_provisioned_host_succeeds(tmp_path, monkeypatch, isolated_tempdir):
    host = FakeHost()
    install_fake_host(monkeypatch, host)

    exit_code = build_provisioner(tmp_path).run()

    assert exit_code == 0
    assert "sudo DEBIAN_FRONTEND=noninteractive apt-get update" in host.commands
    assert not any("apt-get install" in command for command in host.commands)
    assert not any("restart" in command for command in host.commands)

    manifest = read_manifest(tmp_path)
    assert manifest["status"] == "success"
    assert [step["name"] for step in manifest["steps"]] == [
        "probe_environment",
        "install_base_packages",
        "install_runtime",
        "install_dev_tools",
        "install_templates",
        "provision_database",
        "scaffold_project",
        "report",
    ]

    home = tmp_path / "home"
    bashrc = (home / ".bashrc").read_text(encoding="utf-8")
    assert bashrc.count('export DOTNET_ROOT="$HOME/.dotnet"') == 1
    assert (home / ".pgpass").exists()
    assert (home / ".fsharp-aspnet-credentials").exists()
    assert list(isolated_tempdir.iterdir()) == []


def test_rerun_keeps_profile_and_password_file_unique(tmp_path, monkeypatch, isolated_tempdir):
    install_fake_host(monkeypatch, FakeHost())

    assert build_provisioner(tmp_path).run() == 0
    pgpass_first = (tmp_path / "home" / ".pgpass").read_text(encoding="utf-8")
    assert build_provisioner(tmp_path).run() == 0

    home = tmp_path / "home"
    assert (home / ".pgpass").read_text(encoding="utf-8") == pgpass_first
    bashrc_lines = (home / ".bashrc").read_text(encoding="utf-8").splitlines()
    assert len(bashrc_lines) == len(set(bashrc_lines))


def test_interruption_removes_temporary_download(tmp_path, monkeypatch, isolated_tempdir):
    host = FakeHost(interrupt_on="bash ")
    install_fake_host(monkeypatch, host)

    exit_code = build_provisioner(tmp_path).run()

    assert exit_code == 1
    assert list(isolated_tempdir.iterdir()) == []
    manifest = read_manifest(tmp_path)
    assert manifest["status"] == "aborted"
    assert manifest["steps"][-1]["name"] == "install_runtime"
    assert manifest["steps"][-1]["status"] == "failed"


def test_interruption_keeps_completed_steps(tmp_path, monkeypatch, isolated_tempdir):
    host = FakeHost(interrupt_on="sudo -u postgres psql")
    install_fake_host(monkeypatch, host)

    exit_code = build_provisioner(tmp_path).run()

    assert exit_code == 1
    manifest = read_manifest(tmp_path)
    assert manifest["status"] == "aborted"
    assert manifest["steps"][-1]["name"] == "provision_database"
    assert manifest["steps"][-1]["status"] == "failed"
    assert all(step["status"] == "success" for step in manifest["steps"][:-1])

    bashrc = (tmp_path / "home" / ".bashrc").read_text(encoding="utf-8")
    assert 'export DOTNET_ROOT="$HOME/.dotnet"' in bashrc
    assert 'export PATH="$HOME/.dotnet:$PATH"' in bashrc


def test_production_run_on_clean_host_installs_nginx_before_firewall_rules(
    tmp_path, monkeypatch, isolated_tempdir
):
    host = FakeHost(missing={"ufw", "nginx"})
    install_fake_host(monkeypatch, host)

    exit_code = build_provisioner(tmp_path, production=True).run()

    assert exit_code == 0
    nginx_install = host.commands.index("sudo DEBIAN_FRONTEND=noninteractive apt-get install -y nginx")
    assert nginx_install < host.commands.index("sudo ufw allow Nginx Full")
    assert host.firewall_active is True
    assert host.firewall_rules == ["ssh", "Nginx Full", "5000"]
    assert "www-data" in host.groups

    manifest = read_manifest(tmp_path)
    assert manifest["status"] == "success"
    assert "harden_production" in [step["name"] for step in manifest["steps"]]


def test_production_rerun_is_idempotent(tmp_path, monkeypatch, isolated_tempdir):
    host = FakeHost(missing={"ufw", "nginx"})
    install_fake_host(monkeypatch, host)

    assert build_provisioner(tmp_path, production=True).run() == 0
    first_run_count = len(host.commands)
    files_after_first_run = dict(host.files)
    assert build_provisioner(tmp_path, production=True).run() == 0
    second_run = host.commands[first_run_count:]

    assert host.files == files_after_first_run
    assert not any(command.startswith("sudo tee") for command in second_run)
    assert not any("apt-get install" in command for command in second_run)
    assert not any(command.startswith(("sudo ufw allow", "sudo usermod")) for command in second_run)
    for path in (NGINX_SITE_FILE, LIMITS_FILE, SYSCTL_FILE):
        assert host.commands.count(f"sudo tee {path}") == 1

    assert host.files["/etc/environment"].splitlines() == [
        f"{name}={value}" for name, value in PRODUCTION_ENVIRONMENT.items()
    ]


def test_repo_method_run_succeeds(tmp_path, monkeypatch, isolated_tempdir):
    host = FakeHost(missing={"packages-microsoft-prod"} | set(DOTNET_REPO_PACKAGES))
    install_fake_host(monkeypatch, host)

    exit_code = build_provisioner(tmp_path, repo_method=True).run()

    assert exit_code == 0
    assert any(command.startswith("sudo dpkg -i ") for command in host.commands)
    repo_install = f"sudo DEBIAN_FRONTEND=noninteractive apt-get install -y {' '.join(DOTNET_REPO_PACKAGES)}"
    assert repo_install in host.commands
    assert "dotnet --version" in host.commands
    assert not any(command.startswith("bash ") for command in host.commands)
    assert list(isolated_tempdir.iterdir()) == []

    manifest = read_manifest(tmp_path)
    assert manifest["status"] == "success"
    assert manifest["metadata"]["install_method"] == "repository"


def test_sigterm_handler_raises_interrupt_and_is_restored(tmp_path, monkeypatch):
    install_fake_host(monkeypatch, FakeHost())
    previous = signal.getsignal(signal.SIGTERM)

    build_provisioner(tmp_path, euid=0).run()

    assert signal.getsignal(signal.SIGTERM) == previous
    with pytest.raises(KeyboardInterrupt):
        StackProvisioner._handle_termination(signal.SIGTERM, None)


def test_provisioner_error_is_exported():
    assert issubclass(ProvisionerError, RuntimeError)
    assert Path(core_module.DEFAULT_MANIFEST_FILE).name == "run-manifest.json"
