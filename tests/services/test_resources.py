import pytest

from stackprovisioner.errors import ProvisionerError
from stackprovisioner.services.resources import (
    Action,
    AptPackages,
    BlockInFile,
    GroupMembership,
    LineInFile,
    ManagedFile,
    Reconciler,
    ReplaceInFile,
    Resource,
    ServiceState,
)


class DummyLogger:
    def __init__(self):
        self.messages = []

    def info(self, message, *args, **_kwargs):
        self.messages.append(message % args if args else message)

    def debug(self, message, *args, **_kwargs):
        self.messages.append(message % args if args else message)


class MemoryFilesystem:
    def __init__(self, files=None):
        self.files = dict(files or {})
        self.modes = {}
        self.writes = []
        self.copies = []
        self.exists_checks = []

    def exists(self, path, privileged=False):
        self.exists_checks.append((str(path), privileged))
        return str(path) in self.files

    def read_text(self, path, privileged=False):
        return self.files.get(str(path))

    def write_text(self, path, content, mode=None, privileged=False):
        self.files[str(path)] = content
        self.modes[str(path)] = mode
        self.writes.append(str(path))

    def copy_file(self, source, destination, privileged=False):
        self.files[str(destination)] = self.files[str(source)]
        self.copies.append((str(source), str(destination)))


class FakePlatform:
    def __init__(self, installed=(), services=None, groups=None, memberships=()):
        self.installed = set(installed)
        self.services = dict(services or {})
        self.groups = set(groups or ())
        self.memberships = set(memberships)
        self.calls = []

    def missing_packages(self, packages):
        return [package for package in packages if package not in self.installed]

    def install_packages(self, packages):
        self.calls.append(("install", tuple(packages)))
        self.installed.update(packages)

    def service_status(self, service):
        return self.services.get(service, (False, False))

    def control_service(self, service, action):
        self.calls.append((action, service))
        active, enabled = self.services.get(service, (False, False))
        self.services[service] = (active or action == "start", enabled or action == "enable")

    def group_exists(self, group):
        return group in self.groups

    def user_groups(self, user):
        return [group for member, group in self.memberships if member == user]

    def ensure_group(self, group):
        self.calls.append(("groupadd", group))
        self.groups.add(group)

    def add_user_to_group(self, user, group):
        self.calls.append(("usermod", user, group))
        self.memberships.add((user, group))


def _converge_twice(resource):
    reconciler = Reconciler(logger=DummyLogger())
    first = reconciler.reconcile(resource)
    second = reconciler.reconcile(resource)
    return first, second


def test_line_in_file_appends_once():
    filesystem = MemoryFilesystem({"/home/dev/.bashrc": "alias ll='ls -l'\n"})
    resource = LineInFile(filesystem, "/home/dev/.bashrc", 'export DOTNET_ROOT="$HOME/.dotnet"')

    first, second = _converge_twice(resource)

    assert first.status == "changed"
    assert second.status == "unchanged"
    content = filesystem.files["/home/dev/.bashrc"]
    assert content.count('export DOTNET_ROOT="$HOME/.dotnet"') == 1
    assert content.startswith("alias ll='ls -l'\n")


def test_line_in_file_creates_missing_file_with_mode():
    filesystem = MemoryFilesystem()
    resource = LineInFile(
        filesystem, "/home/dev/.pgpass", "localhost:5432:*:postgres:pw", key="localhost:5432:*:postgres:", mode=0o600
    )

    Reconciler(logger=DummyLogger()).reconcile(resource)

    assert filesystem.files["/home/dev/.pgpass"] == "localhost:5432:*:postgres:pw\n"
    assert filesystem.modes["/home/dev/.pgpass"] == 0o600


def test_keyed_line_replaces_stale_value_and_drops_duplicates():
    filesystem = MemoryFilesystem(
        {
            "/etc/environment": (
                'PATH="/usr/bin"\n'
                "ASPNETCORE_ENVIRONMENT=Development\n"
                "ASPNETCORE_ENVIRONMENT=Staging\n"
            )
        }
    )
    resource = LineInFile(
        filesystem,
        "/etc/environment",
        "ASPNETCORE_ENVIRONMENT=Production",
        key="ASPNETCORE_ENVIRONMENT=",
        privileged=True,
    )

    first, second = _converge_twice(resource)

    assert first.status == "changed"
    assert second.status == "unchanged"
    assert filesystem.files["/etc/environment"] == (
        'PATH="/usr/bin"\nASPNETCORE_ENVIRONMENT=Production\n'
    )


def test_block_in_file_backs_up_and_appends_once():
    filesystem = MemoryFilesystem({"/etc/postgresql/17/main/pg_hba.conf": "local all postgres peer"})
    resource = BlockInFile(
        filesystem,
        "/etc/postgresql/17/main/pg_hba.conf",
        "# managed block",
        "local testdb dev md5\n",
    )

    first, second = _converge_twice(resource)

    assert first.status == "changed"
    assert second.status == "unchanged"
    assert filesystem.copies == [
        ("/etc/postgresql/17/main/pg_hba.conf", "/etc/postgresql/17/main/pg_hba.conf.backup")
    ]
    assert filesystem.files["/etc/postgresql/17/main/pg_hba.conf.backup"] == "local all postgres peer"
    assert filesystem.files["/etc/postgresql/17/main/pg_hba.conf"] == (
        "local all postgres peer\n\n# managed block\nlocal testdb dev md5\n"
    )


def test_replace_in_file_applies_only_while_pattern_matches():
    path = "/etc/postgresql/17/main/postgresql.conf"
    filesystem = MemoryFilesystem({path: "port = 5432\n#listen_addresses = 'localhost'\t# comment\n"})
    resource = ReplaceInFile(filesystem, path, r"^#listen_addresses = 'localhost'", "listen_addresses = '*'")

    first, second = _converge_twice(resource)

    assert first.status == "changed"
    assert second.status == "unchanged"
    assert filesystem.files[path] == "port = 5432\nlisten_addresses = '*'\t# comment\n"


def test_replace_in_file_requires_the_file():
    resource = ReplaceInFile(MemoryFilesystem(), "/etc/missing.conf", "a", "b")

    with pytest.raises(ProvisionerError, match="missing file"):
        Reconciler(logger=DummyLogger()).reconcile(resource)


def test_managed_file_never_rewrites_existing_file():
    filesystem = MemoryFilesystem({"/etc/sysctl.d/99-aspnet.conf": "custom\n"})
    resource = ManagedFile(filesystem, "/etc/sysctl.d/99-aspnet.conf", "net.core.somaxconn = 65535\n")

    result = Reconciler(logger=DummyLogger()).reconcile(resource)

    assert result.status == "unchanged"
    assert filesystem.files["/etc/sysctl.d/99-aspnet.conf"] == "custom\n"


def test_managed_file_checks_existence_with_its_own_privilege():
    filesystem = MemoryFilesystem({"/etc/sudoers.d/dev": "dev ALL=(ALL:ALL) ALL\n"})
    resources = [
        ManagedFile(filesystem, "/etc/sudoers.d/dev", "dev ALL=(ALL:ALL) ALL\n", mode=0o440),
        ManagedFile(filesystem, "/home/dev/notes.txt", "notes\n", privileged=False),
    ]

    Reconciler(logger=DummyLogger()).reconcile_all(resources)

    assert filesystem.exists_checks == [("/etc/sudoers.d/dev", True), ("/home/dev/notes.txt", False)]
    assert filesystem.writes == ["/home/dev/notes.txt"]


def test_apt_packages_installs_only_missing():
    platform = FakePlatform(installed={"curl", "git"})
    resource = AptPackages(platform, ["curl", "git", "unzip"])

    first, second = _converge_twice(resource)

    assert platform.calls == [("install", ("unzip",))]
    assert first.actions == ["install unzip"]
    assert second.status == "unchanged"


def test_service_state_starts_and_enables():
    platform = FakePlatform(services={"nginx": (True, False)})

    first, second = _converge_twice(ServiceState(platform, "nginx"))

    assert platform.calls == [("enable", "nginx")]
    assert first.status == "changed"
    assert second.status == "unchanged"


def test_group_membership_creates_group_when_absent():
    platform = FakePlatform()

    _converge_twice(GroupMembership(platform, "dev", "www-data"))

    assert platform.calls == [("groupadd", "www-data"), ("usermod", "dev", "www-data")]


class FlakyResource(Resource):
    kind = "flaky"

    def __init__(self, soft):
        super().__init__("flaky")
        self.soft = soft

    def observe(self):
        return None

    def plan(self, observed):
        def fail():
            raise ProvisionerError("role does not exist")

        return [Action("do something", fail, soft=self.soft)]


def test_soft_action_failure_is_tolerated():
    reconciler = Reconciler(logger=DummyLogger())

    result = reconciler.reconcile(FlakyResource(soft=True))

    assert result.status == "changed"
    assert result.actions == []


def test_hard_action_failure_propagates():
    reconciler = Reconciler(logger=DummyLogger())

    with pytest.raises(ProvisionerError, match="role does not exist"):
        reconciler.reconcile(FlakyResource(soft=False))


def test_drain_results_returns_and_clears():
    reconciler = Reconciler(logger=DummyLogger())
    reconciler.reconcile_all(
        [ManagedFile(MemoryFilesystem(), "/tmp/a", "a"), ManagedFile(MemoryFilesystem({"/tmp/b": ""}), "/tmp/b", "b")]
    )

    drained = reconciler.drain_results()

    assert [result.status for result in drained] == ["changed", "unchanged"]
    assert reconciler.drain_results() == []
