"""Desired-state resources and the reconciler that converges them."""

import re
from abc import ABCMeta, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

from stackprovisioner.errors import ProvisionerError
from stackprovisioner.models import ReconcileResult


@dataclass
class Action:
    """One mutation planned for a resource."""

    description: str
    apply: Callable[[], Any]
    soft: bool = False


class Resource(metaclass=ABCMeta):
    """A declared target state.

    ``observe`` reads live system state without changing it; ``plan`` turns
    that observation into the actions still needed. An empty plan means the
    resource has already converged.
    """

    kind = "resource"

    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return f"{self.kind}[{self.name}]"

    @abstractmethod
    def observe(self) -> Any:
        pass

    @abstractmethod
    def plan(self, observed: Any) -> List[Action]:
        pass


class Reconciler:
    """Evaluates resources in declaration order."""

    def __init__(self, logger, console=None):
        self.logger = logger
        self.console = console
        self.results: List[ReconcileResult] = []

    def reconcile(self, resource: Resource) -> ReconcileResult:
        observed = resource.observe()
        actions = resource.plan(observed)

        if not actions:
            self.logger.info("%r already satisfied", resource)
            result = ReconcileResult(resource=repr(resource), status="unchanged")
            self.results.append(result)
            return result

        applied: List[str] = []
        for action in actions:
            self.logger.info("%r: %s", resource, action.description)
            try:
                action.apply()
            except ProvisionerError as exc:
                if not action.soft:
                    raise
                self.logger.debug("Ignored failure of %r (%s): %s", resource, action.description, exc)
                continue
            applied.append(action.description)

        result = ReconcileResult(resource=repr(resource), status="changed", actions=applied)
        self.results.append(result)
        return result

    def reconcile_all(self, resources: Iterable[Resource]) -> List[ReconcileResult]:
        return [self.reconcile(resource) for resource in resources]

    def drain_results(self) -> List[ReconcileResult]:
        results, self.results = self.results, []
        return results


def _join_lines(lines: List[str]) -> str:
    return "\n".join(lines) + "\n" if lines else ""


class ManagedFile(Resource):
    """A file written once; an existing file is never rewritten."""

    kind = "file"

    def __init__(self, filesystem, path: str, content: str, mode: Optional[int] = None, privileged: bool = True):
        super().__init__(str(path))
        self.filesystem = filesystem
        self.path = path
        self.content = content
        self.mode = mode
        self.privileged = privileged

    def observe(self) -> bool:
        return self.filesystem.exists(self.path, privileged=self.privileged)

    def plan(self, observed: bool) -> List[Action]:
        if observed:
            return []
        return [
            Action(
                f"create {self.path}",
                lambda: self.filesystem.write_text(
                    self.path, self.content, mode=self.mode, privileged=self.privileged
                ),
            )
        ]


class LineInFile(Resource):
    """A single line present exactly once.

    With ``key`` set, a line starting with the key but carrying another value
    is replaced in place instead of a second line being appended.
    """

    kind = "line"

    def __init__(
        self,
        filesystem,
        path,
        line: str,
        key: Optional[str] = None,
        privileged: bool = False,
        mode: Optional[int] = None,
        label: Optional[str] = None,
    ):
        super().__init__(f"{path}:{label or key or line}")
        self.filesystem = filesystem
        self.path = path
        self.line = line
        self.key = key
        self.privileged = privileged
        self.mode = mode

    def observe(self) -> Optional[str]:
        return self.filesystem.read_text(self.path, privileged=self.privileged)

    def plan(self, observed: Optional[str]) -> List[Action]:
        lines = observed.splitlines() if observed else []
        keyed = [line for line in lines if self.key and line.startswith(self.key)]

        if self.line in lines and len(keyed) <= 1:
            return []

        if keyed:
            updated: List[str] = []
            placed = False
            for line in lines:
                if line.startswith(self.key):
                    if not placed:
                        updated.append(self.line)
                        placed = True
                    continue
                updated.append(line)
            return [Action(f"update entry in {self.path}", lambda: self._write(updated))]

        return [Action(f"append entry to {self.path}", lambda: self._write(lines + [self.line]))]

    def _write(self, lines: List[str]):
        self.filesystem.write_text(
            self.path, _join_lines(lines), mode=self.mode, privileged=self.privileged
        )


class BlockInFile(Resource):
    """A marker-delimited block appended once, with an optional backup first."""

    kind = "block"

    def __init__(
        self,
        filesystem,
        path: str,
        marker: str,
        body: str,
        privileged: bool = True,
        backup_suffix: Optional[str] = ".backup",
    ):
        super().__init__(f"{path}:{marker}")
        self.filesystem = filesystem
        self.path = path
        self.marker = marker
        self.body = body
        self.privileged = privileged
        self.backup_suffix = backup_suffix

    def observe(self) -> Optional[str]:
        return self.filesystem.read_text(self.path, privileged=self.privileged)

    def plan(self, observed: Optional[str]) -> List[Action]:
        current = observed or ""
        if self.marker in current:
            return []

        actions: List[Action] = []
        if observed is not None and self.backup_suffix:
            backup_path = f"{self.path}{self.backup_suffix}"
            actions.append(
                Action(
                    f"back up to {backup_path}",
                    lambda: self.filesystem.copy_file(
                        self.path, backup_path, privileged=self.privileged
                    ),
                )
            )

        separator = "" if not current or current.endswith("\n") else "\n"
        new_content = f"{current}{separator}\n{self.marker}\n{self.body.rstrip()}\n"
        actions.append(
            Action(
                f"append block to {self.path}",
                lambda: self.filesystem.write_text(
                    self.path, new_content, privileged=self.privileged
                ),
            )
        )
        return actions


class ReplaceInFile(Resource):
    """A regex substitution applied only while the pattern still matches."""

    kind = "replace"

    def __init__(self, filesystem, path: str, pattern: str, replacement: str, privileged: bool = True):
        super().__init__(f"{path}:{replacement}")
        self.filesystem = filesystem
        self.path = path
        self.pattern = re.compile(pattern, flags=re.MULTILINE)
        self.replacement = replacement
        self.privileged = privileged

    def observe(self) -> Optional[str]:
        return self.filesystem.read_text(self.path, privileged=self.privileged)

    def plan(self, observed: Optional[str]) -> List[Action]:
        if observed is None:
            raise ProvisionerError(f"Cannot edit missing file: {self.path}")
        if not self.pattern.search(observed):
            return []

        new_content = self.pattern.sub(self.replacement, observed)
        return [
            Action(
                f"edit {self.path}",
                lambda: self.filesystem.write_text(
                    self.path, new_content, privileged=self.privileged
                ),
            )
        ]


class AptPackages(Resource):
    """OS packages that must be installed."""

    kind = "packages"

    def __init__(self, platform, packages: List[str], label: Optional[str] = None):
        super().__init__(label or " ".join(packages))
        self.platform = platform
        self.packages = list(packages)

    def observe(self) -> List[str]:
        return self.platform.missing_packages(self.packages)

    def plan(self, observed: List[str]) -> List[Action]:
        if not observed:
            return []
        return [
            Action(
                f"install {' '.join(observed)}",
                lambda: self.platform.install_packages(observed),
            )
        ]


class ServiceState(Resource):
    """A system service that must be running and enabled at boot."""

    kind = "service"

    def __init__(self, platform, service: str):
        super().__init__(service)
        self.platform = platform
        self.service = service

    def observe(self):
        return self.platform.service_status(self.service)

    def plan(self, observed) -> List[Action]:
        active, enabled = observed
        actions: List[Action] = []
        if not active:
            actions.append(
                Action(f"start {self.service}", lambda: self.platform.control_service(self.service, "start"))
            )
        if not enabled:
            actions.append(
                Action(f"enable {self.service}", lambda: self.platform.control_service(self.service, "enable"))
            )
        return actions


class GroupMembership(Resource):
    """The user belongs to a (possibly newly created) group."""

    kind = "group"

    def __init__(self, platform, user: str, group: str):
        super().__init__(f"{user}@{group}")
        self.platform = platform
        self.user = user
        self.group = group

    def observe(self):
        return self.platform.group_exists(self.group), self.group in self.platform.user_groups(self.user)

    def plan(self, observed) -> List[Action]:
        group_exists, is_member = observed
        actions: List[Action] = []
        if not group_exists:
            actions.append(Action(f"create group {self.group}", lambda: self.platform.ensure_group(self.group)))
        if not is_member:
            actions.append(
                Action(
                    f"add {self.user} to {self.group}",
                    lambda: self.platform.add_user_to_group(self.user, self.group),
                )
            )
        return actions
