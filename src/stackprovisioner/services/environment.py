"""Host environment probe: distribution identity and privilege checks."""

import os
import shlex
import shutil
from pathlib import Path
from typing import Callable, Dict, Optional

from stackprovisioner.constants import OS_RELEASE_PATH
from stackprovisioner.errors import ProvisionerError
from stackprovisioner.errors_catalog import actionable_error
from stackprovisioner.models import DistroDescriptor


def parse_os_release(text: str) -> Dict[str, str]:
    """Parses os-release ``KEY=value`` lines, honouring shell quoting.

    >>> parse_os_release('ID=debian\\nVERSION_ID="13"\\n# comment\\n')
    {'ID': 'debian', 'VERSION_ID': '13'}
    """
    values: Dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw_value = line.partition("=")
        try:
            parts = shlex.split(raw_value)
        except ValueError:
            parts = [raw_value.strip("\"'")]
        values[key.strip()] = parts[0] if parts else ""
    return values


class EnvironmentService:
    """Read-only checks performed before any mutation."""

    def __init__(
        self,
        logger,
        os_release_path: str = OS_RELEASE_PATH,
        geteuid: Optional[Callable[[], int]] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.logger = logger
        self.os_release_path = os_release_path
        self.geteuid = geteuid or os.geteuid
        self.which = which

    def detect_distro(self) -> DistroDescriptor:
        try:
            text = Path(self.os_release_path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ProvisionerError(
                actionable_error("os_release_missing", path=self.os_release_path)
            ) from exc

        values = parse_os_release(text)
        distro_id = values.get("ID", "").lower()
        if not distro_id:
            raise ProvisionerError(
                actionable_error("os_release_missing", path=self.os_release_path)
            )

        distro = DistroDescriptor(
            id=distro_id,
            version=values.get("VERSION_ID", ""),
            codename=values.get("VERSION_CODENAME", ""),
        )
        self.logger.info("Detected distribution: %s", distro)
        return distro

    def check_privileges(self):
        if self.geteuid() == 0:
            raise ProvisionerError(actionable_error("running_as_root"))

        if not self.which("sudo"):
            raise ProvisionerError(actionable_error("sudo_missing"))
