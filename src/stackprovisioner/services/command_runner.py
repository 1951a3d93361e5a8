"""Subprocess execution service for stackprovisioner."""

import os
import shutil
import subprocess
from typing import Dict, List, Optional, Union

from stackprovisioner.errors import ProvisionerError

PathLike = Union[str, "os.PathLike[str]"]


class CommandRunner:
    """Runs external commands with consistent error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout
        self.extra_path: List[str] = []

    def prepend_path(self, directory: PathLike):
        """Makes binaries from ``directory`` visible to every later command."""
        entry = os.fspath(directory)
        if entry not in self.extra_path:
            self.extra_path.insert(0, entry)

    def _build_env(self, env: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if not self.extra_path and not env:
            return None

        merged = dict(os.environ)
        if self.extra_path:
            merged["PATH"] = os.pathsep.join(self.extra_path + [merged.get("PATH", "")])
        if env:
            merged.update(env)
        return merged

    def which(self, name: str) -> bool:
        """Returns True when ``name`` resolves on the effective PATH."""
        search_path = None
        if self.extra_path:
            search_path = os.pathsep.join(self.extra_path + [os.environ.get("PATH", "")])
        return shutil.which(name, path=search_path) is not None

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[PathLike] = None,
        redact: bool = False,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(str(part) for part in cmd)
        if redact:
            cmd_str = f"{cmd[0]} <redacted>"
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout

        try:
            result = subprocess.run(
                [str(part) for part in cmd],
                text=True,
                capture_output=capture_output,
                timeout=effective_timeout,
                input=input_text,
                env=self._build_env(env),
                cwd=os.fspath(cwd) if cwd is not None else None,
            )
        except FileNotFoundError as exc:
            raise ProvisionerError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ProvisionerError(
                f"Command timed out after {effective_timeout}s: {cmd_str}"
            ) from exc
        except OSError as exc:
            raise ProvisionerError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout and not redact:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0:
            return result

        stderr = (result.stderr or "").strip() if capture_output else ""
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"

        if check:
            raise ProvisionerError(message)

        self.logger.debug(message)
        return result

    def sudo(self, cmd: List[str], **kwargs) -> subprocess.CompletedProcess:
        return self.run(["sudo"] + list(cmd), **kwargs)

    def succeeds(self, cmd: List[str], **kwargs) -> bool:
        """Runs a read-only probe and reports whether it exited with 0."""
        kwargs.setdefault("capture_output", True)
        try:
            result = self.run(cmd, check=False, **kwargs)
        except ProvisionerError:
            return False
        return result.returncode == 0

    def output(self, cmd: List[str], **kwargs) -> str:
        """Returns stripped stdout of a probe, or an empty string when it fails."""
        try:
            result = self.run(cmd, check=False, capture_output=True, **kwargs)
        except ProvisionerError:
            return ""
        if result.returncode != 0:
            return ""
        return (result.stdout or "").strip()
