"""Filesystem helpers for stackprovisioner."""

import logging
import os
import shutil
import stat
import sys
import tempfile
from pathlib import Path
from typing import Optional, Union

from rich.console import Console

from stackprovisioner.constants import DEFAULT_FILE_MODE
from stackprovisioner.errors import ProvisionerError

PathLike = Union[str, Path]


class FileSystemService:
    """Encapsulates file and directory side effects.

    Files under the invoking user's home are written directly. System files
    (``privileged=True``) go through ``sudo tee`` / ``sudo cat`` so the tool
    itself never needs to run as root.
    """

    def __init__(self, logger: logging.Logger, console: Console, command_runner):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner

    def exists(self, path: PathLike, privileged: bool = False) -> bool:
        if privileged:
            # directories such as /etc/sudoers.d are not listable by the user
            return self.command_runner.succeeds(["sudo", "test", "-e", str(path)])
        return os.path.exists(path)

    def read_text(self, path: PathLike, privileged: bool = False) -> Optional[str]:
        """Returns the file content, or None when it does not exist."""
        if privileged:
            result = self.command_runner.sudo(
                ["cat", str(path)], check=False, capture_output=True
            )
            if result.returncode != 0:
                return None
            return result.stdout or ""

        try:
            return Path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise ProvisionerError(f"Could not read {path}: {exc}") from exc

    def write_text(
        self,
        path: PathLike,
        content: str,
        mode: Optional[int] = None,
        privileged: bool = False,
    ):
        if privileged:
            self.command_runner.sudo(
                ["mkdir", "-p", str(Path(path).parent)], capture_output=True
            )
            self.command_runner.sudo(
                ["tee", str(path)], input_text=content, capture_output=True, redact=True
            )
            if mode is not None:
                self.command_runner.sudo(
                    ["chmod", format(mode, "o"), str(path)], capture_output=True
                )
            self.logger.debug("Wrote %s", path)
            return

        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if mode is None:
            mode = stat.S_IMODE(target.stat().st_mode) if target.exists() else DEFAULT_FILE_MODE
        fd, temp_path = tempfile.mkstemp(prefix=f".{target.name}-", dir=str(target.parent))
        try:
            os.fchmod(fd, mode)
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                file_obj.write(content)
            os.replace(temp_path, target)
        except OSError as exc:
            raise ProvisionerError(f"Could not write {path}: {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass
        self.logger.debug("Wrote %s", path)

    def copy_file(self, source: PathLike, destination: PathLike, privileged: bool = False):
        if privileged:
            self.command_runner.sudo(["cp", str(source), str(destination)], capture_output=True)
            return
        shutil.copy2(source, destination)

    def set_permissions(self, path: PathLike, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except Exception as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def cleanup_dir(self, path: PathLike):
        if os.path.exists(path):
            try:
                shutil.rmtree(path)
                self.logger.debug("Removed directory: %s", path)
            except Exception as exc:
                message = f"Warning: Could not remove {path}: {exc}"
                self.console.print(f"[yellow]{message}[/yellow]")
                self.logger.warning(message)
