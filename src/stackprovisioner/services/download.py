"""Download service with progress reporting and checksum validation."""

import contextlib
import hashlib
import os
import tempfile
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import urlparse

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from stackprovisioner.errors import ProvisionerError


class DownloadService:
    """Fetches installer artifacts into scoped temporary locations."""

    def __init__(self, logger, console, requests_module, timeout: float = 60.0):
        self.logger = logger
        self.console = console
        self.requests = requests_module
        self.timeout = timeout

    @staticmethod
    def enforce_https(url: str, allow_http: bool = False):
        scheme = urlparse(url).scheme.lower()
        if scheme == "https":
            return
        if scheme == "http" and allow_http:
            return
        raise ProvisionerError(f"Refusing to download over insecure or unknown scheme: {url}")

    def download_file(
        self,
        url: str,
        dest_path: str,
        description: str = "Downloading...",
        expected_sha256: Optional[str] = None,
    ):
        self.logger.info("Downloading %s", url)
        self.enforce_https(url)

        hasher = hashlib.sha256() if expected_sha256 else None

        try:
            with self.requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("Content-Length", 0))

                os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)

                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TaskProgressColumn(),
                    "•",
                    TimeElapsedColumn(),
                    console=self.console,
                    transient=True,
                ) as progress:
                    task = progress.add_task(f"[cyan]{description}", total=total_size or None)
                    with open(dest_path, "wb") as file_obj:
                        for chunk in response.iter_content(chunk_size=8192):
                            if not chunk:
                                continue
                            file_obj.write(chunk)
                            if hasher:
                                hasher.update(chunk)
                            progress.update(task, advance=len(chunk))

        except self.requests.RequestException as exc:
            raise ProvisionerError(f"Download failed for {description}: {exc}") from exc

        if hasher:
            downloaded_sha = hasher.hexdigest()
            if downloaded_sha != expected_sha256:
                try:
                    os.remove(dest_path)
                except OSError:
                    pass
                raise ProvisionerError(
                    f"Checksum mismatch for {description}. Expected {expected_sha256}, "
                    f"but got {downloaded_sha}."
                )

    @contextlib.contextmanager
    def temporary_download(
        self,
        url: str,
        description: str = "Downloading...",
        filename: Optional[str] = None,
        expected_sha256: Optional[str] = None,
    ) -> Iterator[Path]:
        """Downloads ``url`` and yields its path; the file is removed on any exit.

        Interruption (``KeyboardInterrupt``) and errors unwind through this
        context manager the same way normal completion does.
        """
        name = filename or os.path.basename(urlparse(url).path) or "download"
        with tempfile.TemporaryDirectory(prefix="stackprovisioner-") as temp_dir:
            target = Path(temp_dir, name)
            self.download_file(
                url,
                str(target),
                description=description,
                expected_sha256=expected_sha256,
            )
            try:
                yield target
            finally:
                self.logger.debug("Removing temporary download %s", target)
