"""
Locating and installing the sokol-shdc shader compiler.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import requests

from ..errors import BuildError, FileSystemError
from .base import HostPlatform

logger = logging.getLogger(__name__)

SHDC_BASE_URL = "https://raw.githubusercontent.com/floooh/sokol-tools-bin/master/bin"


def shdc_executable_name(host: HostPlatform) -> str:
    return "sokol-shdc.exe" if host.is_windows else "sokol-shdc"


def shdc_download_url(host: HostPlatform) -> str:
    """Prebuilt sokol-shdc binary URL for a host."""
    if host.is_windows:
        return f"{SHDC_BASE_URL}/win32/sokol-shdc.exe"
    if host.is_macos:
        folder = "osx_arm64" if host.arch == "arm64" else "osx"
        return f"{SHDC_BASE_URL}/{folder}/sokol-shdc"
    return f"{SHDC_BASE_URL}/linux/sokol-shdc"


class ShdcInstaller:
    """Finds sokol-shdc in the tools directory, downloading it on first use."""

    def __init__(self, install_dir: Path, host: Optional[HostPlatform] = None,
                 session: Optional[requests.Session] = None, timeout: float = 60):
        self.install_dir = Path(install_dir).expanduser()
        self.host = host or HostPlatform.detect()
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def executable_path(self) -> Path:
        return self.install_dir / shdc_executable_name(self.host)

    def get_or_install(self) -> Path:
        """Return the installed binary, downloading it if missing."""
        path = self.executable_path
        if path.exists():
            return path
        return self.install()

    def install(self) -> Path:
        """
        Download sokol-shdc into the tools directory.

        Raises:
            BuildError: If the download fails
            FileSystemError: If the binary cannot be written
        """
        url = shdc_download_url(self.host)
        dest = self.executable_path
        partial = dest.with_name(dest.name + ".part")

        logger.info(f"Downloading sokol-shdc for {self.host.os}...")
        logger.info(f"  Source: {url}")

        try:
            self.install_dir.mkdir(parents=True, exist_ok=True)
            response = self.session.get(url, stream=True, timeout=self.timeout)
            response.raise_for_status()

            with open(partial, 'wb') as f:
                for chunk in response.iter_content(chunk_size=8192):
                    f.write(chunk)

            if not self.host.is_windows:
                os.chmod(partial, 0o755)
            os.replace(partial, dest)
        except requests.RequestException as e:
            partial.unlink(missing_ok=True)
            raise BuildError(
                f"Failed to download sokol-shdc: {e}. Please check your internet connection."
            ) from e
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise FileSystemError(f"Failed to install sokol-shdc to {dest}: {e}", dest) from e

        logger.info(f"Installed sokol-shdc to {dest}")
        return dest
