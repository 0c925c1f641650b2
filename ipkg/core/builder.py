# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Runs a package's OS-specific build script before installation."""

import logging
import subprocess
from pathlib import Path
from typing import Union

from .exceptions import BuildFailedError

logger = logging.getLogger("ipkg.builder")

BUILD_SCRIPTS = {
    "Linux": "build",
    "Windows": "build.bat",
}


class BuildRunner:
    """
    Executes ``<work_dir>/.ira/build`` (``build.bat`` on Windows).

    The script runs to completion with the working directory as cwd; its
    combined output is captured and logged.
    """

    def __init__(self, metadata_dir: str = ".ira"):
        self.metadata_dir = metadata_dir

    def script_path(self, work_dir: Union[str, Path], host_os: str) -> Path:
        try:
            script = BUILD_SCRIPTS[host_os]
        except KeyError:
            raise BuildFailedError(
                f"no build script convention for {host_os}",
                details={"os": host_os},
            ) from None
        return Path(work_dir) / self.metadata_dir / script

    def run(self, work_dir: Union[str, Path], host_os: str) -> str:
        """
        Run the build script; returns its output.

        Raises:
            BuildFailedError: script missing, not executable, or non-zero exit
        """
        work_dir = Path(work_dir)
        script = self.script_path(work_dir, host_os)
        if not script.is_file():
            raise BuildFailedError(
                f"build script {script} not found",
                details={"script": str(script)},
            )

        logger.info(f"Running build script {script}")
        try:
            result = subprocess.run(
                [str(script.resolve())],
                cwd=str(work_dir),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise BuildFailedError(
                "executing build script",
                details={"script": str(script)},
                cause=e,
            ) from e

        output = result.stdout or ""
        for line in output.splitlines():
            logger.debug(f"[build] {line}")

        if result.returncode != 0:
            raise BuildFailedError(
                f"build script exited with code {result.returncode}",
                exit_code=result.returncode,
                output=output,
                details={"script": str(script)},
            )

        logger.info("Build finished")
        return output
