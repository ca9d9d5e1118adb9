"""
Nitro archive (NARC) helper service.

NARC files are unpacked and rebuilt by the external ``narctool`` program.
The service wraps each invocation with a timeout and reports the outcome
as a ``ServiceResult`` instead of raising, so a batch can carry on when the
tool is missing or hangs.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class ServiceResult:
    """Outcome of one external tool invocation."""
    success: bool
    message: str = ""


class NarcToolService:
    """Run ``narctool`` to unpack or pack a Nitro archive."""

    def __init__(self, executable: str = "narctool", timeout: float = 20.0):
        """Initialize service.

        Args:
            executable: Program name or path of narctool
            timeout: Seconds to wait before treating the call as failed
        """
        self.executable = executable
        self.timeout = timeout

    def unpack(self, archive: Path, folder: Path) -> ServiceResult:
        """Extract ``archive`` into ``folder``."""
        Path(folder).mkdir(parents=True, exist_ok=True)
        return self._run(["u", str(archive), str(folder)])

    def pack(self, folder: Path, archive: Path) -> ServiceResult:
        """Rebuild ``archive`` from the files in ``folder``."""
        return self._run(["p", str(folder), str(archive)])

    def _run(self, arguments: List[str]) -> ServiceResult:
        command = [self.executable] + arguments
        logger.debug(f"Running {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            message = f"{self.executable} did not finish within {self.timeout:g} seconds"
            logger.warning(message)
            return ServiceResult(False, message)
        except OSError as e:
            message = f"Could not run {self.executable}: {e}"
            logger.warning(message)
            return ServiceResult(False, message)

        output = (result.stdout or "").strip()
        if result.returncode != 0:
            errors = (result.stderr or "").strip()
            message = f"{self.executable} exited with code {result.returncode}"
            if errors:
                message += f": {errors}"
            logger.warning(message)
            return ServiceResult(False, message)
        return ServiceResult(True, output)
