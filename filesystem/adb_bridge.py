"""
Access to a removable device over the Android debug bridge.

Every operation runs the ``adb`` executable and blocks until it returns.
Remote paths are quoted before they reach the device shell.
"""

import logging
import shlex
import subprocess
from pathlib import Path
from typing import List, Optional

from utils.exceptions import DeviceError, LocationError

logger = logging.getLogger(__name__)


class AdbBridge:
    """Shell commands and file pushes against exactly one attached device."""

    def __init__(self, adb_path: str = "adb", serial: Optional[str] = None):
        self.adb_path = adb_path
        self.serial = serial

    @classmethod
    def connect(cls, adb_path: str = "adb", serial: Optional[str] = None) -> "AdbBridge":
        """
        Find the device to talk to.

        Raises:
            LocationError: If no device, or more than one without a serial, is attached
        """
        bridge = cls(adb_path)
        try:
            output = bridge._run(["devices"])
        except DeviceError as e:
            raise LocationError("adb", str(e))

        devices = []
        # Skip header line "List of devices attached"
        for line in output.splitlines()[1:]:
            fields = line.strip().split('\t')
            if len(fields) == 2 and fields[1] == 'device':
                devices.append(fields[0])

        if serial is not None:
            if serial not in devices:
                raise LocationError("adb", f"device {serial} is not attached (found {devices})")
            bridge.serial = serial
        elif len(devices) != 1:
            raise LocationError("adb", f"expected exactly one attached device, found {devices}")
        else:
            bridge.serial = devices[0]

        logger.info(f"Using adb device {bridge.serial}")
        return bridge

    def _adb_cmd(self, *args) -> List[str]:
        """Build ADB command with device specifier if needed."""
        cmd = [self.adb_path]
        if self.serial:
            cmd.extend(["-s", self.serial])
        cmd.extend(args)
        return cmd

    def _run(self, args: List[str]) -> str:
        cmd = self._adb_cmd(*args)
        logger.debug(f"Running {cmd}")
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except (subprocess.SubprocessError, OSError) as e:
            raise DeviceError(" ".join(cmd), str(e))

        if result.returncode != 0:
            error = result.stderr.decode('utf-8', errors='replace').strip()
            raise DeviceError(" ".join(cmd), error or f"exit status {result.returncode}")

        return result.stdout.decode('utf-8', errors='replace')

    def shell(self, command: str) -> str:
        return self._run(["shell", command])

    def list_files_recursively(self, root: str) -> List[str]:
        """Return every file below ``root`` as an absolute device path."""
        output = self.shell(f"find {shlex.quote(root)} -type f")
        return [line.rstrip('\r') for line in output.splitlines() if line.strip()]

    def path_exists_as_directory(self, path: str) -> bool:
        output = self.shell(f"test -d {shlex.quote(path)} && echo yes || echo no")
        return output.strip() == "yes"

    def make_directory(self, path: str) -> None:
        self.shell(f"mkdir {shlex.quote(path)}")

    def remove_directory_recursive(self, path: str) -> None:
        self.shell(f"rm -r {shlex.quote(path)}")

    def push_file(self, local: Path, remote: str) -> None:
        self._run(["push", str(local), remote])
