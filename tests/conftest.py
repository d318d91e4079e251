"""Shared fixtures for the test suite."""

import subprocess
from pathlib import Path
from unittest.mock import Mock

import pytest

from filesystem.adb_bridge import AdbBridge
from filesystem.album_detector import AlbumDetector
from filesystem.file_ops import FileSystemOperations


@pytest.fixture
def file_ops():
    return FileSystemOperations(
        music_extensions=['mp3', 'flac', 'wav', 'm4a'],
        image_extensions=['jpg', 'jpeg', 'png'],
    )


@pytest.fixture
def detector(file_ops):
    """Detector without tag reading; test files are not real audio."""
    return AlbumDetector(file_ops)


@pytest.fixture
def make_files():
    """Create placeholder files below a root directory."""
    def _make(root: Path, *relative_paths: str) -> list:
        created = []
        for relative in relative_paths:
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(f"data for {relative}".encode('utf-8'))
            created.append(path)
        return created
    return _make


def fake_ffmpeg(cmd, **kwargs):
    """Stand-in for the encoder: writes the output file named last on the command line."""
    Path(cmd[-1]).write_bytes(b"encoded")
    return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


def failing_ffmpeg(cmd, **kwargs):
    return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="Invalid data found")


class FakeDevice:
    """In-memory device behind a mocked AdbBridge; pushes and deletes change its listing."""

    def __init__(self, directories=(), files=()):
        self.directories = set(directories)
        self.files = list(files)
        self.bridge = Mock(spec=AdbBridge)
        self.bridge.serial = "SERIAL"
        self.bridge.path_exists_as_directory.side_effect = lambda p: p in self.directories
        self.bridge.make_directory.side_effect = lambda p: self.directories.add(p)
        self.bridge.list_files_recursively.side_effect = lambda root: list(self.files)
        self.bridge.push_file.side_effect = self._push
        self.bridge.remove_directory_recursive.side_effect = self._remove

    def _push(self, local, remote):
        if remote not in self.files:
            self.files.append(remote)

    def _remove(self, remote_dir):
        prefix = remote_dir + "/"
        self.files = [f for f in self.files if not f.startswith(prefix)]
        self.directories -= {
            d for d in self.directories if d == remote_dir or d.startswith(prefix)
        }

    def pushed(self):
        return [call.args[1] for call in self.bridge.push_file.call_args_list]
