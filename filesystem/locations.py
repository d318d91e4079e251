"""
Places albums can live: a plain directory or a bridge-connected device.

Both kinds expose the same four operations, so the reconciliation engine
never needs to know which one it is driving. Per-file transfer failures are
logged and skipped; the album-level operation carries on with the next file.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List

from api.schemas import Album
from filesystem.adb_bridge import AdbBridge
from filesystem.album_detector import AlbumDetector
from utils.config_loader import DEVICE_MARKER
from utils.exceptions import DeviceError, FilesystemError, LocationError

logger = logging.getLogger(__name__)


class Location(ABC):
    """A destination holding albums, consistent for one reconciliation pass."""

    is_device = False

    @abstractmethod
    def albums(self) -> List[Album]:
        """Every album currently at this location."""

    @abstractmethod
    def copy_full_album(self, src_album: Album) -> int:
        """Copy every track and cover of an album; returns files copied."""

    @abstractmethod
    def del_album(self, album: Album) -> None:
        """Recursively remove the album's directory."""

    @abstractmethod
    def copy_missing_files(self, src_album: Album, dst_album: Album) -> int:
        """Copy tracks and covers the destination album lacks; returns files copied."""


def _missing_names(src_names: List[str], dst_names: List[str]) -> List[str]:
    present = set(dst_names)
    return [name for name in src_names if name not in present]


class DirLocation(Location):
    """A directory on a local or mounted filesystem."""

    def __init__(self, root_dir: Path, detector: AlbumDetector):
        self.root_dir = Path(root_dir)
        self.detector = detector
        self.file_ops = detector.file_ops

    def __str__(self) -> str:
        return f"DirLocation({self.root_dir})"

    def albums(self) -> List[Album]:
        return self.detector.albums_in_dir(self.root_dir)

    def album_dir_for(self, src_album: Album) -> Path:
        return src_album.album_dir_with_type(self.root_dir, src_album.file_type())

    def _copy(self, source: Path, destination: Path) -> bool:
        try:
            self.file_ops.copy_file(source, destination)
            return True
        except FilesystemError as e:
            logger.error(f"Copy failed: {e}")
            return False

    def copy_full_album(self, src_album: Album) -> int:
        dst_dir = self.album_dir_for(src_album)
        logger.info(f"Copying {src_album.overview()} to {dst_dir}")

        copied = 0
        for track in src_album.tracks:
            copied += self._copy(src_album.dir_path / track, dst_dir / track)
        for cover in src_album.cover_files:
            copied += self._copy(cover, dst_dir / cover.name)
        return copied

    def del_album(self, album: Album) -> None:
        try:
            album.dir_path.resolve().relative_to(self.root_dir.resolve())
        except ValueError:
            raise FilesystemError(str(album.dir_path), "delete", f"not inside {self.root_dir}")

        logger.info(f"Deleting {album.overview()}")
        self.file_ops.remove_tree(album.dir_path)

    def copy_missing_files(self, src_album: Album, dst_album: Album) -> int:
        if not dst_album.dir_path.is_dir():
            logger.info(f"{dst_album.dir_path} does not exist, copying the whole album")
            return self.copy_full_album(src_album)

        if src_album.dir_path == dst_album.dir_path:
            logger.debug(f"No separate source for {src_album.overview()}, skipping")
            return 0

        copied = 0
        for track in _missing_names(src_album.tracks, dst_album.tracks):
            logger.info(f"Copying missing track {track} to {dst_album.dir_path}")
            copied += self._copy(src_album.dir_path / track, dst_album.dir_path / track)

        covers = {cover.name: cover for cover in src_album.cover_files}
        for name in _missing_names(list(covers), dst_album.cover_names()):
            logger.info(f"Copying missing cover {name} to {dst_album.dir_path}")
            copied += self._copy(covers[name], dst_album.dir_path / name)
        return copied


def device_file_name(name: str) -> str:
    """Name a file gets on the device; ``.jpeg`` covers become ``.jpg``."""
    if name.lower().endswith('.jpeg'):
        return name[:-5] + '.jpg'
    return name


class AdbLocation(Location):
    """The music folder of a device reachable over adb."""

    is_device = True

    def __init__(self, bridge: AdbBridge, music_root: str, detector: AlbumDetector):
        self.bridge = bridge
        self.music_root = music_root.rstrip('/')
        self.detector = detector

    def __str__(self) -> str:
        return f"AdbLocation({self.bridge.serial}:{self.music_root})"

    def albums(self) -> List[Album]:
        if not self.bridge.path_exists_as_directory(self.music_root):
            logger.info(f"{self.music_root} does not exist on the device yet")
            return []

        music_paths = [Path(p) for p in self.bridge.list_files_recursively(self.music_root)]
        # Tags of remote files cannot be read
        return self.detector.group_files_into_albums(
            music_paths, Path(self.music_root), read_tags=False
        )

    def _ensure_directory(self, remote_dir: str) -> None:
        if not self.bridge.path_exists_as_directory(remote_dir):
            logger.debug(f"Creating {remote_dir} on the device")
            self.bridge.make_directory(remote_dir)

    def album_dir_for(self, src_album: Album) -> str:
        return src_album.album_dir_with_type(Path(self.music_root), src_album.file_type()).as_posix()

    def _push(self, local: Path, remote: str) -> bool:
        try:
            self.bridge.push_file(local, remote)
            return True
        except DeviceError as e:
            logger.error(f"Push of {local} failed: {e}")
            return False

    def copy_full_album(self, src_album: Album) -> int:
        artist_dir = f"{self.music_root}/{src_album.parsed_artist}"
        album_dir = self.album_dir_for(src_album)
        logger.info(f"Pushing {src_album.overview()} to {album_dir}")

        self._ensure_directory(self.music_root)
        self._ensure_directory(artist_dir)
        self._ensure_directory(album_dir)

        pushed = 0
        for cover in src_album.cover_files:
            pushed += self._push(cover, f"{album_dir}/{device_file_name(cover.name)}")
        for track in src_album.tracks:
            pushed += self._push(src_album.dir_path / track, f"{album_dir}/{track}")
        return pushed

    def del_album(self, album: Album) -> None:
        remote_dir = album.dir_path.as_posix()
        if not remote_dir.startswith(f"{self.music_root}/"):
            raise DeviceError(f"rm -r {remote_dir}", f"not inside {self.music_root}")

        logger.info(f"Deleting {album.overview()} from the device")
        self.bridge.remove_directory_recursive(remote_dir)

    def copy_missing_files(self, src_album: Album, dst_album: Album) -> int:
        dst_dir = dst_album.dir_path.as_posix()
        if not self.bridge.path_exists_as_directory(dst_dir):
            logger.info(
                f"{dst_dir} does not exist on device, copying everything from {src_album.dir_path}"
            )
            return self.copy_full_album(src_album)

        pushed = 0
        for track in _missing_names(src_album.tracks, dst_album.tracks):
            logger.info(f"Pushing missing track {track} to {dst_dir}")
            pushed += self._push(src_album.dir_path / track, f"{dst_dir}/{track}")

        covers = {device_file_name(cover.name): cover for cover in src_album.cover_files}
        for name in _missing_names(list(covers), dst_album.cover_names()):
            logger.info(f"Pushing missing cover {name} to {dst_dir}")
            pushed += self._push(covers[name], f"{dst_dir}/{name}")
        return pushed


def open_location(descriptor: str, config: Dict[str, Any], detector: AlbumDetector) -> Location:
    """
    Open the destination named by a configuration descriptor.

    Raises:
        LocationError: If the directory cannot be created or no single device is attached
    """
    if descriptor == DEVICE_MARKER:
        device_config = config['device']
        bridge = AdbBridge.connect(device_config['adb_path'], device_config.get('serial'))
        return AdbLocation(bridge, device_config['music_root'], detector)

    root_dir = Path(descriptor).expanduser()
    try:
        root_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LocationError(descriptor, str(e))
    if not root_dir.is_dir():
        raise LocationError(descriptor, "not a directory")
    return DirLocation(root_dir, detector)
