"""
Local filesystem operations using pathlib.

This module provides the file primitives the directory location and the
converter build on: recursive listing, per-file copies, recursive deletes
and access to the embedded album-artist tag.
"""

import os
import shutil
from pathlib import Path
from typing import List, Optional
import logging
import mutagen
from mutagen import MutagenError

from utils.exceptions import FilesystemError

logger = logging.getLogger(__name__)


class FileSystemOperations:
    """Handles all filesystem operations with proper error handling."""

    def __init__(self, music_extensions: List[str], image_extensions: List[str]):
        """
        Initialize filesystem operations.

        Args:
            music_extensions: Track file extensions (without dots)
            image_extensions: Cover image extensions (without dots)
        """
        self.music_extensions = {ext.lower().lstrip('.') for ext in music_extensions}
        self.image_extensions = {ext.lower().lstrip('.') for ext in image_extensions}

    def is_music(self, path: Path) -> bool:
        return path.suffix.lower().lstrip('.') in self.music_extensions

    def is_image(self, path: Path) -> bool:
        return path.suffix.lower().lstrip('.') in self.image_extensions

    def list_files(self, root_dir: Path) -> List[Path]:
        """
        List every file below a directory, depth first.

        Symlinked directories are followed; the tree is assumed to be acyclic.

        Raises:
            FilesystemError: If the root directory cannot be read
        """
        if not root_dir.is_dir():
            raise FilesystemError(str(root_dir), "scan", "Directory does not exist")

        files = []
        try:
            with os.scandir(root_dir) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            raise FilesystemError(str(root_dir), "scan", str(e))

        for entry in entries:
            try:
                if entry.is_file():
                    files.append(Path(entry.path))
                elif entry.is_dir():
                    files.extend(self.list_files(Path(entry.path)))
            except FilesystemError as e:
                logger.warning(f"Skipping unreadable directory: {e}")
            except OSError as e:
                logger.warning(f"Cannot access {entry.path}: {e}")

        return files

    def copy_file(self, source: Path, destination: Path) -> None:
        """
        Copy one file, creating parent directories and replacing any existing file.

        Raises:
            FilesystemError: If the copy operation fails
        """
        try:
            if not source.is_file():
                raise FilesystemError(str(source), "copy", "Source file does not exist")

            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(str(source), str(destination))
            logger.debug(f"Copied file: {source} -> {destination}")

        except PermissionError as e:
            raise FilesystemError(str(source), "copy", f"Permission denied: {e}")
        except OSError as e:
            raise FilesystemError(str(source), "copy", f"OS error: {e}")

    def move_file(self, source: Path, destination: Path) -> None:
        """Move one file into place, replacing an existing destination file."""
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            if destination.exists():
                destination.unlink()
            shutil.move(str(source), str(destination))
        except OSError as e:
            raise FilesystemError(str(source), "move", f"OS error: {e}")

    def remove_tree(self, path: Path) -> None:
        """
        Recursively delete a directory.

        Raises:
            FilesystemError: If the directory cannot be removed
        """
        if not path.is_dir():
            raise FilesystemError(str(path), "delete", "Not a directory")
        try:
            shutil.rmtree(path)
            logger.info(f"Deleted directory: {path}")
        except OSError as e:
            raise FilesystemError(str(path), "delete", f"OS error: {e}")


def read_album_artist(track_path: Path) -> Optional[str]:
    """
    Read the embedded album artist of one track.

    Unreadable files and files without the tag yield None.
    """
    try:
        audio_file = mutagen.File(str(track_path), easy=True)
    except (MutagenError, OSError) as e:
        logger.debug(f"Mutagen failed to load {track_path}: {e}")
        return None

    if audio_file is None or audio_file.tags is None:
        return None

    try:
        values = audio_file.tags.get('albumartist')
    except (KeyError, ValueError) as e:
        logger.debug(f"Error reading album artist from {track_path}: {e}")
        return None

    if isinstance(values, list):
        values = values[0] if values else None
    if values and str(values).strip():
        return str(values).strip()
    return None


def write_album_artist(track_path: Path, artist: str) -> None:
    """
    Set the embedded album artist of one track.

    Raises:
        FilesystemError: If the file cannot be tagged
    """
    try:
        audio_file = mutagen.File(str(track_path), easy=True)
        if audio_file is None:
            raise FilesystemError(str(track_path), "tag", "Format not recognized")
        if audio_file.tags is None:
            audio_file.add_tags()
        audio_file.tags['albumartist'] = artist
        audio_file.save()
    except (MutagenError, OSError, KeyError, ValueError) as e:
        raise FilesystemError(str(track_path), "tag", str(e))
