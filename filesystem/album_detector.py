"""
Album detection for music libraries and device listings.

This module turns file paths into album records: every path is parsed into
a provisional single-file album, records of one directory are merged, and
the merged albums are finalized using the embedded album-artist tags.
The same logic serves local directories and file listings from a device.
"""

from collections import Counter
from pathlib import Path, PurePath
from typing import Callable, Dict, Iterable, List, Optional
import logging

from api.schemas import Album, strip_type_annotation
from filesystem.file_ops import FileSystemOperations
from utils.exceptions import AlbumMergeError, AlbumParseError
from utils.logging_config import log_processing_progress

logger = logging.getLogger(__name__)

TagReader = Callable[[Path], Optional[str]]


def parse_album_path(
    path: PurePath,
    root_dir: PurePath,
    music_extensions: Iterable[str],
    image_extensions: Iterable[str],
) -> Album:
    """
    Derive a provisional one-file album from a path below a root directory.

    Layouts understood, relative to the root:
        Artist/Album/file            artist, album, file
        Artist/Album/CD1/file        artist, "Album - CD1", file
        Artist - Album/file          artist, album, file
        Artist/Artist - Album - 01 Track.mp3

    Raises:
        AlbumParseError: If the path does not follow any of these layouts
    """
    try:
        parts = PurePath(path).relative_to(root_dir).parts
    except ValueError:
        raise AlbumParseError(str(path), f"not below {root_dir}")

    if len(parts) == 3:
        artist, album = parts[0], parts[1]
    elif len(parts) > 3:
        artist = parts[0]
        album = " - ".join(parts[1:-1])
    elif len(parts) == 2:
        if " - " in parts[0]:
            artist, album = parts[0].split(" - ", 1)
        else:
            artist = parts[0]
            rest = parts[1]
            if rest.startswith(f"{artist} - "):
                rest = rest[len(artist) + 3:]
            if " - " not in rest:
                raise AlbumParseError(
                    str(path), "expected ' - ' between album name and track"
                )
            album = rest.rsplit(" - ", 1)[0]
    else:
        raise AlbumParseError(str(path), "too few path components")

    artist = artist.strip()
    album = album.strip()
    if not artist or not album:
        raise AlbumParseError(str(path), "empty artist or album name")

    music_extensions = {ext.lower().lstrip('.') for ext in music_extensions}
    image_extensions = {ext.lower().lstrip('.') for ext in image_extensions}
    suffix = PurePath(path).suffix.lower().lstrip('.')

    tracks = [PurePath(path).name] if suffix in music_extensions else []
    cover_files = [Path(path)] if suffix in image_extensions else []

    return Album(
        title=album,
        artist=artist,
        tracks=tracks,
        dir_path=Path(PurePath(path).parent),
        cover_files=cover_files,
        parsed_title=strip_type_annotation(album, music_extensions),
        parsed_artist=artist,
    )


def _strip_artist_prefix(title: str, artists: Iterable[str]) -> str:
    for artist in artists:
        prefix = f"{artist} - "
        if artist and title.startswith(prefix) and title[len(prefix):].strip():
            return title[len(prefix):].strip()
    return title


class AlbumDetector:
    """Builds album catalogs from directory trees and file listings."""

    def __init__(
        self,
        file_ops: FileSystemOperations,
        tag_reader: Optional[TagReader] = None,
    ):
        """
        Args:
            file_ops: Filesystem operations providing the extension allow-lists
            tag_reader: Returns the embedded album artist of a track, if any
        """
        self.file_ops = file_ops
        self.tag_reader = tag_reader

    def parse_path(self, path: PurePath, root_dir: PurePath) -> Album:
        return parse_album_path(
            path,
            root_dir,
            self.file_ops.music_extensions,
            self.file_ops.image_extensions,
        )

    def albums_in_dir(self, root_dir: Path) -> List[Album]:
        """
        Scan a directory tree and return its fully merged albums.

        Raises:
            FilesystemError: If the root directory cannot be read
        """
        logger.info(f"Scanning albums in {root_dir}")
        files = self.file_ops.list_files(root_dir)
        return self.group_files_into_albums(files, root_dir)

    def group_files_into_albums(
        self,
        file_paths: Iterable[PurePath],
        root_dir: PurePath,
        read_tags: bool = True,
    ) -> List[Album]:
        """
        Parse every path and merge the records of each directory.

        Unparseable paths and conflicting records are logged and skipped.

        Returns:
            Finalized albums sorted by directory
        """
        album_lookup: Dict[PurePath, Album] = {}

        for path in file_paths:
            try:
                album = self.parse_path(path, root_dir)
            except AlbumParseError as e:
                logger.warning(f"Skipping file: {e}")
                continue

            existing = album_lookup.get(album.dir_path)
            if existing is None:
                album_lookup[album.dir_path] = album
                continue

            try:
                album_lookup[album.dir_path] = album.merge_with(existing)
            except AlbumMergeError as e:
                logger.error(f"{e}; keeping the first record, please check this directory")

        albums = [album_lookup[d] for d in sorted(album_lookup)]
        logger.info(f"Finalizing {len(albums)} albums...")

        finalized = []
        for i, album in enumerate(albums, 1):
            finalized.append(self.finalize(album, read_tags=read_tags))
            log_processing_progress(
                i, len(albums), logger,
                "Finalized {current}/{total} albums ({percentage:.1f}%)"
            )
        return finalized

    def finalize(self, album: Album, read_tags: bool = True) -> Album:
        """
        Correct artist and title of a merged album.

        The most frequent embedded album artist (first seen wins ties)
        replaces the path-derived artist, and the title loses its file-type
        annotation and any leading "<artist> - " prefix.
        """
        artist_counts: Counter = Counter()
        if read_tags and self.tag_reader is not None:
            for track in album.tracks:
                tag_artist = self.tag_reader(album.dir_path / track)
                if tag_artist:
                    artist_counts[tag_artist] += 1

        path_artist = album.artist
        artist = path_artist
        if artist_counts:
            artist = artist_counts.most_common()[0][0]

        parsed_title = strip_type_annotation(album.title, self.file_ops.music_extensions)
        parsed_title = _strip_artist_prefix(parsed_title, [path_artist, artist])

        if not album.is_consistent:
            logger.warning(f"Album has mixed track types: {album.overview()}")

        return album.model_copy(update={
            'artist': artist,
            'parsed_artist': artist.strip(),
            'parsed_title': parsed_title,
        })
