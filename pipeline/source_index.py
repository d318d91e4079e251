"""
Lookup of the best available source copy of an album.

The index is rebuilt for every operation from the configured source roots
and never persisted. ``plan_source`` holds the whole "exact copy, else
convert, else fall back" policy and is shared by every destination kind.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from api.schemas import Album, FileType, LOSSLESS_ORDER, PREFERENCE_ORDER
from filesystem.album_detector import AlbumDetector
from utils.exceptions import FilesystemError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceEntry:
    album: Album
    source_root: Path


class SourceLookupIndex:
    """Source albums keyed by (album key, file type)."""

    def __init__(self):
        self._entries: Dict[Tuple[str, FileType], SourceEntry] = {}
        self.excluded: List[Album] = []

    @classmethod
    def build(cls, source_dirs: Iterable[Path], detector: AlbumDetector) -> "SourceLookupIndex":
        """
        Scan every source root in order; later roots win key collisions.

        Albums whose tracks do not share one file type are left out.
        An unreadable root is logged and skipped.
        """
        index = cls()
        for source_dir in source_dirs:
            source_dir = Path(source_dir)
            try:
                albums = detector.albums_in_dir(source_dir)
            except FilesystemError as e:
                logger.error(f"Cannot scan source {source_dir}: {e}")
                continue

            for album in albums:
                index.add(album, source_dir)

        logger.info(
            f"Indexed {len(index)} source albums "
            f"({len(index.excluded)} without a single file type)"
        )
        return index

    def add(self, album: Album, source_root: Path) -> None:
        file_type = album.file_type()
        if file_type is None:
            self.excluded.append(album)
            return

        slot = (album.key(), file_type)
        previous = self._entries.get(slot)
        if previous is not None and previous.album.dir_path != album.dir_path:
            logger.debug(
                f"{album.overview()} replaces {previous.album.dir_path} in the source index"
            )
        self._entries[slot] = SourceEntry(album, Path(source_root))

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str, file_type: FileType) -> Optional[SourceEntry]:
        return self._entries.get((key, file_type))

    def types_for(self, key: str) -> List[FileType]:
        """Available file types of one album, in preference order."""
        return [ft for ft in PREFERENCE_ORDER if (key, ft) in self._entries]

    def keys(self) -> List[str]:
        return sorted({key for key, _ in self._entries})

    def lossless_source(self, key: str) -> Optional[SourceEntry]:
        for file_type in LOSSLESS_ORDER:
            entry = self.get(key, file_type)
            if entry is not None:
                return entry
        return None


class SourcePlanKind(str, Enum):
    EXACT = "exact"
    CONVERT = "convert"
    FALLBACK = "fallback"
    NONE = "none"


@dataclass(frozen=True)
class SourcePlan:
    kind: SourcePlanKind
    entry: Optional[SourceEntry] = None

    @property
    def found(self) -> bool:
        return self.kind != SourcePlanKind.NONE


def plan_source(
    index: SourceLookupIndex,
    key: str,
    desired: FileType,
    allow_any: bool = False,
    allow_fallback: bool = True,
) -> SourcePlan:
    """
    Decide where the copy of an album in the desired type comes from.

    Order: an exact source in the desired type; a conversion from a
    lossless source when the desired type is lossy; when both
    ``allow_any`` and ``allow_fallback`` hold, the first available type in
    the order FLAC, WAV, MP3, M4A.
    """
    entry = index.get(key, desired)
    if entry is not None:
        return SourcePlan(SourcePlanKind.EXACT, entry)

    if not desired.is_lossless:
        entry = index.lossless_source(key)
        if entry is not None:
            return SourcePlan(SourcePlanKind.CONVERT, entry)

    if allow_any and allow_fallback:
        for file_type in index.types_for(key):
            return SourcePlan(SourcePlanKind.FALLBACK, index.get(key, file_type))

    return SourcePlan(SourcePlanKind.NONE)
