"""
Pydantic schemas for the album synchronizer.

These models define the values passed between the catalog, the locations
and the reconciliation engine. Albums are immutable: every stage that
changes an album builds a new value.
"""

import re
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.exceptions import AlbumMergeError


class FileType(str, Enum):
    """Audio file types an album can be synchronized in."""

    MP3 = "mp3"
    WAV = "wav"
    FLAC = "flac"
    M4A = "m4a"

    @property
    def extension(self) -> str:
        return f".{self.value}"

    @property
    def label(self) -> str:
        """Name used in bracketed directory annotations, e.g. ``[FLAC]``."""
        return self.value.upper()

    @property
    def is_lossless(self) -> bool:
        return self in (FileType.FLAC, FileType.WAV)

    @classmethod
    def from_extension(cls, extension: str) -> Optional["FileType"]:
        extension = extension.lower().lstrip('.')
        for file_type in cls:
            if file_type.value == extension:
                return file_type
        return None


# Fallback order when any available type is acceptable
PREFERENCE_ORDER = [FileType.FLAC, FileType.WAV, FileType.MP3, FileType.M4A]

# Lossless types usable as conversion input, best first
LOSSLESS_ORDER = [ft for ft in PREFERENCE_ORDER if ft.is_lossless]


def strip_type_annotation(text: str, extra_names: Iterable[str] = ()) -> str:
    """
    Remove one trailing bracketed file-type annotation such as ``[FLAC]``.

    The match is case-insensitive against the known file types plus any
    extra extension names.
    """
    names = {ft.value for ft in FileType} | {n.lower().lstrip('.') for n in extra_names}
    pattern = r"\s*\[(?:" + "|".join(re.escape(n) for n in sorted(names)) + r")\]\s*$"
    return re.sub(pattern, "", text.strip(), count=1, flags=re.IGNORECASE).strip()


class Album(BaseModel):
    """One album as found in a source root or at a destination."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., description="Album title as found in the path")
    artist: str = Field(..., description="Album artist")
    tracks: List[str] = Field(default_factory=list, description="Sorted unique track file names")
    dir_path: Path = Field(..., description="Directory holding the tracks")
    cover_files: List[Path] = Field(default_factory=list, description="Full paths of cover images")
    parsed_title: str = Field(..., description="Title without file-type annotation")
    parsed_artist: str = Field(..., description="Artist used for identity and destination paths")

    def key(self) -> str:
        """Identity of the release, independent of file type and naming."""
        return f"{self.parsed_artist}###{self.parsed_title}"

    def track_types(self) -> set:
        types = set()
        for track in self.tracks:
            if '.' in track:
                types.add(track.rsplit('.', 1)[1].lower())
        return types

    def file_type(self) -> Optional[FileType]:
        """The shared file type of all tracks, or None when mixed or unknown."""
        types = self.track_types()
        if len(types) != 1:
            return None
        return FileType.from_extension(next(iter(types)))

    @property
    def is_consistent(self) -> bool:
        return len(self.track_types()) <= 1

    def title_without_filetype(self) -> str:
        return strip_type_annotation(self.title)

    def album_dir_with_type(self, root_dir: Path, file_type: Optional[FileType] = None) -> Path:
        if file_type is not None:
            title = f"{self.parsed_title} [{file_type.label}]"
        else:
            title = self.parsed_title
        return Path(root_dir) / self.parsed_artist / title

    def cover_names(self) -> List[str]:
        return [cover.name for cover in self.cover_files]

    def overview(self) -> str:
        return (
            f"{self.artist} - {self.title_without_filetype()} ({self.dir_path}; "
            f"{len(self.tracks)} tracks, {len(self.cover_files)} cover files)"
        )

    def merge_with(self, other: "Album") -> "Album":
        """
        Fold another record of the same directory into this one.

        Raises:
            AlbumMergeError: If title, artist or directory differ
        """
        if (self.title != other.title
                or self.artist != other.artist
                or self.dir_path != other.dir_path):
            raise AlbumMergeError(self, other)

        tracks = sorted(set(self.tracks) | set(other.tracks))
        cover_files = sorted(set(self.cover_files) | set(other.cover_files))

        return self.model_copy(update={'tracks': tracks, 'cover_files': cover_files})


class ReleaseInfo(BaseModel):
    """Release details returned by the music database."""

    artist: str = Field(..., description="Artist as listed by the database")
    title: str = Field(..., description="Release title as listed by the database")
    year: Optional[int] = Field(default=None, description="Release year if listed")

    @field_validator('year', mode='before')
    @classmethod
    def parse_year(cls, v):
        """Handle empty strings and convert to None."""
        if v is None or v == "" or v == "null":
            return None
        try:
            return int(v)
        except (ValueError, TypeError):
            return None

    @field_validator('artist', 'title')
    @classmethod
    def strip_whitespace(cls, v):
        return v.strip()


class SyncActionKind(str, Enum):
    KEEP = "keep"
    BACKFILL = "backfill"
    REPLACE = "replace"
    COPY = "copy"
    CONVERT = "convert"
    ACCEPT = "accept"
    UNSYNCED = "unsynced"
    FAILED = "failed"


class SyncAction(BaseModel):
    """A single decision taken for one album during a pass."""

    kind: SyncActionKind
    album_key: str
    detail: str = ""
    files_transferred: int = 0
    albums_deleted: int = 0


class SyncReport(BaseModel):
    """Outcome of reconciling one destination."""

    destination: str
    file_type: FileType
    allow_any: bool = False
    actions: List[SyncAction] = Field(default_factory=list)
    error_message: Optional[str] = None

    def add(self, kind: SyncActionKind, album_key: str, detail: str = "",
            files_transferred: int = 0, albums_deleted: int = 0) -> SyncAction:
        action = SyncAction(
            kind=kind,
            album_key=album_key,
            detail=detail,
            files_transferred=files_transferred,
            albums_deleted=albums_deleted,
        )
        self.actions.append(action)
        return action

    def of_kind(self, kind: SyncActionKind) -> List[SyncAction]:
        return [a for a in self.actions if a.kind == kind]

    @property
    def file_operations(self) -> int:
        """Files transferred plus albums deleted at the destination."""
        return sum(a.files_transferred + a.albums_deleted for a in self.actions)

    @property
    def success(self) -> bool:
        return self.error_message is None
