"""
Converter - Materialize an album in another file type using FFmpeg.

One encoder process runs per track. Output is staged in a temporary
directory and only moved next to the source album once every track has
been produced, so a failed conversion leaves nothing behind.

Supported targets:
- MP3  (libmp3lame, fixed bitrate, tags passed through)
- M4A  (AAC, fixed bitrate, tags passed through)
- FLAC (lossless re-encode)
- WAV  (plain PCM)

A lossy source is never converted to a lossless target.
"""

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import List

from api.schemas import Album, FileType
from filesystem.file_ops import FileSystemOperations
from utils.exceptions import ConversionError, ConversionPolicyError, FilesystemError

logger = logging.getLogger(__name__)


class FormatConverter:
    """Converts whole albums with an external encoder."""

    def __init__(
        self,
        file_ops: FileSystemOperations,
        ffmpeg_path: str = "ffmpeg",
        mp3_bitrate: str = "320k",
        m4a_bitrate: str = "256k",
    ):
        self.file_ops = file_ops
        self.ffmpeg_path = ffmpeg_path
        self.mp3_bitrate = mp3_bitrate
        self.m4a_bitrate = m4a_bitrate

    def encoder_args(self, target: FileType) -> List[str]:
        if target == FileType.MP3:
            return ["-codec:a", "libmp3lame", "-b:a", self.mp3_bitrate,
                    "-map_metadata", "0", "-id3v2_version", "3"]
        if target == FileType.M4A:
            return ["-codec:a", "aac", "-b:a", self.m4a_bitrate, "-map_metadata", "0"]
        if target == FileType.FLAC:
            return ["-codec:a", "flac", "-map_metadata", "0"]
        return []

    def check_policy(self, album: Album, target: FileType) -> FileType:
        """
        Validate a conversion before any work is done.

        Returns:
            The source file type

        Raises:
            ConversionPolicyError: For lossy to lossless requests
            ConversionError: If the album has no single file type
        """
        source_type = album.file_type()
        if source_type is None:
            raise ConversionError(album.overview(), "tracks do not share one file type")
        if target.is_lossless and not source_type.is_lossless:
            raise ConversionPolicyError(album.overview(), source_type.label, target.label)
        return source_type

    def _encode(self, source: Path, output: Path, target: FileType) -> None:
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-y",  # Overwrite output
            "-i", str(source),
            "-vn",  # No embedded pictures
            *self.encoder_args(target),
            str(output),
        ]
        logger.debug(f"Encoding {source.name} -> {output.name}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",  # Handle non-UTF8 bytes gracefully
            )
        except (subprocess.SubprocessError, OSError) as e:
            raise ConversionError(str(source), f"could not run {self.ffmpeg_path}: {e}")

        if result.returncode != 0:
            raise ConversionError(str(source), f"ffmpeg failed: {result.stderr[:500]}")
        if not output.exists():
            raise ConversionError(str(source), "output file not created")

    def convert(self, album: Album, source_root: Path, target: FileType) -> Album:
        """
        Convert an album into ``<source_root>/<artist>/<title> [<TYPE>]``.

        Args:
            album: Source album with a single file type
            source_root: Source root the album was found in
            target: Desired file type

        Returns:
            The converted album

        Raises:
            ConversionPolicyError: For lossy to lossless requests
            ConversionError: If any track fails to encode
        """
        self.check_policy(album, target)

        target_dir = album.album_dir_with_type(source_root, target)
        logger.info(f"Converting {album.overview()} to {target.label} in {target_dir}")

        tracks = [Path(track).stem + target.extension for track in album.tracks]
        covers = [cover.name for cover in album.cover_files]

        with tempfile.TemporaryDirectory(prefix="morg-convert-") as staging:
            staging = Path(staging)

            try:
                for cover in album.cover_files:
                    self.file_ops.copy_file(cover, staging / cover.name)
            except FilesystemError as e:
                raise ConversionError(album.overview(), str(e))

            for track, output_name in zip(album.tracks, tracks):
                self._encode(album.dir_path / track, staging / output_name, target)

            try:
                for name in tracks + covers:
                    self.file_ops.move_file(staging / name, target_dir / name)
            except FilesystemError as e:
                raise ConversionError(album.overview(), str(e))

        logger.info(f"Converted {len(tracks)} tracks of {album.overview()}")

        return album.model_copy(update={
            'title': f"{album.parsed_title} [{target.label}]",
            'tracks': sorted(tracks),
            'dir_path': target_dir,
            'cover_files': sorted(target_dir / name for name in covers),
        })
