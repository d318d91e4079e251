"""
Reconciliation of source roots with destination locations.

For each destination and desired file type the engine first repairs the
albums already present (keep and backfill, replace, or leave alone) and
then adds every source album the destination does not have yet. Errors are
scoped to one file, one album or one destination; the pass always carries
on with the rest.
"""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from api.schemas import Album, FileType, SyncActionKind, SyncReport
from filesystem.album_detector import AlbumDetector
from filesystem.locations import Location, open_location
from pipeline.converter import FormatConverter
from pipeline.source_index import SourceLookupIndex, SourcePlanKind, plan_source
from utils.config_loader import DEVICE_MARKER
from utils.exceptions import ConversionError, MorgError

logger = logging.getLogger(__name__)

LocationFactory = Callable[[str, Dict[str, Any], AlbumDetector], Location]


class SyncEngine:
    """
    Drives locations and the converter until every destination holds every
    source album in its desired file type.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        detector: AlbumDetector,
        converter: FormatConverter,
        location_factory: LocationFactory = open_location,
    ):
        self.config = config
        self.detector = detector
        self.converter = converter
        self.location_factory = location_factory
        self.source_dirs = [Path(s).expanduser() for s in config['sources']]

    def build_index(self) -> SourceLookupIndex:
        return SourceLookupIndex.build(self.source_dirs, self.detector)

    def obtain_copy(
        self,
        index: SourceLookupIndex,
        key: str,
        desired: FileType,
        allow_any: bool,
        allow_fallback: bool,
        report: SyncReport,
    ) -> Optional[Album]:
        """
        Resolve the source album to use for ``key``, converting if needed.

        Returns:
            The album to copy from, or None when no suitable source exists
        """
        plan = plan_source(index, key, desired, allow_any, allow_fallback)

        if plan.kind == SourcePlanKind.NONE:
            return None

        if plan.kind != SourcePlanKind.CONVERT:
            if plan.kind == SourcePlanKind.FALLBACK:
                logger.info(
                    f"No {desired.label} source for {plan.entry.album.overview()}, "
                    f"falling back to {plan.entry.album.file_type().label}"
                )
            return plan.entry.album

        source = plan.entry
        try:
            converted = self.converter.convert(source.album, source.source_root, desired)
        except ConversionError as e:
            logger.warning(f"Conversion failed: {e}")
            report.add(SyncActionKind.FAILED, key, str(e))
            return None

        index.add(converted, source.source_root)
        report.add(
            SyncActionKind.CONVERT, key,
            f"{source.album.dir_path} -> {converted.dir_path}",
            files_transferred=len(converted.tracks) + len(converted.cover_files),
        )
        return converted

    def _repair_album(
        self,
        location: Location,
        index: SourceLookupIndex,
        album: Album,
        desired: FileType,
        allow_any: bool,
        satisfied: set,
        report: SyncReport,
    ) -> None:
        key = album.key()

        if album.file_type() == desired:
            src = self.obtain_copy(index, key, desired, allow_any, False, report)
            if src is None:
                logger.info(f"Keeping {album.overview()}; no source to backfill from")
                report.add(SyncActionKind.KEEP, key, "no source to backfill from")
                return

            copied = location.copy_missing_files(src, album)
            kind = SyncActionKind.BACKFILL if copied else SyncActionKind.KEEP
            report.add(kind, key, str(src.dir_path), files_transferred=copied)
            return

        if key in satisfied and allow_any:
            logger.info(f"Accepting {album.overview()} as is next to its {desired.label} copy")
            report.add(SyncActionKind.ACCEPT, key, f"duplicate of a {desired.label} copy")
            return

        if key in satisfied:
            logger.warning(
                f"{album.overview()} is not {desired.label} but a {desired.label} copy "
                f"is already present; leaving it untouched"
            )
            report.add(SyncActionKind.UNSYNCED, key, f"duplicate of a {desired.label} copy")
            return

        src = self.obtain_copy(index, key, desired, allow_any, False, report)
        if src is not None:
            location.del_album(album)
            copied = location.copy_full_album(src)
            satisfied.add(key)
            report.add(
                SyncActionKind.REPLACE, key, f"{album.dir_path} -> {src.dir_path}",
                files_transferred=copied, albums_deleted=1,
            )
        elif allow_any:
            logger.info(f"Accepting {album.overview()} as is")
            report.add(SyncActionKind.ACCEPT, key)
        else:
            logger.warning(f"No suitable {desired.label} source for {album.overview()}")
            report.add(SyncActionKind.UNSYNCED, key, "no suitable source")

    def sync_location(self, location: Location, desired: FileType, allow_any: bool) -> SyncReport:
        """
        Reconcile one destination.

        Existing albums are always repaired before missing albums are added.
        """
        report = SyncReport(destination=str(location), file_type=desired, allow_any=allow_any)
        logger.info(f"Syncing {location} as {desired.label} (allow any: {allow_any})")

        index = self.build_index()
        existing = location.albums()
        satisfied = {a.key() for a in existing if a.file_type() == desired}

        for album in existing:
            try:
                self._repair_album(location, index, album, desired, allow_any, satisfied, report)
            except MorgError as e:
                logger.error(f"Failed to sync {album.overview()}: {e}")
                report.add(SyncActionKind.FAILED, album.key(), str(e))

        # Conversions above may have produced new source albums
        index = self.build_index()
        represented = {a.key() for a in existing}

        for key in index.keys():
            if key in represented:
                continue

            try:
                src = self.obtain_copy(index, key, desired, allow_any, True, report)
                if src is None:
                    logger.warning(f"No suitable {desired.label} source for {key}")
                    report.add(SyncActionKind.UNSYNCED, key, "no suitable source")
                    continue

                copied = location.copy_full_album(src)
                report.add(SyncActionKind.COPY, key, str(src.dir_path), files_transferred=copied)
            except MorgError as e:
                logger.error(f"Failed to add {key}: {e}")
                report.add(SyncActionKind.FAILED, key, str(e))

        logger.info(
            f"Finished {location}: {report.file_operations} file operations, "
            f"{len(report.of_kind(SyncActionKind.UNSYNCED))} albums unsynced, "
            f"{len(report.of_kind(SyncActionKind.FAILED))} failures"
        )
        return report

    def run(self, destinations: Optional[List[Dict[str, Any]]] = None) -> List[SyncReport]:
        """
        Reconcile every configured destination, one at a time.

        Directory destinations go first so that conversions land in a
        source root before any device needs them. A destination that
        cannot be opened is reported and skipped.
        """
        if destinations is None:
            destinations = self.config['destinations']

        ordered = sorted(destinations, key=lambda d: d['location'] == DEVICE_MARKER)

        reports = []
        start_time = time.time()
        for dest in ordered:
            desired = FileType(dest['file_type'])
            allow_any = dest.get('allow_any', False)

            try:
                location = self.location_factory(dest['location'], self.config, self.detector)
                reports.append(self.sync_location(location, desired, allow_any))
            except MorgError as e:
                logger.error(f"Skipping destination {dest['location']}: {e}")
                reports.append(SyncReport(
                    destination=dest['location'],
                    file_type=desired,
                    allow_any=allow_any,
                    error_message=str(e),
                ))

        logger.info(f"Sync completed in {time.time() - start_time:.2f} seconds")
        return reports
