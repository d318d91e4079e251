#!/usr/bin/env python3
"""
morg: keep music players and backup drives in sync with a music library.

Every configured destination (a directory or an adb-connected phone) is
reconciled with the source roots so that it holds every album in its
preferred file type, converting from lossless sources where needed.
"""

import argparse
import os
import sys
from pathlib import Path
from typing import Any, Dict

# Enable UTF-8 mode for universal file compatibility
if not os.environ.get('PYTHONUTF8'):
    os.environ['PYTHONUTF8'] = '1'

from api.client import DiscogsClient
from caching.cache_manager import ReleaseInfoCache
from filesystem.album_detector import AlbumDetector
from filesystem.file_ops import FileSystemOperations, read_album_artist, write_album_artist
from filesystem.locations import open_location
from pipeline.converter import FormatConverter
from pipeline.source_index import SourceLookupIndex
from pipeline.sync_orchestrator import SyncEngine
from utils.config_loader import get_config_template, load_config
from utils.exceptions import MorgError
from utils.logging_config import configure_library_logging, setup_logging


def parse_arguments() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Synchronize album collections to directories and adb devices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s sync                         # Sync every configured destination
  %(prog)s list adb                     # List albums on the attached phone
  %(prog)s list ~/Music/lossless        # List albums in a directory
  %(prog)s covers                       # Download missing covers from Discogs
  %(prog)s init-config > config.yaml    # Print a configuration template
        """
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (default: ./config.yaml)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("sync", help="Reconcile all destinations with the sources")

    list_parser = subparsers.add_parser("list", help="List the albums at a location")
    list_parser.add_argument("location", help="Directory path or 'adb'")

    lookup_parser = subparsers.add_parser("lookup", help="Look up source albums on Discogs")
    lookup_parser.add_argument("--refresh", action="store_true", help="Ignore cached results")

    subparsers.add_parser("covers", help="Download covers for source albums without one")
    subparsers.add_parser("set-artist", help="Write the album artist tag to every source track")
    subparsers.add_parser("init-config", help="Print a configuration template")

    return parser.parse_args()


def build_detector(config: Dict[str, Any]) -> AlbumDetector:
    file_ops = FileSystemOperations(
        music_extensions=config['filesystem']['music_extensions'],
        image_extensions=config['filesystem']['image_extensions'],
    )
    return AlbumDetector(file_ops, tag_reader=read_album_artist)


def build_discogs_client(config: Dict[str, Any]) -> DiscogsClient:
    discogs = config['discogs']
    return DiscogsClient(discogs['key'], discogs['secret'], discogs['user_agent'])


def run_sync(config: Dict[str, Any], logger) -> int:
    detector = build_detector(config)
    encoder = config['encoder']
    converter = FormatConverter(
        detector.file_ops,
        ffmpeg_path=encoder['ffmpeg_path'],
        mp3_bitrate=encoder['mp3_bitrate'],
        m4a_bitrate=encoder['m4a_bitrate'],
    )
    engine = SyncEngine(config, detector, converter)
    reports = engine.run()

    failed = 0
    for report in reports:
        if report.success:
            print(f"{report.destination} [{report.file_type.label}]: "
                  f"{report.file_operations} file operations, "
                  f"{len(report.actions)} album decisions")
        else:
            failed += 1
            print(f"{report.destination}: skipped ({report.error_message})", file=sys.stderr)

    logger.info(f"Synced {len(reports) - failed} of {len(reports)} destinations")
    if reports and failed == len(reports):
        return 1
    return 0


def run_list(config: Dict[str, Any], descriptor: str) -> int:
    detector = build_detector(config)
    location = open_location(descriptor, config, detector)
    for album in location.albums():
        file_type = album.file_type()
        label = file_type.label if file_type else "MIXED"
        print(f"[{label}] {album.overview()}")
    return 0


def source_albums(config: Dict[str, Any], detector: AlbumDetector):
    for source_dir in config['sources']:
        for album in detector.albums_in_dir(Path(source_dir).expanduser()):
            yield album


def run_lookup(config: Dict[str, Any], refresh: bool, logger) -> int:
    discogs = config['discogs']
    cache = ReleaseInfoCache(
        Path(discogs['cache_file']).expanduser(),
        build_discogs_client(config),
        refresh=refresh,
        min_remaining=discogs['min_remaining'],
        pause_seconds=discogs['pause_seconds'],
    )
    index = SourceLookupIndex.build(
        [Path(s).expanduser() for s in config['sources']], build_detector(config)
    )
    for key in index.keys():
        album = index.get(key, index.types_for(key)[0]).album
        try:
            info = cache.get_release_info(album)
            print(f"{album.parsed_artist} - {album.parsed_title}: "
                  f"{info.artist} - {info.title} ({info.year or 'unknown year'})")
        except MorgError as e:
            logger.warning(f"Lookup failed for {album.overview()}: {e}")
    return 0


def run_covers(config: Dict[str, Any], logger) -> int:
    discogs = config['discogs']
    client = build_discogs_client(config)
    cache = ReleaseInfoCache(
        Path(discogs['cache_file']).expanduser(),
        client,
        min_remaining=discogs['min_remaining'],
        pause_seconds=discogs['pause_seconds'],
    )
    for album in source_albums(config, build_detector(config)):
        if album.cover_files or not album.tracks:
            continue
        try:
            cover_path, remaining = client.download_cover(album)
            if cover_path is None:
                logger.info(f"No cover listed for {album.overview()}")
            cache.respect_rate_limit(remaining)
        except MorgError as e:
            logger.warning(f"Cover download failed for {album.overview()}: {e}")
    return 0


def run_set_artist(config: Dict[str, Any], logger) -> int:
    for album in source_albums(config, build_detector(config)):
        for track in album.tracks:
            try:
                write_album_artist(album.dir_path / track, album.artist)
            except MorgError as e:
                logger.error(f"Failed to tag {album.overview()}: {e}")
                break
    return 0


def main() -> int:
    """Main entry point."""
    try:
        args = parse_arguments()

        if args.command == "init-config":
            print(get_config_template())
            return 0

        config_path = args.config or Path.cwd() / "config.yaml"
        if not config_path.exists():
            print(f"Config file not found at: {config_path}", file=sys.stderr)
            print("Using default configuration...", file=sys.stderr)
        config = load_config(config_path)

        log_level = "DEBUG" if args.verbose else config['logging']['level']
        log_file = config['logging']['file']
        logger = setup_logging(log_level, Path(log_file).expanduser() if log_file else None)
        configure_library_logging()

        if args.command == "sync":
            return run_sync(config, logger)
        if args.command == "list":
            return run_list(config, args.location)
        if args.command == "lookup":
            return run_lookup(config, args.refresh, logger)
        if args.command == "covers":
            return run_covers(config, logger)
        if args.command == "set-artist":
            return run_set_artist(config, logger)
        return 1

    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        return 1
    except MorgError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        # Handle encoding errors in the exception message itself
        try:
            error_msg = str(e)
        except (UnicodeDecodeError, UnicodeEncodeError):
            error_msg = repr(e).encode('utf-8', errors='replace').decode('utf-8')

        print(f"Unexpected error: {error_msg}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
