"""Tests for the reconciliation engine over directory trees and a fake device."""

from unittest.mock import patch

import pytest

from api.schemas import SyncActionKind
from filesystem.locations import AdbLocation, open_location
from pipeline.converter import FormatConverter
from pipeline.sync_orchestrator import SyncEngine
from utils.exceptions import LocationError

from conftest import FakeDevice, failing_ffmpeg, fake_ffmpeg


@pytest.fixture
def src(tmp_path):
    return tmp_path / "src"


@pytest.fixture
def dst(tmp_path):
    return tmp_path / "dst"


@pytest.fixture
def make_engine(detector, file_ops, src, dst):
    def _make(file_type="mp3", allow_any=False, location_factory=open_location, destinations=None):
        config = {
            'sources': [str(src)],
            'destinations': destinations or [
                {'location': str(dst), 'file_type': file_type, 'allow_any': allow_any},
            ],
            'device': {'adb_path': 'adb', 'music_root': '/sdcard/Music', 'serial': None},
        }
        converter = FormatConverter(file_ops, ffmpeg_path="ffmpeg")
        return SyncEngine(config, detector, converter, location_factory=location_factory)
    return _make


def kinds(report):
    return [action.kind for action in report.actions]


class TestConvertAndCopy:
    """A lossless source reaches a lossy destination through conversion."""

    @pytest.fixture(autouse=True)
    def source_tree(self, make_files, src):
        make_files(
            src,
            "Poppy/Poppy - Choke [FLAC]/01 Track.flac",
            "Poppy/Poppy - Choke [FLAC]/cover.jpg",
        )

    def test_album_is_converted_into_the_source_and_copied(self, make_engine, src, dst):
        engine = make_engine()

        with patch("pipeline.converter.subprocess.run", side_effect=fake_ffmpeg):
            report = engine.run()[0]

        assert (src / "Poppy" / "Choke [MP3]" / "01 Track.mp3").exists()
        assert (dst / "Poppy" / "Choke [MP3]" / "01 Track.mp3").read_bytes() == b"encoded"
        assert (dst / "Poppy" / "Choke [MP3]" / "cover.jpg").exists()
        assert not (dst / "Poppy" / "Poppy - Choke [FLAC]").exists()
        assert kinds(report) == [SyncActionKind.CONVERT, SyncActionKind.COPY]
        assert report.file_operations == 4

    def test_second_run_does_nothing(self, make_engine):
        engine = make_engine()
        with patch("pipeline.converter.subprocess.run", side_effect=fake_ffmpeg):
            engine.run()

        with patch("pipeline.converter.subprocess.run", side_effect=fake_ffmpeg) as run:
            report = engine.run()[0]

        run.assert_not_called()
        assert report.file_operations == 0
        assert kinds(report) == [SyncActionKind.KEEP]

    def test_failed_conversion_is_reported_and_nothing_is_copied(self, make_engine, src, dst):
        engine = make_engine()

        with patch("pipeline.converter.subprocess.run", side_effect=failing_ffmpeg):
            report = engine.run()[0]

        assert kinds(report) == [SyncActionKind.FAILED, SyncActionKind.UNSYNCED]
        assert not (src / "Poppy" / "Choke [MP3]").exists()
        assert not (dst / "Poppy").exists()


class TestRepairExisting:
    """Albums already at the destination are repaired before anything is added."""

    def test_missing_track_is_backfilled(self, make_engine, make_files, src, dst):
        make_files(src, "Band/Album/01.mp3", "Band/Album/02.mp3")
        make_files(dst, "Band/Album/01.mp3")

        report = make_engine().run()[0]

        assert kinds(report) == [SyncActionKind.BACKFILL]
        assert report.file_operations == 1
        assert (dst / "Band" / "Album" / "02.mp3").exists()

    def test_lossy_album_is_left_alone_for_lossless_destination(self, make_engine, make_files, src, dst):
        make_files(src, "Band/Album/01.mp3")
        make_files(dst, "Band/Album/01.mp3")

        with patch("pipeline.converter.subprocess.run") as run:
            report = make_engine(file_type="flac").run()[0]

        run.assert_not_called()
        assert kinds(report) == [SyncActionKind.UNSYNCED]
        assert report.file_operations == 0
        assert (dst / "Band" / "Album" / "01.mp3").exists()

    def test_lossy_album_is_accepted_when_any_type_is_allowed(self, make_engine, make_files, src, dst):
        make_files(src, "Band/Album/01.mp3")
        make_files(dst, "Band/Album/01.mp3")

        report = make_engine(file_type="flac", allow_any=True).run()[0]

        assert kinds(report) == [SyncActionKind.ACCEPT]
        assert report.file_operations == 0

    def test_wrong_type_is_replaced(self, make_engine, make_files, src, dst):
        make_files(src, "Band/Album [FLAC]/01.flac")
        make_files(dst, "Band/Album [WAV]/01.wav")

        report = make_engine(file_type="flac").run()[0]

        assert kinds(report) == [SyncActionKind.REPLACE]
        assert report.file_operations == 2
        assert not (dst / "Band" / "Album [WAV]").exists()
        assert (dst / "Band" / "Album [FLAC]" / "01.flac").exists()

    def test_duplicate_in_another_type_is_left_alone(self, make_engine, make_files, src, dst):
        make_files(src, "Band/Album [MP3]/01.mp3")
        make_files(dst, "Band/Album [MP3]/01.mp3", "Band/Album [WAV]/01.wav")

        report = make_engine().run()[0]

        assert sorted(kinds(report)) == sorted([SyncActionKind.KEEP, SyncActionKind.UNSYNCED])
        assert (dst / "Band" / "Album [WAV]" / "01.wav").exists()

    def test_duplicate_in_another_type_is_accepted_when_any_type_is_allowed(
        self, make_engine, make_files, src, dst
    ):
        make_files(src, "Band/Album [MP3]/01.mp3")
        make_files(dst, "Band/Album [MP3]/01.mp3", "Band/Album [WAV]/01.wav")

        report = make_engine(allow_any=True).run()[0]

        assert sorted(kinds(report)) == sorted([SyncActionKind.KEEP, SyncActionKind.ACCEPT])
        assert report.file_operations == 0
        assert (dst / "Band" / "Album [WAV]" / "01.wav").exists()


class TestAddMissing:
    def test_fallback_copy_when_any_type_is_allowed(self, make_engine, make_files, src, dst):
        make_files(src, "Band/Album/01.m4a")

        report = make_engine(file_type="flac", allow_any=True).run()[0]

        assert kinds(report) == [SyncActionKind.COPY]
        assert (dst / "Band" / "Album [M4A]" / "01.m4a").exists()

    def test_no_fallback_without_allow_any(self, make_engine, make_files, src, dst):
        make_files(src, "Band/Album/01.m4a")

        report = make_engine(file_type="flac").run()[0]

        assert kinds(report) == [SyncActionKind.UNSYNCED]
        assert not (dst / "Band").exists()

    def test_mixed_source_album_is_never_copied(self, make_engine, make_files, src, dst):
        make_files(src, "Band/Album/01.mp3", "Band/Album/02.flac")

        report = make_engine().run()[0]

        assert report.actions == []
        assert not (dst / "Band").exists()


class TestRun:
    """Tests for SyncEngine.run across several destinations."""

    def test_directories_are_synced_before_devices(self, make_engine, make_files, src, tmp_path):
        make_files(src, "Band/Album/01.mp3")
        opened = []

        def factory(descriptor, config, detector):
            opened.append(descriptor)
            return open_location(str(tmp_path / "out" / descriptor.strip("/")), config, detector)

        destinations = [
            {'location': 'adb', 'file_type': 'mp3', 'allow_any': False},
            {'location': 'dir1', 'file_type': 'mp3', 'allow_any': False},
        ]
        make_engine(location_factory=factory, destinations=destinations).run()

        assert opened == ['dir1', 'adb']

    def test_unreachable_destination_does_not_stop_the_others(self, make_engine, make_files, src, dst):
        make_files(src, "Band/Album/01.mp3")

        def factory(descriptor, config, detector):
            if descriptor == 'adb':
                raise LocationError('adb', "expected exactly one attached device, found []")
            return open_location(descriptor, config, detector)

        destinations = [
            {'location': 'adb', 'file_type': 'mp3', 'allow_any': False},
            {'location': str(dst), 'file_type': 'mp3', 'allow_any': False},
        ]
        reports = make_engine(location_factory=factory, destinations=destinations).run()

        assert [r.success for r in reports] == [True, False]
        assert "attached device" in reports[1].error_message
        assert (dst / "Band" / "Album [MP3]" / "01.mp3").exists()


class TestSourceLayouts:
    """Copies keep their album identity whatever the source folder layout."""

    def test_disc_folders_of_different_albums_stay_apart(self, make_engine, make_files, src, dst):
        make_files(src, "Band/Album/CD1/01.flac", "Band/Other/CD1/01.flac")
        engine = make_engine(file_type="flac")

        first = engine.run()[0]
        second = engine.run()[0]

        assert kinds(first) == [SyncActionKind.COPY, SyncActionKind.COPY]
        assert sorted(p.relative_to(dst).as_posix() for p in dst.rglob("*.flac")) == [
            "Band/Album - CD1 [FLAC]/01.flac",
            "Band/Other - CD1 [FLAC]/01.flac",
        ]
        assert kinds(second) == [SyncActionKind.KEEP, SyncActionKind.KEEP]
        assert second.file_operations == 0

    def test_artist_prefixed_tracks_keep_their_album(self, make_engine, make_files, src, dst):
        make_files(src, "Band/Band - Album - 01 Song.flac")
        engine = make_engine(file_type="flac")

        engine.run()
        second = engine.run()[0]

        assert (dst / "Band" / "Album [FLAC]" / "Band - Album - 01 Song.flac").exists()
        assert kinds(second) == [SyncActionKind.KEEP]
        assert second.file_operations == 0


MUSIC_ROOT = "/sdcard/Music"


class TestDeviceDestination:
    """The same reconciliation against a device reached over adb."""

    @pytest.fixture
    def device_engine(self, make_engine):
        def _make(device, file_type="mp3", allow_any=False):
            def factory(descriptor, config, detector):
                return AdbLocation(device.bridge, config['device']['music_root'], detector)

            destinations = [{'location': 'adb', 'file_type': file_type, 'allow_any': allow_any}]
            return make_engine(location_factory=factory, destinations=destinations)
        return _make

    def test_converted_album_is_pushed_once(self, device_engine, make_files, src):
        make_files(
            src,
            "Poppy/Poppy - Choke [FLAC]/01 Track.flac",
            "Poppy/Poppy - Choke [FLAC]/cover.jpeg",
        )
        device = FakeDevice(directories={MUSIC_ROOT})
        engine = device_engine(device)

        with patch("pipeline.converter.subprocess.run", side_effect=fake_ffmpeg):
            first = engine.run()[0]

        album_dir = f"{MUSIC_ROOT}/Poppy/Choke [MP3]"
        assert kinds(first) == [SyncActionKind.CONVERT, SyncActionKind.COPY]
        assert device.pushed() == [f"{album_dir}/cover.jpg", f"{album_dir}/01 Track.mp3"]

        device.bridge.push_file.reset_mock()
        with patch("pipeline.converter.subprocess.run", side_effect=fake_ffmpeg) as run:
            second = engine.run()[0]

        run.assert_not_called()
        device.bridge.push_file.assert_not_called()
        assert kinds(second) == [SyncActionKind.KEEP]
        assert second.file_operations == 0

    def test_wrong_type_is_replaced_on_the_device(self, device_engine, make_files, src):
        make_files(src, "Band/Album [FLAC]/01.flac")
        device = FakeDevice(
            directories={MUSIC_ROOT, f"{MUSIC_ROOT}/Band", f"{MUSIC_ROOT}/Band/Album [WAV]"},
            files=[f"{MUSIC_ROOT}/Band/Album [WAV]/01.wav"],
        )

        report = device_engine(device, file_type="flac").run()[0]

        assert kinds(report) == [SyncActionKind.REPLACE]
        device.bridge.remove_directory_recursive.assert_called_once_with(
            f"{MUSIC_ROOT}/Band/Album [WAV]"
        )
        assert device.files == [f"{MUSIC_ROOT}/Band/Album [FLAC]/01.flac"]

    def test_missing_track_is_pushed(self, device_engine, make_files, src):
        make_files(src, "Band/Album/01.mp3", "Band/Album/02.mp3")
        device = FakeDevice(
            directories={MUSIC_ROOT, f"{MUSIC_ROOT}/Band", f"{MUSIC_ROOT}/Band/Album"},
            files=[f"{MUSIC_ROOT}/Band/Album/01.mp3"],
        )

        report = device_engine(device).run()[0]

        assert kinds(report) == [SyncActionKind.BACKFILL]
        assert device.pushed() == [f"{MUSIC_ROOT}/Band/Album/02.mp3"]
