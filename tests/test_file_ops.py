"""Unit tests for filesystem primitives."""

import pytest

from filesystem.file_ops import read_album_artist, write_album_artist
from utils.exceptions import FilesystemError


class TestFileSystemOperations:
    def test_list_files_is_recursive_and_sorted(self, file_ops, make_files, tmp_path):
        make_files(tmp_path, "b/2.mp3", "a/x/1.mp3", "a/0.jpg")

        files = file_ops.list_files(tmp_path)

        assert [f.relative_to(tmp_path).as_posix() for f in files] == ["a/0.jpg", "a/x/1.mp3", "b/2.mp3"]

    def test_list_files_of_missing_root(self, file_ops, tmp_path):
        with pytest.raises(FilesystemError):
            file_ops.list_files(tmp_path / "missing")

    def test_copy_file_creates_parents_and_overwrites(self, file_ops, make_files, tmp_path):
        source, existing = make_files(tmp_path, "src/a.mp3", "dst/deep/a.mp3")
        existing.write_bytes(b"old")

        file_ops.copy_file(source, existing)

        assert existing.read_bytes() == source.read_bytes()

    def test_copy_missing_source(self, file_ops, tmp_path):
        with pytest.raises(FilesystemError):
            file_ops.copy_file(tmp_path / "nope.mp3", tmp_path / "out.mp3")

    def test_remove_tree(self, file_ops, make_files, tmp_path):
        make_files(tmp_path, "album/1.mp3", "album/cd2/2.mp3")

        file_ops.remove_tree(tmp_path / "album")

        assert not (tmp_path / "album").exists()

    def test_extension_classification(self, file_ops, tmp_path):
        assert file_ops.is_music(tmp_path / "a.FLAC")
        assert file_ops.is_image(tmp_path / "cover.jpeg")
        assert not file_ops.is_music(tmp_path / "notes.txt")


class TestAlbumArtistTag:
    def test_unrecognized_file_has_no_artist(self, make_files, tmp_path):
        (path,) = make_files(tmp_path, "Band/Album/01.mp3")

        assert read_album_artist(path) is None

    def test_missing_file_has_no_artist(self, tmp_path):
        assert read_album_artist(tmp_path / "missing.flac") is None

    def test_writing_to_unrecognized_file_fails(self, make_files, tmp_path):
        (path,) = make_files(tmp_path, "notes.txt")

        with pytest.raises(FilesystemError):
            write_album_artist(path, "Band")
