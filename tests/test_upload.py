"""Tests for adding tracks from uploads and remote URLs."""

import io
from unittest.mock import MagicMock

import pytest
import requests

from musicstore.audiofilestore import override_track_metadata
from musicstore.errors import (
    DownloadError,
    DuplicateTrackError,
    InvalidTrackError,
    PlacementError,
)
from musicstore.upload import (
    add_track_from_upload,
    filename_from_url,
    guard_filename,
    scratch_path,
)
from tests.conftest import audio_bytes


def mock_download_session(chunks=(), error=None):
    resp = MagicMock()
    resp.iter_content.return_value = list(chunks)
    if error is not None:
        resp.raise_for_status.side_effect = error
    session = MagicMock()
    session.get.return_value.__enter__.return_value = resp
    return session


class TestGuardFilename:
    """Test guard_filename."""

    def test_empty_gets_generated_name(self):
        """Test an empty name becomes {digits}.mp3."""
        name = guard_filename("")
        assert name.endswith(".mp3")
        assert name[:-4].isdigit()

    def test_missing_extension_gets_mp3(self):
        """Test .mp3 is appended when there is no extension."""
        assert guard_filename("song") == "song.mp3"

    def test_extension_kept(self):
        """Test an existing extension is kept."""
        assert guard_filename("song.m4a") == "song.m4a"

    def test_directories_stripped(self):
        """Test client paths can't leave the scratch dir."""
        assert guard_filename("../../etc/evil.wav") == "evil.wav"

    def test_filename_from_url(self):
        """Test the last path segment is used, unquoted, without query."""
        assert filename_from_url("https://e.com/a/My%20Song.mp3?sig=1") == "My Song.mp3"
        assert filename_from_url("https://e.com/") == ""


class TestAddTrackFromUpload:
    """Test add_track_from_upload with file objects."""

    def test_upload_success_clears_scratch(self, store):
        """Test an upload is placed and its scratch copy removed."""
        data = audio_bytes("Song", "Band", "LP")

        track = add_track_from_upload(
            store, fileobj=io.BytesIO(data), filename="upload.mp3")

        assert track.id
        assert (store.file_dir / "Song-Band-LP.mp3").read_bytes() == data
        assert list(store.scratch_dir().iterdir()) == []

    def test_name_falls_back_to_upload_filename(self, store):
        """Test an untitled upload is named after its file."""
        track = add_track_from_upload(
            store, fileobj=io.BytesIO(audio_bytes(artist="Band")), filename="My Upload.mp3")
        assert track.name == "My Upload"

    def test_override_options(self, store):
        """Test form metadata overrides the tags."""
        track = add_track_from_upload(
            store,
            override_track_metadata(name="Given", album="Given LP"),
            fileobj=io.BytesIO(audio_bytes("Tagged", "Band")),
            filename="x.mp3",
        )
        assert (track.name, track.artist, track.album) == ("Given", "Band", "Given LP")

    def test_neither_source(self, store):
        """Test a request without file or URL is invalid."""
        with pytest.raises(InvalidTrackError):
            add_track_from_upload(store)

    def test_both_sources(self, store):
        """Test a request with file and URL is invalid."""
        with pytest.raises(InvalidTrackError):
            add_track_from_upload(
                store, fileobj=io.BytesIO(b"x"), audio_file_url="http://e.com/a.mp3")

    def test_failed_ingest_removes_scratch(self, store):
        """Test a rejected upload leaves nothing behind."""
        add_track_from_upload(store, fileobj=io.BytesIO(audio_bytes("Song", "Band")), filename="a.mp3")
        before = sorted(p.name for p in store.file_dir.iterdir())

        with pytest.raises(DuplicateTrackError):
            add_track_from_upload(
                store, fileobj=io.BytesIO(audio_bytes("Song", "Band")), filename="b.mp3")

        assert list(store.scratch_dir().iterdir()) == []
        assert sorted(p.name for p in store.file_dir.iterdir()) == before

    def test_unplaceable_upload_removes_scratch(self, store):
        """Test tags that can't become a filename fail cleanly."""
        with pytest.raises(PlacementError):
            add_track_from_upload(
                store, fileobj=io.BytesIO(audio_bytes("bad\x00title", "Band")), filename="a.mp3")

        assert list(store.scratch_dir().iterdir()) == []

    def test_existing_scratch_file_not_overwritten(self, store):
        """Test a name clash in scratch picks a new name."""
        old = store.scratch_dir() / "same.mp3"
        old.write_bytes(b"old")

        dst = scratch_path(store, "same.mp3")

        assert dst != old
        assert dst.parent == old.parent
        assert dst.suffix == ".mp3"
        assert old.read_bytes() == b"old"


class TestDownload:
    """Test add_track_from_upload with remote URLs."""

    def test_download_success(self, store):
        """Test a remote file is streamed, placed and recorded."""
        data = audio_bytes("Remote", "Band")
        session = mock_download_session(chunks=[data[:5], data[5:]])

        track = add_track_from_upload(
            store, audio_file_url="https://cdn.example.com/remote.mp3", session=session)

        session.get.assert_called_once_with("https://cdn.example.com/remote.mp3", stream=True)
        assert (store.file_dir / "Remote-Band-.mp3").read_bytes() == data
        assert track.audio_file_url.endswith("/local/audio/Remote-Band-.mp3")

    def test_download_http_error(self, store):
        """Test a failed download is a DownloadError with no leftovers."""
        session = mock_download_session(error=requests.HTTPError("404 Not Found"))

        with pytest.raises(DownloadError):
            add_track_from_upload(
                store, audio_file_url="https://cdn.example.com/missing.mp3", session=session)

        assert list(store.scratch_dir().iterdir()) == []
