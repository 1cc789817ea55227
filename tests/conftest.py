"""Shared fixtures.

Pipeline tests don't need real audio: `write_audio` stores the tags as JSON
in the file body and `fake_tags` swaps the extractor for one that reads
them back. That keeps files byte-comparable after placement.
"""

import json
from pathlib import Path

import pytest

from musicstore.audiofilestore import AudioFileStore
from musicstore.catalog import TrackCatalog, make_engine
from musicstore.errors import ExtractionError
from musicstore.models import Track


def write_audio(path: Path, title: str = "", artist: str = "", album: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(json.dumps({"title": title, "artist": artist, "album": album}).encode())
    return path


def audio_bytes(title: str = "", artist: str = "", album: str = "") -> bytes:
    return json.dumps({"title": title, "artist": artist, "album": album}).encode()


def fake_track_from_audio_file(path) -> Track:
    path = Path(path)
    try:
        tags = json.loads(path.read_bytes())
    except (OSError, ValueError) as e:
        raise ExtractionError(f"could not read {path}") from e
    return Track(
        name=tags.get("title") or path.stem,
        artist=tags.get("artist", ""),
        album=tags.get("album", ""),
    )


@pytest.fixture
def fake_tags(monkeypatch):
    monkeypatch.setattr(
        "musicstore.audiofilestore.track_from_audio_file", fake_track_from_audio_file)


@pytest.fixture
def catalog(tmp_path):
    return TrackCatalog(make_engine(str(tmp_path / "musicstore.db")))


@pytest.fixture
def store(tmp_path, catalog, fake_tags):
    return AudioFileStore(
        name="local",
        file_dir=tmp_path / "music",
        base_url="http://localhost:8080",
        catalog=catalog,
    )


@pytest.fixture
def sources(tmp_path):
    """Directory outside any store for source files."""
    d = tmp_path / "sources"
    d.mkdir()
    return d
