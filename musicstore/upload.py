"""Adding tracks from an upload or a remote URL.

The incoming bytes are first written to the store's scratch directory
({file_dir}/.tmp); that file is what AudioFileStore.add_track ingests.
"""

import shutil
import time
from pathlib import Path
from typing import BinaryIO, Optional
from urllib.parse import unquote, urlparse

import requests

from musicstore.audiofilestore import AudioFileStore, AddTrackOption
from musicstore.errors import DownloadError, IngestionError, InvalidTrackError
from musicstore.models import Track

DEFAULT_EXTENSION = ".mp3"
DOWNLOAD_CHUNK_SIZE = 64 * 1024


def guard_filename(filename: str) -> str:
    """
    - keep only the base name
    - empty: generate one from the clock
    - no extension: append .mp3
    """
    filename = Path(filename or "").name
    if not filename:
        filename = f"{time.time_ns()}{DEFAULT_EXTENSION}"
    if not Path(filename).suffix:
        filename += DEFAULT_EXTENSION
    return filename


def scratch_path(store: AudioFileStore, filename: str) -> Path:
    dst = store.scratch_dir() / guard_filename(filename)
    # an existing scratch file may share its inode with a placed file
    if dst.exists():
        dst = dst.with_name(f"{dst.stem}-{time.time_ns()}{dst.suffix}")
    return dst


def save_upload(store: AudioFileStore, filename: str, fileobj: BinaryIO) -> Path:
    dst = scratch_path(store, filename)
    with dst.open("wb") as out:
        shutil.copyfileobj(fileobj, out)
    return dst


def filename_from_url(url: str) -> str:
    return unquote(urlparse(url).path.rsplit("/", 1)[-1])


def download_to_scratch(
    store: AudioFileStore,
    url: str,
    session: Optional[requests.Session] = None,
) -> Path:
    http = session or requests
    dst = scratch_path(store, filename_from_url(url))
    try:
        with http.get(url, stream=True) as resp:
            resp.raise_for_status()
            with dst.open("wb") as out:
                for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    out.write(chunk)
    except (requests.RequestException, OSError) as e:
        dst.unlink(missing_ok=True)
        raise DownloadError(f"download {url} failed") from e
    return dst


def add_track_from_upload(
    store: AudioFileStore,
    *options: AddTrackOption,
    fileobj: Optional[BinaryIO] = None,
    filename: str = "",
    audio_file_url: str = "",
    session: Optional[requests.Session] = None,
) -> Track:
    """Ingest exactly one of an uploaded file object or a remote URL.

    The scratch copy is removed if ingestion fails.
    """
    if fileobj is None and not audio_file_url:
        raise InvalidTrackError("neither File nor AudioFileURL is provided")
    if fileobj is not None and audio_file_url:
        raise InvalidTrackError(
            "both File and AudioFileURL are provided, but only one is allowed")

    if fileobj is not None:
        try:
            saved = save_upload(store, filename, fileobj)
        except OSError as e:
            raise DownloadError(f"save upload {filename!r} failed") from e
    else:
        saved = download_to_scratch(store, audio_file_url, session=session)

    try:
        return store.add_track(saved, *options)
    except IngestionError:
        saved.unlink(missing_ok=True)
        raise
