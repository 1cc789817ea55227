"""
Audio file stores: a local directory of audio files exposed under a base URL.

An AudioFileStore turns an audio file into a catalog Track:

    extract tags -> apply options -> duplicate check -> hard link into
    file_dir -> derive URL -> (emotion analysis) -> persist

Every step after the hard link undoes it when it fails, so a failed
ingestion leaves neither a placed file nor a catalog row behind.
"""

import os
import queue
import threading
from pathlib import Path
from typing import Callable, Iterator, Optional
from urllib.parse import quote

from loguru import logger

from musicstore.catalog import TrackCatalog
from musicstore.emomusic_client import EmomusicClient
from musicstore.errors import (
    AnalysisError,
    DestinationExistsError,
    DuplicateTrackError,
    EmomusicError,
    IngestionError,
    InvalidTrackError,
    PlacementError,
    UrlDerivationError,
)
from musicstore.metadata import track_from_audio_file
from musicstore.models import Track

SUPPORTED_EXTENSIONS = (".mp3", ".wav", ".m4a")
SCRATCH_DIRNAME = ".tmp"
ENUM_QUEUE_SIZE = 3  # walker blocks once this many paths wait for ingestion

# Options run in order on the freshly extracted track, before the
# duplicate check and before anything is written.
AddTrackOption = Callable[[Track], None]


def override_track_metadata(
    name: str = "",
    artist: str = "",
    album: str = "",
    cover_image_url: str = "",
) -> AddTrackOption:
    """Replace the extracted fields with the non-empty values given here."""
    overrides = {
        "name": name,
        "artist": artist,
        "album": album,
        "cover_image_url": cover_image_url,
    }

    def apply(track: Track) -> None:
        for field, value in overrides.items():
            if value:
                setattr(track, field, value)

    return apply


def string_to_snake(s: str) -> str:
    """'a string with spaces' -> 'a_string_with_spaces'"""
    for ch in (" ", "/", "\\"):
        s = s.replace(ch, "_")
    return s


def canonical_filename(track: Track, ext: str) -> str:
    """{name}-{artist}-{album}{ext}, ext including the dot."""
    return "%s-%s-%s%s" % (
        string_to_snake(track.name),
        string_to_snake(track.artist),
        string_to_snake(track.album),
        ext,
    )


def is_music_file(path: str | Path) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def _raise(err: OSError) -> None:
    raise err


def enum_music_files(root: str | Path, skip_dirs: tuple[str, ...] = ()) -> Iterator[Path]:
    """Lazily yield the music files under `root`.

    The tree is walked by a background thread feeding a small bounded queue,
    so the walk never runs far ahead of the consumer. The returned iterator
    can be consumed once. A walk error ends the sequence early.
    """
    if not str(root):
        raise ValueError("empty dir")
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"not a dir: {root}")

    paths: queue.Queue = queue.Queue(maxsize=ENUM_QUEUE_SIZE)
    done = object()

    def walk() -> None:
        try:
            for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
                dirnames[:] = sorted(d for d in dirnames if d not in skip_dirs)
                for filename in sorted(filenames):
                    if is_music_file(filename):
                        paths.put(Path(dirpath) / filename)
        except OSError as e:
            logger.error(f"enum_music_files: walk {root} failed: {e}")
        finally:
            paths.put(done)

    threading.Thread(target=walk, name=f"walk:{root}", daemon=True).start()

    def drain() -> Iterator[Path]:
        while True:
            item = paths.get()
            if item is done:
                return
            yield item

    return drain()


class AudioFileStore:
    """Stores audio files in a local directory and catalogs them.

    Placed files live directly under file_dir and are served at
    {base_url}/{name}/audio/{filename}.
    """

    def __init__(
        self,
        name: str,
        file_dir: str | Path,
        base_url: str,
        catalog: TrackCatalog,
        emomusic: Optional[EmomusicClient] = None,
    ):
        self.name = name
        self.file_dir = Path(file_dir)
        self.base_url = base_url
        self.catalog = catalog
        self.emomusic = emomusic
        self.log = logger.bind(store=name)

        self.file_dir.mkdir(parents=True, exist_ok=True)

    @property
    def enable_emomusic(self) -> bool:
        return self.emomusic is not None

    @property
    def audio_static_path(self) -> str:
        return f"/{self.name}/audio"

    def scratch_dir(self) -> Path:
        """{file_dir}/.tmp, for uploads and downloads not yet placed."""
        tmp = self.file_dir / SCRATCH_DIRNAME
        tmp.mkdir(exist_ok=True)
        return tmp

    def contains(self, path: str | Path) -> bool:
        return Path(path).resolve().is_relative_to(self.file_dir.resolve())

    # -------- placement --------

    def canonical_path(self, track: Track, source: str | Path) -> Path:
        return self.file_dir / canonical_filename(track, Path(source).suffix)

    def place(self, track: Track, source: str | Path) -> Path:
        """Hard link `source` to its canonical path in file_dir; return that path.

        Never overwrites: an existing destination is a DestinationExistsError.
        """
        dst = self.canonical_path(track, source)

        # tag text ends up in the filename: NUL bytes raise ValueError and
        # long UTF-8 names raise ENAMETOOLONG, from exists() as well as link()
        try:
            if dst.exists() or dst.is_symlink():
                raise DestinationExistsError(f"file already exists: {dst}")
            os.link(source, dst)
        except FileExistsError as e:
            raise DestinationExistsError(f"file already exists: {dst}") from e
        except (OSError, ValueError) as e:
            raise PlacementError(f"link {source} -> {dst} failed") from e

        return dst

    def audio_relative_path(self, path: str | Path) -> str:
        """Path of a placed file relative to file_dir, in URL (posix) form."""
        try:
            rel = Path(path).resolve().relative_to(self.file_dir.resolve())
        except ValueError as e:
            raise UrlDerivationError(f"{path} is outside {self.file_dir}") from e
        return rel.as_posix()

    def audio_url(self, path: str | Path) -> str:
        """base_url + audio_static_path + relative path"""
        rel = self.audio_relative_path(path)
        return "/".join([
            self.base_url.rstrip("/"),
            self.audio_static_path.strip("/"),
            quote(rel),
        ])

    def _remove_placed(self, path: Path) -> None:
        try:
            path.unlink()
        except OSError as e:
            self.log.warning(f"rollback: remove {path} failed: {e}")

    # -------- ingestion --------

    def add_track(self, path: str | Path, *options: AddTrackOption) -> Track:
        """Add the audio file at `path` to the store and the catalog.

        The file is hard linked into file_dir as
        {name}-{artist}-{album}{ext}. If `path` was already inside file_dir
        the original is removed afterwards, which makes this a rename.

        Raises an IngestionError subclass naming the step that failed.
        """
        source = Path(path)

        track = track_from_audio_file(source)

        for opt in options:
            opt(track)

        if not track.name:
            raise InvalidTrackError(f"track name is empty: {source}")

        # before any side effect: the common "already there" case costs one query
        if self.catalog.exists(track):
            raise DuplicateTrackError(
                f"track already exists: {track.name!r} by {track.artist!r}")

        placed = self.place(track, source)

        try:
            track.audio_file_url = self.audio_url(placed)
        except UrlDerivationError:
            self._remove_placed(placed)
            raise

        if self.enable_emomusic:
            try:
                emotion = self.emomusic.analyze_uri(track.audio_file_url)
            except EmomusicError as e:
                self._remove_placed(placed)
                raise AnalysisError(f"analyze {track.audio_file_url}") from e
            track.set_emotion(emotion)

        try:
            self.catalog.create_if_absent(track)
        except IngestionError:
            self._remove_placed(placed)
            raise

        self.log.info(
            f"AddTrack: success: id={track.id} name={track.name!r} url={track.audio_file_url}")

        if self.contains(source) and source.resolve() != placed.resolve():
            try:
                source.unlink()
            except OSError as e:
                self.log.warning(f"AddTrack: remove original {source} failed: {e}")

        return track

    def add_tracks_from_dir(self) -> int:
        """Ingest every music file under file_dir, one at a time.

        A file that fails is logged and skipped. Returns the number of tracks added.
        """
        self.log.info(f"AddTracksFromDir: start: {self.file_dir}")

        added = 0
        for path in enum_music_files(self.file_dir, skip_dirs=(SCRATCH_DIRNAME,)):
            self.log.debug(f"AddTracksFromDir: AddTrack {path}")
            try:
                self.add_track(path)
            except DuplicateTrackError as e:
                self.log.info(f"AddTracksFromDir: skip {path}: {e}")
                continue
            except IngestionError as e:
                self.log.error(f"AddTracksFromDir: AddTrack {path} failed: {e}")
                continue
            except Exception:
                # one bad file must not end the import
                self.log.exception(f"AddTracksFromDir: AddTrack {path} failed")
                continue
            added += 1

        self.log.info(f"AddTracksFromDir: done: {added} tracks added")
        return added

    def start_bulk_import(
        self, wait_until_ready: Optional[Callable[[], bool]] = None,
    ) -> threading.Thread:
        """Run add_tracks_from_dir on a background thread.

        With `wait_until_ready`, the thread calls it first and only then starts
        ingesting; a False result is logged and the import runs anyway.
        """

        def run() -> int:
            if wait_until_ready is not None and not wait_until_ready():
                self.log.warning("AddTracksFromDir: server not ready, importing anyway")
            return self.add_tracks_from_dir()

        t = threading.Thread(
            target=run,
            name=f"bulk-import:{self.name}",
            daemon=True,
        )
        t.start()
        return t
