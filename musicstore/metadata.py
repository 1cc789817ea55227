"""
Track metadata extraction from audio files.

Reads embedded tags with Mutagen and fills the Name, Artist and Album
fields of a new Track. CoverImageURL and AudioFileURL are left blank.
"""

from pathlib import Path
from typing import Optional

from mutagen import File as MutagenFile
from mutagen import MutagenError

from musicstore.errors import ExtractionError
from musicstore.models import Track

# ID3 (MP3, WAV), MP4 and Vorbis-style keys, in lookup order
TITLE_TAGS = ["TIT2", "\xa9nam", "TITLE", "title"]
ARTIST_TAGS = ["TPE1", "\xa9ART", "ARTIST", "artist"]
ALBUM_TAGS = ["TALB", "\xa9alb", "ALBUM", "album"]


def get_tag_value(audio_file, tag_names: list[str]) -> Optional[str]:
    """Get tag value, trying multiple possible tag names."""
    for tag_name in tag_names:
        try:
            value = audio_file.get(tag_name)
        except (KeyError, ValueError):
            # Vorbis comments raise ValueError for keys they can't hold
            continue
        if not value:
            continue
        if isinstance(value, list):
            return str(value[0]).strip()
        return str(value).strip()
    return None


def track_from_audio_file(path: str | Path) -> Track:
    """Build a Track from the tags of the audio file at `path`.

    Name falls back to the file name without its extension when the file
    carries no title. Raises ExtractionError if the file can't be opened
    or is not a recognised audio format.
    """
    path = Path(path)
    try:
        audio_file = MutagenFile(path)
    except (OSError, MutagenError) as e:
        raise ExtractionError(f"could not read {path}") from e

    if audio_file is None:
        raise ExtractionError(f"unrecognised audio format: {path}")

    track = Track(
        name=get_tag_value(audio_file, TITLE_TAGS) or "",
        artist=get_tag_value(audio_file, ARTIST_TAGS) or "",
        album=get_tag_value(audio_file, ALBUM_TAGS) or "",
    )
    if not track.name:
        track.name = path.stem

    return track
