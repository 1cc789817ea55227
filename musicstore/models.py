from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Emotion(SQLModel):
    valence: float = Field(ge=0.0, le=1.0)
    arousal: float = Field(ge=0.0, le=1.0)


class Track(SQLModel, table=True):
    __tablename__ = "tracks"
    __table_args__ = (UniqueConstraint("name", "artist", name="uq_tracks_name_artist"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(default="", index=True)
    artist: str = Field(default="")
    album: str = Field(default="")
    cover_image_url: str = Field(default="")
    audio_file_url: str = Field(default="")   # empty until the file is placed
    valence: float | None = None              # 0..1, set by emotion analysis
    arousal: float | None = None              # 0..1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def emotion(self) -> Optional[Emotion]:
        if self.valence is None or self.arousal is None:
            return None
        return Emotion(valence=self.valence, arousal=self.arousal)

    def set_emotion(self, emotion: Emotion) -> None:
        self.valence = emotion.valence
        self.arousal = emotion.arousal


class TrackRead(SQLModel):
    """Public JSON shape of a Track: emotion nested, as the emotion service reports it."""

    id: int
    name: str
    artist: str
    album: str
    cover_image_url: str
    audio_file_url: str
    emotion: Emotion | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_track(cls, track: Track) -> "TrackRead":
        return cls(
            id=track.id,
            name=track.name,
            artist=track.artist,
            album=track.album,
            cover_image_url=track.cover_image_url,
            audio_file_url=track.audio_file_url,
            emotion=track.emotion,
            created_at=track.created_at,
            updated_at=track.updated_at,
        )


class TrackUpdate(SQLModel):
    """PUT /tracks/{id} body. Only the fields sent are changed; emotion null clears it."""

    name: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    cover_image_url: Optional[str] = None
    audio_file_url: Optional[str] = None
    emotion: Optional[Emotion] = None

    def apply(self, track: Track) -> None:
        changes = self.model_dump(exclude_unset=True, exclude={"emotion"})
        for field, value in changes.items():
            if value is not None:
                setattr(track, field, value)
        if "emotion" in self.model_fields_set:
            if self.emotion is None:
                track.valence = None
                track.arousal = None
            else:
                track.set_emotion(self.emotion)
