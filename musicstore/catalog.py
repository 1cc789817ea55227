from typing import Optional

from loguru import logger
from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, SQLModel, col, create_engine, select

from musicstore.errors import DuplicateTrackError, PersistenceError
from musicstore.models import Emotion, Track, utcnow

MURECOM_RADIUS = 0.3
MURECOM_DEFAULT_LIMIT = 3


def make_engine(db: str) -> Engine:
    # plain paths are SQLite files; anything with a scheme is a SQLAlchemy URL
    url = db if "://" in db else f"sqlite:///{db}"
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, connect_args=connect_args, echo=False)
    SQLModel.metadata.create_all(engine)
    return engine


class TrackCatalog:
    """Narrow track store: count / create_if_absent / update / delete.

    Filtering on (name, artist) is exact, case-sensitive equality. Every call
    uses its own session; the engine owns the connection pool.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    @staticmethod
    def _filtered(stmt, name: Optional[str], artist: Optional[str]):
        if name is not None:
            stmt = stmt.where(col(Track.name) == name)
        if artist is not None:
            stmt = stmt.where(col(Track.artist) == artist)
        return stmt

    def count(self, name: Optional[str] = None, artist: Optional[str] = None) -> int:
        stmt = self._filtered(select(func.count()).select_from(Track), name, artist)
        try:
            with self._session() as s:
                return s.exec(stmt).one()
        except SQLAlchemyError as e:
            raise PersistenceError("count tracks failed") from e

    def exists(self, track: Track) -> bool:
        return self.count(name=track.name, artist=track.artist) > 0

    def create_if_absent(self, track: Track) -> Track:
        """Insert `track` unless another Track has the same (name, artist).

        Assigns track.id. Raises DuplicateTrackError when the pair is taken,
        PersistenceError on any other database failure.
        """
        try:
            with self._session() as s:
                dup = self._filtered(select(Track.id), track.name, track.artist)
                if s.exec(dup).first() is not None:
                    raise DuplicateTrackError(
                        f"track already exists: {track.name!r} by {track.artist!r}")
                s.add(track)
                s.commit()
                s.refresh(track)
        except IntegrityError as e:
            raise DuplicateTrackError(
                f"track already exists: {track.name!r} by {track.artist!r}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"create track {track.name!r} failed") from e
        return track

    def update(self, track: Track) -> Track:
        if track.id is None:
            raise PersistenceError("update of a track that was never created")
        track.updated_at = utcnow()
        try:
            with self._session() as s:
                s.add(track)
                s.commit()
                s.refresh(track)
        except IntegrityError as e:
            raise DuplicateTrackError(
                f"track already exists: {track.name!r} by {track.artist!r}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"update track {track.id} failed") from e
        return track

    def delete(self, track: Track) -> None:
        if track.id is None:
            return
        try:
            with self._session() as s:
                row = s.get(Track, track.id)
                if row is not None:
                    s.delete(row)
                    s.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"delete track {track.id} failed") from e

    def get(self, track_id: int) -> Optional[Track]:
        with self._session() as s:
            return s.get(Track, track_id)

    def list_tracks(self, offset: int = 0, limit: int = 100) -> list[Track]:
        stmt = select(Track).order_by(col(Track.id)).offset(offset).limit(limit)
        with self._session() as s:
            return list(s.exec(stmt).all())

    def nearest_by_emotion(
        self,
        emotion: Emotion,
        radius: float = MURECOM_RADIUS,
        limit: int = MURECOM_DEFAULT_LIMIT,
    ) -> list[Track]:
        """
        Retrieval: |valence - v| < radius and |arousal - a| < radius.
        Ranking: euclidean distance to (v, a), ties by id ascending.
        """
        dv = col(Track.valence) - emotion.valence
        da = col(Track.arousal) - emotion.arousal
        stmt = (
            select(Track)
            .where(col(Track.valence).is_not(None), col(Track.arousal).is_not(None))
            .where(func.abs(dv) < radius, func.abs(da) < radius)
            # squared distance ranks the same as the distance itself
            .order_by(dv * dv + da * da, col(Track.id))
            .limit(limit)
        )
        logger.debug(f"murecom: emotion={emotion}, radius={radius}, limit={limit}")
        with self._session() as s:
            return list(s.exec(stmt).all())
