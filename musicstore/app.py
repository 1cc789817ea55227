import socket
import time
from typing import Optional

from fastapi import APIRouter, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from musicstore.audiofilestore import AudioFileStore, override_track_metadata
from musicstore.catalog import MURECOM_DEFAULT_LIMIT, TrackCatalog, make_engine
from musicstore.config import MusicstoreConfig
from musicstore.emomusic_client import EmomusicClient
from musicstore.errors import (
    DuplicateTrackError,
    IngestionError,
    InvalidTrackError,
    PersistenceError,
)
from musicstore.models import Emotion, TrackRead, TrackUpdate
from musicstore.upload import add_track_from_upload

MURECOM_MAX_LIMIT = 100
LISTENER_WAIT_TIMEOUT = 30.0


def wait_for_listener(host: str, port: int, timeout: float = LISTENER_WAIT_TIMEOUT) -> bool:
    """Block until something accepts TCP connections on (host, port).

    Returns False if nothing does within `timeout` seconds.
    """
    if host in ("", "0.0.0.0", "::"):
        host = "127.0.0.1"
    deadline = time.monotonic() + timeout
    while True:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except OSError:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.1)


def ingestion_status(err: IngestionError) -> int:
    if isinstance(err, InvalidTrackError):
        return 400
    if isinstance(err, DuplicateTrackError):
        return 409
    return 422


def make_store_router(store: AudioFileStore) -> APIRouter:
    router = APIRouter(prefix=f"/{store.name}", tags=[store.name])

    # Field names keep the capitalised form clients already send:
    #   curl -F Name=... -F 'File=@audio.mp3'
    #   curl -F Name=... -F 'AudioFileURL=https://example.com/audio.mp3'
    @router.post("/new")
    def post_new_track(
        name: str = Form("", alias="Name"),
        artist: str = Form("", alias="Artist"),
        album: str = Form("", alias="Album"),
        cover_image_url: str = Form("", alias="CoverImageURL"),
        audio_file_url: str = Form("", alias="AudioFileURL"),
        file: Optional[UploadFile] = File(None, alias="File"),
    ):
        override = override_track_metadata(
            name=name, artist=artist, album=album, cover_image_url=cover_image_url)
        fileobj, filename = None, ""
        if file is not None:
            fileobj, filename = file.file, file.filename or ""
        try:
            track = add_track_from_upload(
                store,
                override,
                fileobj=fileobj,
                filename=filename,
                audio_file_url=audio_file_url,
            )
        except IngestionError as e:
            store.log.warning(f"POST /{store.name}/new failed: {e}")
            raise HTTPException(status_code=ingestion_status(e), detail=str(e))
        return {"track": TrackRead.from_track(track)}

    return router


def create_app(
    cfg: MusicstoreConfig,
    cors: bool = False,
    bulk_import: bool = True,
) -> FastAPI:
    app = FastAPI(title="musicstore")

    if cors:
        logger.info("CORS is enabled.")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    catalog = TrackCatalog(make_engine(cfg.metadata.db))
    logger.info(f"Database initialized at {cfg.metadata.db}")

    emomusic: Optional[EmomusicClient] = None
    if any(s.enable_emomusic for s in cfg.audio_file_stores):
        emomusic = EmomusicClient(cfg.emomusic.server, timeout=cfg.emomusic.timeout)

    stores: dict[str, AudioFileStore] = {}
    for store_cfg in cfg.audio_file_stores:
        store = AudioFileStore(
            name=store_cfg.name,
            file_dir=store_cfg.file_dir,
            base_url=store_cfg.base_url,
            catalog=catalog,
            emomusic=emomusic if store_cfg.enable_emomusic else None,
        )
        stores[store.name] = store
        app.include_router(make_store_router(store))
        app.mount(
            store.audio_static_path,
            StaticFiles(directory=store.file_dir),
            name=f"{store.name}-audio",
        )

    app.state.catalog = catalog
    app.state.stores = stores

    # Startup hooks finish before uvicorn binds its socket. Stores with
    # emomusic enabled have the service fetch each file back through the
    # static route, so their import waits until the port accepts connections.
    app.state.bulk_imports = []

    @app.on_event("startup")
    def on_startup():
        if not bulk_import:
            return
        host, port = cfg.listen_host_port
        for store_cfg in cfg.audio_file_stores:
            if not store_cfg.load_from_dir:
                continue
            store = stores[store_cfg.name]
            ready = None
            if store.enable_emomusic:
                ready = lambda: wait_for_listener(host, port)
            app.state.bulk_imports.append(store.start_bulk_import(ready))

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    @app.get("/tracks")
    def list_tracks(
        offset: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=1000),
    ):
        tracks = catalog.list_tracks(offset=offset, limit=limit)
        return {"tracks": [TrackRead.from_track(t) for t in tracks]}

    @app.get("/tracks/{track_id}")
    def get_track(track_id: int):
        track = catalog.get(track_id)
        if track is None:
            raise HTTPException(status_code=404, detail="Track not found")
        return {"track": TrackRead.from_track(track)}

    @app.put("/tracks/{track_id}")
    def update_track(track_id: int, changes: TrackUpdate):
        track = catalog.get(track_id)
        if track is None:
            raise HTTPException(status_code=404, detail="Track not found")
        changes.apply(track)
        try:
            catalog.update(track)
        except DuplicateTrackError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except PersistenceError as e:
            logger.error(f"PUT /tracks/{track_id} failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return {"track": TrackRead.from_track(track)}

    # Only the catalog row goes; a placed audio file stays in its store.
    @app.delete("/tracks/{track_id}")
    def delete_track(track_id: int):
        track = catalog.get(track_id)
        if track is None:
            raise HTTPException(status_code=404, detail="Track not found")
        try:
            catalog.delete(track)
        except PersistenceError as e:
            logger.error(f"DELETE /tracks/{track_id} failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return {"track": TrackRead.from_track(track)}

    @app.get("/murecom")
    def get_murecom(
        valence: Optional[float] = Query(None, alias="Valence"),
        arousal: Optional[float] = Query(None, alias="Arousal"),
        limit: int = Query(0, alias="Limit"),
    ):
        """Tracks close to (Valence, Arousal), nearest first. Limit: [1, 100], default 3."""
        if valence is None and arousal is None:
            raise HTTPException(
                status_code=422, detail="emotion query (Valence and Arousal) are required")
        valence = valence or 0.0
        arousal = arousal or 0.0
        if not 0 <= valence <= 1:
            raise HTTPException(status_code=422, detail="valence should be in [0, 1]")
        if not 0 <= arousal <= 1:
            raise HTTPException(status_code=422, detail="arousal should be in [0, 1]")
        if limit == 0:
            limit = MURECOM_DEFAULT_LIMIT
        elif not 1 <= limit <= MURECOM_MAX_LIMIT:
            raise HTTPException(status_code=422, detail="query Limit should be in [1, 100]")

        try:
            tracks = catalog.nearest_by_emotion(
                Emotion(valence=valence, arousal=arousal), limit=limit)
        except SQLAlchemyError as e:
            logger.exception("murecom query failed")
            raise HTTPException(status_code=500, detail=str(e))
        return {"tracks": [TrackRead.from_track(t) for t in tracks]}

    return app
