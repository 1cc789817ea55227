import json
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urljoin

import requests
from pydantic import ValidationError

from musicstore.errors import (
    EmomusicParseError,
    EmomusicStatusError,
    EmomusicTransportError,
)
from musicstore.models import Emotion

# Config
DEFAULT_EMOMUSIC_SERVER = "http://localhost:8000/"
PREDICT_FILE_PATH = "predictmp3"
PREDICT_URI_PATH = "predicturi"


class EmomusicClient:
    """
    Client for the emomusic prediction service.

    Two ways to get an Emotion for a track:
      - analyze_file: upload the audio bytes (POST {server}/predictmp3)
      - analyze_uri: let the service fetch a public URL (GET {server}/predicturi?mp3=...)

    No retries here. timeout=None keeps the transport default.
    """

    def __init__(
        self,
        server_url: str = DEFAULT_EMOMUSIC_SERVER,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        if not server_url.endswith("/"):
            server_url += "/"
        self.server_url = server_url
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def predict_file_url(self) -> str:
        return urljoin(self.server_url, PREDICT_FILE_PATH)

    @property
    def predict_uri_url(self) -> str:
        return urljoin(self.server_url, PREDICT_URI_PATH)

    def analyze_file(self, path: str | Path) -> Emotion:
        """
        POST the file as multipart form field "file".
        """
        path = Path(path)
        try:
            with path.open("rb") as fh:
                resp = self.session.post(
                    self.predict_file_url,
                    files={"file": (path.name, fh, "application/octet-stream")},
                    timeout=self.timeout,
                )
        except requests.RequestException as e:
            raise EmomusicTransportError(f"predictmp3 request failed: {e}") from e
        return parse_emotion_response(resp)

    def analyze_uri(self, audio_url: str) -> Emotion:
        """
        GET predicturi with the track's public URL; preferred once the file is served.
        """
        try:
            resp = self.session.get(
                self.predict_uri_url,
                params={"mp3": audio_url},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise EmomusicTransportError(f"predicturi request failed: {e}") from e
        return parse_emotion_response(resp)


def parse_emotion_response(resp: requests.Response) -> Emotion:
    if resp.status_code != 200:
        raise EmomusicStatusError(resp.status_code, resp.text)

    try:
        payload: Any = resp.json()
    except (ValueError, json.JSONDecodeError) as e:
        raise EmomusicParseError(f"response is not JSON: {resp.text[:200]!r}") from e

    if not isinstance(payload, dict):
        raise EmomusicParseError(f"unexpected response body: {payload!r}")

    # missing fields must not read as a zero-valued Emotion
    missing = [k for k in ("valence", "arousal") if payload.get(k) is None]
    if missing:
        raise EmomusicParseError(f"response missing {', '.join(missing)}: {payload!r}")

    try:
        return Emotion(valence=payload["valence"], arousal=payload["arousal"])
    except ValidationError as e:
        raise EmomusicParseError(f"invalid emotion values: {payload!r}") from e
