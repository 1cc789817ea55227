from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional, TextIO

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from musicstore.emomusic_client import DEFAULT_EMOMUSIC_SERVER

ENV_CONFIG_FILE = "MUSICSTORE_CONFIG"
ENV_EMOMUSIC_SERVER = "EMOMUSIC_SERVER"


class MetadataConfig(BaseModel):
    db: str = "musicstore.db"


class EmomusicConfig(BaseModel):
    server: str = DEFAULT_EMOMUSIC_SERVER
    timeout: Optional[float] = None


class AudioFileStoreConfig(BaseModel):
    name: str = Field(pattern=r"^[A-Za-z0-9_-]+$")
    file_dir: Path
    base_url: str = ""
    enable_emomusic: bool = False
    load_from_dir: bool = False

    @field_validator("file_dir", mode="before")
    @classmethod
    def _expand_file_dir(cls, value: str | Path) -> Path:
        return Path(value).expanduser()


class MusicstoreConfig(BaseModel):
    http_listen_addr: str = "127.0.0.1:8080"
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    emomusic: EmomusicConfig = Field(default_factory=EmomusicConfig)
    audio_file_stores: List[AudioFileStoreConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_store_names(self) -> "MusicstoreConfig":
        names = [s.name for s in self.audio_file_stores]
        dups = sorted({n for n in names if names.count(n) > 1})
        if dups:
            raise ValueError(f"duplicate audio file store names: {', '.join(dups)}")
        return self

    @property
    def listen_host_port(self) -> tuple[str, int]:
        host, _, port = self.http_listen_addr.rpartition(":")
        return host or "0.0.0.0", int(port)

    @classmethod
    def load(cls, path: Path) -> "MusicstoreConfig":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
        cfg = cls.model_validate(raw)

        server = os.getenv(ENV_EMOMUSIC_SERVER)
        if server:
            cfg.emomusic.server = server
        return cfg

    def write(self, dst: TextIO) -> None:
        yaml.safe_dump(self.model_dump(mode="json"), dst, sort_keys=False)


def find_config(explicit: Optional[Path] = None) -> Path:
    if explicit is not None:
        return explicit
    from_env = os.getenv(ENV_CONFIG_FILE)
    if from_env:
        return Path(from_env)
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError("Could not find config.yaml - pass --config explicitly.")
