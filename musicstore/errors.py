"""Errors raised while ingesting tracks and talking to the emotion service.

Every ingestion step raises its own IngestionError subclass with the
underlying cause chained, so callers (the bulk importer, the HTTP layer)
can report which step failed without looking inside.
"""


class MusicstoreError(Exception):
    pass


class IngestionError(MusicstoreError):
    step = "ingest"

    def __str__(self) -> str:
        msg = super().__str__()
        if self.__cause__ is not None:
            msg = f"{msg}: {self.__cause__}"
        return f"{self.step}: {msg}"


class ExtractionError(IngestionError):
    step = "extract"


class InvalidTrackError(IngestionError):
    step = "validate"


class DuplicateTrackError(IngestionError):
    step = "duplicate"


class PlacementError(IngestionError):
    step = "place"


class DestinationExistsError(PlacementError):
    pass


class UrlDerivationError(IngestionError):
    step = "url"


class AnalysisError(IngestionError):
    step = "analyze"


class PersistenceError(IngestionError):
    step = "persist"


class DownloadError(IngestionError):
    step = "download"


# emotion service client

class EmomusicError(MusicstoreError):
    pass


class EmomusicStatusError(EmomusicError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"failed to call emomusic: status ({status_code}) != 200: {body}")
        self.status_code = status_code
        self.body = body


class EmomusicParseError(EmomusicError):
    pass


class EmomusicTransportError(EmomusicError):
    pass
