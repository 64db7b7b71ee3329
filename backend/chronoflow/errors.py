from __future__ import annotations


class ChronoFlowError(Exception):
    """Base class for failures the API reports back to the caller."""

    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(ChronoFlowError):
    status_code = 404


class InvalidRange(ChronoFlowError):
    status_code = 400


class InvalidAttribution(ChronoFlowError):
    status_code = 400


class MalformedImport(ChronoFlowError):
    status_code = 400


class PersistenceFailure(ChronoFlowError):
    status_code = 500
