"""Error kinds raised by the identification pipeline and the history store."""

from __future__ import annotations


class FungiScanError(Exception):
    """Base class for all FungiScan errors.

    ``user_message`` is a short, actionable text the UI can show as-is.
    """

    user_message: str = "Something went wrong. Please try again."


class PreprocessError(FungiScanError):
    """The image is unreadable, not decodable, or exceeds the size limits."""

    user_message = "The photo could not be read. Try another photo."


class InferenceError(FungiScanError):
    """The inference engine rejected the input or failed internally."""

    user_message = "Recognition failed. Please try again."


class EngineUnavailableError(InferenceError):
    """The inference engine could not be initialized."""

    user_message = "The recognition model is not available. Reinstall or update the model."


class InvalidScoreVector(FungiScanError):  # noqa: N818
    """A score vector or stored ranking violates the ranking contract."""

    user_message = "Recognition produced an invalid result."


class StorageError(FungiScanError):
    """The source image could not be copied into owned storage."""

    user_message = "The photo could not be saved. Check free space and storage access."


class PersistError(FungiScanError):
    """The history database could not be read or written."""

    user_message = "History is not available right now."


class RecordNotFoundError(FungiScanError):
    """No history record exists with the requested id."""

    user_message = "This record no longer exists."

    def __init__(self, record_id: int) -> None:
        super().__init__(f"History record {record_id} not found")
        self.record_id = record_id
