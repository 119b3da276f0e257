"""Remote collaborators: asset storage, finalize RPC and status lookups."""
from .http_client import BackendHttpClient
from .interfaces import AssetStorage, BackendError, StatusSnapshot, StatusSource, SubmissionFinalizer

__all__ = [
    "AssetStorage",
    "BackendError",
    "BackendHttpClient",
    "StatusSnapshot",
    "StatusSource",
    "SubmissionFinalizer",
]
