"""Exception taxonomy shared by the network clients and index managers."""

from __future__ import annotations


class CairnError(Exception):
    """Base class for all cairn errors."""


class ConfigurationError(CairnError):
    """Missing or malformed credentials; raised before any write is attempted."""


class TransportError(CairnError):
    """A network round trip failed."""


class GatewayError(TransportError):
    """Gateway fetch failed (network error or non-success status)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DecodeError(TransportError):
    """Fetched bytes could not be decoded as the expected JSON document."""


class UploadError(TransportError):
    """Blob store rejected or failed an upload."""


class ConflictError(CairnError):
    """A collection kept changing underneath a save until attempts ran out."""

    def __init__(self, collection: str, attempts: int) -> None:
        super().__init__(
            f"Collection '{collection}' changed concurrently; gave up after {attempts} attempts"
        )
        self.collection = collection
        self.attempts = attempts
