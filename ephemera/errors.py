from __future__ import annotations
"""
Domain errors raised by the storage adapters and pipelines.
Route handlers translate these into HTTP status codes.
"""


class EntryNotFoundError(LookupError):
    """No metadata record exists for the slug."""


class BlobNotFoundError(LookupError):
    """No blob is stored under the key."""


class BlobExistsError(FileExistsError):
    """A blob is already committed under the key."""


class PayloadTooLargeError(Exception):
    def __init__(self, limit: int):
        super().__init__(f"request body exceeds {limit} bytes")
        self.limit = limit


class UploadError(ValueError):
    """The upload request is malformed (client error)."""


class ContentTypeError(OSError):
    """The stream could not be sniffed or rewound."""
