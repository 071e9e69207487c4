from __future__ import annotations


class DocumentStoreError(Exception):
    """Base class for every failure raised by the document store."""


class DocumentNotFoundError(DocumentStoreError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"document {doc_id!r} not found in collection {collection!r}")
        self.collection = collection
        self.doc_id = doc_id


class SubstrateIOError(DocumentStoreError):
    """
    The key-value substrate failed to read, write or remove a key.

    Never retried internally; callers decide whether to retry.
    """

    def __init__(self, message: str, *, key: str | None = None):
        super().__init__(message)
        self.key = key


class MalformedDataError(SubstrateIOError):
    """A stored value could not be decoded into the expected shape."""
