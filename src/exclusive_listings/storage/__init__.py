"""Blob storage module."""

from exclusive_listings.storage.blob_store import (
    BlobStore,
    HttpBlobStore,
    LocalBlobStore,
    create_blob_store,
)

__all__ = ["BlobStore", "HttpBlobStore", "LocalBlobStore", "create_blob_store"]
