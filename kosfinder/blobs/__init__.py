"""Blob/image store collaborators."""

from kosfinder.blobs.store import BlobStore, HttpBlobStore, build_blob_store

__all__ = ["BlobStore", "HttpBlobStore", "build_blob_store"]
