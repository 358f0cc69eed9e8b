from __future__ import annotations
"""FastAPI dependencies handing out the per-app collaborators built in create_app()."""

from fastapi import Request

from ephemera.config import Settings
from ephemera.metrics import Metrics
from ephemera.storage.blobs import FileSystemBlobStore


def get_config(request: Request) -> Settings:
    return request.app.state.config


def get_blob_store(request: Request) -> FileSystemBlobStore:
    return request.app.state.blobs


def get_metrics(request: Request) -> Metrics:
    return request.app.state.metrics
