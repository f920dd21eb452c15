from __future__ import annotations

from collections.abc import Generator

from sqlalchemy.orm import Session

from matchpro.config import get_settings
from matchpro.db.session import get_db_session
from matchpro.scoring.client import DifyWorkflowClient, ScoringClient
from matchpro.storage.blobs import BlobStore, LocalBlobStore


def get_db() -> Generator[Session, None, None]:
    yield from get_db_session()


def get_scoring_client() -> ScoringClient:
    return DifyWorkflowClient(get_settings())


def get_blob_store() -> BlobStore:
    return LocalBlobStore(get_settings().blob_dir)
