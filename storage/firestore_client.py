from __future__ import annotations

import logging
from typing import Optional

from google.cloud import firestore
from google.cloud.firestore import Client, CollectionReference, DocumentReference, WriteBatch

from config.settings import settings

log = logging.getLogger("uniform.storage")


def get_firestore_client() -> firestore.Client:
    # If FIRESTORE_PROJECT_ID is empty, the library will use ADC default project.
    kwargs = {}
    if settings.FIRESTORE_PROJECT_ID:
        kwargs["project"] = settings.FIRESTORE_PROJECT_ID
    if settings.FIRESTORE_DATABASE:
        kwargs["database"] = settings.FIRESTORE_DATABASE
    return firestore.Client(**kwargs)


class DataStore:
    """Single data-access handle for one process.

    Opened once (CLI run or API lifespan), injected into repositories and
    reconciliation tools, closed explicitly. Passing a client makes the store
    usable without network access (tests, emulator).
    """

    def __init__(self, client: Optional[Client] = None):
        self._client = client
        self._owns_client = client is None

    def open(self) -> "DataStore":
        if self._client is None:
            self._client = get_firestore_client()
            self._owns_client = True
            log.info(
                "datastore_open",
                extra={"extra": {"project": settings.FIRESTORE_PROJECT_ID or "(adc)", "database": settings.FIRESTORE_DATABASE or "(default)"}},
            )
        return self

    def close(self) -> None:
        if self._client is None:
            return
        if self._owns_client:
            self._client.close()
            self._client = None
            log.info("datastore_closed")

    @property
    def is_open(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> Client:
        if self._client is None:
            raise RuntimeError("datastore_not_open")
        return self._client

    def collection(self, name: str) -> CollectionReference:
        return self.client.collection(name)

    def reference(self, collection: str, doc_id: str) -> DocumentReference:
        return self.client.collection(collection).document(doc_id)

    def batch(self) -> WriteBatch:
        return self.client.batch()

    def __enter__(self) -> "DataStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
