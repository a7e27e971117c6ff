from __future__ import annotations

import copy
import random
import string
from typing import Any, Dict, List, Optional

import pytest
from google.api_core.exceptions import NotFound, ServiceUnavailable
from google.cloud.firestore import DocumentReference

from security.field_crypto import FieldCipher
from storage.firestore_client import DataStore

TEST_SECRET = "unit-test-secret"

_ALNUM = string.ascii_letters + string.digits


class FakeSnapshot:
    def __init__(self, ref: "FakeDocRef", data: Optional[Dict[str, Any]]):
        self.reference = ref
        self.id = ref.id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return dict(self._data) if self._data is not None else None


class FakeDocRef(DocumentReference):
    """Real DocumentReference subclass so isinstance checks behave as in prod."""

    def __init__(self, collection: str, doc_id: str, client: "FakeFirestore"):
        super().__init__(collection, doc_id, client=client)
        self._collection_name = collection

    def _table(self) -> Dict[str, Dict[str, Any]]:
        return self._client.data.setdefault(self._collection_name, {})

    def get(self, *args, **kwargs) -> FakeSnapshot:
        self._client.reads += 1
        return FakeSnapshot(self, self._table().get(self.id))

    def set(self, document_data: Dict[str, Any], merge: bool = False) -> None:
        table = self._table()
        if merge and self.id in table:
            table[self.id].update(copy.copy(document_data))
        else:
            table[self.id] = dict(document_data)

    def update(self, field_updates: Dict[str, Any], *args, **kwargs) -> None:
        table = self._table()
        if self.id not in table:
            raise NotFound(f"No document to update: {self.path}")
        table[self.id].update(field_updates)

    def delete(self, *args, **kwargs) -> None:
        self._table().pop(self.id, None)


class FakeQuery:
    def __init__(self, client: "FakeFirestore", collection: str, filters=None, limit: Optional[int] = None):
        self._client = client
        self._collection = collection
        self._filters = list(filters or [])
        self._limit = limit

    def where(self, filter=None) -> "FakeQuery":
        assert filter.op_string == "==", "fake supports equality filters only"
        return FakeQuery(self._client, self._collection, self._filters + [filter], self._limit)

    def limit(self, count: int) -> "FakeQuery":
        return FakeQuery(self._client, self._collection, self._filters, count)

    def stream(self) -> List[FakeSnapshot]:
        self._client.queries += 1
        out: List[FakeSnapshot] = []
        for doc_id, data in list(self._client.data.get(self._collection, {}).items()):
            if all(f.field_path in data and data[f.field_path] == f.value for f in self._filters):
                out.append(FakeSnapshot(FakeDocRef(self._collection, doc_id, self._client), dict(data)))
            if self._limit is not None and len(out) >= self._limit:
                break
        return out


class FakeCollection(FakeQuery):
    def __init__(self, client: "FakeFirestore", name: str):
        super().__init__(client, name)
        self.id = name

    def document(self, document_id: Optional[str] = None) -> FakeDocRef:
        return FakeDocRef(self.id, document_id or "".join(random.choices(_ALNUM, k=20)), self._client)


class FakeBatch:
    def __init__(self, client: "FakeFirestore"):
        self._client = client
        self._ops: List[tuple] = []

    def set(self, ref: FakeDocRef, data: Dict[str, Any], merge: bool = False) -> None:
        self._ops.append(("set", ref, data))

    def update(self, ref: FakeDocRef, data: Dict[str, Any]) -> None:
        self._ops.append(("update", ref, data))

    def delete(self, ref: FakeDocRef) -> None:
        self._ops.append(("delete", ref, None))

    def commit(self) -> List[Any]:
        if self._client.fail_commits:
            self._client.fail_commits -= 1
            raise ServiceUnavailable("injected commit failure")
        # All-or-nothing, like the real batch.
        for op, ref, _ in self._ops:
            if op == "update" and ref.id not in self._client.data.get(ref._collection_name, {}):
                raise NotFound(f"No document to update: {ref.path}")
        for op, ref, data in self._ops:
            if op == "set":
                ref.set(data)
            elif op == "update":
                ref.update(data)
            else:
                ref.delete()
        self._client.commits += 1
        return []


class FakeFirestore:
    """In-memory stand-in for google.cloud.firestore.Client."""

    def __init__(self):
        self.data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.commits = 0
        self.fail_commits = 0
        self.reads = 0
        self.queries = 0
        self.closed = False

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self, name)

    def batch(self) -> FakeBatch:
        return FakeBatch(self)

    def close(self) -> None:
        self.closed = True

    def seed(self, collection: str, doc_id: str, data: Dict[str, Any]) -> FakeDocRef:
        self.data.setdefault(collection, {})[doc_id] = dict(data)
        return FakeDocRef(collection, doc_id, self)

    def ref(self, collection: str, doc_id: str) -> FakeDocRef:
        return FakeDocRef(collection, doc_id, self)

    def doc(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self.data.get(collection, {}).get(doc_id)


@pytest.fixture
def fake_db() -> FakeFirestore:
    return FakeFirestore()


@pytest.fixture
def store(fake_db) -> DataStore:
    return DataStore(client=fake_db).open()


@pytest.fixture
def cipher() -> FieldCipher:
    return FieldCipher(TEST_SECRET)
