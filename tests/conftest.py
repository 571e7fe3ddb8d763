from __future__ import annotations

import copy
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from recipebook.database import RecipeDatabase
from recipebook.sql_storage import SqlRecipeStorage


class FakeSnapshot:
    def __init__(self, doc_id: str, data):
        self.id = doc_id
        self._data = data
        self.exists = data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeDocumentRef:
    def __init__(self, collection: "FakeCollection", doc_id: str):
        self._collection = collection
        self.id = doc_id

    def set(self, data: dict) -> None:
        self._collection.docs[self.id] = self._collection.resolve(data)

    def update(self, data: dict) -> None:
        from google.api_core.exceptions import NotFound

        if self.id not in self._collection.docs:
            raise NotFound(f"No document to update: {self.id}")
        self._collection.docs[self.id].update(self._collection.resolve(data))

    def get(self) -> FakeSnapshot:
        return FakeSnapshot(self.id, self._collection.docs.get(self.id))

    def delete(self) -> None:
        self._collection.docs.pop(self.id, None)


class FakeQuery:
    def __init__(self, collection: "FakeCollection", filters=(), order=None):
        self._collection = collection
        self._filters = tuple(filters)
        self._order = order

    def where(self, filter=None):
        return FakeQuery(self._collection, self._filters + (filter,), self._order)

    def order_by(self, field_path: str, direction: str = "ASCENDING"):
        return FakeQuery(self._collection, self._filters, (field_path, direction))

    def stream(self):
        self._collection.queries.append(self)
        items = list(self._collection.docs.items())
        for field_filter in self._filters:
            assert field_filter.op_string == "=="
            items = [
                (doc_id, data)
                for doc_id, data in items
                if data.get(field_filter.field_path) == field_filter.value
            ]
        if self._order:
            field_path, direction = self._order
            items.sort(key=lambda item: item[1][field_path], reverse=direction == "DESCENDING")
        for doc_id, data in items:
            yield FakeSnapshot(doc_id, copy.deepcopy(data))


class FakeCollection(FakeQuery):
    def __init__(self, client: "FakeFirestoreClient"):
        super().__init__(self)
        self._client = client
        self.docs: dict = {}
        self.queries: list = []
        self._next_id = 0

    def document(self, doc_id: str | None = None) -> FakeDocumentRef:
        if doc_id is None:
            self._next_id += 1
            doc_id = f"doc{self._next_id}"
        return FakeDocumentRef(self, doc_id)

    def resolve(self, data: dict) -> dict:
        from google.cloud import firestore

        now = self._client.tick()
        return {
            key: (now if value is firestore.SERVER_TIMESTAMP else copy.deepcopy(value))
            for key, value in data.items()
        }


class FakeFirestoreClient:
    """Enough of ``firestore.Client`` for the recipe storage."""

    def __init__(self):
        self._now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.collections: dict = {}

    def tick(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now

    def collection(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection(self))


class FakeBlob:
    def __init__(self, bucket: "FakeBucket", name: str):
        self._bucket = bucket
        self.name = name

    @property
    def public_url(self) -> str:
        return f"https://storage.googleapis.com/{self._bucket.name}/{self.name}"

    def generate_signed_url(self, version, method, expiration, headers=None):
        if not self._bucket.can_sign:
            raise AttributeError("you need a private key to sign credentials")
        self._bucket.signed.append((self.name, method, headers))
        return f"https://signed.example.test/{self.name}?method={method}"

    def exists(self) -> bool:
        return self.name in self._bucket.objects

    def delete(self) -> None:
        from google.api_core.exceptions import NotFound

        if self.name not in self._bucket.objects:
            raise NotFound(f"No such object: {self.name}")
        del self._bucket.objects[self.name]
        self._bucket.deleted.append(self.name)


class FakeBucket:
    """Cloud Storage bucket double that records signed URLs and deletions."""

    def __init__(self, name: str = "recipe-images", can_sign: bool = True):
        self.name = name
        self.can_sign = can_sign
        self.objects: dict = {}
        self.signed: list = []
        self.deleted: list = []

    def blob(self, name: str) -> FakeBlob:
        return FakeBlob(self, name)

    def upload(self, data: bytes = b"jpeg") -> str:
        """Store an object under a fresh upload reference and return it."""

        storage_id = f"recipes/{uuid.uuid4().hex}"
        self.objects[storage_id] = data
        return storage_id


@pytest.fixture
def database():
    with RecipeDatabase("sqlite://") as db:
        db.init(seed=False)
        yield db


@pytest.fixture
def local_storage(database):
    return SqlRecipeStorage(database)


@pytest.fixture
def bucket():
    return FakeBucket()


@pytest.fixture
def firestore_client():
    return FakeFirestoreClient()


@pytest.fixture
def hosted_storage(firestore_client, bucket):
    pytest.importorskip("google.cloud.firestore")
    from recipebook.gcp_storage import FirestoreRecipeStorage

    return FirestoreRecipeStorage(
        project="test-project",
        firestore_client=firestore_client,
        bucket=bucket,
        search_limit=3,
    )
