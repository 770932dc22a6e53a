import itertools
import operator

import pytest
from fastapi.testclient import TestClient
from firebase_admin import firestore

import main
from storage import StorageManager

_OPS = {
    "==": operator.eq,
    "!=": operator.ne,
    ">=": operator.ge,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
}


class FakeSnapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data
        self.exists = data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocument:
    def __init__(self, collection, doc_id):
        self._collection = collection
        self.id = doc_id

    def get(self):
        return FakeSnapshot(self.id, self._collection.docs.get(self.id))

    def set(self, data, merge=False):
        current = self._collection.docs.get(self.id) if merge else None
        self._collection.docs[self.id] = self._apply(dict(current or {}), data)

    def update(self, data):
        if self.id not in self._collection.docs:
            raise KeyError(f"No document to update: {self.id}")
        self._collection.docs[self.id] = self._apply(self._collection.docs[self.id], data)

    @staticmethod
    def _apply(current, data):
        for key, value in data.items():
            if isinstance(value, firestore.ArrayUnion):
                existing = list(current.get(key) or [])
                existing.extend(v for v in value.values if v not in existing)
                current[key] = existing
            else:
                current[key] = value
        return current


class FakeWatch:
    def __init__(self):
        self.unsubscribed = False

    def unsubscribe(self):
        self.unsubscribed = True


class FakeQuery:
    def __init__(self, collection, filters=None, order=None):
        self._collection = collection
        self._filters = filters or []
        self._order = order

    def where(self, field, op, value):
        return FakeQuery(self._collection, self._filters + [(field, op, value)], self._order)

    def order_by(self, field, direction=None):
        return FakeQuery(self._collection, self._filters, (field, direction))

    def stream(self):
        rows = [
            (doc_id, data)
            for doc_id, data in self._collection.docs.items()
            if all(
                field in data and _OPS[op](data[field], value)
                for field, op, value in self._filters
            )
        ]
        if self._order:
            field, direction = self._order
            rows.sort(
                key=lambda row: row[1].get(field) or "",
                reverse=direction == firestore.Query.DESCENDING,
            )
        return [FakeSnapshot(doc_id, dict(data)) for doc_id, data in rows]

    def on_snapshot(self, callback):
        self._collection.listeners.append((self, callback))
        return FakeWatch()


class FakeCollection(FakeQuery):
    def __init__(self, name):
        self.name = name
        self.docs = {}
        self.listeners = []
        self._ids = itertools.count(1)
        super().__init__(self)

    def document(self, doc_id=None):
        return FakeDocument(self, doc_id or f"{self.name}-{next(self._ids)}")

    def add(self, data):
        ref = self.document()
        ref.set(data)
        return None, ref


class FakeBatch:
    def __init__(self):
        self._writes = []

    def set(self, ref, data):
        self._writes.append((ref, data))

    def commit(self):
        for ref, data in self._writes:
            ref.set(data)


class FakeFirestore:
    """Just enough of the Firestore client for the sync code paths."""

    def __init__(self):
        self.collections = {}

    def collection(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def batch(self):
        return FakeBatch()


@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def local_store(tmp_path):
    return StorageManager(str(tmp_path / "store.json"))


@pytest.fixture
def services(tmp_path, monkeypatch):
    svc = main.Services(db=None, data_file=str(tmp_path / "api.json"), maintenance_emails=[])
    monkeypatch.setattr(main, "services", svc)
    return svc


@pytest.fixture
def client(services):
    return TestClient(main.app)


@pytest.fixture
def admin_auth(monkeypatch):
    monkeypatch.setattr("config.ADMIN_USERNAME", "admin")
    monkeypatch.setattr("config.ADMIN_PASSWORD", "s3cret")
    return ("admin", "s3cret")


def make_issue(**overrides):
    issue = {
        "type": "broken-ramp",
        "location": "Library",
        "description": "Ramp cracked at entrance",
        "severity": "medium",
        "latitude": -0.4133,
        "longitude": 34.5620,
    }
    issue.update(overrides)
    return issue
