"""Shared fixtures: in-memory stand-ins for the Mongo database and the mail transport."""
import copy
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure

from mailer import MailerError


class FakeMailer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, message):
        if self.fail:
            raise MailerError("SMTP unavailable")
        self.sent.append(message)
        return f"msg-{len(self.sent)}"


class FakeCursor(list):
    def sort(self, key, direction=1):
        if isinstance(key, list):
            key, direction = key[0]
        return FakeCursor(sorted(self, key=lambda d: d.get(key) or "", reverse=direction == -1))

    def limit(self, n):
        return FakeCursor(self[:n])


class FakeCollection:
    def __init__(self, name, docs=()):
        self.name = name
        self.docs = [copy.deepcopy(d) for d in docs]
        self.updates = []

    @staticmethod
    def _matches(doc, query):
        for key, value in query.items():
            if isinstance(value, dict) and "$gte" in value:
                if doc.get(key) is None or doc.get(key) < value["$gte"]:
                    return False
            elif doc.get(key) != value:
                return False
        return True

    @staticmethod
    def _apply(doc, update):
        for key, value in update.get("$set", {}).items():
            doc[key] = value
        for key, value in update.get("$inc", {}).items():
            doc[key] = doc.get(key, 0) + value
        for key, value in update.get("$push", {}).items():
            doc.setdefault(key, []).append(value)
        for key in update.get("$currentDate", {}):
            doc[key] = datetime.now(timezone.utc)

    def find(self, query=None):
        return FakeCursor(copy.deepcopy(d) for d in self.docs if self._matches(d, query or {}))

    def find_one(self, query=None):
        return next(iter(self.find(query)), None)

    def count_documents(self, query):
        return len(self.find(query))

    def insert_one(self, doc):
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    def update_one(self, query, update, upsert=False):
        self.updates.append((query, update))
        for doc in self.docs:
            if self._matches(doc, query):
                self._apply(doc, update)
                return SimpleNamespace(matched_count=1)
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            self._apply(doc, update)
            self.docs.append(doc)
        return SimpleNamespace(matched_count=0)

    def find_one_and_update(self, query, update, return_document=None):
        for doc in self.docs:
            if self._matches(doc, query):
                self._apply(doc, update)
                return copy.deepcopy(doc)
        return None

    def watch(self):
        raise OperationFailure("The $changeStream stage is only supported on replica sets")


class FakeDatabase:
    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def list_collection_names(self):
        return list(self.collections)


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def failing_mailer():
    return FakeMailer(fail=True)


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def categories():
    return [
        {"id": "balls", "name": "Balls"},
        {"id": "filaments", "name": "Filaments"},
        {"id": "figures", "name": "Figures", "parent_id": None},
        {"id": "glow", "name": "Glow", "parent_id": "balls"},
        {"id": "bouncy", "name": "Bouncy", "parent_id": "balls"},
        {"id": "pla", "name": "PLA", "parent_id": "filaments"},
        {"id": "petg", "name": "PETG", "parent_id": "filaments"},
    ]


@pytest.fixture
def order():
    return {
        "order_number": 42,
        "customer": {
            "first_name": "Ola",
            "last_name": "Nordmann",
            "email": "ola@example.com",
            "phone": "12345678",
            "address": "Storgata 1",
            "postal_code": "0155",
            "city": "Oslo",
            "comment": "",
        },
        "items": [{"title": "Widget", "quantity": 2, "price": 3}],
        "subtotal": 6,
        "shipping": 50,
        "savings": 0,
        "total": 56,
        "status": "pending",
    }
