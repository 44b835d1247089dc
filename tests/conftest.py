import copy
import pytest
from fastapi.testclient import TestClient

import firebase_util
from config import Config
from helpers import ADMIN_KEY
from models import CartContext, CartItem


class FakeReference:
    """In-memory stand-in for a firebase_admin.db.Reference."""

    def __init__(self, store, path=()):
        self._store = store
        self._path = path

    def child(self, path):
        parts = tuple(p for p in str(path).split("/") if p)
        return FakeReference(self._store, self._path + parts)

    def get(self):
        node = self._store
        for key in self._path:
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        return copy.deepcopy(node)

    def set(self, value):
        node = self._store
        for key in self._path[:-1]:
            node = node.setdefault(key, {})
        node[self._path[-1]] = copy.deepcopy(value)

    def update(self, value):
        current = self.get() or {}
        for key, val in value.items():
            if val is None:
                current.pop(key, None)
            else:
                current[key] = val
        self.set(current)

    def delete(self):
        node = self._store
        for key in self._path[:-1]:
            node = node.get(key, {})
        node.pop(self._path[-1], None)

    def transaction(self, update):
        new_value = update(self.get())
        self.set(new_value)
        return new_value


@pytest.fixture
def store(monkeypatch):
    data = {}
    monkeypatch.setattr(firebase_util, "get_db_ref", lambda: FakeReference(data))
    return data


@pytest.fixture
def client(store, monkeypatch):
    import main

    monkeypatch.setattr(Config, "ADMIN_API_KEY", ADMIN_KEY)
    return TestClient(main.app)


@pytest.fixture
def admin_headers():
    return {"x-api-key": ADMIN_KEY}


@pytest.fixture
def mixed_cart():
    items = [
        CartItem(id=1, name="Headphones", category="electronics", price=50, quantity=1),
        CartItem(id="2", name="T-shirt", category="clothing", price=30, quantity=1),
    ]
    return CartContext.from_items(items, shipping_cost=5)

