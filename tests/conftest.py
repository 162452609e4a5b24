from datetime import date
from types import SimpleNamespace

import pytest

import record_store
from domain.models import DeliveryRecord, Supplier


class FakeQuery:
    """Chainable stand-in for a PostgREST query builder."""

    def __init__(self, table_name, data=None, error=None):
        self.table_name = table_name
        self.calls = []
        self._data = data
        self._error = error

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return method

    def called(self, name):
        return [(args, kwargs) for n, args, kwargs in self.calls if n == name]

    def execute(self):
        if self._error is not None:
            raise self._error
        return SimpleNamespace(data=self._data, error=None)


class FakeSupabase:
    def __init__(self):
        self.responses = {}
        self.queries = []
        self.schema_name = None

    def schema(self, name):
        self.schema_name = name
        return self

    def table(self, name):
        resp = self.responses.get(name, [])
        if isinstance(resp, Exception):
            query = FakeQuery(name, error=resp)
        else:
            query = FakeQuery(name, data=resp)
        self.queries.append(query)
        return query


@pytest.fixture
def fake_supabase(monkeypatch):
    client = FakeSupabase()
    monkeypatch.setattr(record_store, "get_client", lambda: client)
    monkeypatch.setattr(record_store, "get_schema", lambda: "wareneingang_test")
    return client


class FakeStore:
    """In-memory replacement for the record_store module."""

    def __init__(self, deliveries=None, suppliers=None):
        self.deliveries = list(deliveries or [])
        self.suppliers = list(suppliers or [])
        self.inserted = []
        self.fail_lookup = False
        self.fail_insert = False
        self.searches = []

    def fetch_deliveries_for_date(self, day):
        if self.fail_lookup:
            return False, "lookup failed", []
        return True, "Fetched", [d for d in self.deliveries if d.arrival_date == day]

    def insert_delivery(self, record):
        if self.fail_insert:
            return False, "insert failed", None
        created = DeliveryRecord(
            id=f"d{len(self.inserted) + 1}",
            supplier_id=record.supplier_id,
            arrival_date=record.arrival_date,
            batch_number=record.batch_number,
            notes=record.notes,
            delivery_note_urls=list(record.delivery_note_urls),
            goods_photo_urls=list(record.goods_photo_urls),
            recognized_text=record.recognized_text,
        )
        self.inserted.append(created)
        self.deliveries.append(created)
        return True, "Inserted", created

    def fetch_suppliers(self):
        return True, "Fetched", list(self.suppliers)

    def fetch_deliveries(self):
        return True, "Fetched", list(self.deliveries)

    def search_deliveries(self, params):
        self.searches.append(params)
        return True, "Fetched", record_store.filter_by_text(self.deliveries, params.search_text)


@pytest.fixture
def fake_store():
    return FakeStore()


class Notifications(list):
    def __call__(self, message, kind="info"):
        self.append((message, kind))

    def messages(self, kind=None):
        return [m for m, k in self if kind is None or k == kind]


@pytest.fixture
def notifications():
    return Notifications()


def make_delivery(id, supplier_id="s1", day=date(2024, 6, 7), batch=None, notes=None, text=None):
    return DeliveryRecord(
        id=id,
        supplier_id=supplier_id,
        arrival_date=day,
        batch_number=batch,
        notes=notes,
        recognized_text=text,
    )


def make_supplier(id, name):
    return Supplier(id=id, name=name, contact_person="Anna", supplier_number="100", email="a@b.de")
