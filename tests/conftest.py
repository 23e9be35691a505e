from datetime import datetime, timedelta, timezone

import pytest
from cachelib.file import FileSystemCache

from app import create_app
from auth import LocalIdStrategy
from config import TestingConfig
from errors import StoreError
from store import DonationStore, Subscription

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeStore(DonationStore):
    """In-memory store; every created record is newer than the ones before it."""

    name = 'fake'

    def __init__(self, records=None, create_error=None, list_error=None):
        self.records = list(records or [])
        self.created = []
        self.create_error = create_error
        self.list_error = list_error
        self.subscriptions = []

    def create(self, record):
        if self.create_error is not None:
            raise self.create_error
        self.created.append(record)
        stored = dict(record)
        stored['id'] = f"doc-{len(self.created)}"
        stored['timestamp'] = (BASE_TIME + timedelta(days=len(self.created))).isoformat()
        self.records.append(stored)
        return stored

    def list_all(self):
        if self.list_error is not None:
            raise self.list_error
        return list(self.records)

    def subscribe(self, callback, on_error=None):
        try:
            callback(self.list_all())
        except StoreError as e:
            if on_error is None:
                raise
            on_error(e)
        subscription = Subscription()
        self.subscriptions.append(subscription)
        return subscription


def make_record(name, donation_type='monetary', timestamp=None, **fields):
    record = {
        'donorName': name,
        'donorEmail': f"{name.lower()}@example.com",
        'donorPhone': '555-0000',
        'donorAddress': None,
        'notes': None,
        'donationType': donation_type,
        'userId': 'user-1',
    }
    if donation_type == 'monetary':
        record.update(monetaryAmount=50.0, monetaryPurpose='general')
    if timestamp is not None:
        record['timestamp'] = timestamp
    record.update(fields)
    return record


@pytest.fixture()
def store():
    return FakeStore()


def session_config(tmp_path, **overrides):
    attrs = {'SESSION_CACHELIB': FileSystemCache(cache_dir=str(tmp_path / 'sessions'))}
    attrs.update(overrides)
    return type('Config', (TestingConfig,), attrs)


@pytest.fixture()
def app(store, tmp_path):
    return create_app(session_config(tmp_path), store=store, strategies=lambda token=None: [LocalIdStrategy()])


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def alice():
    return {
        'donorName': 'Alice',
        'donorEmail': 'a@x.com',
        'donorPhone': '555-1234',
        'monetaryAmount': '100',
        'monetaryPurpose': 'general',
    }
