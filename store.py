"""
Persistence clients for donation records.

Two interchangeable strategies talk to the external store:

  - RestDonationStore: ``POST``/``GET {API_BASE_URL}/donations`` over requests.
  - FirestoreDonationStore: a shared Firestore collection scoped by app id,
    with live snapshots through ``on_snapshot``.

Both raise StoreError with a human-readable reason on any failure and make a
single attempt per call.
"""
import logging

import firebase_admin
import requests
from firebase_admin import credentials, firestore
from google.api_core.exceptions import GoogleAPIError
from requests.exceptions import RequestException

from errors import StoreError

logger = logging.getLogger(__name__)

COLLECTION_TEMPLATE = 'artifacts/{app_id}/public/data/donations'


def firebase_app(credentials_path=None):
    """Return the default Firebase app, initialising it on first use."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        if credentials_path:
            logger.info(f"Initialising Firebase with service account {credentials_path}")
            cred = credentials.Certificate(credentials_path)
        else:
            logger.info("Initialising Firebase with application default credentials")
            cred = credentials.ApplicationDefault()
        return firebase_admin.initialize_app(cred)


class Subscription:
    """Handle returned by ``subscribe``; ``unsubscribe`` is safe to call twice.

    ``is_alive`` reports whether the underlying listener is still delivering;
    without one the subscription counts as alive until unsubscribed.
    """

    def __init__(self, cancel=None, is_alive=None):
        self._cancel = cancel
        self._is_alive = is_alive
        self.active = True

    def alive(self):
        if not self.active:
            return False
        return self._is_alive() if self._is_alive is not None else True

    def unsubscribe(self):
        if not self.active:
            return
        self.active = False
        if self._cancel is not None:
            self._cancel()


class DonationStore:
    name = 'base'
    live = False

    def create(self, record):
        raise NotImplementedError

    def list_all(self):
        raise NotImplementedError

    def subscribe(self, callback, on_error=None):
        raise NotImplementedError


class RestDonationStore(DonationStore):
    name = 'rest'

    def __init__(self, base_url, timeout=30, session=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'Accept': 'application/json'})

    @property
    def donations_url(self):
        return f"{self.base_url}/donations"

    @staticmethod
    def _error_message(resp):
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get('message'):
            return str(body['message'])
        return f"Server error: {resp.status_code}"

    def create(self, record):
        try:
            resp = self.session.post(self.donations_url, json=record, timeout=self.timeout)
        except RequestException as e:
            logger.error(f"POST {self.donations_url} failed: {e}")
            raise StoreError(str(e) or 'Network error') from e

        if not resp.ok:
            message = self._error_message(resp)
            logger.warning(f"POST {self.donations_url} rejected ({resp.status_code}): {message}")
            raise StoreError(message, status=resp.status_code)

        try:
            created = resp.json()
        except ValueError:
            created = None
        return created if isinstance(created, dict) else dict(record)

    def list_all(self):
        try:
            resp = self.session.get(self.donations_url, timeout=self.timeout)
        except RequestException as e:
            logger.error(f"GET {self.donations_url} failed: {e}")
            raise StoreError(str(e) or 'Network error') from e

        if not resp.ok:
            logger.warning(f"GET {self.donations_url} returned {resp.status_code}")
            raise StoreError('Failed to fetch', status=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise StoreError('Invalid response from server') from e
        if not isinstance(data, list):
            raise StoreError('Invalid response from server')
        return [item for item in data if isinstance(item, dict)]

    def subscribe(self, callback, on_error=None):
        # No push channel: deliver one snapshot per subscription
        try:
            callback(self.list_all())
        except StoreError as e:
            if on_error is None:
                raise
            on_error(e)
        return Subscription()


class FirestoreDonationStore(DonationStore):
    name = 'firestore'
    live = True

    def __init__(self, app_id, client=None, credentials_path=None):
        self.app_id = app_id
        self.collection_path = COLLECTION_TEMPLATE.format(app_id=app_id)
        if client is None:
            client = firestore.client(app=firebase_app(credentials_path))
        self.client = client

    def _collection(self):
        return self.client.collection(self.collection_path)

    @staticmethod
    def _to_record(doc):
        data = doc.to_dict() or {}
        data['id'] = doc.id
        return data

    def create(self, record):
        data = dict(record)
        data['timestamp'] = firestore.SERVER_TIMESTAMP
        try:
            _, ref = self._collection().add(data)
        except GoogleAPIError as e:
            logger.error(f"Firestore add to {self.collection_path} failed: {e}")
            raise StoreError(str(e) or 'Firestore write failed') from e
        created = dict(record)
        created['id'] = ref.id
        return created

    def list_all(self):
        try:
            return [self._to_record(doc) for doc in self._collection().stream()]
        except GoogleAPIError as e:
            logger.error(f"Firestore read of {self.collection_path} failed: {e}")
            raise StoreError(str(e) or 'Firestore read failed') from e

    def subscribe(self, callback, on_error=None):
        def on_snapshot(docs, changes, read_time):
            callback([self._to_record(doc) for doc in docs])

        try:
            watch = self._collection().on_snapshot(on_snapshot)
        except GoogleAPIError as e:
            logger.error(f"Firestore listen on {self.collection_path} failed: {e}")
            error = StoreError(str(e) or 'Firestore listen failed')
            if on_error is None:
                raise error from e
            on_error(error)
            return Subscription()
        logger.info(f"Subscribed to {self.collection_path}")
        return Subscription(watch.unsubscribe, is_alive=lambda: watch.is_active)


def make_store(config):
    """Build the store selected by ``DONATION_STORE`` in a Flask config mapping."""
    kind = (config.get('DONATION_STORE') or 'rest').lower()
    if kind == 'rest':
        return RestDonationStore(config['API_BASE_URL'], timeout=config.get('API_TIMEOUT', 30))
    if kind == 'firestore':
        return FirestoreDonationStore(
            config['FIREBASE_APP_ID'],
            credentials_path=config.get('FIREBASE_CREDENTIALS'),
        )
    raise ValueError(f"Unknown DONATION_STORE: {kind!r}")
