"""
Donation list: summary cards built from store snapshots.

``DonationListRenderer.render_snapshot`` is pure, so it can be re-run on every
snapshot a live subscription delivers; ``SnapshotStream`` turns the store's
callback subscription into a blocking iterator that only ever hands out the
newest snapshot.
"""
import logging
import threading

from errors import StoreError
from models import CURRENCY, MONETARY_PURPOSES, DonationType, sort_donations, timestamp_of

logger = logging.getLogger(__name__)

EMPTY_MESSAGE = 'No donations submitted yet. Be the first to donate!'
LOAD_ERROR = 'Error loading donations. Please check the backend connection and try again.'
STREAM_STOPPED = 'Live updates stopped'
TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


def format_number(value):
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _type_label(raw):
    donation_type = DonationType.parse(raw)
    if donation_type is not None:
        return donation_type, donation_type.label
    return None, (raw or 'Unknown').replace('-', ' ').title()


class DonationCard:
    def __init__(self, record):
        self.id = record.get('id')
        created = timestamp_of(record)
        self.timestamp = created
        self.timestamp_label = created.astimezone().strftime(TIMESTAMP_FORMAT) if created else 'N/A'
        self.donation_type, self.type_label = _type_label(record.get('donationType'))
        self.type_class = self.donation_type.value if self.donation_type else 'unknown'
        self.donor_name = record.get('donorName') or ''
        self.donor_email = record.get('donorEmail') or ''
        self.donor_phone = record.get('donorPhone') or ''
        self.notes = record.get('notes')
        self.rows = self._detail_rows(record)

    def _detail_rows(self, record):
        rows = []
        if self.donation_type == DonationType.MONETARY:
            rows.append(('Amount', f"{format_number(record.get('monetaryAmount'))} {CURRENCY}"))
            rows.append(('Purpose', MONETARY_PURPOSES.get(record.get('monetaryPurpose'), 'N/A')))
        elif self.donation_type == DonationType.MEDICAL_SUPPLIES:
            rows.append(('Item', record.get('medicalItemName')))
            rows.append(('Quantity', format_number(record.get('medicalQuantity'))))
            if record.get('medicalDescription'):
                rows.append(('Description', record['medicalDescription']))
        elif self.donation_type == DonationType.VOLUNTEERING_TIME:
            rows.append(('Skill', record.get('volunteerSkill')))
            rows.append(('Hours', format_number(record.get('volunteerHours'))))
            if record.get('volunteerTimes'):
                rows.append(('Availability', record['volunteerTimes']))
        return rows

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': self.timestamp_label,
            'donationType': self.type_class,
            'typeLabel': self.type_label,
            'donorName': self.donor_name,
            'donorEmail': self.donor_email,
            'donorPhone': self.donor_phone,
            'details': [{'label': label, 'value': value} for label, value in self.rows],
            'notes': self.notes,
        }


class ListView:
    def __init__(self, records=None, error=None):
        self.records = records or []
        self.cards = [DonationCard(r) for r in self.records]
        self.error = error

    @property
    def count(self):
        return len(self.cards)

    @property
    def empty(self):
        return self.error is None and not self.cards

    @property
    def placeholder(self):
        return EMPTY_MESSAGE if self.empty else None


class DonationListRenderer:
    def __init__(self, store):
        self.store = store

    def render_snapshot(self, records):
        return ListView(sort_donations(records))

    def load(self):
        """Fetch the whole collection once; failures become an inline notice."""
        try:
            records = self.store.list_all()
        except StoreError as e:
            logger.error(f"Loading donations failed: {e.reason}")
            return ListView(error=LOAD_ERROR)
        return self.render_snapshot(records)


class StreamClosed(Exception):
    pass


class SnapshotStream:
    """Latest-wins iterator over full-collection snapshots.

    Snapshots that arrive before the consumer asks for the next one replace
    the pending one. Closing the stream unsubscribes from the store.
    """

    def __init__(self, store):
        self.store = store
        self.live = getattr(store, 'live', False)
        self._cond = threading.Condition()
        self._latest = None
        self._version = 0
        self._seen = 0
        self._error = None
        self._closed = False
        self._subscription = None

    def open(self):
        self._subscription = self.store.subscribe(self._push, on_error=self._fail)
        return self

    def _push(self, records):
        with self._cond:
            self._latest = list(records)
            self._version += 1
            self._cond.notify_all()

    def _fail(self, error):
        with self._cond:
            self._error = error
            self._cond.notify_all()

    def _ready(self):
        return self._closed or self._error is not None or self._version > self._seen

    def next_snapshot(self, timeout=None):
        """Newest undelivered snapshot, or None if ``timeout`` passes first.

        Raises ``StoreError`` when the timeout passes and the subscription has
        stopped listening.
        """
        with self._cond:
            self._cond.wait_for(self._ready, timeout=timeout)
            if self._error is not None:
                error, self._error = self._error, None
                raise error
            if self._version > self._seen:
                self._seen = self._version
                return self._latest
            if self._closed:
                raise StreamClosed()
        # a listener that died after subscribing never calls on_error
        if self._subscription is not None and not self._subscription.alive():
            logger.error("Donation listener stopped delivering snapshots")
            raise StoreError(STREAM_STOPPED)
        return None

    def snapshots(self, heartbeat=None):
        while True:
            try:
                snapshot = self.next_snapshot(timeout=heartbeat)
            except StreamClosed:
                return
            yield snapshot
            if snapshot is not None and not self.live:
                return

    def __iter__(self):
        return self.snapshots()

    def close(self):
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            logger.info("Donation snapshot stream closed")

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
