from datetime import datetime, timezone
from enum import Enum

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
CURRENCY = 'EGP'


class DonationType(str, Enum):
    MONETARY = 'monetary'
    MEDICAL_SUPPLIES = 'medical-supplies'
    VOLUNTEERING_TIME = 'volunteering-time'

    @property
    def label(self):
        return TYPE_LABELS[self]

    @classmethod
    def parse(cls, value):
        """Return the canonical type for ``value``, accepting legacy spellings."""
        if isinstance(value, cls):
            return value
        key = str(value or '').strip().lower()
        key = TYPE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return None


TYPE_ALIASES = {
    'medical': DonationType.MEDICAL_SUPPLIES.value,
    'volunteer': DonationType.VOLUNTEERING_TIME.value,
}

TYPE_LABELS = {
    DonationType.MONETARY: 'Monetary',
    DonationType.MEDICAL_SUPPLIES: 'Medical Supplies',
    DonationType.VOLUNTEERING_TIME: 'Volunteering Time',
}

# Ordered as offered in the form select
MONETARY_PURPOSES = {
    'general': 'General Use',
    'medical-supplies': 'Medical Supplies & Equipment',
    'patient-care': 'Patient Care & Treatment',
    'clinic-maintenance': 'Clinic Maintenance & Operations',
    'staff-training': 'Staff Training & Development',
}
DEFAULT_PURPOSE = 'general'

MIN_VOLUNTEER_HOURS = 0.5


def timestamp_of(record):
    """Creation time of a record as an aware datetime, or None if unusable.

    Stores hand timestamps back in different shapes: Firestore returns a
    datetime, the REST server an ISO-8601 string or epoch milliseconds.
    """
    value = record.get('timestamp')
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, dict) and '_seconds' in value:
        # Firestore Timestamp serialised by a REST proxy
        try:
            return datetime.fromtimestamp(float(value['_seconds']), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def sort_donations(records):
    """Newest first; records without a usable timestamp count as epoch zero."""
    return sorted(records, key=lambda r: timestamp_of(r) or EPOCH, reverse=True)
