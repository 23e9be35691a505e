"""
Donation form state and the submit workflow.

The form keeps the raw string value of every input across requests, the
currently selected donation type and a transient status message. ``submit``
validates, assembles the wire record and hands it to the configured store.
"""
import logging
import math
import threading
import time
from contextlib import contextmanager

from errors import DonationError, StoreError, SubmissionInProgress, ValidationError
from models import DEFAULT_PURPOSE, MIN_VOLUNTEER_HOURS, MONETARY_PURPOSES, DonationType

logger = logging.getLogger(__name__)

COMMON_FIELDS = ('donorName', 'donorEmail', 'donorPhone', 'donorAddress', 'notes')
TYPE_FIELDS = {
    DonationType.MONETARY: ('monetaryAmount', 'monetaryPurpose'),
    DonationType.MEDICAL_SUPPLIES: ('medicalItemName', 'medicalQuantity', 'medicalDescription'),
    DonationType.VOLUNTEERING_TIME: ('volunteerSkill', 'volunteerHours', 'volunteerTimes'),
}
FIELDS = COMMON_FIELDS + tuple(name for names in TYPE_FIELDS.values() for name in names)

MISSING_REQUIRED = 'Please fill in Donor Name, Email, and Phone.'
INVALID_TYPE = 'Please select a donation type.'
INVALID_AMOUNT = 'Please enter a valid monetary amount.'
INVALID_PURPOSE = 'Please select a valid donation purpose.'
INVALID_MEDICAL = 'Please enter valid Medical Item Name and Quantity.'
INVALID_VOLUNTEER = 'Please enter valid Volunteer Skill/Role and Available Hours.'
NOT_AUTHENTICATED = 'User not authenticated. Cannot submit donation. Please refresh.'
IN_PROGRESS = 'A submission is already in progress.'
SUBMIT_SUCCESS = 'Donation submitted successfully! Thank you for your generosity.'
SUBMIT_FAILED = 'Error submitting donation. Please try again.'

SUCCESS = 'success'
ERROR = 'error'


class StatusMessage:
    def __init__(self, text, kind, expires_at=None):
        self.text = text
        self.kind = kind
        self.expires_at = expires_at

    def visible(self, now):
        return self.expires_at is None or now < self.expires_at

    def to_dict(self):
        return {'text': self.text, 'kind': self.kind, 'expires_at': self.expires_at}

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(data.get('text', ''), data.get('kind', ERROR), data.get('expires_at'))


class FormState:
    """Everything the form shows for one donor session."""

    def __init__(self, donation_type=DonationType.MONETARY, values=None, message=None):
        self.donation_type = donation_type
        self.values = self.default_values()
        if values:
            self.values.update({k: v for k, v in values.items() if k in FIELDS})
        self.message = message

    @staticmethod
    def default_values():
        values = dict.fromkeys(FIELDS, '')
        values['monetaryPurpose'] = DEFAULT_PURPOSE
        return values

    def reset(self):
        self.donation_type = DonationType.MONETARY
        self.values = self.default_values()

    def visible_message(self, now=None):
        if self.message is None:
            return None
        if not self.message.visible(time.time() if now is None else now):
            self.message = None
        return self.message

    def to_dict(self):
        return {
            'donation_type': self.donation_type.value,
            'values': dict(self.values),
            'message': self.message.to_dict() if self.message else None,
        }

    @classmethod
    def from_dict(cls, data):
        if not data:
            return cls()
        donation_type = DonationType.parse(data.get('donation_type')) or DonationType.MONETARY
        return cls(donation_type, data.get('values'), StatusMessage.from_dict(data.get('message')))


def _text(values, name):
    return (values.get(name) or '').strip()


def _positive_float(raw):
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def _positive_int(raw):
    try:
        value = int((raw or '').strip())
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def validate_common(values):
    name, email, phone = (_text(values, f) for f in ('donorName', 'donorEmail', 'donorPhone'))
    if not name or not email or not phone:
        raise ValidationError(MISSING_REQUIRED)
    return {
        'donorName': name,
        'donorEmail': email,
        'donorPhone': phone,
        'donorAddress': _text(values, 'donorAddress') or None,
        'notes': _text(values, 'notes') or None,
    }


def validate_payload(donation_type, values):
    """Return the variant fields for ``donation_type`` or raise ValidationError."""
    if donation_type == DonationType.MONETARY:
        amount = _positive_float(_text(values, 'monetaryAmount'))
        if amount is None:
            raise ValidationError(INVALID_AMOUNT)
        purpose = _text(values, 'monetaryPurpose') or DEFAULT_PURPOSE
        if purpose not in MONETARY_PURPOSES:
            raise ValidationError(INVALID_PURPOSE)
        return {'monetaryAmount': amount, 'monetaryPurpose': purpose}

    if donation_type == DonationType.MEDICAL_SUPPLIES:
        item = _text(values, 'medicalItemName')
        quantity = _positive_int(values.get('medicalQuantity'))
        if not item or quantity is None:
            raise ValidationError(INVALID_MEDICAL)
        return {
            'medicalItemName': item,
            'medicalQuantity': quantity,
            'medicalDescription': _text(values, 'medicalDescription') or None,
        }

    if donation_type == DonationType.VOLUNTEERING_TIME:
        skill = _text(values, 'volunteerSkill')
        hours = _positive_float(_text(values, 'volunteerHours'))
        if not skill or hours is None or hours < MIN_VOLUNTEER_HOURS:
            raise ValidationError(INVALID_VOLUNTEER)
        return {
            'volunteerSkill': skill,
            'volunteerHours': hours,
            'volunteerTimes': _text(values, 'volunteerTimes') or None,
        }

    raise ValidationError(INVALID_TYPE)


def build_record(donation_type, values, user_id):
    record = validate_common(values)
    record['donationType'] = donation_type.value
    record['userId'] = user_id
    record.update(validate_payload(donation_type, values))
    return record


class SubmissionGuard:
    """Tracks donors with a create request in flight."""

    def __init__(self):
        self._lock = threading.Lock()
        self._pending = set()

    @contextmanager
    def hold(self, key):
        with self._lock:
            if key in self._pending:
                raise SubmissionInProgress(IN_PROGRESS)
            self._pending.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._pending.discard(key)

    def pending(self, key):
        with self._lock:
            return key in self._pending


class DonationFormController:
    def __init__(self, store, state=None, user_id=None, guard=None,
                 success_seconds=4, clock=time.time):
        self.store = store
        self.state = state or FormState()
        self.user_id = user_id
        self.guard = guard or SubmissionGuard()
        self.success_seconds = success_seconds
        self.clock = clock
        self.error = None

    def update(self, values):
        for name in FIELDS:
            if name in values:
                value = values[name]
                self.state.values[name] = '' if value is None else str(value)

    def select_type(self, value):
        """Switch the rendered field group; entered values are kept."""
        donation_type = DonationType.parse(value)
        if donation_type is None:
            raise ValidationError(INVALID_TYPE)
        self.state.donation_type = donation_type
        return donation_type

    def _fail(self, error, text=None):
        self.error = error
        self.state.message = StatusMessage(text or error.message, ERROR)

    def submit(self):
        """Validate and create the donation. Returns the created record or None."""
        self.error = None
        self.state.message = None

        if not self.user_id:
            self._fail(DonationError(NOT_AUTHENTICATED))
            return None

        try:
            record = build_record(self.state.donation_type, self.state.values, self.user_id)
        except ValidationError as e:
            logger.debug(f"Donation rejected by validation: {e.message}")
            self._fail(e)
            return None

        try:
            with self.guard.hold(self.user_id):
                created = self.store.create(record)
        except SubmissionInProgress as e:
            logger.info(f"Duplicate submission refused for {self.user_id}")
            self._fail(e)
            return None
        except StoreError as e:
            text = f'Error submitting donation: {e.reason}' if e.reason else SUBMIT_FAILED
            self._fail(e, text)
            return None

        logger.info(f"Donation ({record['donationType']}) submitted by {self.user_id}")
        self.state.reset()
        self.state.message = StatusMessage(SUBMIT_SUCCESS, SUCCESS, self.clock() + self.success_seconds)
        return created
