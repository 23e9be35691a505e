import re
import warnings

import pytest
from firebase_admin import auth as firebase_auth

import auth
from app import create_app
from auth import LocalIdStrategy
from conftest import FakeStore, make_record, session_config
from errors import StoreError
from form import MISSING_REQUIRED, SUBMIT_SUCCESS
from listing import EMPTY_MESSAGE, LOAD_ERROR
from store import Subscription


def test_form_page_renders_monetary_fields(client):
    resp = client.get('/')

    assert resp.status_code == 200
    html = resp.get_data(as_text=True)
    assert 'id="monetaryAmount"' in html
    assert 'id="medicalItemName"' not in html


def test_submit_creates_donation_and_resets_form(client, store, alice):
    resp = client.post('/', data=alice, follow_redirects=True)

    assert resp.status_code == 200
    html = resp.get_data(as_text=True)
    assert SUBMIT_SUCCESS in html
    assert 'value="Alice"' not in html
    record = store.created[0]
    assert record['monetaryAmount'] == 100.0
    assert record['donorAddress'] is None
    assert record['userId']


def test_anonymous_id_is_reused_across_submissions(client, store, alice):
    client.post('/', data=alice)
    client.post('/', data=alice)

    assert store.created[0]['userId'] == store.created[1]['userId']


def test_invalid_submit_keeps_values_and_sends_nothing(client, store, alice):
    alice['donorPhone'] = ''
    resp = client.post('/', data=alice, follow_redirects=True)

    html = resp.get_data(as_text=True)
    assert MISSING_REQUIRED in html
    assert 'value="Alice"' in html
    assert store.created == []


def test_store_failure_shows_reason_and_keeps_values(client, store, alice):
    store.create_error = StoreError('Server error: 500', status=500)

    html = client.post('/', data=alice, follow_redirects=True).get_data(as_text=True)

    assert 'Error submitting donation: Server error: 500' in html
    assert 'value="Alice"' in html


def test_switching_type_keeps_entered_values(client, alice):
    data = dict(alice, donationType='medical-supplies')
    resp = client.post('/type', data=data, follow_redirects=True)

    html = resp.get_data(as_text=True)
    assert 'id="medicalItemName"' in html
    assert 'value="Alice"' in html

    html = client.post('/type', data={'donationType': 'monetary'}, follow_redirects=True).get_data(as_text=True)
    assert 'value="100"' in html


def test_unknown_type_shows_error(client):
    html = client.post('/type', data={'donationType': 'blood'}, follow_redirects=True).get_data(as_text=True)
    assert 'Please select a donation type.' in html


def test_donations_page_lists_newest_first(client, store):
    store.records = [
        make_record('Older', timestamp='2025-01-01T00:00:00Z'),
        make_record('Newer', timestamp='2026-01-01T00:00:00Z'),
    ]

    html = client.get('/donations').get_data(as_text=True)

    assert html.index('Newer') < html.index('Older')
    assert 'EventSource' not in html


def test_donations_page_empty_and_error(client, store):
    assert EMPTY_MESSAGE in client.get('/donations').get_data(as_text=True)

    store.list_error = StoreError('Failed to fetch')
    assert LOAD_ERROR in client.get('/donations').get_data(as_text=True)


def test_stream_sends_one_snapshot_for_rest_store(client, store):
    store.records = [make_record('Streamed', timestamp='2026-01-01T00:00:00Z')]

    resp = client.get('/donations/stream')
    body = resp.get_data(as_text=True)

    assert resp.mimetype == 'text/event-stream'
    assert body.startswith('event: snapshot\n')
    assert 'data: ' in body and 'Streamed' in body
    assert store.subscriptions[0].active is False


def test_stream_reports_failure(client, store):
    store.list_error = StoreError('denied')

    body = client.get('/donations/stream').get_data(as_text=True)

    assert 'event: failure' in body
    assert LOAD_ERROR in body


def test_api_create_and_list(client, store):
    payload = {
        'donorName': 'Bob', 'donorEmail': 'b@x.com', 'donorPhone': '555',
        'donationType': 'volunteer', 'volunteerSkill': 'Driver', 'volunteerHours': 0.5,
    }

    resp = client.post('/api/donations', json=payload)

    assert resp.status_code == 201
    donation = resp.get_json()['donation']
    assert donation['donationType'] == 'volunteering-time'
    assert donation['volunteerHours'] == 0.5
    assert donation['volunteerTimes'] is None

    listed = client.get('/api/donations').get_json()
    assert listed[0]['donorName'] == 'Bob'


def test_api_validation_error(client, store):
    resp = client.post('/api/donations', json={'donorName': 'Bob', 'donationType': 'monetary'})

    assert resp.status_code == 400
    assert resp.get_json()['message'] == MISSING_REQUIRED
    assert store.created == []


def test_api_rejects_non_object_body(client):
    assert client.post('/api/donations', json=[1, 2]).status_code == 400


def test_api_store_failure(client, store, alice):
    store.create_error = StoreError('Invalid email')

    resp = client.post('/api/donations', json=alice)

    assert resp.status_code == 502
    assert resp.get_json()['message'] == 'Error submitting donation: Invalid email'


def test_api_list_failure(client, store):
    store.list_error = StoreError('Failed to fetch')

    resp = client.get('/api/donations')

    assert resp.status_code == 502
    assert resp.get_json()['message'] == LOAD_ERROR


def test_api_allows_cross_origin(client):
    resp = client.get('/api/donations', headers={'Origin': 'http://example.org'})
    assert resp.headers.get('Access-Control-Allow-Origin') in ('*', 'http://example.org')


def test_enter_key_submits_instead_of_switching_type(client):
    html = client.get('/').get_data(as_text=True)
    form = html[html.index('<form id="donationForm"'):]

    first_submit = re.search(r'<button[^>]*type="submit"[^>]*>', form).group(0)

    assert 'formaction' not in first_submit
    assert 'name="donationType"' not in first_submit


def test_form_page_carries_id_token_field(client):
    assert 'name="idToken"' in client.get('/').get_data(as_text=True)


def test_sessions_get_ids_from_their_own_tokens(monkeypatch, tmp_path):
    monkeypatch.setattr(auth, 'firebase_app', lambda path=None: 'app')
    monkeypatch.setattr(firebase_auth, 'verify_id_token', lambda token, app=None: {'uid': f'uid-{token}'})
    monkeypatch.setattr(firebase_auth, 'create_user', lambda **kwargs: pytest.fail('anonymous sign-in not expected'))
    store = FakeStore()
    app = create_app(session_config(tmp_path, DONATION_STORE='firestore'), store=store)
    donor = {'donorName': 'Dana', 'donorEmail': 'd@x.com', 'donorPhone': '555',
             'monetaryAmount': '10', 'monetaryPurpose': 'general'}

    app.test_client().post('/', data=dict(donor, idToken='t1'))
    app.test_client().post('/', data=donor, headers={'Authorization': 'Bearer t2'})

    assert [r['userId'] for r in store.created] == ['uid-t1', 'uid-t2']


def test_api_uses_caller_user_id_without_resolving_identity(store, tmp_path, alice):
    calls = []

    def strategies(token=None):
        calls.append(token)
        return [LocalIdStrategy()]

    client = create_app(session_config(tmp_path), store=store, strategies=strategies).test_client()

    for _ in range(3):
        resp = client.post('/api/donations', json=dict(alice, userId='caller-7'))
        assert resp.status_code == 201

    assert [r['userId'] for r in store.created] == ['caller-7'] * 3
    assert calls == []


def test_api_without_user_id_falls_back_to_session_identity(client, store, alice):
    resp = client.post('/api/donations', json=dict(alice, userId='  '))

    assert resp.status_code == 201
    assert store.created[0]['userId'].strip()


def test_sessions_use_cachelib_without_deprecation_warnings(store, tmp_path):
    config = session_config(tmp_path)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        app = create_app(config, store=store, strategies=lambda token=None: [LocalIdStrategy()])

    assert app.session_interface.cache is config.SESSION_CACHELIB
    assert not [w for w in caught if 'flask_session' in str(w.filename) or 'SESSION_' in str(w.message)]


class SilentFirestore(FakeStore):
    """Live store whose listener stops right after the first snapshot."""

    live = True

    def subscribe(self, callback, on_error=None):
        callback(self.list_all())
        return Subscription(is_alive=lambda: False)


def test_stream_reports_failure_when_listener_stops(tmp_path):
    store = SilentFirestore([make_record('Streamed', timestamp='2026-01-01T00:00:00Z')])
    app = create_app(session_config(tmp_path, STREAM_HEARTBEAT_SECONDS=0.01), store=store,
                     strategies=lambda token=None: [LocalIdStrategy()])

    body = app.test_client().get('/donations/stream').get_data(as_text=True)

    assert body.startswith('event: snapshot\n')
    assert 'event: failure' in body
    assert LOAD_ERROR in body
