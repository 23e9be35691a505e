"""
Anonymous donor identity.

The id attached to every donation comes from an ordered chain of credential
strategies; each is tried only when the previous one fails, and the last one
(a locally generated uuid) always succeeds.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions

from errors import AuthError
from store import firebase_app

logger = logging.getLogger(__name__)

AUTH_FAILED_MESSAGE = 'Authentication failed. Please try again.'


@dataclass
class Identity:
    user_id: str
    method: str
    warning: Optional[str] = None


class IdTokenStrategy:
    """Verify a Firebase ID token handed to the app and use its uid."""

    method = 'id_token'

    def __init__(self, token, app=None):
        self.token = token
        self.app = app

    def acquire(self):
        if not self.token:
            raise AuthError('No ID token available')
        try:
            decoded = firebase_auth.verify_id_token(self.token, app=self.app)
        except (ValueError, firebase_exceptions.FirebaseError) as e:
            raise AuthError(f'ID token rejected: {e}') from e
        return decoded['uid']


class AnonymousStrategy:
    """Register a provider-less Firebase Auth user."""

    method = 'anonymous'

    def __init__(self, app=None):
        self.app = app

    def acquire(self):
        try:
            user = firebase_auth.create_user(app=self.app)
        except (ValueError, firebase_exceptions.FirebaseError) as e:
            raise AuthError(f'Anonymous sign-in failed: {e}') from e
        return user.uid


class LocalIdStrategy:
    method = 'local'

    def acquire(self):
        return str(uuid.uuid4())


def resolve_identity(strategies):
    failed = []
    for strategy in strategies:
        try:
            user_id = strategy.acquire()
        except AuthError as e:
            logger.warning(f"Credential strategy {strategy.method} failed: {e.message}")
            failed.append(strategy.method)
            continue
        logger.info(f"Resolved donor identity via {strategy.method}")
        warning = AUTH_FAILED_MESSAGE if failed and strategy.method == LocalIdStrategy.method else None
        return Identity(user_id=user_id, method=strategy.method, warning=warning)
    raise AuthError(AUTH_FAILED_MESSAGE)


def build_strategies(config, id_token=None):
    """Strategy chain for the configured store.

    ``id_token`` is the Firebase ID token the current request carries, if any.
    """
    if (config.get('DONATION_STORE') or 'rest').lower() != 'firestore':
        return [LocalIdStrategy()]

    app = firebase_app(config.get('FIREBASE_CREDENTIALS'))
    strategies = []
    if id_token:
        strategies.append(IdTokenStrategy(id_token, app=app))
    strategies.append(AnonymousStrategy(app=app))
    strategies.append(LocalIdStrategy())
    return strategies


def request_token(headers, data=None):
    """ID token from an ``Authorization: Bearer`` header or an ``idToken`` field."""
    header = headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() == 'bearer' and token.strip():
        return token.strip()
    if data is not None:
        token = data.get('idToken')
        if isinstance(token, str) and token.strip():
            return token.strip()
    return None


def session_identity(session, key, strategies, id_token=None):
    """Return ``(user_id, warning)``, resolving and storing the id on first use.

    ``strategies`` is a callable taking the request's ID token, so the chain is
    only built when the session does not yet carry an id.
    """
    user_id = session.get(key)
    if user_id:
        return user_id, None
    identity = resolve_identity(strategies(id_token))
    session[key] = identity.user_id
    return identity.user_id, identity.warning
