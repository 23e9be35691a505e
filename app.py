import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_session import Session

from auth import build_strategies
from config import Config
from form import SubmissionGuard
from route import api, pages
from store import make_store

logger = logging.getLogger(__name__)


def create_app(config_object=Config, store=None, strategies=None):
    """Build the donation intake app.

    ``store`` and ``strategies`` (a callable taking the request's ID token and
    returning the credential chain) can be injected; by default both follow
    the config.
    """
    app = Flask(__name__, template_folder='Frontend/templates')
    app.config.from_object(config_object)

    logging.basicConfig(level=app.config.get('LOG_LEVEL', 'INFO'))

    # JSON API is open to other front-ends; form pages are same-origin
    CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}})

    # Server-side session keeps form state and the anonymous user id
    Session(app)

    app.extensions['donation_store'] = store if store is not None else make_store(app.config)
    app.extensions['submission_guard'] = SubmissionGuard()
    app.extensions['identity_strategies'] = strategies or (lambda token=None: build_strategies(app.config, token))

    app.register_blueprint(pages)
    app.register_blueprint(api, url_prefix='/api')

    logger.info(f"Donation store: {app.extensions['donation_store'].name}")
    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
