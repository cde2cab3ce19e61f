"""
Shared fixtures: a testing app on in-memory SQLite, temporary log and mail
directories, and a mailer in local mode.
"""

import pytest

from app import create_app
from config.settings import TestingConfig, RequestContext
from core.database_models import db
from services.email_manager import EmailManager


def config_dict(**overrides):
    config = {key: getattr(TestingConfig, key) for key in dir(TestingConfig) if key.isupper()}
    config.update(overrides)
    return config


@pytest.fixture
def mail_dir(tmp_path):
    return tmp_path / 'emails'


@pytest.fixture
def app(tmp_path, mail_dir):
    app = create_app('testing', overrides={
        'LOG_DIR': tmp_path / 'logs',
        'MAIL_LOG_DIR': mail_dir,
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app
        db.session.rollback()


@pytest.fixture
def make_mailer(tmp_path, mail_dir):
    def factory(local_mode=True, **overrides):
        config = config_dict(LOG_DIR=tmp_path / 'logs', MAIL_LOG_DIR=mail_dir, **overrides)
        context = RequestContext(remote_addr='203.0.113.7', local_mode=local_mode)
        return EmailManager.from_config(config, context)
    return factory


@pytest.fixture
def csrf_token(client):
    """A token bound to the test client session"""
    return client.get('/csrf-token').get_json()['csrf_token']
