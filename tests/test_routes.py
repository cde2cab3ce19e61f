"""
HTTP surface: form endpoints, admin API, health check
"""

import smtplib
from datetime import datetime
from urllib.parse import quote_plus

import pytest

from app import create_app
from config.settings import ProductionConfig
from core.database_models import db, ConsultationRequest, EbookSubscriber
from core.validators import MESSAGES

GENERIC = quote_plus('Une erreur inattendue est survenue')
ADMIN_HEADERS = {'X-Admin-Token': 'test-admin-token'}


def mail_count(mail_dir):
    return len(list(mail_dir.glob('*.html'))) if mail_dir.exists() else 0


def count_rows(app, model):
    with app.app_context():
        return db.session.query(model).count()


class TestCsrfToken:

    def test_returns_token(self, client):
        response = client.get('/csrf-token')
        assert response.status_code == 200
        assert response.get_json()['csrf_token']


class TestBilanForm:

    def test_valid_submission(self, app, client, csrf_token, mail_dir):
        response = client.post('/process_form', data={
            'csrf_token': csrf_token,
            'name': 'Ana Martin',
            'email': 'ana@example.com',
            'phone': '06 12 34 56 78',
            'instagram': '',
        })

        assert response.status_code == 302
        assert response.headers['Location'] == '/?success=true#booking'
        assert count_rows(app, ConsultationRequest) == 1
        assert mail_count(mail_dir) == 2

    def test_validation_errors_in_redirect(self, app, client, csrf_token, mail_dir):
        response = client.post('/process_form', data={
            'csrf_token': csrf_token,
            'name': 'A',
            'email': 'not-an-email',
        })

        expected = quote_plus('|'.join([MESSAGES['name_too_short'], MESSAGES['email_invalid']]))
        assert response.headers['Location'] == f'/?error={expected}#booking'
        assert count_rows(app, ConsultationRequest) == 0
        assert mail_count(mail_dir) == 0

    def test_honeypot_looks_successful(self, app, client, mail_dir):
        response = client.post('/process_form', data={
            'website': 'http://spam.example',
            'name': 'Bot',
            'email': 'bot@example.com',
        })

        assert response.headers['Location'] == '/?success=true#booking'
        assert count_rows(app, ConsultationRequest) == 0
        assert mail_count(mail_dir) == 0

    def test_missing_csrf_token(self, app, client, mail_dir):
        response = client.post('/process_form', data={'name': 'Ana Martin', 'email': 'ana@example.com'})

        assert response.headers['Location'] == f'/?error={GENERIC}#booking'
        assert count_rows(app, ConsultationRequest) == 0
        assert mail_count(mail_dir) == 0

    def test_wrong_csrf_token(self, client, csrf_token):
        response = client.post('/process_form', data={
            'csrf_token': csrf_token + 'x',
            'name': 'Ana Martin',
            'email': 'ana@example.com',
        })
        assert response.headers['Location'] == f'/?error={GENERIC}#booking'

    def test_get_redirects_to_booking(self, client):
        response = client.get('/process_form')
        assert response.status_code == 302
        assert response.headers['Location'] == '/#booking'

    def test_unexpected_error_is_generic(self, client, csrf_token, monkeypatch):
        def explode(self, data):
            raise RuntimeError('boom')

        monkeypatch.setattr('services.submissions.SubmissionService.process_bilan_request', explode)
        response = client.post('/process_form', data={
            'csrf_token': csrf_token,
            'name': 'Ana Martin',
            'email': 'ana@example.com',
        })
        assert response.headers['Location'] == f'/?error={GENERIC}#booking'
        assert 'boom' not in response.headers['Location']


class TestEbookForm:

    def test_valid_submission(self, app, client, csrf_token, mail_dir):
        response = client.post('/process_ebook', data={
            'csrf_token': csrf_token,
            'name': 'Ana Martin',
            'email': 'ana@example.com',
            'consent': 'on',
        })

        assert response.headers['Location'] == '/?ebook_success=true'
        assert count_rows(app, EbookSubscriber) == 1
        assert mail_count(mail_dir) == 2

    def test_repeat_download_keeps_one_row(self, app, client, csrf_token):
        data = {'csrf_token': csrf_token, 'name': 'Ana Martin', 'email': 'ana@example.com', 'consent': '1'}
        client.post('/process_ebook', data=data)
        response = client.post('/process_ebook', data=data)

        assert response.headers['Location'] == '/?ebook_success=true'
        assert count_rows(app, EbookSubscriber) == 1

    def test_consent_required(self, client, csrf_token):
        response = client.post('/process_ebook', data={
            'csrf_token': csrf_token,
            'name': 'Ana Martin',
            'email': 'ana@example.com',
        })
        assert response.headers['Location'] == '/?ebook_error=' + quote_plus(MESSAGES['consent_required'])

    def test_missing_csrf_token(self, client):
        response = client.post('/process_ebook', data={'name': 'Ana Martin', 'email': 'ana@example.com', 'consent': 'on'})
        assert response.headers['Location'] == f'/?ebook_error={GENERIC}'

    def test_get_redirects_to_landing(self, client):
        assert client.get('/process_ebook').headers['Location'] == '/'


class TestAdminApi:

    @pytest.fixture
    def bilan_id(self, client, csrf_token):
        client.post('/process_form', data={'csrf_token': csrf_token, 'name': 'Ana Martin', 'email': 'ana@example.com'})
        response = client.get('/admin/bilans', headers=ADMIN_HEADERS)
        return response.get_json()['requests'][0]['id']

    @pytest.mark.parametrize('headers', [{}, {'X-Admin-Token': 'wrong'}])
    def test_requires_token(self, client, headers):
        assert client.get('/admin/bilans', headers=headers).status_code == 401
        assert client.get('/admin/ebook/stats', headers=headers).status_code == 401

    def test_disabled_without_configured_token(self, app, client):
        app.config['ADMIN_API_TOKEN'] = ''
        assert client.get('/admin/bilans', headers={'X-Admin-Token': ''}).status_code == 401

    def test_list_bilans(self, client, bilan_id):
        body = client.get('/admin/bilans?status=pending&limit=10', headers=ADMIN_HEADERS).get_json()
        assert body['count'] == 1
        assert body['requests'][0]['email'] == 'ana@example.com'
        assert body['requests'][0]['status'] == 'pending'

    def test_update_status(self, client, bilan_id):
        response = client.post(f'/admin/bilans/{bilan_id}/status', json={'status': 'contacted', 'notes': 'RDV fixé'},
                               headers=ADMIN_HEADERS)
        assert response.status_code == 200

        body = client.get('/admin/bilans?status=contacted', headers=ADMIN_HEADERS).get_json()
        assert body['requests'][0]['notes'] == 'RDV fixé'

    def test_update_status_unknown(self, client):
        response = client.post('/admin/bilans/999/status', json={'status': 'done'}, headers=ADMIN_HEADERS)
        assert response.status_code == 404

    def test_update_status_requires_status(self, client):
        response = client.post('/admin/bilans/1/status', json={}, headers=ADMIN_HEADERS)
        assert response.status_code == 400

    def test_ebook_stats(self, client, csrf_token):
        client.post('/process_ebook', data={'csrf_token': csrf_token, 'name': 'Ana Martin',
                                            'email': 'ana@example.com', 'consent': 'on'})
        body = client.get('/admin/ebook/stats', headers=ADMIN_HEADERS).get_json()
        assert body == {'total': 1, 'today': 1, 'mailing_list_count': 1}


class TestAppSurface:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['components']['database'] == 'healthy'

    def test_security_headers(self, client):
        response = client.get('/health')
        assert response.headers['X-Frame-Options'] == 'DENY'
        assert "default-src 'self'" in response.headers['Content-Security-Policy']

    def test_not_found_is_json(self, client):
        response = client.get('/nope')
        assert response.status_code == 404
        assert response.get_json()['error'] == 'Not Found'

    def test_init_db_command(self, app):
        result = app.test_cli_runner().invoke(args=['init-db'])
        assert result.exit_code == 0
        assert 'Schéma prêt' in result.output

    def test_cleanup_logs_command(self, app):
        result = app.test_cli_runner().invoke(args=['cleanup-logs', '--days', '30'])
        assert result.exit_code == 0
        assert 'log file(s) deleted' in result.output

    def test_cleanup_logs_command_logs_as_cli(self, app):
        app.test_cli_runner().invoke(args=['cleanup-logs', '--days', '30'])

        info_log = app.config['LOG_DIR'] / 'info' / f"{datetime.now():%Y-%m-%d}.log"
        lines = [line for line in info_log.read_text(encoding='utf-8').splitlines() if 'Log cleanup' in line]
        assert '[CLI] Log cleanup: 0 file(s) removed' in lines[0]
        assert '"days_to_keep": 30' in lines[0]


class TestProductionProxy:
    """Forwarded headers cannot switch a production app to local mail or debug logs"""

    @pytest.fixture
    def production_app(self, tmp_path, mail_dir):
        ebook = tmp_path / 'guide.pdf'
        ebook.write_bytes(b'%PDF-1.4')
        app = create_app('production', overrides={
            'EBOOK_PATH': ebook,
            'TESTING': True,
            'LOG_DIR': tmp_path / 'logs',
            'MAIL_LOG_DIR': mail_dir,
            'SQLALCHEMY_DATABASE_URI': 'sqlite://',
            'SQLALCHEMY_ENGINE_OPTIONS': {},
            'AUTO_CREATE_SCHEMA': True,
            'SESSION_COOKIE_SECURE': False,
            'SMTP_PORT': 465,
        })
        yield app
        with app.app_context():
            db.session.remove()
            db.drop_all()

    @pytest.fixture
    def smtp_attempts(self, monkeypatch):
        attempts = []

        def unreachable(host, port, timeout=None, context=None):
            attempts.append((host, port))
            raise OSError('Connection refused')

        monkeypatch.setattr(smtplib, 'SMTP_SSL', unreachable)
        return attempts

    def test_production_always_uses_smtp(self):
        assert ProductionConfig.MAIL_MODE == 'smtp'

    def test_forwarded_localhost_still_sends_through_smtp(self, production_app, smtp_attempts, mail_dir):
        client = production_app.test_client()
        token = client.get('/csrf-token').get_json()['csrf_token']

        response = client.post('/process_ebook', data={
            'csrf_token': token,
            'name': 'Ana Martin',
            'email': 'ana@example.com',
            'consent': 'on',
        }, headers={'X-Forwarded-Host': 'localhost', 'X-Forwarded-For': '203.0.113.5'})

        assert response.headers['Location'].startswith('/?ebook_error=')
        assert len(smtp_attempts) == 2
        assert mail_count(mail_dir) == 0

        log_dir = production_app.config['LOG_DIR']
        assert list((log_dir / 'debug').iterdir()) == []
        assert '[203.0.113.5]' in (log_dir / 'error' / f"{datetime.now():%Y-%m-%d}.log").read_text(encoding='utf-8')
