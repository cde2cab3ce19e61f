"""
Submission orchestration and the per-form success policies
"""

import pytest

from config.settings import RequestContext
from services.repository import PersistenceResult, SubscriberStats
from services.submissions import (BILAN_POLICY, EBOOK_POLICY, Step, StepOutcome,
                                  SubmissionService, VALIDATION_FAILED_MESSAGE)


class FakeRepository:
    def __init__(self, persist_ok=True, stats=None):
        self.persist_ok = persist_ok
        self.stats = stats
        self.calls = []

    def _result(self):
        if self.persist_ok:
            return PersistenceResult(True, 'ok', id=7)
        return PersistenceResult(False, "L'enregistrement de votre demande a échoué")

    def insert_consultation(self, record, remote_addr=None):
        self.calls.append(('insert_consultation', dict(record), remote_addr))
        return self._result()

    def upsert_subscriber(self, record, remote_addr=None):
        self.calls.append(('upsert_subscriber', dict(record), remote_addr))
        return self._result()

    def subscriber_stats(self):
        self.calls.append(('subscriber_stats',))
        return self.stats


class FakeMailer:
    def __init__(self, client_ok=True, admin_ok=True):
        self.client_ok = client_ok
        self.admin_ok = admin_ok
        self.calls = []

    def send_bilan_client_confirmation(self, email, name, phone='', instagram=''):
        self.calls.append(('client_bilan', email, name, phone, instagram))
        return self.client_ok

    def send_bilan_admin_notification(self, data, db_success=True, db_error_message=''):
        self.calls.append(('admin_bilan', db_success, db_error_message))
        return self.admin_ok

    def send_ebook_to_client(self, email, name):
        self.calls.append(('client_ebook', email, name))
        return self.client_ok

    def send_ebook_admin_notification(self, data, db_success=True, stats=None):
        self.calls.append(('admin_ebook', db_success, stats, data.get('consent')))
        return self.admin_ok


BILAN = {'name': 'Ana Martin', 'email': 'ana@example.com', 'phone': '0612345678', 'instagram': None}
EBOOK = {'name': 'Ana Martin', 'email': 'ana@example.com', 'consent': 'on'}


def make_service(repository=None, mailer=None):
    return SubmissionService(
        repository or FakeRepository(),
        mailer or FakeMailer(),
        context=RequestContext(remote_addr='198.51.100.4'),
    )


class TestPolicies:

    def test_bilan_counts_every_side_effect(self):
        assert BILAN_POLICY.counted_steps == {Step.PERSISTENCE, Step.CLIENT_EMAIL, Step.ADMIN_EMAIL}

    def test_ebook_counts_client_email_only(self):
        assert EBOOK_POLICY.counted_steps == {Step.CLIENT_EMAIL}

    def test_missing_outcome_does_not_count(self):
        assert BILAN_POLICY.is_success({Step.VALIDATION: StepOutcome(Step.VALIDATION, True)}) is False


class TestValidationShortCircuit:

    @pytest.mark.parametrize('data', [
        {**BILAN, 'name': 'A'},
        {**BILAN, 'email': 'not-an-email'},
    ])
    def test_bilan_invalid_input_has_no_side_effects(self, data):
        repository, mailer = FakeRepository(), FakeMailer()
        result = make_service(repository, mailer).process_bilan_request(data)

        assert result.success is False
        assert result.validation_failed
        assert result.message == VALIDATION_FAILED_MESSAGE
        assert len(result.errors) == 1
        assert repository.calls == []
        assert mailer.calls == []

    def test_ebook_without_consent(self):
        repository, mailer = FakeRepository(), FakeMailer()
        result = make_service(repository, mailer).process_ebook_request({**EBOOK, 'consent': ''})

        assert result.validation_failed
        assert repository.calls == []
        assert mailer.calls == []


class TestBilanFlow:

    def test_everything_succeeds(self):
        repository, mailer = FakeRepository(), FakeMailer()
        result = make_service(repository, mailer).process_bilan_request(BILAN)

        assert result.success is True
        assert result.errors == []
        assert result.message == 'Demande de bilan traitée avec succès'
        assert repository.calls[0][2] == '198.51.100.4'
        assert mailer.calls[0] == ('client_bilan', 'ana@example.com', 'Ana Martin', '0612345678', '')
        assert mailer.calls[1] == ('admin_bilan', True, '')

    def test_persistence_failure_with_emails_is_success(self):
        mailer = FakeMailer()
        result = make_service(FakeRepository(persist_ok=False), mailer).process_bilan_request(BILAN)

        assert result.success is True
        assert result.db_success is False
        assert result.errors == ["L'enregistrement de votre demande a échoué"]
        assert mailer.calls[1] == ('admin_bilan', False, "L'enregistrement de votre demande a échoué")

    def test_only_admin_email_is_enough(self):
        result = make_service(FakeRepository(persist_ok=False),
                              FakeMailer(client_ok=False)).process_bilan_request(BILAN)

        assert result.success is True
        assert result.admin_email_success is True
        assert "L'envoi de l'email de confirmation a échoué." in result.errors

    def test_everything_fails(self):
        result = make_service(FakeRepository(persist_ok=False),
                              FakeMailer(client_ok=False, admin_ok=False)).process_bilan_request(BILAN)

        assert result.success is False
        assert result.message == 'Échec du traitement de la demande de bilan'
        assert result.errors == [
            "L'enregistrement de votre demande a échoué",
            "L'envoi de l'email de confirmation a échoué.",
        ]

    def test_log_context(self):
        result = make_service().process_bilan_request(BILAN)
        assert result.as_log_context() == {
            'success': True,
            'db_success': True,
            'client_email_success': True,
            'admin_email_success': True,
        }


class TestEbookFlow:

    def test_everything_succeeds(self):
        stats = SubscriberStats(total=4, today=1, mailing_list_count=3)
        repository, mailer = FakeRepository(stats=stats), FakeMailer()
        result = make_service(repository, mailer).process_ebook_request(EBOOK)

        assert result.success is True
        assert result.message == 'Ebook envoyé avec succès'
        assert repository.calls[0][1]['consent'] is True
        assert mailer.calls[1] == ('admin_ebook', True, stats, True)

    def test_client_email_failure_fails_regardless_of_the_rest(self):
        result = make_service(FakeRepository(), FakeMailer(client_ok=False, admin_ok=True)).process_ebook_request(EBOOK)

        assert result.success is False
        assert result.db_success is True
        assert result.admin_email_success is True
        assert result.message == "Échec de l'envoi de l'ebook"
        assert result.errors == ["L'envoi de l'email a échoué."]

    def test_persistence_failure_is_not_fatal(self):
        mailer = FakeMailer(admin_ok=False)
        result = make_service(FakeRepository(persist_ok=False), mailer).process_ebook_request(EBOOK)

        assert result.success is True
        assert result.errors == ["L'enregistrement de votre demande a échoué"]
        assert mailer.calls[1][1] is False

    def test_stats_unavailable_still_notifies_admin(self):
        mailer = FakeMailer()
        make_service(FakeRepository(stats=None), mailer).process_ebook_request(EBOOK)
        assert mailer.calls[1] == ('admin_ebook', True, None, True)
