# services/submissions.py
"""
Form submission handling: validate -> persist -> notify -> aggregate

Both public forms run through the same orchestration, ``run_submission``.
What differs between them is data: the callables of a SubmissionFlow and the
SuccessPolicy that says which side effects count toward overall success.

The two policies are intentionally asymmetric:
- bilan: successful if the row was saved OR either email went out
- ebook: successful only if the ebook reached the visitor; the database row
  and the admin notification are best-effort
Side effects are never rolled back once performed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional

from config.settings import RequestContext
from core.logging_setup import SiteLogger, get_site_logger
from core.validators import validate_bilan, validate_ebook, is_truthy
from services.email_manager import EmailManager
from services.repository import PersistenceResult, SubmissionRepository, SubscriberStats

VALIDATION_FAILED_MESSAGE = 'Erreurs de validation'


class Step(str, Enum):
    VALIDATION = 'validation'
    PERSISTENCE = 'persistence'
    CLIENT_EMAIL = 'client_email'
    ADMIN_EMAIL = 'admin_email'


@dataclass(frozen=True)
class SuccessPolicy:
    """Which steps, if any one succeeds, make the submission a success"""
    name: str
    counted_steps: FrozenSet[Step]

    def is_success(self, outcomes: Mapping[Step, 'StepOutcome']) -> bool:
        return any(outcomes[step].success for step in self.counted_steps if step in outcomes)


BILAN_POLICY = SuccessPolicy('bilan', frozenset({Step.PERSISTENCE, Step.CLIENT_EMAIL, Step.ADMIN_EMAIL}))
EBOOK_POLICY = SuccessPolicy('ebook', frozenset({Step.CLIENT_EMAIL}))


@dataclass
class StepOutcome:
    step: Step
    success: bool
    reason: str = ''


@dataclass
class SubmissionResult:
    success: bool
    message: str
    errors: List[str] = field(default_factory=list)
    outcomes: Dict[Step, StepOutcome] = field(default_factory=dict)
    persistence: Optional[PersistenceResult] = None

    def _step_success(self, step: Step) -> bool:
        outcome = self.outcomes.get(step)
        return bool(outcome and outcome.success)

    @property
    def validation_failed(self) -> bool:
        outcome = self.outcomes.get(Step.VALIDATION)
        return outcome is not None and not outcome.success

    @property
    def db_success(self) -> bool:
        return self._step_success(Step.PERSISTENCE)

    @property
    def client_email_success(self) -> bool:
        return self._step_success(Step.CLIENT_EMAIL)

    @property
    def admin_email_success(self) -> bool:
        return self._step_success(Step.ADMIN_EMAIL)

    def as_log_context(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'db_success': self.db_success,
            'client_email_success': self.client_email_success,
            'admin_email_success': self.admin_email_success,
        }


@dataclass
class SubmissionFlow:
    """The per-form pieces plugged into run_submission"""
    name: str
    policy: SuccessPolicy
    validate: Callable[[Mapping[str, Any]], List[str]]
    persist: Callable[[Mapping[str, Any]], PersistenceResult]
    notify_client: Callable[[Mapping[str, Any]], bool]
    notify_admin: Callable[[Mapping[str, Any], PersistenceResult, Optional[SubscriberStats]], bool]
    success_message: str
    failure_message: str
    client_email_error: str
    collect_stats: Optional[Callable[[], Optional[SubscriberStats]]] = None


def run_submission(flow: SubmissionFlow, data: Mapping[str, Any],
                   logger: Optional[SiteLogger] = None) -> SubmissionResult:
    logger = logger or get_site_logger()

    errors = flow.validate(data)
    if errors:
        logger.warning(f"{VALIDATION_FAILED_MESSAGE} ({flow.name})", context={'errors': errors})
        return SubmissionResult(
            success=False,
            message=VALIDATION_FAILED_MESSAGE,
            errors=list(errors),
            outcomes={Step.VALIDATION: StepOutcome(Step.VALIDATION, False, '|'.join(errors))},
        )

    outcomes = {Step.VALIDATION: StepOutcome(Step.VALIDATION, True)}
    errors = []

    persistence = flow.persist(data)
    outcomes[Step.PERSISTENCE] = StepOutcome(Step.PERSISTENCE, persistence.success, persistence.message)
    if not persistence.success:
        errors.append(persistence.message)

    client_sent = flow.notify_client(data)
    outcomes[Step.CLIENT_EMAIL] = StepOutcome(
        Step.CLIENT_EMAIL, client_sent, '' if client_sent else flow.client_email_error)
    if not client_sent:
        errors.append(flow.client_email_error)

    stats = flow.collect_stats() if flow.collect_stats else None
    admin_sent = flow.notify_admin(data, persistence, stats)
    outcomes[Step.ADMIN_EMAIL] = StepOutcome(Step.ADMIN_EMAIL, admin_sent)

    success = flow.policy.is_success(outcomes)
    result = SubmissionResult(
        success=success,
        message=flow.success_message if success else flow.failure_message,
        errors=errors,
        outcomes=outcomes,
        persistence=persistence,
    )
    logger.info(f"Traitement {flow.name} terminé", context={'email': data.get('email'), **result.as_log_context()})
    return result


class SubmissionService:
    """Wires the repository and the mailer into the two form flows"""

    def __init__(self, repository: SubmissionRepository, mailer: EmailManager,
                 logger: Optional[SiteLogger] = None, context: Optional[RequestContext] = None):
        self.repository = repository
        self.mailer = mailer
        self.logger = logger or get_site_logger(context)
        self.context = context or RequestContext()

    def bilan_flow(self) -> SubmissionFlow:
        def notify_admin(data, persistence, _stats):
            return self.mailer.send_bilan_admin_notification(
                data,
                persistence.success,
                '' if persistence.success else persistence.message,
            )

        return SubmissionFlow(
            name='bilan',
            policy=BILAN_POLICY,
            validate=validate_bilan,
            persist=lambda data: self.repository.insert_consultation(data, self.context.remote_addr),
            notify_client=lambda data: self.mailer.send_bilan_client_confirmation(
                data['email'], data['name'], data.get('phone') or '', data.get('instagram') or ''),
            notify_admin=notify_admin,
            success_message='Demande de bilan traitée avec succès',
            failure_message='Échec du traitement de la demande de bilan',
            client_email_error="L'envoi de l'email de confirmation a échoué.",
        )

    def ebook_flow(self) -> SubmissionFlow:
        return SubmissionFlow(
            name='ebook',
            policy=EBOOK_POLICY,
            validate=validate_ebook,
            persist=lambda data: self.repository.upsert_subscriber(data, self.context.remote_addr),
            notify_client=lambda data: self.mailer.send_ebook_to_client(data['email'], data['name']),
            notify_admin=lambda data, persistence, stats: self.mailer.send_ebook_admin_notification(
                data, persistence.success, stats),
            collect_stats=self.repository.subscriber_stats,
            success_message='Ebook envoyé avec succès',
            failure_message="Échec de l'envoi de l'ebook",
            client_email_error="L'envoi de l'email a échoué.",
        )

    def process_bilan_request(self, data: Mapping[str, Any]) -> SubmissionResult:
        return run_submission(self.bilan_flow(), data, self.logger)

    def process_ebook_request(self, data: Mapping[str, Any]) -> SubmissionResult:
        data = dict(data)
        data['consent'] = is_truthy(data.get('consent'))
        return run_submission(self.ebook_flow(), data, self.logger)

    def update_bilan_status(self, request_id: int, status: str, notes: Optional[str] = None) -> bool:
        return self.repository.update_status(request_id, status, notes)

    def list_bilan_requests(self, status: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        return self.repository.list_consultations(status, limit)

    def ebook_stats(self) -> Optional[SubscriberStats]:
        return self.repository.subscriber_stats()
