"""
Public form endpoints: bilan request and ebook download
"""

from urllib.parse import quote_plus

from flask import Blueprint, current_app, jsonify, redirect, request
from flask_wtf.csrf import CSRFError, generate_csrf

from config.settings import RequestContext
from core.logging_setup import get_site_logger, log_exception, log_page_access
from services.email_manager import EmailManager
from services.repository import SubmissionRepository
from services.submissions import SubmissionService

forms_bp = Blueprint('forms', __name__)

GENERIC_ERROR = 'Une erreur inattendue est survenue'


def build_submission_service() -> SubmissionService:
    """Assemble the service for the current request"""
    config = current_app.config
    context = RequestContext.from_request(config, request)
    logger = get_site_logger(context)
    return SubmissionService(
        repository=SubmissionRepository(logger=logger),
        mailer=EmailManager.from_config(config, context, logger),
        logger=logger,
        context=context,
    )


def landing_url(query: str = '', anchor: str = '') -> str:
    url = current_app.config.get('LANDING_PAGE', '/')
    if query:
        url += '?' + query
    if anchor:
        url += '#' + anchor
    return url


def check_csrf() -> None:
    """Raises CSRFError on a missing or invalid token"""
    if current_app.config.get('WTF_CSRF_ENABLED', True):
        current_app.extensions['csrf'].protect()


def form_value(name: str):
    value = request.form.get(name, '')
    return value.strip() or None


@forms_bp.route('/csrf-token')
def csrf_token():
    return jsonify({'csrf_token': generate_csrf()})


@forms_bp.route('/process_form', methods=['GET', 'POST'])
def process_form():
    service = build_submission_service()
    logger = service.logger
    log_page_access(logger, request)

    if request.method != 'POST':
        logger.warning("Tentative d'accès direct à process_form", context={'ip': logger.remote_addr})
        return redirect(landing_url(anchor='booking'))

    try:
        honeypot = request.form.get(current_app.config.get('HONEYPOT_FIELD', 'website'))
        if honeypot:
            # Looks like a success to the bot
            logger.warning('Honeypot rempli - probable bot', context={'ip': logger.remote_addr})
            return redirect(landing_url('success=true', 'booking'))

        check_csrf()

        form_data = {
            'name': form_value('name'),
            'email': form_value('email'),
            'phone': form_value('phone'),
            'instagram': form_value('instagram'),
        }
        result = service.process_bilan_request(form_data)

        logger.info('Résultat du traitement de demande de bilan', context={
            'email': form_data['email'],
            **result.as_log_context(),
        })

        if result.success:
            return redirect(landing_url('success=true', 'booking'))
        return redirect(landing_url('error=' + quote_plus('|'.join(result.errors)), 'booking'))

    except CSRFError as e:
        logger.warning('Erreur de sécurité: token CSRF invalide', context={'reason': e.description})
    except Exception as e:
        log_exception(logger, e, 'Erreur dans process_form')

    return redirect(landing_url('error=' + quote_plus(GENERIC_ERROR), 'booking'))


@forms_bp.route('/process_ebook', methods=['GET', 'POST'])
def process_ebook():
    service = build_submission_service()
    logger = service.logger
    log_page_access(logger, request)

    if request.method != 'POST':
        logger.warning("Tentative d'accès direct à process_ebook", context={'ip': logger.remote_addr})
        return redirect(landing_url())

    try:
        check_csrf()

        form_data = {
            'name': form_value('name'),
            'email': form_value('email'),
            'consent': request.form.get('consent', ''),
        }
        result = service.process_ebook_request(form_data)

        logger.info("Résultat du traitement de téléchargement d'ebook", context={
            'email': form_data['email'],
            **result.as_log_context(),
        })

        if result.success:
            return redirect(landing_url('ebook_success=true'))
        return redirect(landing_url('ebook_error=' + quote_plus('|'.join(result.errors))))

    except CSRFError as e:
        logger.warning('Erreur de sécurité: token CSRF invalide', context={'reason': e.description})
    except Exception as e:
        log_exception(logger, e, 'Erreur dans process_ebook')

    return redirect(landing_url('ebook_error=' + quote_plus(GENERIC_ERROR)))
