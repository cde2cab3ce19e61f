# core/validators.py
"""
Field checks for the two public forms.

Validators only report problems: they return a list of user-facing messages
(empty when the submission is valid) and never modify the submitted mapping.
"""

import re
from typing import Any, List, Mapping

from email_validator import validate_email, EmailNotValidError

PHONE_PATTERN = re.compile(r'[0-9+()\- ]{8,20}')
NAME_MIN_LENGTH = 2

TRUE_STRINGS = {'1', 'true', 'on', 'yes'}

MESSAGES = {
    'name_required': "Le nom est requis",
    'name_too_short': f"Le nom doit contenir au moins {NAME_MIN_LENGTH} caractères",
    'email_required': "L'email est requis",
    'email_invalid': "L'email n'est pas valide",
    'phone_invalid': "Le format du numéro de téléphone n'est pas valide",
    'consent_required': "Vous devez accepter les conditions",
}


def is_truthy(value: Any) -> bool:
    """Interpret a checkbox/boolean form value"""
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def is_valid_email(value: str) -> bool:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _identity_errors(data: Mapping[str, Any]) -> List[str]:
    errors = []

    name = data.get('name') or ''
    if not name:
        errors.append(MESSAGES['name_required'])
    elif len(name) < NAME_MIN_LENGTH:
        errors.append(MESSAGES['name_too_short'])

    email = data.get('email') or ''
    if not email:
        errors.append(MESSAGES['email_required'])
    elif not is_valid_email(email):
        errors.append(MESSAGES['email_invalid'])

    return errors


def validate_bilan(data: Mapping[str, Any]) -> List[str]:
    """Consultation request: name, email, optional phone"""
    errors = _identity_errors(data)

    phone = data.get('phone')
    if phone and not PHONE_PATTERN.fullmatch(phone):
        errors.append(MESSAGES['phone_invalid'])

    return errors


def validate_ebook(data: Mapping[str, Any]) -> List[str]:
    """Ebook download: name, email, consent"""
    errors = _identity_errors(data)

    if not is_truthy(data.get('consent')):
        errors.append(MESSAGES['consent_required'])

    return errors
