# middleware/security.py
"""
Security Middleware for Request Processing
"""

import hmac
from functools import wraps

from flask import current_app, request, jsonify

from config.security import build_csp_header
from core.logging_setup import get_site_logger


def security_headers(response):
    """Add security headers to all responses"""
    for header, value in current_app.config.get('SECURITY_HEADERS', {}).items():
        response.headers.setdefault(header, value)

    policy = current_app.config.get('CSP_POLICY')
    if policy:
        response.headers.setdefault('Content-Security-Policy', build_csp_header(policy))

    return response


def require_admin_token(f):
    """Decorator guarding the admin JSON API with the X-Admin-Token header"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('ADMIN_API_TOKEN') or ''
        provided = request.headers.get('X-Admin-Token', '')

        if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
            get_site_logger().warning('Accès admin refusé', context={
                'endpoint': request.endpoint,
                'ip': request.remote_addr,
                'token_sent': bool(provided),
            })
            return jsonify({'error': 'Authentication required'}), 401

        return f(*args, **kwargs)
    return decorated_function
