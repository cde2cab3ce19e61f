# config/security.py
"""
Security Configuration for the Enorehab form backend
"""

import os
import secrets
from datetime import timedelta


class SecurityConfig:
    """Security configuration settings"""

    # Session settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_urlsafe(32)
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)

    # CSRF protection (token is echoed back by both public forms)
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 3600  # 1 hour
    WTF_CSRF_FIELD_NAME = 'csrf_token'

    # Hidden field that humans never fill on the bilan form
    HONEYPOT_FIELD = 'website'

    # Admin JSON API; disabled while unset
    ADMIN_API_TOKEN = os.environ.get('ADMIN_API_TOKEN', '')

    # Content Security Policy
    CSP_POLICY = {
        'default-src': "'self'",
        'script-src': "'self' 'unsafe-inline' https://cdn.tailwindcss.com",
        'style-src': "'self' 'unsafe-inline' https://fonts.googleapis.com",
        'img-src': "'self' data: https:",
        'font-src': "'self' https://fonts.gstatic.com",
        'connect-src': "'self'",
        'object-src': "'none'",
        'base-uri': "'self'",
        'form-action': "'self'"
    }

    # Security headers
    SECURITY_HEADERS = {
        'X-Content-Type-Options': 'nosniff',
        'X-Frame-Options': 'DENY',
        'Strict-Transport-Security': 'max-age=31536000; includeSubDomains',
        'Referrer-Policy': 'strict-origin-when-cross-origin',
        'Permissions-Policy': 'camera=(), microphone=(), geolocation=()'
    }

    # Form posts are small; anything larger is not a legitimate submission
    MAX_CONTENT_LENGTH = 64 * 1024


def build_csp_header(policy: dict) -> str:
    """Serialize a CSP mapping into a header value"""
    return '; '.join(f"{directive} {value}" for directive, value in policy.items())
