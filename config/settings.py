# config/settings.py
"""
Application configuration for the Enorehab form backend

Values come from the environment (optionally a .env file at the project root)
with non-secret fallbacks. Request handlers never read the environment
directly: they receive a RequestContext built from the active Flask config.
"""

import os
import ipaddress
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Type
from urllib.parse import quote_plus

from dotenv import load_dotenv

from config.security import SecurityConfig

ROOT_DIR = Path(__file__).resolve().parent.parent
load_dotenv(ROOT_DIR / '.env')

# Client address recorded when there is no HTTP request (CLI, hooks)
NON_INTERACTIVE = 'CLI'

LOCAL_HOSTNAMES = {'localhost', '127.0.0.1', '::1'}
DEV_HOST_SUFFIXES = ('.test', '.local')
MAIL_MODES = ('auto', 'local', 'smtp')


def env_value(*names: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first non-empty environment variable among ``names``"""
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return default


def build_database_url() -> str:
    """
    Resolve the SQLAlchemy database URL.

    DATABASE_URL wins; otherwise a MySQL URL is assembled from the DB_* variables
    when DB_HOST is present; otherwise a local SQLite file is used.
    """
    url = env_value('DATABASE_URL')
    if url:
        return url

    host = env_value('DB_HOST')
    if host:
        name = env_value('DB_NAME', default='enorehab')
        user = env_value('DB_USER', default='enorehab')
        password = env_value('DB_PASSWORD', 'DB_PASS', default='')
        charset = env_value('DB_CHARSET', default='utf8mb4')
        return (
            f"mysql+pymysql://{quote_plus(user)}:{quote_plus(password)}"
            f"@{host}/{name}?charset={charset}"
        )

    return f"sqlite:///{ROOT_DIR / 'enorehab.db'}"


def is_loopback(address: Optional[str]) -> bool:
    if not address:
        return False
    try:
        return ipaddress.ip_address(address).is_loopback
    except ValueError:
        return False


def is_local_host(server_name: Optional[str], remote_addr: Optional[str]) -> bool:
    """True when the request is served locally (mail is then written to disk)"""
    return (server_name or '') in LOCAL_HOSTNAMES or is_loopback(remote_addr)


def is_development_host(server_name: Optional[str]) -> bool:
    """Hosts on which debug log entries are kept"""
    server_name = server_name or ''
    return server_name in LOCAL_HOSTNAMES or server_name.endswith(DEV_HOST_SUFFIXES)


def resolve_local_mode(mail_mode: str, server_name: Optional[str], remote_addr: Optional[str]) -> bool:
    if mail_mode == 'local':
        return True
    if mail_mode == 'smtp':
        return False
    return is_local_host(server_name, remote_addr)


class BaseConfig(SecurityConfig):
    """Settings shared by every environment"""

    SITE_NAME = 'Enorehab'
    ENVIRONMENT = 'production'
    VERSION = env_value('APP_VERSION', default='1.0.0')

    # Database
    SQLALCHEMY_DATABASE_URI = build_database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SLOW_QUERY_THRESHOLD = 1.0
    AUTO_CREATE_SCHEMA = False

    # Logging
    LOG_DIR = Path(env_value('LOG_DIR', default=str(ROOT_DIR / 'logs')))
    LOG_LEVEL = 'INFO'
    LOG_RETENTION_DAYS = 30
    DEBUG_LOGGING = False

    # Mail transport
    MAIL_MODE = env_value('MAIL_MODE', default='auto')
    MAIL_LOG_DIR = None  # defaults to LOG_DIR / 'emails'
    SMTP_HOST = env_value('SMTP_HOST', default='smtp.ionos.fr')
    SMTP_PORT = int(env_value('SMTP_PORT', default='465'))
    SMTP_USERNAME = env_value('SMTP_USERNAME', default='enora.lenez@enorehab.fr')
    SMTP_PASSWORD = env_value('SMTP_PASSWORD', default='')
    SMTP_TIMEOUT = 30
    SMTP_VERIFY_CERTS = True

    # Addresses (name, email)
    MAIL_DEFAULT_SENDER = ('Enorehab', 'enora.lenez@enorehab.fr')
    MAIL_PRACTITIONER = ('Enora Lenez - Enorehab', 'enora.lenez@enorehab.fr')
    MAIL_PRACTITIONER_REPLY_TO = ('Enora Lenez', 'enora.lenez@enorehab.fr')
    MAIL_ADMIN = ('Enora Lenez', env_value('ADMIN_EMAIL', default='enora.lenez@enorehab.fr'))

    # Templates and assets
    EMAIL_TEMPLATE_DIRS = [ROOT_DIR / 'templates' / 'emails', ROOT_DIR / 'templates']
    EBOOK_PATH = Path(env_value('EBOOK_PATH', default=str(ROOT_DIR / 'assets' / 'ebooks' / 'epaul-mobilite.pdf')))
    EBOOK_FILENAME = 'Epaul - Guide de mobilité.pdf'

    # Requests slower than this (ms) are logged as warnings
    SLOW_REQUEST_THRESHOLD = 5000

    # Redirect target of both forms
    LANDING_PAGE = env_value('LANDING_PAGE', default='/')


class DevelopmentConfig(BaseConfig):
    ENVIRONMENT = 'development'
    DEBUG = True
    LOG_LEVEL = 'DEBUG'
    DEBUG_LOGGING = True
    AUTO_CREATE_SCHEMA = True
    MAIL_MODE = 'local'
    SESSION_COOKIE_SECURE = False


class TestingConfig(BaseConfig):
    ENVIRONMENT = 'testing'
    TESTING = True
    SECRET_KEY = 'testing-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    AUTO_CREATE_SCHEMA = True
    MAIL_MODE = 'local'
    SESSION_COOKIE_SECURE = False
    ADMIN_API_TOKEN = 'test-admin-token'


class ProductionConfig(BaseConfig):
    ENVIRONMENT = 'production'
    # Never inferred from the request host
    MAIL_MODE = 'smtp'
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,  # MySQL closes idle connections
        'pool_recycle': 300,
    }


CONFIGS: Dict[str, Type[BaseConfig]] = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(name: Optional[str] = None) -> Type[BaseConfig]:
    name = name or env_value('APP_ENV', 'FLASK_ENV', default='production')
    try:
        return CONFIGS[name]
    except KeyError:
        raise ValueError(f"Unknown configuration '{name}', expected one of {sorted(CONFIGS)}")


@dataclass(frozen=True)
class RequestContext:
    """Per-request view of the configuration handed to every component"""

    remote_addr: str = NON_INTERACTIVE
    server_name: str = ''
    local_mode: bool = False
    debug_logging: bool = False

    @classmethod
    def from_request(cls, config, request) -> 'RequestContext':
        server_name = request.environ.get('SERVER_NAME', '')
        remote_addr = request.remote_addr or NON_INTERACTIVE
        return cls(
            remote_addr=remote_addr,
            server_name=server_name,
            local_mode=resolve_local_mode(config.get('MAIL_MODE', 'auto'), server_name, remote_addr),
            debug_logging=bool(config.get('DEBUG_LOGGING')) or (
                config.get('ENVIRONMENT') != 'production' and is_development_host(server_name)),
        )

    @classmethod
    def non_interactive(cls, config) -> 'RequestContext':
        return cls(
            local_mode=config.get('MAIL_MODE', 'auto') == 'local',
            debug_logging=bool(config.get('DEBUG_LOGGING')),
        )
