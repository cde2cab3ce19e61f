# core/logging_setup.py
"""
Daily, per-severity log files for the Enorehab backend

Every component receives a SiteLogger (a LoggerAdapter bound to the client
address of the current request) instead of reaching for a global. Lines look
like:

    [2026-10-19 14:02:11] [203.0.113.7] Résultat du traitement {"success": true}

and land in <LOG_DIR>/<severity>/<YYYY-mm-dd>.log.
"""

import fcntl
import json
import logging
import sys
import time
import traceback
import warnings
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from config.settings import NON_INTERACTIVE

LOGGER_NAME = 'enorehab'
SEVERITIES = ('info', 'warning', 'error', 'debug')

# Warning categories that only matter while developing
DEBUG_WARNING_CATEGORIES = (DeprecationWarning, PendingDeprecationWarning, FutureWarning,
                            SyntaxWarning, ImportWarning)


def severity_for(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return 'error'
    if levelno >= logging.WARNING:
        return 'warning'
    if levelno >= logging.INFO:
        return 'info'
    return 'debug'


class DailySeverityFileHandler(logging.Handler):
    """
    Append one line per record to the day's file for its severity.

    Writes take an exclusive flock so that several worker processes can share
    the same directory.
    """

    def __init__(self, log_dir: Path, debug_enabled: bool = False):
        super().__init__(level=logging.DEBUG)
        self.log_dir = Path(log_dir)
        self.debug_enabled = debug_enabled
        for severity in SEVERITIES:
            (self.log_dir / severity).mkdir(parents=True, exist_ok=True)

    def path_for(self, severity: str, when: Optional[datetime] = None) -> Path:
        when = when or datetime.now()
        return self.log_dir / severity / f"{when:%Y-%m-%d}.log"

    def format_line(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        remote_addr = getattr(record, 'remote_addr', None) or NON_INTERACTIVE
        line = f"[{timestamp}] [{remote_addr}] {record.getMessage()}"

        context = getattr(record, 'context', None)
        if record.exc_info and record.exc_info[1] is not None:
            context = dict(context or {})
            context.setdefault('exception', ''.join(
                traceback.format_exception_only(record.exc_info[0], record.exc_info[1])).strip())
        if context:
            line += ' ' + json.dumps(context, ensure_ascii=False, default=str)
        return line + '\n'

    def emit(self, record: logging.LogRecord) -> None:
        if record.levelno < logging.INFO and not getattr(record, 'debug_enabled', self.debug_enabled):
            return
        try:
            line = self.format_line(record)
            path = self.path_for(severity_for(record.levelno), datetime.fromtimestamp(record.created))
            with open(path, 'a', encoding='utf-8') as fh:
                fcntl.flock(fh, fcntl.LOCK_EX)
                try:
                    fh.write(line)
                    fh.flush()
                finally:
                    fcntl.flock(fh, fcntl.LOCK_UN)
        except Exception:
            self.handleError(record)


class SiteLogger(logging.LoggerAdapter):
    """
    Logger bound to one request (or to the CLI).

    Accepts a ``context=`` mapping on every call, written as JSON after the
    message.
    """

    def process(self, msg, kwargs):
        extra = dict(self.extra)
        context = kwargs.pop('context', None)
        if context:
            extra['context'] = context
        extra.update(kwargs.get('extra') or {})
        kwargs['extra'] = extra
        return msg, kwargs

    @property
    def remote_addr(self) -> str:
        return self.extra.get('remote_addr', NON_INTERACTIVE)


def get_site_logger(context=None, name: str = LOGGER_NAME) -> SiteLogger:
    """Build the logging context for a RequestContext (or the CLI when None)"""
    remote_addr = getattr(context, 'remote_addr', None) or NON_INTERACTIVE
    extra: Dict[str, Any] = {'remote_addr': remote_addr}
    if context is not None:
        extra['debug_enabled'] = bool(context.debug_logging)
    return SiteLogger(logging.getLogger(name), extra)


def setup_logging(app) -> SiteLogger:
    """
    Configure the 'enorehab' logger for the application.

    Files go under LOG_DIR; a console handler mirrors them for the process
    supervisor.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # create_app may run several times in one process (tests, reloader)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_handler = DailySeverityFileHandler(
        Path(app.config['LOG_DIR']),
        debug_enabled=bool(app.config.get('DEBUG_LOGGING')),
    )
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(
        fmt='%(asctime)s %(name)s[%(process)d]: %(levelname)s %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    console_handler.setLevel(getattr(logging, app.config.get('LOG_LEVEL', 'INFO').upper()))
    logger.addHandler(console_handler)

    if not app.debug:
        logging.getLogger('werkzeug').setLevel(logging.WARNING)

    return get_site_logger()


def log_exception(logger: SiteLogger, exc: BaseException, label: str = 'Uncaught Exception') -> None:
    """Record an exception with its origin and the first lines of its trace"""
    frames = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ else []
    last = frames[-1] if frames else None
    trace = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error(
        f"{label}: {type(exc).__name__}: {exc}",
        context={
            'file': last.filename if last else None,
            'line': last.lineno if last else None,
            'trace': [line.rstrip() for line in trace[:5]],
        },
    )


def log_page_access(logger: SiteLogger, request) -> None:
    logger.info('Page access', context={
        'url': request.full_path.rstrip('?') if request.full_path else '/',
        'referer': request.referrer or 'direct',
        'user_agent': request.user_agent.string or 'unknown',
    })


def cleanup_logs(log_dir: Path, days_to_keep: int = 30) -> int:
    """Delete log files older than ``days_to_keep`` days; returns how many were removed"""
    cutoff = time.time() - days_to_keep * 86400
    deleted = 0
    for severity in SEVERITIES:
        directory = Path(log_dir) / severity
        if not directory.is_dir():
            continue
        for path in directory.glob('*.log'):
            if path.stat().st_mtime < cutoff:
                path.unlink()
                deleted += 1
    return deleted


def _warning_level(category) -> int:
    if issubclass(category, DEBUG_WARNING_CATEGORIES):
        return logging.DEBUG
    return logging.WARNING


def install_global_hooks(logger: Optional[SiteLogger] = None) -> None:
    """
    Route uncaught exceptions and Python warnings into the log files.

    Installed once per process; neither hook raises.
    """
    if getattr(sys.excepthook, '_enorehab_hook', False):
        return
    logger = logger or get_site_logger()

    previous_excepthook = sys.excepthook

    def excepthook(exc_type, exc, tb):
        if not issubclass(exc_type, KeyboardInterrupt):
            log_exception(logger, exc.with_traceback(tb))
        previous_excepthook(exc_type, exc, tb)

    excepthook._enorehab_hook = True
    sys.excepthook = excepthook

    def showwarning(message, category, filename, lineno, file=None, line=None):
        logger.log(
            _warning_level(category),
            f"{category.__name__}: {message}",
            context={'file': filename, 'line': lineno},
        )

    warnings.showwarning = showwarning
