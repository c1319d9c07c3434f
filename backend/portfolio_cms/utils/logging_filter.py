"""
Log record masking for credentials

Passwords, JWTs, the signing secret and Supabase keys are replaced with
``***REDACTED***`` before any handler formats the record.
"""

import logging
import re
from typing import Iterable, Pattern, Tuple

REDACTED = "***REDACTED***"

_KEY_VALUE = r'["\']?\s*[:=]\s*["\']?'

MASKS: Tuple[Pattern[str], ...] = tuple(
    re.compile(expression, re.IGNORECASE)
    for expression in (
        rf'(password){_KEY_VALUE}[^\s"\',}}]{{4,}}',
        rf'(jwt[_-]?secret){_KEY_VALUE}[^\s"\',}}]{{8,}}',
        rf'(supabase[_-]?key){_KEY_VALUE}[\w.-]{{10,}}',
        rf'(apikey){_KEY_VALUE}[\w.-]{{10,}}',
        rf'(token){_KEY_VALUE}[\w.-]{{10,}}',
        r'(bearer\s+)[\w.-]{10,}',
    )
)

# Loggers that handle credentials directly, filtered even without root handlers
CREDENTIAL_LOGGERS = (
    "portfolio_cms.core.config",
    "portfolio_cms.main",
    "portfolio_cms.api.routes.users",
    "portfolio_cms.security.authentication",
    "portfolio_cms.repositories.supabase_repository",
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
)


def mask_secrets(text: str) -> str:
    for mask in MASKS:
        text = mask.sub(rf"\1={REDACTED}", text)
    return text


class SensitiveDataFilter(logging.Filter):
    """Rewrites message, string args and cached traceback text; never drops a record"""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = mask_secrets(str(record.msg))
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(mask_secrets(arg) if isinstance(arg, str) else arg for arg in record.args)
        if record.exc_text:
            record.exc_text = mask_secrets(record.exc_text)
        return True


def setup_secure_logging(extra_loggers: Iterable[str] = ()) -> SensitiveDataFilter:
    """Install one shared filter on the root handlers and the credential loggers"""
    secrets_filter = SensitiveDataFilter()

    for handler in logging.getLogger().handlers:
        handler.addFilter(secrets_filter)
    for name in (*CREDENTIAL_LOGGERS, *extra_loggers):
        logging.getLogger(name).addFilter(secrets_filter)

    logging.getLogger(__name__).debug("Credential masking enabled")
    return secrets_filter
