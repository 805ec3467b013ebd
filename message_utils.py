"""
Response body helpers for the registry API

All responses share the {success, message, ...} shape. Messages are localized;
provider reasons stay in the logs and never reach the body.
"""

import logging
from typing import Any, Dict, Optional

from localization import t
from registry_errors import InvalidInput, NotConfigured, RegistryError

logger = logging.getLogger(__name__)


def create_success_response(message_key: Optional[str] = None, lang_code: str = 'en', **payload: Any) -> Dict[str, Any]:
    """
    Build a success body.

    Args:
        message_key: Translation key under 'success.' or None for no message
        lang_code: Response language
        payload: Extra fields; 'domain' is also used to format the message
    """
    body: Dict[str, Any] = {'success': True}
    if message_key:
        domain = payload.get('domain')
        if isinstance(domain, dict):
            domain = domain.get('domain')
        body['message'] = t(f'success.{message_key}', lang_code, domain=domain or '')
    body.update(payload)
    return body


def create_error_response(error: RegistryError, lang_code: str = 'en') -> Dict[str, Any]:
    """Build an error body from a registry error"""
    kwargs = {}
    if isinstance(error, InvalidInput):
        kwargs['field'] = error.field

    body: Dict[str, Any] = {
        'success': False,
        'code': error.code,
        'message': t(f'errors.{error.message_key}', lang_code, **kwargs),
    }

    if isinstance(error, InvalidInput):
        body['field'] = error.field
        body['detail'] = error.reason
    elif isinstance(error, NotConfigured):
        body['missing'] = list(error.details.get('missing', []))
    return body


def create_message_response(error_key: str, lang_code: str = 'en', **payload: Any) -> Dict[str, Any]:
    """Build an error body that has no matching exception class"""
    body: Dict[str, Any] = {
        'success': False,
        'code': error_key,
        'message': t(f'errors.{error_key}', lang_code),
    }
    body.update(payload)
    return body
