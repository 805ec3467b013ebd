"""
Error taxonomy for the subdomain registry

Every remote failure is translated into one of these classes at the adapter
boundary, so the HTTP layer only ever sees a code, a status and a short reason.
"""

from typing import Any, Dict, List, Optional


class RegistryError(Exception):
    """Base class for all registry errors"""
    code = 'internal_error'
    http_status = 500

    def __init__(self, reason: str = '', **details: Any):
        super().__init__(reason or self.code)
        self.reason = reason
        self.details: Dict[str, Any] = details

    @property
    def message_key(self) -> str:
        """Translation key under errors. for the response message"""
        return self.code


class InvalidInput(RegistryError):
    """Raised when a request field fails validation"""
    code = 'invalid_input'
    http_status = 400

    def __init__(self, field: str, reason: str = ''):
        super().__init__(reason or f"invalid {field}", field=field)
        self.field = field


class AlreadyRegistered(RegistryError):
    """The domain exists in the ledger or already has NS records"""
    code = 'already_registered'
    http_status = 409


class NotFoundOrUnauthorized(RegistryError):
    """No registration matches the (domain, email) pair"""
    code = 'not_found_or_unauthorized'
    http_status = 404


class ProviderUnavailable(RegistryError):
    """DNS provider could not be reached or answered with a server error"""
    code = 'provider_unavailable'


class ProviderRejected(RegistryError):
    """DNS provider refused the request (validation, conflict, rate limit)"""
    code = 'provider_rejected'


class RecordNotFound(ProviderRejected):
    """Delete targeted a record the provider no longer has"""
    code = 'record_not_found'


class DnsCreateFailed(RegistryError):
    """Creating the NS record set failed; already-created records were rolled back"""
    code = 'dns_create_failed'

    def __init__(self, reason: str = '', rolled_back: Optional[List[str]] = None,
                 left_behind: Optional[List[str]] = None):
        super().__init__(reason, rolled_back=rolled_back or [], left_behind=left_behind or [])
        self.rolled_back = rolled_back or []
        self.left_behind = left_behind or []

    @property
    def message_key(self) -> str:
        # some created records could not be removed
        return 'dns_rollback_incomplete' if self.left_behind else self.code


class DnsUpdateFailed(DnsCreateFailed):
    """The old NS set was deleted but the new set could not be completed"""
    code = 'dns_update_failed'

    @property
    def message_key(self) -> str:
        return self.code


class LedgerUnavailable(RegistryError):
    """Ledger store could not be read or written"""
    code = 'ledger_unavailable'


class VersionConflict(RegistryError):
    """The presented ledger version token is stale"""
    code = 'version_conflict'


class LedgerWriteFailed(RegistryError):
    """DNS was changed but the ledger could not be updated"""
    code = 'ledger_write_failed'


class NotConfigured(RegistryError):
    """Required deployment settings are missing"""
    code = 'not_configured'
