"""
Domain Registration Orchestrator - keeps DNS records and the ledger in step

State machine for a create:
    validating → checking_duplicate → creating_dns → persisting_ledger → done
    creating_dns (partial failure) → rolling_back_dns → failed
    persisting_ledger (failure) → failed            (DNS is left in place)

Every remote call is awaited in sequence so compensation knows exactly which
records exist. No lock is held between the duplicate check and the writes;
the ledger's version check is the only guard against concurrent writers.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from domain_validation import validate_email, validate_lookup, validate_nameservers, \
    validate_registration_request, extract_nameservers
from registry_config import RegistryConfig
from registry_errors import (
    AlreadyRegistered, DnsCreateFailed, DnsUpdateFailed, LedgerUnavailable, LedgerWriteFailed,
    NotFoundOrUnauthorized, RecordNotFound, RegistryError, VersionConflict
)
from registry_models import DNSRecord, Registration, RegistrationStatus, utc_timestamp
from services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

NS_RECORD = 'NS'


class WorkflowState(Enum):
    """Phases of a registration workflow run"""
    VALIDATING = "validating"
    CHECKING_DUPLICATE = "checking_duplicate"
    CREATING_DNS = "creating_dns"
    ROLLING_BACK_DNS = "rolling_back_dns"
    DELETING_DNS = "deleting_dns"
    PERSISTING_LEDGER = "persisting_ledger"
    DONE = "done"
    FAILED = "failed"


# (current list) -> new list; may raise to abort the write
LedgerMutation = Callable[[List[Registration]], List[Registration]]


def _log_state(operation: str, domain: str, state: WorkflowState) -> None:
    marker = {'done': '✅', 'failed': '❌', 'rolling_back_dns': '↩️'}.get(state.value, '🔄')
    logger.info(f"{marker} {operation.upper()} {domain}: {state.value}")


class RegistrationWorkflow:
    """
    Orchestrates registration, update and deletion across the DNS provider and
    the ledger store.

    Args:
        dns: adapter with list_records / create_record / delete_record
        ledger: LedgerStore backend
        config: RegistryConfig supplying the allow-list, defaults and TTL
    """

    def __init__(self, dns: Any, ledger: LedgerStore, config: RegistryConfig):
        self.dns = dns
        self.ledger = ledger
        self.config = config

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, payload: Dict[str, Any]) -> Registration:
        """Register a new domain; returns the persisted registration"""
        _log_state('create', str(payload.get('domain') or payload.get('subdomain')), WorkflowState.VALIDATING)
        request = validate_registration_request(
            payload,
            self.config.allowed_extensions,
            default_nameservers=self.config.default_nameservers,
        )
        domain = request['domain']

        _log_state('create', domain, WorkflowState.CHECKING_DUPLICATE)
        version, registrations = await self.ledger.read()
        self._ensure_not_in_ledger(domain, registrations)
        existing_records = await self.dns.list_records(domain, NS_RECORD)
        if existing_records:
            logger.warning(f"🚫 {domain} has {len(existing_records)} NS records but no ledger entry")
            raise AlreadyRegistered(f"{domain} already has NS records")

        _log_state('create', domain, WorkflowState.CREATING_DNS)
        records = await self._create_record_set(domain, request['nameservers'], request['email'], compensate=True)

        registration = Registration(
            domain=domain,
            email=request['email'],
            nameservers=request['nameservers'],
            status=RegistrationStatus.ACTIVE,
            created=utc_timestamp(),
        )

        def append(current: List[Registration]) -> List[Registration]:
            self._ensure_not_in_ledger(domain, current)
            return current + [registration]

        _log_state('create', domain, WorkflowState.PERSISTING_LEDGER)
        try:
            await self._persist(domain, version, registrations, append)
        except AlreadyRegistered:
            # lost the race to a concurrent registration: our records go, theirs stay
            _log_state('create', domain, WorkflowState.ROLLING_BACK_DNS)
            await self._rollback_records(records)
            _log_state('create', domain, WorkflowState.FAILED)
            raise
        except LedgerWriteFailed as e:
            e.details['dns_records'] = [r.id for r in records]
            logger.error(f"❌ {domain}: NS records exist but ledger write failed, reconciliation required")
            _log_state('create', domain, WorkflowState.FAILED)
            raise

        _log_state('create', domain, WorkflowState.DONE)
        return registration

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self, payload: Dict[str, Any]) -> Registration:
        """Replace the nameservers of a domain owned by the given email"""
        lookup = validate_lookup(payload)
        domain, email = lookup['domain'], lookup['email']
        nameservers = validate_nameservers(extract_nameservers(payload))

        version, registrations = await self.ledger.read()
        self._find_owned(domain, email, registrations)

        _log_state('update', domain, WorkflowState.DELETING_DNS)
        await self._delete_record_set(domain)

        # no compensation here: the old set is already gone
        _log_state('update', domain, WorkflowState.CREATING_DNS)
        await self._create_record_set(domain, nameservers, email, compensate=False)

        updated_at = utc_timestamp()

        def replace(current: List[Registration]) -> List[Registration]:
            entry = self._find_owned(domain, email, current)
            entry.nameservers = list(nameservers)
            entry.updated = updated_at
            return current

        _log_state('update', domain, WorkflowState.PERSISTING_LEDGER)
        saved = await self._persist(domain, version, registrations, replace)

        _log_state('update', domain, WorkflowState.DONE)
        return self._find_owned(domain, email, saved)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, payload: Dict[str, Any]) -> str:
        """Remove a domain owned by the given email; returns the domain"""
        lookup = validate_lookup(payload)
        domain, email = lookup['domain'], lookup['email']

        version, registrations = await self.ledger.read()
        self._find_owned(domain, email, registrations)

        _log_state('delete', domain, WorkflowState.DELETING_DNS)
        await self._delete_record_set(domain)

        def remove(current: List[Registration]) -> List[Registration]:
            entry = self._find_owned(domain, email, current)
            return [r for r in current if r is not entry]

        _log_state('delete', domain, WorkflowState.PERSISTING_LEDGER)
        await self._persist(domain, version, registrations, remove)

        _log_state('delete', domain, WorkflowState.DONE)
        return domain

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def list_by_email(self, email: Any) -> List[Registration]:
        """Registrations owned by an email, oldest first"""
        email = validate_email(email)
        _, registrations = await self.ledger.read()
        owned = [r for r in registrations if r.email.lower() == email]
        return sorted(owned, key=lambda r: r.created or '')

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_not_in_ledger(domain: str, registrations: Sequence[Registration]) -> None:
        if any(r.domain.lower() == domain for r in registrations):
            raise AlreadyRegistered(f"{domain} is in the ledger")

    @staticmethod
    def _find_owned(domain: str, email: str, registrations: Sequence[Registration]) -> Registration:
        """Locate an entry by (domain, email); missing and wrong owner look the same"""
        for registration in registrations:
            if registration.domain.lower() == domain and registration.email.lower() == email:
                return registration
        raise NotFoundOrUnauthorized(f"no registration for {domain} owned by the caller")

    async def _create_record_set(
        self,
        domain: str,
        nameservers: Sequence[str],
        email: str,
        compensate: bool
    ) -> List[DNSRecord]:
        """Create one NS record per nameserver, in order"""
        created: List[DNSRecord] = []
        for nameserver in nameservers:
            try:
                record = await self.dns.create_record(
                    domain,
                    NS_RECORD,
                    nameserver,
                    ttl=self.config.dns_ttl,
                    comment=f"Domain registered for {email}",
                )
            except RegistryError as e:
                logger.error(f"❌ NS record {nameserver} for {domain} failed: {e.reason or e.code}")
                if not compensate:
                    # the previous set is gone, whatever was created stays
                    _log_state('update', domain, WorkflowState.FAILED)
                    raise DnsUpdateFailed(e.reason or e.code, left_behind=[r.id for r in created])
                rolled_back: List[str] = []
                if created:
                    _log_state('create', domain, WorkflowState.ROLLING_BACK_DNS)
                    rolled_back = await self._rollback_records(created)
                left_behind = [r.id for r in created if r.id not in rolled_back]
                if left_behind:
                    logger.error(f"❌ {domain}: {len(left_behind)} NS records survived rollback, reconciliation required")
                raise DnsCreateFailed(e.reason or e.code, rolled_back=rolled_back, left_behind=left_behind)
            created.append(record)
        return created

    async def _rollback_records(self, records: Sequence[DNSRecord]) -> List[str]:
        """Compensating deletes; returns ids that are confirmed gone"""
        removed = []
        for record in records:
            try:
                await self.dns.delete_record(record.id)
                removed.append(record.id)
            except RecordNotFound:
                removed.append(record.id)
            except RegistryError as e:
                logger.error(f"❌ Rollback of record {record.id} ({record.name}) failed: {e.reason or e.code}")
        if len(removed) == len(records):
            logger.info(f"↩️ Rolled back {len(removed)} NS records")
        return removed

    async def _delete_record_set(self, domain: str) -> int:
        """Delete all NS records for a domain; records already gone are ignored"""
        records = await self.dns.list_records(domain, NS_RECORD)
        deleted = 0
        for record in records:
            try:
                await self.dns.delete_record(record.id)
                deleted += 1
            except RecordNotFound:
                logger.info(f"ℹ️ NS record {record.id} for {domain} already gone")
        return deleted

    async def _persist(
        self,
        domain: str,
        version: Optional[str],
        registrations: List[Registration],
        mutate: LedgerMutation
    ) -> List[Registration]:
        """
        Read-modify-write with one retry on VersionConflict.

        The retry re-reads the ledger and re-applies `mutate`, which re-checks
        its own preconditions (duplicate, ownership) against the fresh copy.
        """
        updated = mutate(registrations)
        try:
            await self.ledger.write(version, updated)
            return updated
        except VersionConflict:
            logger.warning(f"⚠️ Ledger changed under {domain}, retrying once with a fresh read")
        except LedgerUnavailable as e:
            raise LedgerWriteFailed(e.reason, phase=WorkflowState.PERSISTING_LEDGER.value)

        try:
            version, fresh = await self.ledger.read()
            updated = mutate(fresh)
            await self.ledger.write(version, updated)
            return updated
        except VersionConflict:
            logger.error(f"❌ Ledger conflict persisted for {domain}, giving up")
            raise LedgerWriteFailed("version conflict after retry", phase=WorkflowState.PERSISTING_LEDGER.value)
        except LedgerUnavailable as e:
            raise LedgerWriteFailed(e.reason, phase=WorkflowState.PERSISTING_LEDGER.value)
