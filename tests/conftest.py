"""
Shared test fixtures for the subdomain registry test suite
Provides configuration, an in-memory DNS provider with fault injection,
ledger backends and request factories.
"""

import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

import factory
import pytest
from factory.declarations import LazyAttribute, Sequence as FactorySequence
from factory.faker import Faker

from registry_config import RegistryConfig
from registry_errors import ProviderRejected, ProviderUnavailable, RecordNotFound
from registry_models import DNSRecord, Registration
from services.ledger_store import InMemoryLedgerStore
from services.registration_orchestrator import RegistrationWorkflow

# Configure test logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)


class FakeDNSProvider:
    """
    DNS provider double keeping records in a dict.

    fail_on_create holds 1-based create call numbers that are rejected;
    vanish_before_delete makes every delete report the record as already gone.
    """

    def __init__(self):
        self.records: Dict[str, DNSRecord] = {}
        self.fail_on_create: Set[int] = set()
        self.unavailable = False
        self.vanish_before_delete = False
        self.create_calls = 0
        self.delete_calls: List[str] = []
        self.comments: List[Optional[str]] = []
        self._ids = itertools.count(1)

    def add(self, name: str, content: str, record_type: str = 'NS', ttl: int = 3600) -> DNSRecord:
        record = DNSRecord(id=f"rec{next(self._ids)}", type=record_type, name=name, content=content, ttl=ttl)
        self.records[record.id] = record
        return record

    def records_for(self, name: str) -> List[DNSRecord]:
        return [r for r in self.records.values() if r.name == name]

    async def list_records(self, name: Optional[str] = None, record_type: Optional[str] = 'NS') -> List[DNSRecord]:
        if self.unavailable:
            raise ProviderUnavailable("list records: ConnectError")
        return [
            r for r in self.records.values()
            if (name is None or r.name == name) and (record_type is None or r.type == record_type)
        ]

    async def create_record(self, name: str, record_type: str, content: str, ttl: int = 3600,
                            comment: Optional[str] = None) -> DNSRecord:
        self.create_calls += 1
        if self.unavailable:
            raise ProviderUnavailable("create record: ConnectError")
        if self.create_calls in self.fail_on_create:
            raise ProviderRejected("Record already exists. (code 81057)")
        self.comments.append(comment)
        return self.add(name, content, record_type, ttl)

    async def delete_record(self, record_id: str) -> None:
        self.delete_calls.append(record_id)
        if self.vanish_before_delete:
            self.records.pop(record_id, None)
            raise RecordNotFound("Record does not exist. (code 81044)")
        if record_id not in self.records:
            raise RecordNotFound("Record does not exist. (code 81044)")
        del self.records[record_id]


class RacingLedgerStore(InMemoryLedgerStore):
    """In-memory ledger that runs queued callbacks just before a write, simulating other writers"""

    def __init__(self, registrations: Optional[Sequence[Registration]] = None):
        super().__init__(registrations)
        self.before_write: List[Callable[['RacingLedgerStore'], Awaitable[None]]] = []
        self.write_attempts = 0

    async def write(self, version, registrations):
        self.write_attempts += 1
        if self.before_write:
            interleaved = self.before_write.pop(0)
            await interleaved(self)
        return await super().write(version, registrations)


# Test data factories
class RegistrationRequestFactory(factory.Factory):  # type: ignore[misc]
    """Factory for create-request bodies"""
    class Meta:  # type: ignore[misc]
        model = dict

    domain = FactorySequence(lambda n: f"site{n:03d}.example.com")
    email = Faker('email')
    nameservers = LazyAttribute(lambda o: ['ns1.hosting.net', 'ns2.hosting.net'])


class RegistrationFactory(factory.Factory):  # type: ignore[misc]
    """Factory for ledger entries"""
    class Meta:  # type: ignore[misc]
        model = Registration

    domain = FactorySequence(lambda n: f"existing{n:03d}.example.com")
    email = Faker('email')
    nameservers = LazyAttribute(lambda o: ['ns1.other.org', 'ns2.other.org'])
    created = '2024-01-01T00:00:00.000Z'


@pytest.fixture
def registry_config() -> RegistryConfig:
    return RegistryConfig(
        cf_api_token='test_cf_token',
        cf_zone_id='test_zone_id',
        allowed_extensions=['.example.com', 'example.net'],
        ledger_backend='memory',
        dns_ttl=3600,
    )


@pytest.fixture
def dns_provider() -> FakeDNSProvider:
    return FakeDNSProvider()


@pytest.fixture
def ledger() -> RacingLedgerStore:
    return RacingLedgerStore()


@pytest.fixture
def workflow(dns_provider, ledger, registry_config) -> RegistrationWorkflow:
    return RegistrationWorkflow(dns=dns_provider, ledger=ledger, config=registry_config)


@pytest.fixture
def registration_request() -> Dict[str, Any]:
    return RegistrationRequestFactory()


@pytest.fixture
def registration_factory():
    """Factory class for ledger entries"""
    return RegistrationFactory
