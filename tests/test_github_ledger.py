"""
GitHub Ledger Tests
Tests for reading and writing the registration ledger through a mocked GitHub Contents API,
plus the in-memory backend's version checks
"""

import base64
import json

import httpx
import pytest

from registry_config import RegistryConfig
from registry_errors import LedgerUnavailable, VersionConflict
from registry_models import Registration
from services.github_ledger import GitHubLedgerStore, decode_document, encode_document
from services.ledger_store import InMemoryLedgerStore, LedgerStoreFactory
from services.registration_orchestrator import RegistrationWorkflow

CONTENTS_URL = "https://api.github.com/repos/owner/ledger/contents/domains.json"


def github_config(**overrides):
    settings = dict(
        cf_api_token='test_cf_token',
        cf_zone_id='test_zone_id',
        allowed_extensions=['.example.com'],
        ledger_backend='github',
        github_token='test_gh_token',
        github_repo='owner/ledger',
    )
    settings.update(overrides)
    return RegistryConfig(**settings)


def encoded(entries):
    return base64.b64encode(json.dumps(entries, ensure_ascii=False).encode('utf-8')).decode('ascii')


def make_store(handler, **overrides):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitHubLedgerStore(github_config(**overrides), client=client)


ENTRY = {
    'domain': 'foo.example.com',
    'email': 'a@b.com',
    'nameservers': ['ns1.x.com', 'ns2.x.com'],
    'status': 'active',
    'created': '2024-01-01T00:00:00.000Z',
}


class TestDocumentEncoding:
    """Test the ledger file encoding"""

    def test_non_ascii_survives(self):
        registration = Registration(domain='foo.example.com', email='김@b.com', nameservers=['ns1.x.com', 'ns2.x.com'])
        raw = base64.b64decode(encode_document([registration])).decode('utf-8')

        assert '김@b.com' in raw
        assert decode_document(encode_document([registration]))[0].email == '김@b.com'

    def test_github_line_wrapped_content(self):
        content = encoded([ENTRY])
        wrapped = '\n'.join(content[i:i + 60] for i in range(0, len(content), 60)) + '\n'

        assert decode_document(wrapped)[0].domain == 'foo.example.com'

    def test_legacy_created_at_field(self):
        entry = {k: v for k, v in ENTRY.items() if k != 'created'}
        entry['createdAt'] = '2023-05-05T00:00:00.000Z'

        assert decode_document(encoded([entry]))[0].created == '2023-05-05T00:00:00.000Z'

    def test_document_must_be_a_list(self):
        with pytest.raises(ValueError):
            decode_document(encoded({'domain': 'foo.example.com'}))


@pytest.mark.asyncio
class TestGitHubRead:
    """Test ledger reads"""

    async def test_missing_file_is_empty_ledger(self):
        store = make_store(lambda request: httpx.Response(404, json={'message': 'Not Found'}))
        assert await store.read() == (None, [])

    async def test_read_returns_sha_and_entries(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={'sha': 'abc123', 'content': encoded([ENTRY])})

        store = make_store(handler)
        version, entries = await store.read()

        assert version == 'abc123'
        assert entries[0].nameservers == ['ns1.x.com', 'ns2.x.com']
        assert len(seen) == 1
        assert str(seen[0].url) == CONTENTS_URL
        assert seen[0].headers['Authorization'] == 'token test_gh_token'

    async def test_read_uses_configured_branch(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={'sha': 'abc123', 'content': encoded([])})

        store = make_store(handler, github_branch='ledger')
        await store.read()

        assert seen[0].url.params['ref'] == 'ledger'

    async def test_read_server_error(self):
        store = make_store(lambda request: httpx.Response(503, json={'message': 'unavailable'}))
        with pytest.raises(LedgerUnavailable):
            await store.read()

    async def test_read_malformed_document(self):
        def handler(request):
            return httpx.Response(200, json={'sha': 'abc123', 'content': encoded([{'domain': 'foo.example.com'}])})

        store = make_store(handler)
        with pytest.raises(LedgerUnavailable):
            await store.read()

    async def test_large_file_is_fetched_raw(self):
        accepts = []

        def handler(request):
            accepts.append(request.headers['Accept'])
            if request.headers['Accept'] == 'application/vnd.github.raw':
                return httpx.Response(200, content=json.dumps([ENTRY]).encode('utf-8'))
            return httpx.Response(200, json={'sha': 'abc123', 'content': '', 'encoding': 'none'})

        store = make_store(handler)
        version, entries = await store.read()

        assert version == 'abc123'
        assert [e.domain for e in entries] == ['foo.example.com']
        assert accepts == ['application/vnd.github.v3+json', 'application/vnd.github.raw']

    async def test_large_file_without_raw_body_blocks_writes(self, dns_provider):
        writes = []

        def handler(request):
            if request.method == 'PUT':
                writes.append(request)
                return httpx.Response(200, json={'content': {'sha': 'def456'}})
            if request.headers['Accept'] == 'application/vnd.github.raw':
                return httpx.Response(403, json={'message': 'This API returns blobs up to 100 MB in size'})
            return httpx.Response(200, json={'sha': 'abc123', 'content': '', 'encoding': 'none'})

        store = make_store(handler)
        workflow = RegistrationWorkflow(dns=dns_provider, ledger=store, config=github_config())
        with pytest.raises(LedgerUnavailable):
            await workflow.create({'domain': 'bar.example.com', 'email': 'c@d.com',
                                   'nameservers': ['ns1.x.com', 'ns2.x.com']})

        assert writes == []
        assert dns_provider.create_calls == 0

    async def test_read_transport_error_hides_token(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        store = make_store(handler)
        with pytest.raises(LedgerUnavailable) as exc_info:
            await store.read()
        assert 'test_gh_token' not in str(exc_info.value)


@pytest.mark.asyncio
class TestGitHubWrite:
    """Test ledger writes and version conflicts"""

    async def test_write_sends_sha_and_returns_new_version(self):
        bodies = []

        def handler(request):
            assert request.method == 'PUT'
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={'content': {'sha': 'def456'}})

        store = make_store(handler)
        new_version = await store.write('abc123', [Registration.from_dict(ENTRY)])

        assert new_version == 'def456'
        body = bodies[0]
        assert body['sha'] == 'abc123'
        assert body['message'].startswith('Update domains - ')
        assert json.loads(base64.b64decode(body['content']).decode('utf-8')) == [ENTRY]

    async def test_first_write_creates_file_without_sha(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={'content': {'sha': 'first1'}})

        store = make_store(handler, github_branch='ledger')

        assert await store.write(None, []) == 'first1'
        assert 'sha' not in bodies[0]
        assert bodies[0]['branch'] == 'ledger'

    async def test_stale_sha_conflict(self):
        store = make_store(lambda request: httpx.Response(409, json={'message': 'is at 999 but expected abc123'}))
        with pytest.raises(VersionConflict):
            await store.write('abc123', [])

    async def test_missing_sha_on_existing_file_is_conflict(self):
        def handler(request):
            return httpx.Response(422, json={'message': 'Invalid request.\n\n"sha" wasn\'t supplied.'})

        store = make_store(handler)
        with pytest.raises(VersionConflict):
            await store.write(None, [])

    async def test_other_validation_error_is_unavailable(self):
        store = make_store(lambda request: httpx.Response(422, json={'message': 'content is not valid Base64'}))
        with pytest.raises(LedgerUnavailable):
            await store.write('abc123', [])

    async def test_write_server_error(self):
        store = make_store(lambda request: httpx.Response(500, json={'message': 'Server Error'}))
        with pytest.raises(LedgerUnavailable):
            await store.write('abc123', [])


@pytest.mark.asyncio
class TestInMemoryLedger:
    """Test the in-process backend"""

    async def test_versions_advance_on_write(self):
        store = InMemoryLedgerStore()
        assert await store.read() == (None, [])

        version = await store.write(None, [Registration.from_dict(ENTRY)])
        read_version, entries = await store.read()

        assert read_version == version
        assert entries[0].domain == 'foo.example.com'

    async def test_stale_version_is_rejected(self):
        store = InMemoryLedgerStore([Registration.from_dict(ENTRY)])
        stale = store.version
        await store.write(stale, [])

        with pytest.raises(VersionConflict):
            await store.write(stale, [Registration.from_dict(ENTRY)])
        assert (await store.read())[1] == []

    async def test_reads_are_copies(self):
        store = InMemoryLedgerStore([Registration.from_dict(ENTRY)])
        _, entries = await store.read()
        entries[0].nameservers.append('ns3.x.com')

        _, fresh = await store.read()
        assert fresh[0].nameservers == ['ns1.x.com', 'ns2.x.com']


class TestLedgerStoreFactory:
    """Test backend selection"""

    def test_memory_backend(self, registry_config):
        assert isinstance(LedgerStoreFactory.create(registry_config), InMemoryLedgerStore)

    def test_github_backend(self):
        assert isinstance(LedgerStoreFactory.create(github_config()), GitHubLedgerStore)
