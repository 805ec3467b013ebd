"""
GitHub Contents API ledger backend
Stores the registration list as a JSON file in a repository; the blob sha is
the version token, so GitHub itself rejects writes based on a stale read.
"""

import base64
import json
import logging
import httpx
from typing import Any, Dict, List, Optional, Sequence

from registry_config import RegistryConfig
from registry_errors import LedgerUnavailable, VersionConflict
from registry_models import Registration, utc_timestamp
from services.ledger_store import LedgerSnapshot, LedgerStore

logger = logging.getLogger(__name__)


def encode_document(registrations: Sequence[Registration]) -> str:
    """Serialize as UTF-8 JSON and base64 it, keeping non-ASCII text intact"""
    payload = json.dumps([r.to_dict() for r in registrations], ensure_ascii=False, indent=2)
    return base64.b64encode(payload.encode('utf-8')).decode('ascii')


def parse_document(raw: bytes) -> List[Registration]:
    """Parse the UTF-8 JSON array; raises ValueError on anything malformed"""
    entries = json.loads(raw.decode('utf-8')) if raw.strip() else []
    if not isinstance(entries, list):
        raise ValueError("ledger document is not a JSON array")
    return [Registration.from_dict(entry) for entry in entries]


def decode_document(content: str) -> List[Registration]:
    """Inverse of encode_document; raises ValueError on anything malformed"""
    return parse_document(base64.b64decode(''.join(content.split())))


class GitHubLedgerStore(LedgerStore):
    """Ledger stored in a GitHub repository file"""

    name = 'github'

    def __init__(self, config: RegistryConfig, client: Optional[httpx.AsyncClient] = None):
        self.repo = config.github_repo
        self.path = config.github_ledger_path
        self.branch = config.github_branch
        self.url = f"{config.github_api_base_url}/repos/{self.repo}/contents/{self.path}"
        self._client = client
        self._owns_client = client is None
        self._timeout = config.http_timeout
        self.headers = {
            'Authorization': f'token {config.github_token}',
            'Accept': 'application/vnd.github.v3+json',
            'User-Agent': 'FreeDomain-Registry/1.0'
        }

    async def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=3.0, read=self._timeout, write=5.0, pool=5.0)
            )
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def read(self) -> LedgerSnapshot:
        client = await self.get_client()
        params = {'ref': self.branch} if self.branch else None
        try:
            response = await client.get(self.url, headers=self.headers, params=params)
        except httpx.HTTPError as e:
            logger.error(f"❌ GitHub ledger read failed: {e.__class__.__name__}")
            raise LedgerUnavailable(f"read: {e.__class__.__name__}")

        if response.status_code == 404:
            logger.info(f"ℹ️ Ledger {self.path} does not exist yet, starting empty")
            return None, []

        if response.status_code != 200:
            logger.error(f"❌ GitHub ledger read failed with status {response.status_code}")
            raise LedgerUnavailable(f"read: HTTP {response.status_code}")

        try:
            data = response.json()
            sha = data['sha']
            inline = data.get('encoding', 'base64') == 'base64'
            if inline:
                registrations = decode_document(data.get('content') or '')
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"❌ GitHub ledger document is unreadable: {e}")
            raise LedgerUnavailable(f"read: unreadable document ({e.__class__.__name__})")

        if not inline:
            # files over 1 MB come back without inline content
            registrations = await self._read_raw(client, params)

        logger.debug(f"Ledger read: {len(registrations)} entries at {sha[:7]}")
        return sha, registrations

    async def _read_raw(self, client: httpx.AsyncClient, params: Optional[Dict[str, str]]) -> List[Registration]:
        """Fetch the document body through the raw media type"""
        headers = {**self.headers, 'Accept': 'application/vnd.github.raw'}
        try:
            response = await client.get(self.url, headers=headers, params=params)
        except httpx.HTTPError as e:
            logger.error(f"❌ GitHub ledger raw read failed: {e.__class__.__name__}")
            raise LedgerUnavailable(f"read: {e.__class__.__name__}")

        if response.status_code != 200 or not response.content.strip():
            logger.error(f"❌ GitHub ledger raw read failed with status {response.status_code}")
            raise LedgerUnavailable(f"read: raw content unavailable (HTTP {response.status_code})")

        try:
            registrations = parse_document(response.content)
        except (ValueError, TypeError) as e:
            logger.error(f"❌ GitHub ledger document is unreadable: {e}")
            raise LedgerUnavailable(f"read: unreadable document ({e.__class__.__name__})")

        logger.info(f"ℹ️ Ledger {self.path} read through the raw media type ({len(response.content)} bytes)")
        return registrations

    @staticmethod
    def _is_sha_conflict(response: httpx.Response) -> bool:
        if response.status_code == 409:
            return True
        if response.status_code != 422:
            return False
        try:
            message = str(response.json().get('message', ''))
        except ValueError:
            return False
        return 'sha' in message.lower()

    async def write(self, version: Optional[str], registrations: Sequence[Registration]) -> str:
        body: Dict[str, Any] = {
            'message': f"Update domains - {utc_timestamp()}",
            'content': encode_document(registrations),
        }
        # no sha means "create"; GitHub refuses it if the file appeared meanwhile
        if version:
            body['sha'] = version
        if self.branch:
            body['branch'] = self.branch

        client = await self.get_client()
        try:
            response = await client.put(self.url, headers=self.headers, json=body)
        except httpx.HTTPError as e:
            logger.error(f"❌ GitHub ledger write failed: {e.__class__.__name__}")
            raise LedgerUnavailable(f"write: {e.__class__.__name__}")

        if self._is_sha_conflict(response):
            logger.warning(f"⚠️ GitHub ledger version conflict (HTTP {response.status_code}) for version {version}")
            raise VersionConflict(f"stale version {version}")

        if response.status_code not in (200, 201):
            logger.error(f"❌ GitHub ledger write failed with status {response.status_code}")
            raise LedgerUnavailable(f"write: HTTP {response.status_code}")

        try:
            new_sha = response.json()['content']['sha']
        except (ValueError, KeyError, TypeError):
            raise LedgerUnavailable("write: response has no content sha")

        logger.info(f"✅ Ledger written: {len(registrations)} entries, version {new_sha[:7]}")
        return new_sha
