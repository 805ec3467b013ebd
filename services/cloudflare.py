"""
Cloudflare DNS API integration
Lists, creates and deletes the NS records that delegate registered subdomains
"""

import logging
import httpx
from typing import Any, Dict, List, Optional

from registry_config import RegistryConfig
from registry_errors import ProviderRejected, ProviderUnavailable, RecordNotFound
from registry_models import DNSRecord

logger = logging.getLogger(__name__)

# Cloudflare error codes meaning "record does not exist"
RECORD_NOT_FOUND_CODES = {81044, 1032}

PAGE_SIZE = 100


class CloudflareService:
    """Cloudflare API service for NS record management in a single zone"""
    _client: Optional[httpx.AsyncClient] = None

    def __init__(self, config: RegistryConfig, client: Optional[httpx.AsyncClient] = None):
        self.zone_id = config.cf_zone_id
        self.base_url = config.cf_api_base_url
        self.timeout = config.http_timeout
        self._own_client = client
        self.headers = {
            'Authorization': f'Bearer {config.cf_api_token}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'User-Agent': 'FreeDomain-Registry/1.0'
        }

    @classmethod
    async def get_shared_client(cls, timeout: float = 10.0) -> httpx.AsyncClient:
        """Get or create persistent HTTP client with connection pooling"""
        if cls._client is None or cls._client.is_closed:
            limits = httpx.Limits(
                max_keepalive_connections=20,
                max_connections=100,
                keepalive_expiry=30
            )
            cls._client = httpx.AsyncClient(
                limits=limits,
                timeout=httpx.Timeout(connect=3.0, read=timeout, write=5.0, pool=5.0)
            )
        return cls._client

    @classmethod
    async def close_client(cls):
        """Close HTTP client for clean shutdown"""
        if cls._client and not cls._client.is_closed:
            await cls._client.aclose()
            cls._client = None

    async def get_client(self) -> httpx.AsyncClient:
        if self._own_client is not None:
            return self._own_client
        return await self.get_shared_client(self.timeout)

    @property
    def records_url(self) -> str:
        return f"{self.base_url}/zones/{self.zone_id}/dns_records"

    @staticmethod
    def _error_codes(data: Dict[str, Any]) -> List[int]:
        codes = []
        for error in data.get('errors') or []:
            try:
                codes.append(int(error.get('code')))
            except (TypeError, ValueError):
                continue
        return codes

    @staticmethod
    def _error_reason(data: Dict[str, Any], status_code: int) -> str:
        """Short reason from the first provider error, for logs only"""
        errors = data.get('errors') or []
        if errors and isinstance(errors[0], dict):
            message = errors[0].get('message') or 'unknown error'
            code = errors[0].get('code')
            return f"{message} (code {code})" if code else message
        return f"HTTP {status_code} error"

    async def _request(self, method: str, url: str, action: str, **kwargs) -> Dict[str, Any]:
        """
        Perform a Cloudflare call and return the parsed body.

        Raises:
            ProviderUnavailable: transport failure, 5xx or unparseable body
            ProviderRejected: provider answered success=false
        """
        client = await self.get_client()
        try:
            response = await client.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"❌ Cloudflare {action} failed: {e.__class__.__name__}")
            raise ProviderUnavailable(f"{action}: {e.__class__.__name__}")

        if response.status_code >= 500:
            logger.error(f"❌ Cloudflare {action} failed with status {response.status_code}")
            raise ProviderUnavailable(f"{action}: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            logger.error(f"❌ Cloudflare {action} returned a non-JSON body (HTTP {response.status_code})")
            raise ProviderUnavailable(f"{action}: malformed response")

        if not isinstance(data, dict):
            raise ProviderUnavailable(f"{action}: malformed response")

        if response.status_code == 404 or set(self._error_codes(data)) & RECORD_NOT_FOUND_CODES:
            raise RecordNotFound(self._error_reason(data, response.status_code))

        if not response.is_success or not data.get('success'):
            reason = self._error_reason(data, response.status_code)
            logger.error(f"❌ Cloudflare {action} rejected: {reason}")
            raise ProviderRejected(reason)

        return data

    async def list_records(self, name: Optional[str] = None, record_type: Optional[str] = 'NS') -> List[DNSRecord]:
        """
        List records in the zone, optionally filtered by name and type.

        Returns an empty list when nothing matches.
        """
        params: Dict[str, Any] = {'per_page': PAGE_SIZE}
        if record_type:
            params['type'] = record_type.upper()
        if name:
            params['name'] = name.lower()

        records: List[DNSRecord] = []
        page = 1
        while True:
            params['page'] = page
            try:
                data = await self._request('GET', self.records_url, 'list records', params=params)
            except RecordNotFound as e:
                # a 404 on list means the zone itself is unknown
                raise ProviderRejected(e.reason)

            records.extend(DNSRecord.from_cloudflare(item) for item in data.get('result') or [])

            total_pages = (data.get('result_info') or {}).get('total_pages') or 1
            if page >= total_pages:
                break
            page += 1

        if name:
            records = [r for r in records if r.name == name.lower()]
        logger.debug(f"Found {len(records)} {record_type or 'any'} records for {name or 'zone'}")
        return records

    async def create_record(
        self,
        name: str,
        record_type: str,
        content: str,
        ttl: int = 3600,
        comment: Optional[str] = None
    ) -> DNSRecord:
        """Create a DNS record and return it with its provider-assigned id"""
        record_data: Dict[str, Any] = {
            'type': record_type.upper(),
            'name': name,
            'content': content,
            'ttl': ttl
        }
        if comment:
            record_data['comment'] = comment

        try:
            data = await self._request('POST', self.records_url, 'create record', json=record_data)
        except RecordNotFound as e:
            raise ProviderRejected(e.reason)

        record = DNSRecord.from_cloudflare(data.get('result') or {})
        if not record.id:
            raise ProviderUnavailable("create record: response has no record id")
        logger.info(f"✅ DNS record created: {record.type} {record.name} → {record.content}")
        return record

    async def delete_record(self, record_id: str) -> None:
        """
        Delete a record by id.

        Raises:
            RecordNotFound: the record is already gone
        """
        await self._request('DELETE', f"{self.records_url}/{record_id}", 'delete record')
        logger.info(f"✅ DNS record deleted: {record_id}")
