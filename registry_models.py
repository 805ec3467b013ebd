"""
Value types for registrations and DNS records
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class RegistrationStatus(Enum):
    """Display status of a registration"""
    ACTIVE = "active"
    PENDING = "pending"
    EXPIRED = "expired"


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision"""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


@dataclass
class Registration:
    """A domain delegated to an owner's nameservers"""
    domain: str
    email: str
    nameservers: List[str]
    status: RegistrationStatus = RegistrationStatus.ACTIVE
    created: Optional[str] = None
    updated: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the ledger's JSON shape"""
        data: Dict[str, Any] = {
            'domain': self.domain,
            'email': self.email,
            'nameservers': list(self.nameservers),
            'status': self.status.value,
            'created': self.created,
        }
        if self.updated:
            data['updated'] = self.updated
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Registration':
        """Build from a ledger entry; raises ValueError on malformed entries"""
        if not isinstance(data, dict):
            raise ValueError(f"ledger entry is not an object: {type(data).__name__}")

        domain = data.get('domain')
        email = data.get('email')
        nameservers = data.get('nameservers')
        if not isinstance(domain, str) or not isinstance(email, str):
            raise ValueError("ledger entry is missing domain or email")
        if not isinstance(nameservers, list):
            raise ValueError(f"ledger entry for {domain} has no nameserver list")

        try:
            status = RegistrationStatus(data.get('status') or 'active')
        except ValueError:
            raise ValueError(f"ledger entry for {domain} has unknown status {data.get('status')!r}")

        return cls(
            domain=domain,
            email=email,
            nameservers=[str(ns) for ns in nameservers],
            status=status,
            created=data.get('created') or data.get('createdAt'),
            updated=data.get('updated'),
        )


@dataclass
class DNSRecord:
    """A record owned by the DNS provider"""
    id: str
    type: str
    name: str
    content: str
    ttl: int = 3600
    extra: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_cloudflare(cls, data: Dict[str, Any]) -> 'DNSRecord':
        return cls(
            id=str(data.get('id', '')),
            type=str(data.get('type', '')).upper(),
            name=str(data.get('name', '')).lower(),
            content=str(data.get('content', '')).lower(),
            ttl=int(data.get('ttl') or 1),
            extra={k: data[k] for k in ('created_on', 'modified_on', 'comment') if k in data},
        )
