"""
Deployment configuration for the subdomain registry
Reads every setting from environment variables once, at startup, and hands the
result to the adapters explicitly. Secrets never leave this object except as
request headers built by the adapters.
"""

import os
import logging
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_CLOUDFLARE_API = "https://api.cloudflare.com/client/v4"
DEFAULT_GITHUB_API = "https://api.github.com"

LEDGER_BACKENDS = ('github', 'memory')


def _split_csv(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(',') if part.strip()]


def normalize_extension(extension: str) -> str:
    """Lowercase an allow-list entry and give it a leading dot"""
    extension = extension.strip().lower()
    if extension and not extension.startswith('.'):
        extension = f".{extension}"
    return extension


class RegistryConfig:
    """Configuration for the registry service and its remote collaborators"""

    def __init__(
        self,
        cf_api_token: str = '',
        cf_zone_id: str = '',
        allowed_extensions: Optional[List[str]] = None,
        default_nameservers: Optional[List[str]] = None,
        dns_ttl: int = 3600,
        ledger_backend: str = 'github',
        github_token: str = '',
        github_repo: str = '',
        github_ledger_path: str = 'domains.json',
        github_branch: str = '',
        cf_api_base_url: str = DEFAULT_CLOUDFLARE_API,
        github_api_base_url: str = DEFAULT_GITHUB_API,
        http_timeout: float = 10.0,
        host: str = '0.0.0.0',
        port: int = 5000,
    ):
        if ledger_backend not in LEDGER_BACKENDS:
            raise ValueError(f"Unknown ledger backend {ledger_backend!r}, expected one of {LEDGER_BACKENDS}")

        self.cf_api_token = cf_api_token.strip()
        self.cf_zone_id = cf_zone_id.strip()
        self.allowed_extensions = [
            ext for ext in (normalize_extension(e) for e in (allowed_extensions or [])) if ext
        ]
        self.default_nameservers = [ns.strip().lower() for ns in (default_nameservers or []) if ns.strip()]
        self.dns_ttl = dns_ttl
        self.ledger_backend = ledger_backend
        self.github_token = github_token.strip()
        self.github_repo = github_repo.strip()
        self.github_ledger_path = github_ledger_path.strip().lstrip('/') or 'domains.json'
        self.github_branch = github_branch.strip()
        self.cf_api_base_url = cf_api_base_url.rstrip('/')
        self.github_api_base_url = github_api_base_url.rstrip('/')
        self.http_timeout = http_timeout
        self.host = host
        self.port = port

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'RegistryConfig':
        """Build configuration from environment variables"""
        env = os.environ if environ is None else environ

        try:
            dns_ttl = int(env.get('DNS_RECORD_TTL') or 3600)
        except ValueError:
            logger.warning(f"⚠️ Invalid DNS_RECORD_TTL {env.get('DNS_RECORD_TTL')!r}, using 3600")
            dns_ttl = 3600

        try:
            http_timeout = float(env.get('HTTP_TIMEOUT_SECONDS') or 10)
        except ValueError:
            logger.warning(f"⚠️ Invalid HTTP_TIMEOUT_SECONDS {env.get('HTTP_TIMEOUT_SECONDS')!r}, using 10")
            http_timeout = 10.0

        config = cls(
            cf_api_token=env.get('CF_API_TOKEN', ''),
            cf_zone_id=env.get('CF_ZONE_ID', ''),
            allowed_extensions=_split_csv(env.get('ALLOWED_EXTENSIONS')),
            default_nameservers=_split_csv(env.get('DEFAULT_NAMESERVERS')),
            dns_ttl=dns_ttl,
            ledger_backend=(env.get('LEDGER_BACKEND') or 'github').strip().lower(),
            github_token=env.get('GITHUB_TOKEN', ''),
            github_repo=env.get('GITHUB_REPO', ''),
            github_ledger_path=env.get('GITHUB_LEDGER_PATH') or 'domains.json',
            github_branch=env.get('GITHUB_BRANCH', ''),
            cf_api_base_url=env.get('CF_API_BASE_URL') or DEFAULT_CLOUDFLARE_API,
            github_api_base_url=env.get('GITHUB_API_BASE_URL') or DEFAULT_GITHUB_API,
            http_timeout=http_timeout,
            host=env.get('HOST') or '0.0.0.0',
            port=int(env.get('PORT') or 5000),
        )

        missing = config.missing_settings()
        if missing:
            logger.warning(f"⚠️ Registry configuration incomplete, missing: {', '.join(missing)}")
        else:
            logger.info(f"✅ Registry config: zone set, {len(config.allowed_extensions)} extensions, "
                        f"ledger={config.ledger_backend}")
        return config

    def env_check(self) -> Dict[str, str]:
        """Report each required variable as 'set' or 'missing' without exposing values"""
        checks = {
            'CF_API_TOKEN': self.cf_api_token,
            'CF_ZONE_ID': self.cf_zone_id,
            'ALLOWED_EXTENSIONS': self.allowed_extensions,
        }
        if self.ledger_backend == 'github':
            checks['GITHUB_TOKEN'] = self.github_token
            checks['GITHUB_REPO'] = self.github_repo
        return {name: 'set' if value else 'missing' for name, value in checks.items()}

    def missing_settings(self) -> List[str]:
        return [name for name, state in self.env_check().items() if state == 'missing']

    @property
    def is_configured(self) -> bool:
        return not self.missing_settings()

    def __repr__(self) -> str:
        return (f"RegistryConfig(zone={'set' if self.cf_zone_id else 'missing'}, "
                f"extensions={self.allowed_extensions}, ledger={self.ledger_backend})")
