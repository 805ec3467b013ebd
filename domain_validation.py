"""
Input validation for registration requests

Pure functions, no network calls. Each check raises InvalidInput naming the
field that failed and returns the normalized value otherwise.
"""

import re
import idna
from typing import Any, Dict, List, Optional, Sequence, Tuple

from registry_errors import InvalidInput

SUBDOMAIN_PATTERN = re.compile(r'^[a-z0-9-]+$')
NAMESERVER_PATTERN = re.compile(
    r'^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?(\.[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?)*\.[a-z]{2,}$'
)

SUBDOMAIN_MIN_LENGTH = 3
SUBDOMAIN_MAX_LENGTH = 63
MIN_NAMESERVERS = 2
MAX_NAMESERVERS = 4


def validate_subdomain(subdomain: Any) -> str:
    """Lowercase ASCII letters, digits and hyphens, 3-63 characters"""
    if not subdomain or not isinstance(subdomain, str):
        raise InvalidInput('subdomain', 'Subdomain is required')

    subdomain = subdomain.strip().lower()
    if not SUBDOMAIN_MIN_LENGTH <= len(subdomain) <= SUBDOMAIN_MAX_LENGTH:
        raise InvalidInput(
            'subdomain',
            f'Subdomain must be {SUBDOMAIN_MIN_LENGTH}-{SUBDOMAIN_MAX_LENGTH} characters, got {len(subdomain)}'
        )
    if not SUBDOMAIN_PATTERN.match(subdomain):
        raise InvalidInput('subdomain', 'Subdomain may only contain lowercase letters, digits and hyphens')
    return subdomain


def validate_email(email: Any) -> str:
    """Exactly one '@', non-empty local part, domain part containing a dot"""
    if not email or not isinstance(email, str):
        raise InvalidInput('email', 'Email is required')

    email = email.strip()
    if any(ch.isspace() for ch in email) or email.count('@') != 1:
        raise InvalidInput('email', 'Email must contain exactly one @ and no spaces')

    local, _, domain = email.partition('@')
    if not local or not domain:
        raise InvalidInput('email', 'Email needs both a local part and a domain')

    # the dot must separate two non-empty parts
    if '.' not in domain.strip('.'):
        raise InvalidInput('email', 'Email domain must contain a dot')

    return f"{local}@{domain}".lower()


def validate_nameserver(nameserver: Any, field: str = 'nameservers') -> str:
    """Dot-separated labels of letters/digits/hyphens ending in a 2+ letter label"""
    if not nameserver or not isinstance(nameserver, str):
        raise InvalidInput(field, 'Nameserver is required')

    nameserver = nameserver.strip().lower().rstrip('.')
    if len(nameserver) > 253 or not NAMESERVER_PATTERN.match(nameserver):
        raise InvalidInput(field, f'Invalid nameserver hostname: {nameserver}')
    return nameserver


def validate_nameservers(nameservers: Any) -> List[str]:
    """Two to four valid hostnames, order preserved, no repeats"""
    if not isinstance(nameservers, (list, tuple)):
        raise InvalidInput('nameservers', 'Nameservers must be a list')

    # trailing blanks come from optional ns3/ns4 form fields
    cleaned = list(nameservers)
    while cleaned and not (isinstance(cleaned[-1], str) and cleaned[-1].strip()):
        cleaned.pop()

    if not MIN_NAMESERVERS <= len(cleaned) <= MAX_NAMESERVERS:
        raise InvalidInput(
            'nameservers',
            f'Between {MIN_NAMESERVERS} and {MAX_NAMESERVERS} nameservers are required, got {len(cleaned)}'
        )

    result = []
    for index, ns in enumerate(cleaned):
        normalized = validate_nameserver(ns, field=f'nameservers[{index}]')
        if normalized in result:
            raise InvalidInput('nameservers', f'Duplicate nameserver: {normalized}')
        result.append(normalized)
    return result


def validate_extension(extension: Any, allowed_extensions: Sequence[str]) -> str:
    """Extension must appear in the configured allow-list"""
    if not extension or not isinstance(extension, str):
        raise InvalidInput('extension', 'Extension is required')

    extension = extension.strip().lower()
    if not extension.startswith('.'):
        extension = f".{extension}"
    if extension not in allowed_extensions:
        raise InvalidInput('extension', f'Extension {extension} is not offered')
    return extension


def split_domain(domain: Any, allowed_extensions: Sequence[str]) -> Tuple[str, str]:
    """Split a full domain into (subdomain, extension) using the allow-list"""
    if not domain or not isinstance(domain, str):
        raise InvalidInput('domain', 'Domain is required')

    domain = domain.strip().lower().rstrip('.')
    # longest extension wins so .co.example.com beats .example.com
    for extension in sorted(allowed_extensions, key=len, reverse=True):
        if domain.endswith(extension) and len(domain) > len(extension):
            return domain[:-len(extension)], extension
    raise InvalidInput('extension', 'Domain does not end with an offered extension')


def to_ascii_domain(domain: str, field: str = 'domain') -> str:
    """
    Punycode-encode the non-ASCII labels of a name.

    ASCII labels are kept as they are, so hyphens anywhere but the ends stay
    legal ('ab--cd' included).
    """
    labels = []
    for label in domain.split('.'):
        if label.isascii():
            labels.append(label)
            continue
        try:
            labels.append(idna.encode(label, uts46=True).decode('ascii'))
        except (idna.IDNAError, UnicodeError) as e:
            raise InvalidInput(field, f'Invalid domain name: {e}')
    return '.'.join(labels)


def compose_domain(subdomain: str, extension: str) -> str:
    """Join validated parts and check the result is a legal DNS name"""
    if subdomain.startswith('-') or subdomain.endswith('-'):
        raise InvalidInput('domain', 'Labels may not start or end with a hyphen')
    ascii_domain = to_ascii_domain(f"{subdomain}{extension}")
    if len(ascii_domain) > 253:
        raise InvalidInput('domain', 'Domain name too long (maximum: 253)')
    return ascii_domain


def validate_domain(domain: Any, allowed_extensions: Sequence[str]) -> str:
    """Validate a full domain against the subdomain rules and allow-list"""
    subdomain, extension = split_domain(domain, allowed_extensions)
    return compose_domain(validate_subdomain(subdomain), validate_extension(extension, allowed_extensions))


def extract_nameservers(payload: Dict[str, Any], default_nameservers: Optional[Sequence[str]] = None) -> Any:
    """Read nameservers from either a list field or ns1..ns4 form fields"""
    if 'nameservers' in payload:
        return payload['nameservers']
    form_fields = [payload.get(f'ns{i}') for i in range(1, MAX_NAMESERVERS + 1)]
    if any(form_fields):
        return form_fields
    if default_nameservers:
        return list(default_nameservers)
    return []


def validate_lookup(payload: Any) -> Dict[str, str]:
    """
    Normalize the (domain, email) pair used to find an existing registration.

    The extension is not checked against the allow-list so that entries made
    under a since-removed extension can still be managed.
    """
    if not isinstance(payload, dict):
        raise InvalidInput('body', 'Request body must be a JSON object')

    domain = payload.get('domain')
    if not domain or not isinstance(domain, str) or not domain.strip():
        raise InvalidInput('domain', 'Domain is required')

    return {
        'domain': to_ascii_domain(domain.strip().lower().rstrip('.')),
        'email': validate_email(payload.get('email')),
    }


def validate_registration_request(
    payload: Any,
    allowed_extensions: Sequence[str],
    default_nameservers: Optional[Sequence[str]] = None,
    require_nameservers: bool = True,
) -> Dict[str, Any]:
    """
    Normalize a create/update request body.

    Accepts {domain, email, nameservers} or the form variant
    {subdomain, extension, email, ns1, ns2[, ns3, ns4]}.

    Returns:
        Dict with 'domain', 'email' and, when required, 'nameservers'
    """
    if not isinstance(payload, dict):
        raise InvalidInput('body', 'Request body must be a JSON object')

    if payload.get('domain'):
        domain = validate_domain(payload['domain'], allowed_extensions)
    else:
        subdomain = validate_subdomain(payload.get('subdomain'))
        extension = validate_extension(payload.get('extension'), allowed_extensions)
        domain = compose_domain(subdomain, extension)

    result: Dict[str, Any] = {
        'domain': domain,
        'email': validate_email(payload.get('email')),
    }
    if require_nameservers:
        result['nameservers'] = validate_nameservers(extract_nameservers(payload, default_nameservers))
    return result
