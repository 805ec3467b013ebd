"""
Ledger/DNS drift report

Read-only. Groups the zone's NS records by name and compares them with the
ledger, so operators can repair what a failed ledger write or a half-finished
update left behind. Nothing here mutates either store.

Run directly to print the report:
    python -m services.reconciliation
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from registry_models import DNSRecord, Registration

logger = logging.getLogger(__name__)


@dataclass
class DriftReport:
    """Differences between the ledger and the DNS zone"""
    dns_only: Dict[str, List[str]] = field(default_factory=dict)
    ledger_only: List[str] = field(default_factory=list)
    nameserver_mismatch: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    checked: int = 0

    @property
    def in_sync(self) -> bool:
        return not (self.dns_only or self.ledger_only or self.nameserver_mismatch)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'in_sync': self.in_sync,
            'checked': self.checked,
            'dns_only': self.dns_only,
            'ledger_only': self.ledger_only,
            'nameserver_mismatch': self.nameserver_mismatch,
        }


def group_records_by_name(records: List[DNSRecord]) -> Dict[str, List[str]]:
    """Map each record name to its NS targets"""
    grouped: Dict[str, List[str]] = {}
    for record in records:
        grouped.setdefault(record.name, []).append(record.content)
    return grouped


def compare(registrations: List[Registration], records: List[DNSRecord]) -> DriftReport:
    """Compare ledger entries with NS records"""
    dns_by_name = group_records_by_name(records)
    ledger_by_name = {r.domain.lower(): r for r in registrations}

    report = DriftReport(checked=len(set(dns_by_name) | set(ledger_by_name)))

    for name, targets in sorted(dns_by_name.items()):
        if name not in ledger_by_name:
            report.dns_only[name] = sorted(targets)

    for name, registration in sorted(ledger_by_name.items()):
        targets = dns_by_name.get(name)
        if not targets:
            report.ledger_only.append(name)
            continue
        expected = sorted(ns.lower() for ns in registration.nameservers)
        if sorted(targets) != expected:
            report.nameserver_mismatch[name] = {'ledger': expected, 'dns': sorted(targets)}

    return report


async def build_drift_report(dns: Any, ledger: Any, ignore_names: Sequence[str] = ()) -> DriftReport:
    """Fetch both sides and compare them"""
    _, registrations = await ledger.read()
    records = await dns.list_records(None, 'NS')
    ignored = {name.lower() for name in ignore_names}
    records = [r for r in records if r.name not in ignored]

    report = compare(registrations, records)
    if report.in_sync:
        logger.info(f"✅ Ledger and DNS in sync ({report.checked} domains)")
    else:
        logger.warning(f"⚠️ Drift found: {len(report.dns_only)} DNS-only, {len(report.ledger_only)} ledger-only, "
                       f"{len(report.nameserver_mismatch)} mismatched")
    return report


async def main() -> int:
    from registry_config import RegistryConfig
    from services.cloudflare import CloudflareService
    from services.ledger_store import LedgerStoreFactory

    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=logging.INFO
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    config = RegistryConfig.from_env()
    ledger = LedgerStoreFactory.create(config)
    dns = CloudflareService(config)

    # NS records at an extension apex belong to the zone itself
    apexes = [ext.lstrip('.') for ext in config.allowed_extensions]
    try:
        report = await build_drift_report(dns, ledger, ignore_names=apexes)
    finally:
        await ledger.close()
        await CloudflareService.close_client()

    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    return 0 if report.in_sync else 1


def run() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
