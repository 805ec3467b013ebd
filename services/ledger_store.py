"""
Ledger store interface and the in-process backend

The ledger is one versioned document holding every registration. Writers must
present the version they read; a stale version is rejected with
VersionConflict and nothing is overwritten.
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from registry_config import RegistryConfig
from registry_errors import VersionConflict
from registry_models import Registration

logger = logging.getLogger(__name__)

LedgerSnapshot = Tuple[Optional[str], List[Registration]]


class LedgerStore:
    """Interface shared by all ledger backends"""

    name = 'base'

    async def read(self) -> LedgerSnapshot:
        """
        Read the whole ledger.

        Returns:
            (version, registrations); version is None when the document does not exist yet

        Raises:
            LedgerUnavailable: the store cannot be reached or the document is unreadable
        """
        raise NotImplementedError

    async def write(self, version: Optional[str], registrations: Sequence[Registration]) -> str:
        """
        Replace the ledger if `version` is still current.

        Returns:
            The new version token

        Raises:
            VersionConflict: `version` is stale
            LedgerUnavailable: the store cannot be reached
        """
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InMemoryLedgerStore(LedgerStore):
    """Ledger kept in a process-local list, for tests and single-process development"""

    name = 'memory'

    def __init__(self, registrations: Optional[Sequence[Registration]] = None):
        self._entries: List[Dict[str, Any]] = []
        self._version: Optional[str] = None
        self._counter = 0
        if registrations:
            self._commit([r.to_dict() for r in registrations])

    def _commit(self, entries: List[Dict[str, Any]]) -> str:
        self._counter += 1
        self._entries = entries
        self._version = str(self._counter)
        return self._version

    @property
    def version(self) -> Optional[str]:
        return self._version

    async def read(self) -> LedgerSnapshot:
        return self._version, [Registration.from_dict(copy.deepcopy(e)) for e in self._entries]

    async def write(self, version: Optional[str], registrations: Sequence[Registration]) -> str:
        if version != self._version:
            logger.warning(f"⚠️ Ledger version conflict: presented {version}, current {self._version}")
            raise VersionConflict(f"stale version {version}")
        new_version = self._commit([r.to_dict() for r in registrations])
        logger.debug(f"Ledger written in memory, version {new_version} ({len(registrations)} entries)")
        return new_version


class LedgerStoreFactory:
    """Builds the ledger backend selected by configuration"""

    @classmethod
    def create(cls, config: RegistryConfig) -> LedgerStore:
        if config.ledger_backend == 'memory':
            logger.warning("⚠️ Using in-memory ledger, registrations are lost on restart")
            return InMemoryLedgerStore()

        from services.github_ledger import GitHubLedgerStore
        logger.info(f"✅ Using GitHub ledger {config.github_repo}/{config.github_ledger_path}")
        return GitHubLedgerStore(config)
