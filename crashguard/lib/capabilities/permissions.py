"""Permission gate for hosts without a runtime permission system."""

import logging
from typing import Iterable, List, Optional, Set

from ...models import Capability

logger = logging.getLogger(__name__)


class StaticPermissionGate:
    """Holds a fixed set of granted capabilities; requests are recorded."""

    def __init__(self, granted: Optional[Iterable[Capability]] = None):
        if granted is None:
            granted = list(Capability)
        self._granted: Set[Capability] = set(granted)
        self.requests: List[List[Capability]] = []

    def has(self, capability: Capability) -> bool:
        return capability in self._granted

    def request(self, capabilities: Iterable[Capability]) -> None:
        needed = [c for c in capabilities if c not in self._granted]
        if not needed:
            return
        self.requests.append(needed)
        logger.warning(
            "Permissions are required for crash alerts: "
            + ", ".join(c.value for c in needed)
        )

    def grant(self, capability: Capability) -> None:
        self._granted.add(capability)

    def revoke(self, capability: Capability) -> None:
        self._granted.discard(capability)

    def missing(self, capabilities: Iterable[Capability]) -> List[Capability]:
        return [c for c in capabilities if c not in self._granted]


__all__ = ['StaticPermissionGate']
