"""StatusProbe — read a resource's status through a pluggable accessor.

The probe never raises and never retries: a failed read becomes an all-unknown
``Status`` and the polling loop simply samples again on its next tick.
"""

from __future__ import annotations

import logging
from typing import Protocol

from selsync.models.status import Status

logger = logging.getLogger(__name__)


class StatusAccessor(Protocol):
    """Backing query for one resource's status."""

    def get_status(self, resource_id: str) -> Status: ...


class StatusProbe:
    """Pure status query; failures are reported as unknown."""

    def __init__(self, accessor: StatusAccessor):
        self.accessor = accessor

    def fetch(self, resource_id: str) -> Status:
        try:
            status = self.accessor.get_status(resource_id)
        except Exception as e:
            logger.debug("Status fetch for %s failed: %s", resource_id, e)
            return Status.unknown()
        if not isinstance(status, Status):
            logger.debug("Accessor returned %r for %s; treating as unknown", status, resource_id)
            return Status.unknown()
        return status
