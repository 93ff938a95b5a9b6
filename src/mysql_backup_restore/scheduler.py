from __future__ import annotations

import logging
from typing import Protocol

from .waiter import is_transient_error

logger = logging.getLogger(__name__)


class SchedulingError(RuntimeError):
    """Raised when no cluster member can be chosen to execute a backup."""


class TopologyProvider(Protocol):
    def get_primary_member(self, *, cluster: str, namespace: str) -> str | None:
        """Return the current primary member of ``cluster`` or ``None`` if there is none.

        Failures that may clear on retry should be raised as errors that
        ``is_transient_error`` recognizes.
        """


class AgentScheduler:
    """Chooses the member that will execute a backup.

    The choice is the cluster's primary at scheduling time. It is made once and
    recorded on the backup, so a later failover never moves a running backup to
    a different member.
    """

    def __init__(self, topology: TopologyProvider) -> None:
        self.topology = topology

    def select_member(self, *, cluster: str, namespace: str) -> str:
        try:
            member = self.topology.get_primary_member(cluster=cluster, namespace=namespace)
        except Exception as error:  # pylint: disable=broad-except
            # An outage says nothing about the cluster; leave the backup for the next attempt.
            if is_transient_error(error):
                raise
            reason = str(error).strip() or error.__class__.__name__
            raise SchedulingError(
                f"unable to determine the primary member of cluster {namespace}/{cluster}: {reason}"
            ) from error

        if not member or not member.strip():
            raise SchedulingError(
                f"cluster {namespace}/{cluster} has no primary member; "
                "the cluster may not be quorate yet"
            )

        logger.debug("selected member %s of cluster %s/%s", member, namespace, cluster)
        return member.strip()
