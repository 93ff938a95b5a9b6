from __future__ import annotations

from dataclasses import replace
import logging

from .models import Backup, BackupPhase, InvalidTransitionError, Outcome, require_transition
from .provenance import require_operator_version, stamp_provenance
from .scheduler import AgentScheduler, SchedulingError

logger = logging.getLogger(__name__)

BACKUP_TRANSITIONS: dict[BackupPhase, frozenset[BackupPhase]] = {
    BackupPhase.NEW: frozenset({BackupPhase.SCHEDULED, BackupPhase.FAILED}),
    BackupPhase.SCHEDULED: frozenset({BackupPhase.RUNNING, BackupPhase.FAILED}),
    BackupPhase.RUNNING: frozenset({BackupPhase.COMPLETE, BackupPhase.FAILED}),
}


class BackupStateMachine:
    """Phase transitions of a backup.

    Every method takes the observed backup and returns the next version of it;
    the input is never mutated. Each returned backup carries the provenance
    label of ``operator_version``.
    """

    def __init__(self, *, scheduler: AgentScheduler, operator_version: str) -> None:
        self.scheduler = scheduler
        self.operator_version = require_operator_version(operator_version)

    def schedule(self, backup: Backup) -> Backup:
        require_transition(backup, BackupPhase.SCHEDULED, BACKUP_TRANSITIONS)
        if backup.agent_scheduled:
            raise InvalidTransitionError(
                f"backup {backup.display_name} is already assigned to {backup.agent_scheduled}"
            )

        try:
            member = self.scheduler.select_member(cluster=backup.cluster, namespace=backup.namespace)
        except SchedulingError as error:
            logger.warning("scheduling backup %s failed: %s", backup.display_name, error)
            return self.fail(backup, reason=str(error))

        logger.info("backup %s scheduled on %s", backup.display_name, member)
        return self._stamp(replace(backup, phase=BackupPhase.SCHEDULED, agent_scheduled=member))

    def start(self, backup: Backup) -> Backup:
        require_transition(backup, BackupPhase.RUNNING, BACKUP_TRANSITIONS)
        return self._stamp(replace(backup, phase=BackupPhase.RUNNING))

    def complete(self, backup: Backup, *, location: str) -> Backup:
        require_transition(backup, BackupPhase.COMPLETE, BACKUP_TRANSITIONS)
        if not location or not location.strip():
            raise InvalidTransitionError(
                f"backup {backup.display_name} cannot complete without an artifact location"
            )
        return self._stamp(
            replace(
                backup,
                phase=BackupPhase.COMPLETE,
                outcome=Outcome(location=location.strip()),
                error_message="",
            )
        )

    def fail(self, backup: Backup, *, reason: str) -> Backup:
        require_transition(backup, BackupPhase.FAILED, BACKUP_TRANSITIONS)
        message = reason.strip() or "backup failed"
        return self._stamp(replace(backup, phase=BackupPhase.FAILED, outcome=None, error_message=message))

    def _stamp(self, backup: Backup) -> Backup:
        return stamp_provenance(backup, self.operator_version)
