from __future__ import annotations

from dataclasses import replace
import logging

from .models import Backup, BackupPhase, Restore, RestorePhase, require_transition
from .provenance import require_operator_version, stamp_provenance

logger = logging.getLogger(__name__)

RESTORE_TRANSITIONS: dict[RestorePhase, frozenset[RestorePhase]] = {
    RestorePhase.NEW: frozenset({RestorePhase.VALIDATING, RestorePhase.FAILED}),
    RestorePhase.VALIDATING: frozenset({RestorePhase.RUNNING, RestorePhase.FAILED}),
    RestorePhase.RUNNING: frozenset({RestorePhase.COMPLETE, RestorePhase.FAILED}),
}


class RestoreStateMachine:
    """Phase transitions of a restore.

    A restore waits in ``Validating`` until its source backup is ``Complete``.
    A source that is missing or still in flight stalls the restore instead of
    failing it. Completing a restore replaces the target databases with the
    backup content.
    """

    def __init__(self, *, operator_version: str) -> None:
        self.operator_version = require_operator_version(operator_version)

    def admit(self, restore: Restore) -> Restore:
        require_transition(restore, RestorePhase.VALIDATING, RESTORE_TRANSITIONS)
        return self._stamp(replace(restore, phase=RestorePhase.VALIDATING))

    def validate(self, restore: Restore, source: Backup | None) -> Restore:
        require_transition(restore, RestorePhase.RUNNING, RESTORE_TRANSITIONS)
        stalled_reason = _source_not_ready_reason(restore, source)
        if stalled_reason is not None:
            logger.info("restore %s waiting: %s", restore.display_name, stalled_reason)
            return self._stamp(restore)

        return self._stamp(replace(restore, phase=RestorePhase.RUNNING))

    def complete(self, restore: Restore) -> Restore:
        require_transition(restore, RestorePhase.COMPLETE, RESTORE_TRANSITIONS)
        return self._stamp(replace(restore, phase=RestorePhase.COMPLETE, error_message=""))

    def fail(self, restore: Restore, *, reason: str) -> Restore:
        require_transition(restore, RestorePhase.FAILED, RESTORE_TRANSITIONS)
        message = reason.strip() or "restore failed"
        return self._stamp(replace(restore, phase=RestorePhase.FAILED, error_message=message))

    def _stamp(self, restore: Restore) -> Restore:
        return stamp_provenance(restore, self.operator_version)


def _source_not_ready_reason(restore: Restore, source: Backup | None) -> str | None:
    if source is None:
        return f"source backup {restore.source_backup} does not exist yet"
    if source.name != restore.source_backup:
        return f"source backup {restore.source_backup} resolved to unrelated backup {source.name}"
    if source.phase is not BackupPhase.COMPLETE:
        return f"source backup {restore.source_backup} is in phase {source.phase}"
    return None
