from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Protocol

from .backup import BackupStateMachine
from .models import Backup, BackupPhase, Restore, RestorePhase
from .restore import RestoreStateMachine

logger = logging.getLogger(__name__)


class OperationStore(Protocol):
    def get_backup(self, name: str) -> Backup: ...

    def find_backup(self, name: str) -> Backup | None: ...

    def update_backup(self, backup: Backup) -> Backup: ...

    def find_restore(self, name: str) -> Restore | None: ...

    def update_restore(self, restore: Restore) -> Restore: ...


class ClusterDirectory(Protocol):
    def cluster_exists(self, *, cluster: str, namespace: str) -> bool: ...


class BackupExecutor(Protocol):
    def run_backup(self, backup: Backup) -> str:
        """Run the backup on ``backup.agent_scheduled`` and return the artifact location."""


class RestoreExecutor(Protocol):
    def run_restore(self, restore: Restore, *, location: str) -> None:
        """Replace the target databases with the content of the artifact at ``location``."""


@dataclass
class OperationReconciler:
    """Drives backups and restores one phase per reconcile call.

    All writes go through ``store``; the reconciler keeps no resource state of
    its own apart from the artifact locations resolved while validating
    restores.
    """

    store: OperationStore
    backups: BackupStateMachine
    restores: RestoreStateMachine
    backup_executor: BackupExecutor
    restore_executor: RestoreExecutor
    clusters: ClusterDirectory
    _restore_sources: dict[str, str] = field(default_factory=dict, init=False, repr=False)

    def reconcile_backup(self, name: str) -> Backup:
        backup = self.store.get_backup(name)
        if backup.phase.is_terminal():
            return backup

        if backup.phase is BackupPhase.NEW:
            missing = self._missing_cluster_reason(backup)
            if missing is not None:
                updated = self.backups.fail(backup, reason=missing)
            else:
                updated = self.backups.schedule(backup)
        elif backup.phase is BackupPhase.SCHEDULED:
            updated = self.backups.start(backup)
        else:
            updated = self._execute_backup(backup)

        if updated.phase is not backup.phase:
            logger.info("backup %s: %s -> %s", backup.display_name, backup.phase, updated.phase)
        return self.store.update_backup(updated)

    def reconcile_restore(self, name: str) -> Restore | None:
        """Advance restore ``name`` one phase; returns ``None`` once it has been deleted."""
        restore = self.store.find_restore(name)
        if restore is None or restore.phase.is_terminal():
            self._restore_sources.pop(name, None)
            return restore

        if restore.phase is RestorePhase.NEW:
            missing = self._missing_cluster_reason(restore)
            if missing is not None:
                updated = self.restores.fail(restore, reason=missing)
            else:
                updated = self.restores.admit(restore)
        elif restore.phase is RestorePhase.VALIDATING:
            source = self.store.find_backup(restore.source_backup)
            updated = self.restores.validate(restore, source)
            if updated.phase is RestorePhase.RUNNING and source is not None:
                self._restore_sources[restore.name] = source.location
        else:
            updated = self._execute_restore(restore)

        if updated.phase is not restore.phase:
            logger.info("restore %s: %s -> %s", restore.display_name, restore.phase, updated.phase)
        return self.store.update_restore(updated)

    def _missing_cluster_reason(self, resource: Backup | Restore) -> str | None:
        if self.clusters.cluster_exists(cluster=resource.cluster, namespace=resource.namespace):
            return None
        return f"target cluster {resource.namespace}/{resource.cluster} not found"

    def _execute_backup(self, backup: Backup) -> Backup:
        try:
            location = self.backup_executor.run_backup(backup)
        except Exception as error:  # pylint: disable=broad-except
            reason = f"execution failed on {backup.agent_scheduled}: {_error_message(error)}"
            return self.backups.fail(backup, reason=reason)

        if not location or not location.strip():
            return self.backups.fail(backup, reason="execution finished without reporting an artifact location")
        return self.backups.complete(backup, location=location)

    def _execute_restore(self, restore: Restore) -> Restore:
        location = self._restore_sources.get(restore.name)
        if location is None:
            # Resumed after a restart; the source was Complete when validated.
            source = self.store.find_backup(restore.source_backup)
            if source is None or not source.location:
                return self.restores.fail(
                    restore,
                    reason=f"source backup {restore.source_backup} is no longer available",
                )
            location = source.location

        try:
            self.restore_executor.run_restore(restore, location=location)
        except Exception as error:  # pylint: disable=broad-except
            return self.restores.fail(restore, reason=f"execution failed: {_error_message(error)}")
        finally:
            self._restore_sources.pop(restore.name, None)
        return self.restores.complete(restore)


def _error_message(error: Exception) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__
