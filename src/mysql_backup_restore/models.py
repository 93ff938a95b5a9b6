from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Mapping

from .constants import (
    API_GROUP,
    API_VERSION,
    BACKUP_KIND,
    BACKUP_PLURAL,
    DEFAULT_STORAGE_PROVIDER,
    RESTORE_KIND,
    RESTORE_PLURAL,
)


class InvalidTransitionError(RuntimeError):
    """Raised when a phase change would break a resource's lifecycle."""


class InconsistentStatusError(ValueError):
    """A backup's phase disagrees with the fields that accompany it.

    When read back from the control plane this usually means the writer
    recorded the phase and its fields in separate updates and the read landed
    in between.
    """


class Phase(str, Enum):
    """Base for lifecycle phases.

    Subclasses declare the members and say which of them are terminal, so
    callers never need to compare raw phase strings.
    """

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str | None) -> "Phase":
        # A freshly created resource has no status yet.
        if value is None or not value.strip():
            return cls("New")
        try:
            return cls(value.strip())
        except ValueError as error:
            known = ", ".join(member.value for member in cls)
            raise ValueError(f"unknown {cls.__name__} {value!r}; expected one of: {known}") from error

    # Enum cannot mix in ABCMeta; every concrete phase enum overrides both hooks.
    def is_success(self) -> bool:
        """True for the phase that ends the lifecycle successfully."""
        raise NotImplementedError(f"{type(self).__name__} must define is_success")

    def is_failure(self) -> bool:
        """True for the phase that ends the lifecycle with an error."""
        raise NotImplementedError(f"{type(self).__name__} must define is_failure")

    def is_terminal(self) -> bool:
        return self.is_success() or self.is_failure()


class BackupPhase(Phase):
    NEW = "New"
    SCHEDULED = "Scheduled"
    RUNNING = "Running"
    COMPLETE = "Complete"
    FAILED = "Failed"

    def is_success(self) -> bool:
        return self is BackupPhase.COMPLETE

    def is_failure(self) -> bool:
        return self is BackupPhase.FAILED


class RestorePhase(Phase):
    NEW = "New"
    VALIDATING = "Validating"
    RUNNING = "Running"
    COMPLETE = "Complete"
    FAILED = "Failed"

    def is_success(self) -> bool:
        return self is RestorePhase.COMPLETE

    def is_failure(self) -> bool:
        return self is RestorePhase.FAILED


_PHASES_WITH_AGENT = frozenset({BackupPhase.SCHEDULED, BackupPhase.RUNNING, BackupPhase.COMPLETE})


@dataclass(frozen=True)
class Outcome:
    location: str = ""


@dataclass(frozen=True, kw_only=True)
class OperationResource:
    kind: ClassVar[str]
    plural: ClassVar[str]

    cluster: str
    phase: Phase
    name: str = ""
    namespace: str = "default"
    generate_name: str = ""
    labels: Mapping[str, str] = field(default_factory=dict)
    resource_version: str | None = None
    error_message: str = ""

    def __post_init__(self) -> None:
        if not self.name and not self.generate_name:
            raise ValueError(f"{self.kind} requires either a name or a generateName prefix")
        if not self.cluster or not self.cluster.strip():
            raise ValueError(f"{self.kind} {self.display_name} must reference a target cluster")
        object.__setattr__(self, "labels", dict(self.labels))

    @property
    def display_name(self) -> str:
        name = self.name or f"{self.generate_name}*"
        return f"{self.namespace}/{name}"

    def _metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"namespace": self.namespace, "labels": dict(self.labels)}
        if self.name:
            metadata["name"] = self.name
        else:
            metadata["generateName"] = self.generate_name
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return metadata

    def _envelope(self, *, spec: dict[str, Any], status: dict[str, Any]) -> dict[str, Any]:
        if self.error_message:
            status["errorMessage"] = self.error_message
        return {
            "apiVersion": f"{API_GROUP}/{API_VERSION}",
            "kind": self.kind,
            "metadata": self._metadata(),
            "spec": spec,
            "status": status,
        }


def _metadata_fields(body: Mapping[str, Any]) -> dict[str, Any]:
    metadata = body.get("metadata") or {}
    status = body.get("status") or {}
    return {
        "name": metadata.get("name") or "",
        "namespace": metadata.get("namespace") or "default",
        "generate_name": metadata.get("generateName") or "",
        "labels": dict(metadata.get("labels") or {}),
        "resource_version": metadata.get("resourceVersion"),
        "error_message": status.get("errorMessage") or "",
    }


def _reference_name(value: Any) -> str:
    if isinstance(value, Mapping):
        return str(value.get("name") or "")
    return str(value or "")


@dataclass(frozen=True, kw_only=True)
class Backup(OperationResource):
    kind: ClassVar[str] = BACKUP_KIND
    plural: ClassVar[str] = BACKUP_PLURAL

    databases: tuple[str, ...]
    storage_credentials: str = ""
    storage_provider: str = DEFAULT_STORAGE_PROVIDER
    phase: BackupPhase = BackupPhase.NEW
    agent_scheduled: str | None = None
    outcome: Outcome | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "databases", tuple(self.databases))
        if not self.databases or any(not database.strip() for database in self.databases):
            raise ValueError(f"backup {self.display_name} must include at least one named database")

        location = self.outcome.location if self.outcome else ""
        if self.phase.is_success() and not location:
            raise InconsistentStatusError(f"backup {self.display_name} is Complete but has no artifact location")
        if location and not self.phase.is_success():
            raise InconsistentStatusError(
                f"backup {self.display_name} has an artifact location while in phase {self.phase}"
            )

        if self.phase is BackupPhase.NEW and self.agent_scheduled:
            raise InconsistentStatusError(f"backup {self.display_name} cannot have an agent before it is scheduled")
        if self.phase in _PHASES_WITH_AGENT and not self.agent_scheduled:
            raise InconsistentStatusError(f"backup {self.display_name} is {self.phase} without a scheduled agent")

    @property
    def location(self) -> str:
        return self.outcome.location if self.outcome else ""

    def to_manifest(self) -> dict[str, Any]:
        spec: dict[str, Any] = {
            "cluster": {"name": self.cluster},
            "databases": [{"name": database} for database in self.databases],
            "storage": {
                "provider": self.storage_provider,
                "secretRef": {"name": self.storage_credentials},
            },
        }
        if self.agent_scheduled:
            spec["agentScheduled"] = self.agent_scheduled

        status: dict[str, Any] = {"phase": self.phase.value}
        if self.outcome is not None:
            status["outcome"] = {"location": self.outcome.location}
        return self._envelope(spec=spec, status=status)

    @classmethod
    def from_manifest(cls, body: Mapping[str, Any]) -> Backup:
        spec = body.get("spec") or {}
        status = body.get("status") or {}
        storage = spec.get("storage") or {}
        raw_outcome = status.get("outcome") or {}
        location = str(raw_outcome.get("location") or "")

        return cls(
            cluster=_reference_name(spec.get("cluster")),
            databases=tuple(_reference_name(database) for database in spec.get("databases") or []),
            storage_credentials=_reference_name(storage.get("secretRef")),
            storage_provider=storage.get("provider") or DEFAULT_STORAGE_PROVIDER,
            phase=BackupPhase.parse(status.get("phase")),
            agent_scheduled=spec.get("agentScheduled") or None,
            outcome=Outcome(location=location) if location else None,
            **_metadata_fields(body),
        )


@dataclass(frozen=True, kw_only=True)
class Restore(OperationResource):
    kind: ClassVar[str] = RESTORE_KIND
    plural: ClassVar[str] = RESTORE_PLURAL

    source_backup: str
    phase: RestorePhase = RestorePhase.NEW

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.source_backup or not self.source_backup.strip():
            raise ValueError(f"restore {self.display_name} must reference a source backup")

    def to_manifest(self) -> dict[str, Any]:
        spec = {
            "cluster": {"name": self.cluster},
            "backup": {"name": self.source_backup},
        }
        return self._envelope(spec=spec, status={"phase": self.phase.value})

    @classmethod
    def from_manifest(cls, body: Mapping[str, Any]) -> Restore:
        spec = body.get("spec") or {}
        status = body.get("status") or {}
        return cls(
            cluster=_reference_name(spec.get("cluster")),
            source_backup=_reference_name(spec.get("backup")),
            phase=RestorePhase.parse(status.get("phase")),
            **_metadata_fields(body),
        )


def new_backup(
    *,
    cluster: str,
    databases: list[str] | tuple[str, ...],
    storage_credentials: str,
    name: str = "",
    generate_name: str = "",
    namespace: str = "default",
    storage_provider: str = DEFAULT_STORAGE_PROVIDER,
) -> Backup:
    if not storage_credentials.strip():
        raise ValueError("backup requires a storage credentials secret reference")
    return Backup(
        name=name,
        generate_name=generate_name,
        namespace=namespace,
        cluster=cluster,
        databases=tuple(databases),
        storage_credentials=storage_credentials,
        storage_provider=storage_provider,
    )


def new_restore(
    *,
    cluster: str,
    source_backup: str,
    name: str = "",
    generate_name: str = "",
    namespace: str = "default",
) -> Restore:
    return Restore(
        name=name,
        generate_name=generate_name,
        namespace=namespace,
        cluster=cluster,
        source_backup=source_backup,
    )


def require_transition(
    resource: OperationResource,
    target: Phase,
    allowed: Mapping[Phase, frozenset[Phase]],
) -> None:
    current = resource.phase
    if target not in allowed.get(current, frozenset()):
        raise InvalidTransitionError(
            f"{resource.kind} {resource.display_name} cannot move from phase {current} to {target}"
        )
