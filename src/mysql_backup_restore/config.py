from __future__ import annotations

from dataclasses import dataclass, field, replace
import os

from .waiter import BackoffPolicy, default_retry_with_duration


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass(frozen=True)
class OperatorConfig:
    namespace: str = field(default_factory=lambda: os.getenv("MYSQL_OPERATOR_NAMESPACE", "default"))
    operator_version: str = field(default_factory=lambda: os.getenv("MYSQL_OPERATOR_VERSION", ""))
    backup_wait_steps: int = field(default_factory=lambda: _env_int("MYSQL_OPERATOR_BACKUP_WAIT_STEPS", 10))
    restore_wait_steps: int = field(default_factory=lambda: _env_int("MYSQL_OPERATOR_RESTORE_WAIT_STEPS", 24))
    wait_step_seconds: float = field(default_factory=lambda: _env_float("MYSQL_OPERATOR_WAIT_STEP_SECONDS", 10.0))
    wait_jitter: float = field(default_factory=lambda: _env_float("MYSQL_OPERATOR_WAIT_JITTER", 0.1))
    request_timeout_seconds: int = field(
        default_factory=lambda: _env_int("MYSQL_OPERATOR_REQUEST_TIMEOUT_SECONDS", 30)
    )

    def validate(self) -> None:
        """Raise ``ValueError`` when a setting would leave the operator unusable."""
        if not self.operator_version.strip():
            raise ValueError("operator_version must be set (MYSQL_OPERATOR_VERSION)")
        if self.backup_wait_steps < 1:
            raise ValueError("backup_wait_steps must be at least 1")
        if self.restore_wait_steps < 1:
            raise ValueError("restore_wait_steps must be at least 1")
        if self.wait_step_seconds <= 0:
            raise ValueError("wait_step_seconds must be positive")
        if self.wait_jitter < 0:
            raise ValueError("wait_jitter must be >= 0")
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")

    def backup_backoff(self) -> BackoffPolicy:
        return self._policy(self.backup_wait_steps)

    def restore_backoff(self) -> BackoffPolicy:
        return self._policy(self.restore_wait_steps)

    def _policy(self, steps: int) -> BackoffPolicy:
        return replace(default_retry_with_duration(self.wait_step_seconds), jitter=self.wait_jitter, steps=steps)
