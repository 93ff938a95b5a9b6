from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator
import base64
import os
import shlex
import shutil
import subprocess

import pytest

from mysql_backup_restore.config import OperatorConfig
from mysql_backup_restore.k8s import CustomResourceClient, KubernetesClients, load_kubernetes_clients

_ENV_RUN_FLAG = "MYSQL_OPERATOR_RUN_E2E"
_ENV_KUBECONFIG = "MYSQL_E2E_KUBECONFIG"
_ENV_CLUSTER = "MYSQL_E2E_CLUSTER"
_ENV_STORAGE_SECRET = "MYSQL_E2E_STORAGE_SECRET"
_ENV_OPERATOR_VERSION = "MYSQL_OPERATOR_VERSION"
_REQUIRED_BINARIES = ("kubectl",)


def _flag_enabled(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _render_command(command: list[str]) -> str:
    return " ".join(shlex.quote(token) for token in command)


def _run_command(
    command: list[str],
    *,
    timeout_seconds: int,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    completed = subprocess.run(
        command,
        check=False,
        capture_output=True,
        text=True,
        timeout=timeout_seconds,
    )

    if check and completed.returncode != 0:
        stdout = completed.stdout.strip() or "<empty>"
        stderr = completed.stderr.strip() or "<empty>"
        raise RuntimeError(
            f"Command failed with exit code {completed.returncode}: {_render_command(command)}\n"
            f"stdout:\n{stdout}\n"
            f"stderr:\n{stderr}"
        )

    return completed


def _verify_prerequisites() -> None:
    if not _flag_enabled(os.getenv(_ENV_RUN_FLAG)):
        pytest.skip(
            "Live-cluster backup/restore tests are disabled by default. "
            f"Set {_ENV_RUN_FLAG}=1 to run them.",
            allow_module_level=True,
        )

    missing = [binary for binary in _REQUIRED_BINARIES if shutil.which(binary) is None]
    if missing:
        pytest.skip(
            f"Live-cluster prerequisites are missing: {', '.join(sorted(missing))}.",
            allow_module_level=True,
        )

    if not os.getenv(_ENV_CLUSTER, "").strip():
        pytest.skip(
            f"Set {_ENV_CLUSTER} to the name of a running MySQL cluster managed by the operator.",
            allow_module_level=True,
        )

    if not os.getenv(_ENV_OPERATOR_VERSION, "").strip():
        pytest.skip(
            f"Set {_ENV_OPERATOR_VERSION} to the operator build under test so provenance labels can be checked.",
            allow_module_level=True,
        )


@dataclass(frozen=True)
class MySQLClusterContext:
    cluster_name: str
    namespace: str
    kubeconfig_path: Path | None
    storage_secret: str
    build_version: str
    config: OperatorConfig
    clients: KubernetesClients
    resources: CustomResourceClient

    @property
    def primary_pod(self) -> str:
        return f"{self.cluster_name}-0"

    def run_kubectl(
        self,
        *args: str,
        timeout_seconds: int = 120,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = ["kubectl"]
        if self.kubeconfig_path is not None:
            command.extend(["--kubeconfig", str(self.kubeconfig_path)])
        return _run_command([*command, "-n", self.namespace, *args], timeout_seconds=timeout_seconds, check=check)

    def root_password(self) -> str:
        completed = self.run_kubectl(
            "get",
            "secret",
            f"{self.cluster_name}-root-password",
            "-o",
            "jsonpath={.data.password}",
            timeout_seconds=30,
        )
        encoded = completed.stdout.strip()
        return base64.b64decode(encoded).decode("utf-8") if encoded else ""

    def execute_sql(self, statement: str) -> str:
        completed = self.run_kubectl(
            "exec",
            self.primary_pod,
            "-c",
            "mysql",
            "--",
            "mysql",
            "-uroot",
            f"-p{self.root_password()}",
            "--batch",
            "--skip-column-names",
            "-e",
            statement,
            timeout_seconds=60,
        )
        return completed.stdout

    def has_database(self, database: str) -> bool:
        output = self.execute_sql("SHOW DATABASES;")
        return database in {line.strip() for line in output.splitlines()}

    def collect_diagnostics(self) -> str:
        diagnostic_commands: tuple[tuple[str, list[str]], ...] = (
            ("pods", ["get", "pods", "-o", "wide", "--show-labels"]),
            ("mysqlbackups", ["get", "mysqlbackups", "-o", "yaml"]),
            ("mysqlrestores", ["get", "mysqlrestores", "-o", "yaml"]),
            ("events", ["get", "events", "--sort-by=.lastTimestamp"]),
        )

        sections: list[str] = []
        for title, args in diagnostic_commands:
            completed = self.run_kubectl(*args, timeout_seconds=60, check=False)
            output = completed.stdout.strip() or completed.stderr.strip() or "<no output>"
            sections.append(f"[{title}]\n{output}")

        return "\n\n".join(sections)


@pytest.fixture(scope="session")
def mysql_cluster() -> Iterator[MySQLClusterContext]:
    _verify_prerequisites()

    config = OperatorConfig()
    config.validate()
    kubeconfig_raw = os.getenv(_ENV_KUBECONFIG, "").strip()
    kubeconfig_path = Path(kubeconfig_raw).expanduser() if kubeconfig_raw else None
    clients = load_kubernetes_clients(
        kubeconfig_path=str(kubeconfig_path) if kubeconfig_path else None,
        context=None,
        in_cluster=False,
    )

    cluster = MySQLClusterContext(
        cluster_name=os.environ[_ENV_CLUSTER].strip(),
        namespace=config.namespace,
        kubeconfig_path=kubeconfig_path,
        storage_secret=os.getenv(_ENV_STORAGE_SECRET, "s3-upload-credentials"),
        build_version=config.operator_version,
        config=config,
        clients=clients,
        resources=CustomResourceClient(
            clients.custom_api,
            namespace=config.namespace,
            request_timeout_seconds=config.request_timeout_seconds,
        ),
    )

    try:
        cluster.run_kubectl("get", "pod", cluster.primary_pod, timeout_seconds=60)
        yield cluster
    finally:
        clients.api_client.close()
