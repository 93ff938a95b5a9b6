from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging
from typing import Any, Callable, TypeVar

from kubernetes import client, config
from kubernetes.client import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from .constants import (
    API_GROUP,
    API_VERSION,
    CLUSTER_KIND,
    CLUSTER_LABEL,
    CLUSTER_PLURAL,
    CLUSTER_ROLE_LABEL,
    CLUSTER_ROLE_PRIMARY,
)
from .models import Backup, OperationResource, Restore
from .waiter import TransientObservationError

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
TRANSIENT_API_STATUSES = frozenset({404, 408, 409, 429})
T = TypeVar("T")


@dataclass(frozen=True)
class KubernetesClients:
    api_client: client.ApiClient
    core_api: client.CoreV1Api
    custom_api: client.CustomObjectsApi


class KubernetesAuthenticationError(RuntimeError):
    """Raised when Kubernetes authentication configuration fails."""


class KubernetesResourceError(RuntimeError):
    """Raised when a control-plane call for an operation resource fails."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class KubernetesTransientError(KubernetesResourceError, TransientObservationError):
    """A control-plane call failed in a way that may succeed on retry."""


class ClusterTopologyError(RuntimeError):
    """Raised when the primary member of a cluster cannot be determined."""


def load_kubernetes_clients(
    *,
    kubeconfig_path: str | None,
    context: str | None,
    in_cluster: bool,
) -> KubernetesClients:
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        if in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=expanded, context=context)
    except Exception as error:  # pylint: disable=broad-except
        raise KubernetesAuthenticationError(
            _format_authentication_error(
                in_cluster=in_cluster,
                kubeconfig_path=expanded,
                context=context,
                error=error,
            )
        ) from error

    api_client = client.ApiClient()
    return KubernetesClients(
        api_client=api_client,
        core_api=client.CoreV1Api(api_client),
        custom_api=client.CustomObjectsApi(api_client),
    )


class CustomResourceClient:
    """Create and read MySQLBackup and MySQLRestore custom resources in one namespace."""

    def __init__(
        self,
        custom_api: client.CustomObjectsApi,
        *,
        namespace: str,
        request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        if request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        self.custom_api = custom_api
        self.namespace = namespace
        self.request_timeout_seconds = request_timeout_seconds

    def create_backup(self, backup: Backup) -> Backup:
        return Backup.from_manifest(self._create(backup))

    def get_backup(self, name: str) -> Backup:
        return Backup.from_manifest(self._get(Backup.plural, Backup.kind, name))

    def find_backup(self, name: str) -> Backup | None:
        body = self._find(Backup.plural, Backup.kind, name)
        return Backup.from_manifest(body) if body is not None else None

    def update_backup(self, backup: Backup) -> Backup:
        return Backup.from_manifest(self._replace(backup))

    def create_restore(self, restore: Restore) -> Restore:
        return Restore.from_manifest(self._create(restore))

    def get_restore(self, name: str) -> Restore:
        return Restore.from_manifest(self._get(Restore.plural, Restore.kind, name))

    def find_restore(self, name: str) -> Restore | None:
        body = self._find(Restore.plural, Restore.kind, name)
        return Restore.from_manifest(body) if body is not None else None

    def update_restore(self, restore: Restore) -> Restore:
        return Restore.from_manifest(self._replace(restore))

    def _create(self, resource: OperationResource) -> dict[str, Any]:
        body = resource.to_manifest()
        body["metadata"]["namespace"] = self.namespace
        body["metadata"].pop("resourceVersion", None)
        created = _safe_resource_call(
            operation=f"create {resource.kind} {self.namespace}/{resource.name or resource.generate_name}",
            hint="Verify the CRD is installed and RBAC allows create on this resource.",
            func=lambda: self.custom_api.create_namespaced_custom_object(
                group=API_GROUP,
                version=API_VERSION,
                namespace=self.namespace,
                plural=resource.plural,
                body=body,
                _request_timeout=self.request_timeout_seconds,
            ),
        )
        logger.info("created %s %s/%s", resource.kind, self.namespace, created["metadata"]["name"])
        return created

    def _get(self, plural: str, kind: str, name: str) -> dict[str, Any]:
        return _safe_resource_call(
            operation=f"get {kind} {self.namespace}/{name}",
            hint="Check API reachability and RBAC verbs for get on this resource.",
            func=lambda: self.custom_api.get_namespaced_custom_object(
                group=API_GROUP,
                version=API_VERSION,
                namespace=self.namespace,
                plural=plural,
                name=name,
                _request_timeout=self.request_timeout_seconds,
            ),
        )

    def _find(self, plural: str, kind: str, name: str) -> dict[str, Any] | None:
        try:
            return self._get(plural, kind, name)
        except KubernetesResourceError as error:
            if error.status == 404:
                return None
            raise

    def _replace(self, resource: OperationResource) -> dict[str, Any]:
        if not resource.name:
            raise ValueError(f"{resource.kind} must have a server-assigned name before it can be updated")
        body = resource.to_manifest()
        return _safe_resource_call(
            operation=f"update {resource.kind} {self.namespace}/{resource.name}",
            hint="Re-read the resource and retry if it was modified concurrently.",
            func=lambda: self.custom_api.replace_namespaced_custom_object(
                group=API_GROUP,
                version=API_VERSION,
                namespace=self.namespace,
                plural=resource.plural,
                name=resource.name,
                body=body,
                _request_timeout=self.request_timeout_seconds,
            ),
        )


class KubernetesClusterDirectory:
    """Answers whether a MySQLCluster resource exists."""

    def __init__(
        self,
        custom_api: client.CustomObjectsApi,
        *,
        request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.custom_api = custom_api
        self.request_timeout_seconds = request_timeout_seconds

    def cluster_exists(self, *, cluster: str, namespace: str) -> bool:
        try:
            _safe_resource_call(
                operation=f"get {CLUSTER_KIND} {namespace}/{cluster}",
                hint="Check API reachability and RBAC verbs for get on mysqlclusters.",
                func=lambda: self.custom_api.get_namespaced_custom_object(
                    group=API_GROUP,
                    version=API_VERSION,
                    namespace=namespace,
                    plural=CLUSTER_PLURAL,
                    name=cluster,
                    _request_timeout=self.request_timeout_seconds,
                ),
            )
        except KubernetesResourceError as error:
            if error.status == 404:
                return False
            raise
        return True


class KubernetesTopologyProvider:
    """Find a cluster's primary member from the role labels on its pods."""

    def __init__(
        self,
        core_api: client.CoreV1Api,
        *,
        request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.core_api = core_api
        self.request_timeout_seconds = request_timeout_seconds

    def get_primary_member(self, *, cluster: str, namespace: str) -> str | None:
        selector = f"{CLUSTER_LABEL}={cluster},{CLUSTER_ROLE_LABEL}={CLUSTER_ROLE_PRIMARY}"
        operation = f"list primary pods of cluster {namespace}/{cluster}"
        try:
            pods = self.core_api.list_namespaced_pod(
                namespace=namespace,
                label_selector=selector,
                _request_timeout=self.request_timeout_seconds,
            ).items
        except ApiException as error:
            if _is_transient_api_error(error):
                raise KubernetesTransientError(
                    _format_api_exception_message(
                        operation=operation,
                        hint="The API server may be overloaded or restarting; retry shortly.",
                        error=error,
                    ),
                    status=error.status,
                ) from error
            raise ClusterTopologyError(
                _format_api_exception_message(
                    operation=operation,
                    hint="Verify RBAC allows list on pods in the cluster namespace.",
                    error=error,
                )
            ) from error
        except (Urllib3HTTPError, ConnectionError, TimeoutError) as error:
            raise KubernetesTransientError(
                f"Kubernetes request failed while trying to {operation}: {_error_message(error)}. "
                "Check API server reachability."
            ) from error

        running = sorted(
            pod.metadata.name
            for pod in pods or []
            if pod.metadata and pod.metadata.name and pod.status and pod.status.phase == "Running"
        )
        if not running:
            return None
        if len(running) > 1:
            raise ClusterTopologyError(
                f"cluster {namespace}/{cluster} reports {len(running)} primary members "
                f"({', '.join(running)}); refusing to pick one"
            )
        return running[0]


def _safe_resource_call(*, operation: str, hint: str, func: Callable[[], T]) -> T:
    try:
        return func()
    except ApiException as error:
        message = _format_api_exception_message(operation=operation, hint=hint, error=error)
        if _is_transient_api_error(error):
            raise KubernetesTransientError(message, status=error.status) from error
        raise KubernetesResourceError(message, status=error.status) from error
    except (Urllib3HTTPError, ConnectionError, TimeoutError) as error:
        raise KubernetesTransientError(
            f"Kubernetes request failed while trying to {operation}: {_error_message(error)}. {hint}"
        ) from error


def _is_transient_api_error(error: ApiException) -> bool:
    # The client reports connection-level failures with status 0.
    if not error.status:
        return True
    return error.status in TRANSIENT_API_STATUSES or error.status >= 500


def _format_api_exception_message(*, operation: str, hint: str, error: ApiException) -> str:
    status = error.status if error.status is not None else "unknown"
    reason = error.reason or "no reason provided"
    return f"Kubernetes request failed while trying to {operation}: API status {status} ({reason}). {hint}"


def _error_message(error: Exception) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__


def _expand_kubeconfig_path(kubeconfig_path: str | None) -> str | None:
    if kubeconfig_path is None:
        return None
    stripped = kubeconfig_path.strip()
    if not stripped:
        return None
    return str(Path(stripped).expanduser())


def _format_authentication_error(
    *,
    in_cluster: bool,
    kubeconfig_path: str | None,
    context: str | None,
    error: Exception,
) -> str:
    reason = str(error).strip() or error.__class__.__name__
    if in_cluster:
        return (
            "Kubernetes authentication setup failed while loading in-cluster service account credentials: "
            f"{reason}. Ensure the pod has a mounted service account token and Kubernetes service host "
            "environment variables."
        )

    kubeconfig_source = kubeconfig_path or "default kubeconfig search path"
    context_message = f" with context '{context}'" if context else ""
    return (
        "Kubernetes authentication setup failed while loading kubeconfig "
        f"from '{kubeconfig_source}'{context_message}: {reason}. "
        "Verify the kubeconfig path and context are valid."
    )
