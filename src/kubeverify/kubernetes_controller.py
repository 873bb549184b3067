"""Kubernetes API controller for kubeverify.

Provides the cluster runner used by the verifiers: existence checks for any
resource kind, pod state and placement queries, and pod deletion.  Supports
both in-cluster and local kubeconfig authentication.
"""

from __future__ import annotations

import logging
import os
import pathlib
import shutil
import threading
from typing import Any, Protocol

import kubernetes
import kubernetes.client
import kubernetes.config
from kubernetes.client import V1Pod
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError, ResourceNotUniqueError
from kubernetes.dynamic.resource import Resource

from .models import DEFAULT_POD_PAGE_LIMIT, DEFAULT_REQUEST_TIMEOUT_SECONDS, is_pod

SERVICE_ACCOUNT_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"


class KubernetesControllerException(Exception):
    """Base exception for KubernetesController errors."""


class KubeRunner(Protocol):
    """Cluster query and delete primitives consumed by the verifiers."""

    def list_pod_names(self, namespace: str | None = None, labels: str = "") -> list[str]: ...

    def is_resource_deployed(
        self, kind: str, name: str, namespace: str, labels: str, api_version: str | None = None,
    ) -> bool: ...

    def are_pods_running(self, namespace: str, labels: str) -> bool: ...

    def get_running_pods(self, namespace: str, labels: str) -> list[str]: ...

    def get_oldest_running_pod(self, namespace: str, labels: str) -> str: ...

    def get_pod_nodes(self, namespace: str, labels: str) -> list[str]: ...

    def delete_pod(self, name: str, namespace: str) -> None: ...


def get_current_namespace() -> str:
    """Read active namespace from kubeconfig or in-cluster service account."""
    # 1. Try kubeconfig (local dev)
    try:
        _, active_context = kubernetes.config.list_kube_config_contexts()
        if ns := active_context.get("context", {}).get("namespace"):
            return ns
    except Exception:  # noqa: S110
        pass

    # 2. Try in-cluster service account (running in Pod)
    try:
        with open(SERVICE_ACCOUNT_NAMESPACE_FILE) as f:
            return f.read().strip()
    except FileNotFoundError:
        pass

    # 3. Fallback
    return "default"


def _is_running_pod(pod: V1Pod) -> bool:
    return pod.metadata.deletion_timestamp is None and pod.status is not None and pod.status.phase == "Running"


def _is_ready_pod(pod: V1Pod) -> bool:
    if not _is_running_pod(pod):
        return False
    statuses = pod.status.container_statuses or []
    return bool(statuses) and all(status.ready for status in statuses)


class KubernetesController:
    """Thin wrapper around the Kubernetes Python client implementing :class:`KubeRunner`.

    Handles configuration loading (in-cluster or kubeconfig), connection
    pooling, and provides the query and delete primitives used by the verifiers.

    Args:
        context: Kubeconfig context name to use directly for cluster connection.
        gke_project: GCP project ID — resolves the kube context from GKE-style
            context names. Cannot be specified together with ``context``.
        insecure: When ``True``, disable SSL certificate verification.
        namespace: Namespace used for components that do not declare one.
            Defaults to the active kubeconfig / service account namespace.
    """

    def __init__(
        self,
        context: str | None = None,
        gke_project: str | None = None,
        insecure: bool = False,
        namespace: str | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)

        # Reduce noise from kubernetes client REST logging (only set once)
        k8s_rest_logger = logging.getLogger("kubernetes.client.rest")
        if not k8s_rest_logger.level or k8s_rest_logger.level == logging.NOTSET:
            k8s_rest_logger.setLevel(logging.INFO)

        self._context = context
        self._gke_project = gke_project
        self._insecure = insecure
        self._namespace = namespace

        # Client and API instances
        self._api_client: kubernetes.client.ApiClient | None = None
        self._core_v1: kubernetes.client.CoreV1Api | None = None
        self._dynamic: DynamicClient | None = None

        # Lock for thread-safe initialization of the client
        self._client_lock = threading.Lock()

        # Initialize the client immediately
        self._initialize_client()

    # ------------------------------------------------------------------
    # Client initialisation
    # ------------------------------------------------------------------

    def _initialize_client(self) -> None:
        """Initialise the Kubernetes client with robust error handling.

        Resolution logic:
            - If both ``context`` and ``gke_project`` are provided → raise ``ValueError``.
            - If ``context`` is provided → load kubeconfig with that context directly.
            - If ``gke_project`` is provided → ensure GKE auth plugin is on PATH,
              resolve the context via ``get_kube_context()``, then load kubeconfig.
            - If neither → try in-cluster config first, then fall back to default
              kubeconfig context.
        """
        with self._client_lock:
            if self._api_client:
                return

            if self._context and self._gke_project:
                raise ValueError("Cannot specify both 'context' and 'gke_project'")

            try:
                if self._context:
                    kubernetes.config.load_kube_config(context=self._context)
                    self.logger.info(f"Successfully loaded kubeconfig for context: {self._context}")
                elif self._gke_project:
                    self._ensure_gke_auth_plugin_on_path()
                    resolved_context = self.get_kube_context()
                    kubernetes.config.load_kube_config(context=resolved_context)
                    self.logger.info(f"Successfully loaded kubeconfig for GKE project context: {resolved_context}")
                else:
                    try:
                        kubernetes.config.load_incluster_config()
                        self.logger.info("Successfully loaded in-cluster configuration.")
                    except kubernetes.config.ConfigException:
                        self.logger.info("In-cluster config not found. Falling back to default kubeconfig context.")
                        kubernetes.config.load_kube_config()
                        self.logger.info("Successfully loaded default kubeconfig context.")

                configuration = kubernetes.client.Configuration.get_default_copy()
                if self._insecure:
                    configuration.verify_ssl = False
                    configuration.assert_hostname = False

                self._api_client = kubernetes.client.ApiClient(configuration)
                self._core_v1 = kubernetes.client.CoreV1Api(self._api_client)

            except Exception as e:
                identifier = self._context or self._gke_project or "in-cluster/default"
                error_msg = f"Failed to initialize Kubernetes client for {identifier}: {e}"
                self.logger.error(error_msg)
                raise KubernetesControllerException(error_msg) from e

    def _ensure_gke_auth_plugin_on_path(self) -> None:
        """Ensure ``gke-gcloud-auth-plugin`` is discoverable on PATH.

        Resolution order:
            1. Already on PATH (``shutil.which`` finds it) → nothing to do.
            2. Scan existing PATH entries for a directory whose path contains
               ``google-cloud-sdk`` and derive the SDK ``bin/`` directory.
            3. Check ``CLOUDSDK_ROOT_DIR`` / ``GCLOUD_SDK_PATH`` env vars.
            4. Log a warning if none of the above succeed.
        """
        if shutil.which("gke-gcloud-auth-plugin"):
            return

        for path_entry in os.environ.get("PATH", "").split(os.pathsep):
            if "google-cloud-sdk" in path_entry:
                sdk_root = pathlib.Path(path_entry)
                while sdk_root.name and sdk_root.name != "google-cloud-sdk":
                    sdk_root = sdk_root.parent
                if sdk_root.name == "google-cloud-sdk":
                    gcloud_bin = str(sdk_root / "bin")
                    if gcloud_bin not in os.environ["PATH"]:
                        os.environ["PATH"] += os.pathsep + gcloud_bin
                        self.logger.info(f"Added {gcloud_bin} to PATH for gke-gcloud-auth-plugin")
                    return

        sdk_root_env = os.environ.get("CLOUDSDK_ROOT_DIR") or os.environ.get("GCLOUD_SDK_PATH")
        if sdk_root_env:
            gcloud_bin = os.path.join(sdk_root_env, "bin")
            os.environ["PATH"] += os.pathsep + gcloud_bin
            self.logger.info(f"Added {gcloud_bin} to PATH for gke-gcloud-auth-plugin")
            return

        self.logger.warning(
            "gke-gcloud-auth-plugin not found on PATH and could not locate "
            "google-cloud-sdk in PATH entries or environment variables. GKE authentication may fail."
        )

    def get_kube_context(self) -> str:
        """Pick the first Kubernetes context containing the GCP Project ID.

        Returns:
            The matching context name string.

        Raises:
            KubernetesControllerException: If no matching context is found.
        """
        try:
            contexts, _ = kubernetes.config.list_kube_config_contexts()
        except kubernetes.config.config_exception.ConfigException as e:
            raise KubernetesControllerException(
                f"Could not get kubernetes contexts for GKE project {self._gke_project}"
            ) from e

        for ctx in contexts:
            ctx_name = ctx.get("name", "")
            if ctx_name.startswith("gke_"):
                parts = ctx_name.split("_")
                if len(parts) > 1 and self._gke_project == parts[1]:
                    return ctx_name
            elif self._gke_project in ctx_name:
                return ctx_name

        raise KubernetesControllerException(
            f'The context for GKE project "{self._gke_project}" does not exist in the kubeconfig file.'
        )

    @property
    def namespace(self) -> str:
        """Namespace used when a query is given an empty namespace."""
        if not self._namespace:
            self._namespace = get_current_namespace()
            self.logger.info(f"Using namespace '{self._namespace}' for components without a namespace")
        return self._namespace

    def _resolve_namespace(self, namespace: str | None) -> str:
        return namespace.strip() if namespace and namespace.strip() else self.namespace

    # ------------------------------------------------------------------
    # Generic resource helpers
    # ------------------------------------------------------------------

    def _get_dynamic_client(self) -> DynamicClient:
        """Create the dynamic client on first use; construction performs API discovery."""
        with self._client_lock:
            if self._dynamic is None:
                try:
                    self._dynamic = DynamicClient(self._api_client)
                except Exception as e:
                    raise KubernetesControllerException(f"Failed to discover cluster API resources: {e}") from e
            return self._dynamic

    def _resolve_resource(self, kind: str, api_version: str | None = None) -> Resource:
        """Resolve a kind string to a dynamic client resource.

        Lookup order: ``apiVersion`` + kind, kind, plural name, singular name.

        Raises:
            KubernetesControllerException: If no resource matches the kind.
        """
        resources = self._get_dynamic_client().resources
        kind = kind.strip()

        if api_version:
            try:
                return resources.get(api_version=api_version, kind=kind)
            except (ResourceNotFoundError, ResourceNotUniqueError):
                self.logger.debug(f"No unique resource for {api_version}/{kind}, falling back to kind lookup")

        for lookup in ({"kind": kind}, {"name": kind.lower()}, {"singular_name": kind.lower()}):
            try:
                candidates = [r for r in resources.search(**lookup) if "/" not in (r.name or "")]
            except ResourceNotFoundError:
                continue
            if candidates:
                preferred = [r for r in candidates if r.preferred]
                return (preferred or candidates)[0]

        raise KubernetesControllerException(f"Unknown resource kind '{kind}'")

    @staticmethod
    def _field_selector(name: str) -> str | None:
        return f"metadata.name={name}" if name and name.strip() else None

    # ------------------------------------------------------------------
    # Pod listing with pagination
    # ------------------------------------------------------------------

    def _list_pods(
        self,
        namespace: str | None,
        labels: str = "",
        field_selector: str | None = None,
        limit: int = DEFAULT_POD_PAGE_LIMIT,
    ) -> list[V1Pod]:
        """List pods matching a label selector, following pagination.

        Args:
            namespace: Kubernetes namespace; empty falls back to the controller namespace.
            labels: Comma-separated ``key=value`` label selector.
            field_selector: Optional field selector.
            limit: Maximum pods per API page.

        Returns:
            Aggregated list of ``V1Pod`` objects.

        Raises:
            KubernetesControllerException: On API errors.
        """
        namespace = self._resolve_namespace(namespace)
        pods: list[V1Pod] = []
        _continue: str | None = None

        while True:
            kwargs: dict[str, Any] = {
                "namespace": namespace,
                "limit": limit,
                "_request_timeout": DEFAULT_REQUEST_TIMEOUT_SECONDS,
            }
            if labels:
                kwargs["label_selector"] = labels
            if field_selector:
                kwargs["field_selector"] = field_selector
            if _continue:
                kwargs["_continue"] = _continue

            try:
                ret = self._core_v1.list_namespaced_pod(**kwargs)
            except Exception as e:
                raise KubernetesControllerException(
                    f"Failed to list pods in {namespace} with selector '{labels}': {e}"
                ) from e

            pods.extend(ret.items)
            _continue = ret.metadata._continue
            if not _continue:
                break

        return pods

    # ------------------------------------------------------------------
    # Runner primitives
    # ------------------------------------------------------------------

    def list_pod_names(self, namespace: str | None = None, labels: str = "") -> list[str]:
        """Return the names of pods in the namespace matching the labels."""
        return [pod.metadata.name for pod in self._list_pods(namespace=namespace, labels=labels)]

    def is_resource_deployed(
        self, kind: str, name: str, namespace: str, labels: str, api_version: str | None = None,
    ) -> bool:
        """Check whether at least one object of ``kind`` matches the name and labels.

        Args:
            kind: Resource kind, plural or singular name (e.g. ``Deployment``, ``deployments``).
            name: Object name; empty matches any name.
            namespace: Namespace for namespaced kinds.
            labels: Label selector; empty matches any labels.
            api_version: Optional ``group/version`` used to disambiguate the kind.

        Raises:
            KubernetesControllerException: On unknown kinds or API errors.
        """
        if not kind or not kind.strip():
            raise KubernetesControllerException("Resource kind is required")

        field_selector = self._field_selector(name)

        if is_pod(kind):
            pods = self._list_pods(namespace=namespace, labels=labels, field_selector=field_selector)
            deployed = bool(pods)
        else:
            resource = self._resolve_resource(kind=kind, api_version=api_version)
            kwargs: dict[str, Any] = {"label_selector": labels or None, "field_selector": field_selector}
            if resource.namespaced:
                kwargs["namespace"] = self._resolve_namespace(namespace)
            try:
                ret = resource.get(**kwargs)
            except Exception as e:
                raise KubernetesControllerException(f"Failed to get {kind} '{name}': {e}") from e
            deployed = bool(ret.items)

        self.logger.info(f"{kind} '{name or labels}' deployed: {deployed}")
        return deployed

    def are_pods_running(self, namespace: str, labels: str) -> bool:
        """Return ``True`` if pods match and all of them are running with ready containers."""
        pods = self._list_pods(namespace=namespace, labels=labels)
        if not pods:
            self.logger.info(f"No pods found with selector '{labels}'")
            return False

        not_ready = [pod.metadata.name for pod in pods if not _is_ready_pod(pod)]
        if not_ready:
            self.logger.info(f"Pods not running with selector '{labels}': {not_ready}")
            return False
        return True

    def get_running_pods(self, namespace: str, labels: str) -> list[str]:
        """Return names of running, non-terminating pods matching the labels."""
        return [pod.metadata.name for pod in self._list_pods(namespace=namespace, labels=labels) if _is_running_pod(pod)]

    def get_oldest_running_pod(self, namespace: str, labels: str) -> str:
        """Return the name of the running pod created first, or ``""`` if none is running."""
        running = [pod for pod in self._list_pods(namespace=namespace, labels=labels) if _is_running_pod(pod)]
        if not running:
            return ""
        # Pods without a creation timestamp cannot be ordered; fall back to list order.
        dated = [pod for pod in running if pod.metadata.creation_timestamp is not None]
        if not dated:
            return running[0].metadata.name
        oldest = min(dated, key=lambda pod: pod.metadata.creation_timestamp)
        return oldest.metadata.name

    def get_pod_nodes(self, namespace: str, labels: str) -> list[str]:
        """Return the node names hosting the pods matching the labels, one entry per scheduled pod."""
        return [
            pod.spec.node_name
            for pod in self._list_pods(namespace=namespace, labels=labels)
            if pod.spec is not None and pod.spec.node_name
        ]

    def delete_pod(self, name: str, namespace: str) -> None:
        """Delete a pod.

        Raises:
            KubernetesControllerException: On API errors.
        """
        namespace = self._resolve_namespace(namespace)
        try:
            self._core_v1.delete_namespaced_pod(name=name, namespace=namespace)
        except Exception as e:
            raise KubernetesControllerException(f"Failed to delete pod {namespace}/{name}: {e}") from e
        self.logger.info(f"Deleted pod {namespace}/{name}")
