"""Installation verification for kubeverify.

Evaluates whether an installation is deployed and running, whether the
components sharing an alias satisfy a condition, and applies disruptive
actions against them.  All cluster access goes through a :class:`KubeRunner`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from .descriptor import load
from .kubernetes_controller import KubeRunner
from .models import Action, Component, Condition, Installation


class VerifyException(Exception):
    """Base exception for verification errors."""


# ---------------------------------------------------------------------------
# Capability protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class DeployVerifier(Protocol):
    def is_deployed(self) -> bool: ...


@runtime_checkable
class ConnectVerifier(Protocol):
    def is_connected(self) -> bool: ...


@runtime_checkable
class RunVerifier(Protocol):
    def is_running(self) -> bool: ...


@runtime_checkable
class ConditionVerifier(Protocol):
    def is_condition(self, alias: str, condition: Condition | str) -> bool: ...


@runtime_checkable
class ActionVerifier(Protocol):
    def is_action(self, alias: str, action: Action | str) -> bool: ...


@runtime_checkable
class DeployRunVerifier(DeployVerifier, RunVerifier, Protocol):
    """Checks that an installation is deployed and running."""


@runtime_checkable
class AllVerifier(DeployVerifier, RunVerifier, ConditionVerifier, ActionVerifier, Protocol):
    """Deploy, run, condition and action checks."""


# ---------------------------------------------------------------------------
# Installation verifier
# ---------------------------------------------------------------------------


class KubeInstallVerifier:
    """Verifies an installation described by a verify file against a Kubernetes cluster.

    The descriptor is loaded once at construction and is read-only afterwards.

    Args:
        runner: Cluster runner used for every query and delete.
        verify_file: Path to the installation descriptor.

    Raises:
        ValueError: If the verify file is missing or cannot be parsed.
        OSError: If the verify file cannot be read.
    """

    def __init__(self, runner: KubeRunner, verify_file: str) -> None:
        self.logger = logging.getLogger(__name__)
        self.runner = runner
        self.installation: Installation | None = load(verify_file)

        self._conditions: dict[Condition, Callable[[str], bool]] = {
            Condition.UNIQUE_NODE: self._is_each_component_on_unique_node,
        }
        self._actions: dict[Action, Callable[[str], bool]] = {
            Action.DELETE_ANY_POD: self._is_delete_any_running_pod,
            Action.DELETE_OLDEST_POD: self._is_delete_oldest_running_pod,
        }

    def _components(self, check: str) -> tuple[Component, ...]:
        if self.installation is None:
            raise VerifyException(f"failed to check {check}: installation object is nil")
        return self.installation.components

    def is_deployed(self, require_all: bool = False) -> bool:
        """Evaluate whether the components of the installation are deployed.

        By default the result of the last component is returned, so an earlier
        component that is not deployed does not fail the check.  Pass
        ``require_all=True`` to require every component to be deployed.

        Raises:
            VerifyException: If the installation is nil.
            KubernetesControllerException: On the first runner error.
        """
        deployed = False
        for component in self._components("is_deployed"):
            deployed = self._is_component_deployed(component)
            if require_all and not deployed:
                break
        return deployed

    def is_running(self, require_all: bool = False) -> bool:
        """Evaluate whether the components of the installation are running.

        Aggregation follows :meth:`is_deployed`.

        Raises:
            VerifyException: If the installation is nil, or a component has no
                kind, or a pod component has no labels.
        """
        running = False
        for component in self._components("is_running"):
            running = self._is_pod_component_running(component)
            if require_all and not running:
                break
        return running

    def is_condition(self, alias: str, condition: Condition | str) -> bool:
        """Evaluate whether the components matching ``alias`` satisfy ``condition``.

        Raises:
            VerifyException: If the condition is not supported.
        """
        try:
            check = self._conditions[Condition(condition)]
        except (ValueError, KeyError) as e:
            raise VerifyException(f"condition '{_value(condition)}' is not supported") from e
        return check(alias)

    def is_action(self, alias: str, action: Action | str) -> bool:
        """Apply ``action`` against the pod component matching ``alias``.

        Raises:
            VerifyException: If the action is not supported or cannot be applied.
        """
        try:
            apply = self._actions[Action(action)]
        except (ValueError, KeyError) as e:
            raise VerifyException(f"action '{_value(action)}' is not supported") from e
        return apply(alias)

    def get_matching_pod_component(self, alias: str) -> Component:
        """Return the single pod component with the given alias.

        Raises:
            VerifyException: If no component or more than one component matches.
        """
        filtered = [c for c in self._components("get_matching_pod_component") if c.alias == alias and c.is_pod]

        if not filtered:
            raise VerifyException(f"component not found for alias '{alias}'")
        if len(filtered) > 1:
            raise VerifyException(f"multiple components found for alias '{alias}': alias should be unique in an install")

        return filtered[0]

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _matching_pod_component_with_labels(self, alias: str) -> Component:
        component = self.get_matching_pod_component(alias)
        if not component.labels.strip():
            raise VerifyException(
                f"unable to fetch component '{component.kind}' with alias '{alias}': component labels are missing"
            )
        return component

    def _is_delete_any_running_pod(self, alias: str) -> bool:
        component = self._matching_pod_component_with_labels(alias)

        pods = self.runner.get_running_pods(component.namespace, component.labels)
        if not pods:
            raise VerifyException(
                f"failed to delete any running pod: pods with alias '{alias}' and running state are not found"
            )

        self.runner.delete_pod(pods[0], component.namespace)
        self.logger.info(f"Deleted running pod {pods[0]} with alias '{alias}'")
        return True

    def _is_delete_oldest_running_pod(self, alias: str) -> bool:
        component = self._matching_pod_component_with_labels(alias)

        pod = self.runner.get_oldest_running_pod(component.namespace, component.labels)
        if not pod:
            raise VerifyException(
                f"failed to delete oldest running pod: pod with alias '{alias}' and running state is not found"
            )

        self.runner.delete_pod(pod, component.namespace)
        self.logger.info(f"Deleted oldest running pod {pod} with alias '{alias}'")
        return True

    # ------------------------------------------------------------------
    # Per-component checks
    # ------------------------------------------------------------------

    def _is_component_deployed(self, component: Component) -> bool:
        return self.runner.is_resource_deployed(
            component.kind,
            component.name,
            component.namespace,
            component.labels,
            api_version=component.api_version or None,
        )

    def _is_pod_component_running(self, component: Component) -> bool:
        if not component.kind.strip():
            raise VerifyException("unable to verify component running status: component kind is required")

        # non pod components are considered running
        if not component.is_pod:
            return True

        if not component.labels.strip():
            raise VerifyException(
                f"unable to verify component '{component.kind}' running status: component labels are required"
            )
        return self.runner.are_pods_running(component.namespace, component.labels)

    def _is_each_component_on_unique_node(self, alias: str) -> bool:
        nodes: list[str] = []

        for component in self._components("unique-node"):
            if component.alias != alias or not component.is_pod:
                continue

            if not component.labels.strip():
                raise VerifyException(f"unable to fetch component '{component.kind}' node: component labels are required")

            nodes.extend(self.runner.get_pod_nodes(component.namespace, component.labels))

        seen: set[str] = set()
        for node in nodes:
            if node in seen:
                self.logger.info(f"Components with alias '{alias}' share node {node}")
                return False
            seen.add(node)

        return True


# ---------------------------------------------------------------------------
# Connection verifier
# ---------------------------------------------------------------------------


class KubeConnectionVerifier:
    """Verifies that the cluster behind a runner is reachable."""

    def __init__(self, runner: KubeRunner) -> None:
        self.logger = logging.getLogger(__name__)
        self.runner = runner

    def is_connected(self) -> bool:
        """Run a trivial pod list query against the cluster.

        Raises:
            VerifyException: If the query fails.
        """
        try:
            self.runner.list_pod_names()
        except Exception as e:
            raise VerifyException(f"failed to connect to the cluster: {e}") from e
        return True


def _value(item: Condition | Action | str) -> str:
    return item.value if isinstance(item, (Condition, Action)) else str(item)
