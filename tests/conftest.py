"""Shared pytest fixtures for kubeverify test suite."""

from __future__ import annotations

import textwrap
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from kubernetes.client import (
    V1ContainerStatus,
    V1ObjectMeta,
    V1Pod,
    V1PodSpec,
    V1PodStatus,
)

from kubeverify.kubernetes_controller import KubeRunner

SAMPLE_DESCRIPTOR = """\
verifyID: mysql-resiliency-with-3-reps
version: 1.0.0
components:
  - name: omrwtr-percona-test
    namespace: litmus
    kind: service
    apiVersion: v1
    labels: name=omrwtr-percona-test
    alias: percona-svc
  - name: omrwtr-percona-test
    namespace: litmus
    kind: deployment
    apiVersion: apps/v1
    labels: name=omrwtr-percona-test
    alias: percona-deploy
  - namespace: litmus
    kind: pod
    apiVersion: v1
    labels: name=omrwtr-percona-test
    alias: percona
"""


@pytest.fixture()
def write_verify_file(tmp_path: Path) -> Callable[[str], str]:
    """Return a factory writing descriptor text to a temporary file.

    Returns:
        Callable taking YAML text and returning the written file path.
    """

    def _write(content: str, filename: str = "install.yaml") -> str:
        path = tmp_path / filename
        path.write_text(textwrap.dedent(content), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture()
def sample_verify_file(write_verify_file: Callable[[str], str]) -> str:
    """Path to a descriptor with a service, a deployment and a pod component."""
    return write_verify_file(SAMPLE_DESCRIPTOR)


@pytest.fixture()
def mock_runner() -> MagicMock:
    """Return a ``MagicMock`` constrained to the ``KubeRunner`` capability set."""
    return MagicMock(spec=KubeRunner)


@pytest.fixture()
def make_pod() -> Callable[..., V1Pod]:
    """Return a factory for ``V1Pod`` objects with configurable state."""

    def _make(
        name: str = "percona-abc12",
        node: str | None = "node-1",
        phase: str = "Running",
        ready: bool = True,
        created: datetime | None = None,
        terminating: bool = False,
    ) -> V1Pod:
        return V1Pod(
            metadata=V1ObjectMeta(
                name=name,
                namespace="litmus",
                labels={"name": "omrwtr-percona-test"},
                creation_timestamp=created or datetime(2025, 1, 1, tzinfo=timezone.utc),
                deletion_timestamp=datetime(2025, 1, 2, tzinfo=timezone.utc) if terminating else None,
            ),
            spec=V1PodSpec(node_name=node, containers=[]),
            status=V1PodStatus(
                phase=phase,
                container_statuses=[
                    V1ContainerStatus(
                        name="percona",
                        ready=ready,
                        restart_count=0,
                        image="percona",
                        image_id="sha256:abc",
                    ),
                ],
            ),
        )

    return _make
