"""Data models for kubeverify installation descriptors and verification reports."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
POD_KINDS: frozenset[str] = frozenset({"po", "pod", "pods"})

DEFAULT_CHECKS: tuple[str, ...] = ("connected", "deployed", "running")

DEFAULT_POD_PAGE_LIMIT: int = 100  # Maximum pods per API page when listing pods.

DEFAULT_REQUEST_TIMEOUT_SECONDS: int = 30  # Per-request timeout passed to the Kubernetes API.


def is_pod(kind: str) -> bool:
    """Return ``True`` if the kind string denotes a Kubernetes pod."""
    return (kind or "").strip().lower() in POD_KINDS


def labels_to_selector(labels: dict[str, Any]) -> str:
    """Convert a label dict to a comma-separated Kubernetes label selector string."""
    return ",".join(f"{k}={v}" for k, v in labels.items())


class Condition(str, Enum):
    """Conditions that can be evaluated against components sharing an alias."""

    UNIQUE_NODE = "unique-node"


class Action(str, Enum):
    """Disruptive actions that can be applied against a pod component."""

    DELETE_ANY_POD = "delete-any-pod"
    DELETE_OLDEST_POD = "delete-oldest-pod"


class VerificationStatus(str, Enum):
    """Enumeration of possible check and report statuses."""

    PASS = "PASS"  # noqa: S105
    FAIL = "FAIL"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"

    @property
    def exit_code(self) -> int:
        """Return the process exit code for this verification status.

        Returns:
            0 for PASS, 2 for ERROR, 1 for everything else (FAIL, SKIPPED).
        """
        _EXIT_CODES: dict[VerificationStatus, int] = {
            VerificationStatus.PASS: 0,
            VerificationStatus.ERROR: 2,
        }
        return _EXIT_CODES.get(self, 1)


# ---------------------------------------------------------------------------
# Installation descriptor
# ---------------------------------------------------------------------------


def _as_str(value: Any, key: str) -> str:
    """Return a descriptor string field, rejecting scalars YAML resolved to another type.

    Raises:
        ValueError: If the value is not a string, e.g. an unquoted ``1.10``.
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string, got {type(value).__name__} {value!r}; quote the value")
    return value


@dataclass(frozen=True)
class Component:
    """A single addressable cluster resource of an installation.

    ``labels`` is a label selector string such as ``name=app,env=prod``.
    ``alias`` is a short single-word identifier used to select components for
    conditions and actions; it should be unique within an installation.
    """

    name: str = ""
    namespace: str = ""
    kind: str = ""
    api_version: str = ""
    labels: str = ""
    alias: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Component:
        """Build a component from a descriptor mapping.

        ``labels`` may be given either as a selector string or as a mapping.
        """
        labels = data.get("labels")
        if isinstance(labels, dict):
            labels = labels_to_selector({k: _as_str(v, f"labels.{k}") for k, v in labels.items()})
        return cls(
            name=_as_str(data.get("name"), "name"),
            namespace=_as_str(data.get("namespace"), "namespace"),
            kind=_as_str(data.get("kind"), "kind"),
            api_version=_as_str(data.get("apiVersion"), "apiVersion"),
            labels=_as_str(labels, "labels"),
            alias=_as_str(data.get("alias"), "alias"),
        )

    @property
    def is_pod(self) -> bool:
        return is_pod(self.kind)


@dataclass(frozen=True)
class Installation:
    """A set of components that together form an installation.

    e.g. an operator represented by its CRDs, RBAC objects and Deployments.

    Attributes:
        verify_id: Identifier tying together related installations under verification.
        version: Version of the installation.
        components: Ordered components of the installation.
    """

    verify_id: str = ""
    version: str = ""
    components: tuple[Component, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Installation:
        """Build an installation from a parsed descriptor document.

        Raises:
            ValueError: If ``components`` is not a list of mappings, or a string
                field holds a non-string scalar.
        """
        raw_components = data.get("components") or []
        if not isinstance(raw_components, list):
            raise ValueError(f"'components' must be a list, got {type(raw_components).__name__}")

        components = []
        for idx, raw in enumerate(raw_components):
            if not isinstance(raw, dict):
                raise ValueError(f"component at index {idx} must be a mapping, got {type(raw).__name__}")
            components.append(Component.from_dict(raw))

        return cls(
            verify_id=_as_str(data.get("verifyID"), "verifyID"),
            version=_as_str(data.get("version"), "version"),
            components=tuple(components),
        )


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@dataclass
class CheckResult:
    """Outcome of a single check in a verification run."""

    name: str
    status: VerificationStatus
    error: str | None = None


@dataclass
class ReportSummary:
    """Aggregated counts for the verification report."""

    total_checks: int = 0
    passed: int = 0
    failed: int = 0
    errored: int = 0
    skipped: int = 0


@dataclass
class VerificationReport:
    """Top-level verification report printed by the CLI.

    Attributes:
        timestamp: ISO 8601 UTC timestamp of report generation.
        context: Kubeconfig context name of the verified cluster.
        verify_id: ``verifyID`` of the loaded installation.
        version: Version of the loaded installation.
        status: Overall status (PASS / FAIL / ERROR).
        summary: Aggregated counts of check outcomes.
        checks: Per-check results in execution order.
    """

    timestamp: str
    context: str
    verify_id: str
    version: str
    status: VerificationStatus
    summary: ReportSummary = field(default_factory=ReportSummary)
    checks: list[CheckResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Serialise the report to a plain dict suitable for JSON output."""
        return asdict(self)
