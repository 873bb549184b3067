"""kubeverify — Kubernetes installation verification tool.

Loads an installation descriptor and runs a plan of checks against the
cluster, in order:

1. Connectivity to the cluster
2. Deployment of every component
3. Running state of pod components
4. Conditions on aliased components (e.g. ``unique-node``)
5. Disruptive actions on aliased pods (e.g. ``delete-oldest-pod``)

The first check that does not pass stops the plan.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Callable
from datetime import datetime, timezone

from .kubernetes_controller import KubernetesController
from .models import (
    DEFAULT_CHECKS,
    Action,
    CheckResult,
    Condition,
    Installation,
    ReportSummary,
    VerificationReport,
    VerificationStatus,
)
from .verify import KubeConnectionVerifier, KubeInstallVerifier

logger = logging.getLogger(__name__)

CheckPlan = list[tuple[str, Callable[[], bool]]]


def _setup_logging() -> None:
    """Configure logging for CLI usage. Only called from main()."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s : %(name)-13s : %(levelname)s :: %(message)s",
    )


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def _parse_comma_list(raw: str | None) -> list[str]:
    """Parse a comma-separated string into a stripped list, or return empty list.

    Args:
        raw: Raw comma-separated string, or ``None``.

    Returns:
        List of stripped, non-empty strings.
    """
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_checks(raw: str) -> list[str]:
    """``argparse`` type for ``--checks``."""
    checks = _parse_comma_list(raw)
    unknown = [c for c in checks if c not in DEFAULT_CHECKS]
    if unknown:
        raise argparse.ArgumentTypeError(f"unknown checks {unknown}, expected any of {list(DEFAULT_CHECKS)}")
    return checks


def _alias_pair(raw: str, choices: list[str]) -> tuple[str, str]:
    alias, sep, value = raw.partition("=")
    alias, value = alias.strip(), value.strip()
    if not sep or not alias or not value:
        raise argparse.ArgumentTypeError(f"expected ALIAS=NAME, got '{raw}'")
    if value not in choices:
        raise argparse.ArgumentTypeError(f"'{value}' is not one of {choices}")
    return alias, value


def _parse_condition(raw: str) -> tuple[str, str]:
    """``argparse`` type for ``--condition ALIAS=CONDITION``."""
    return _alias_pair(raw, [c.value for c in Condition])


def _parse_action(raw: str) -> tuple[str, str]:
    """``argparse`` type for ``--action ALIAS=ACTION``."""
    return _alias_pair(raw, [a.value for a in Action])


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Optional list of argument strings (defaults to ``sys.argv``).

    Returns:
        Parsed ``argparse.Namespace``.
    """
    parser = argparse.ArgumentParser(
        description="kubeverify: verify a Kubernetes installation is deployed, running and resilient",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    context_group = parser.add_mutually_exclusive_group()
    context_group.add_argument(
        "--context",
        help="Kubeconfig context name to use for cluster connection",
    )
    context_group.add_argument(
        "--gke-project",
        help="GCP project ID — resolves the kube context from GKE-style context names",
    )

    parser.add_argument(
        "--verify-file",
        required=True,
        help="Path to the YAML installation descriptor (verifyID, version, components)",
    )
    parser.add_argument(
        "--namespace",
        help="Namespace for components that do not declare one (default: from kubeconfig or 'default')",
    )
    parser.add_argument(
        "--checks",
        type=_parse_checks,
        default=list(DEFAULT_CHECKS),
        help=f"Comma-separated installation checks to run, any of {', '.join(DEFAULT_CHECKS)}",
    )
    parser.add_argument(
        "--condition",
        dest="conditions",
        action="append",
        type=_parse_condition,
        default=[],
        metavar="ALIAS=CONDITION",
        help="Condition to evaluate for the components with the alias (repeatable), e.g. 'db=unique-node'",
    )
    parser.add_argument(
        "--action",
        dest="actions",
        action="append",
        type=_parse_action,
        default=[],
        metavar="ALIAS=ACTION",
        help="Action to apply to the pod component with the alias (repeatable), e.g. 'db=delete-oldest-pod'",
    )
    parser.add_argument(
        "--require-all",
        action="store_true",
        help="Require every component to be deployed/running instead of taking the last component's result",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Disable TLS certificate verification for the cluster connection",
    )
    return parser.parse_args(args)


# ---------------------------------------------------------------------------
# Check execution
# ---------------------------------------------------------------------------


def build_check_plan(
    args: argparse.Namespace,
    install_verifier: KubeInstallVerifier,
    connection_verifier: KubeConnectionVerifier,
) -> CheckPlan:
    """Build the ordered list of named checks requested on the command line."""
    installation_checks: dict[str, Callable[[], bool]] = {
        "connected": connection_verifier.is_connected,
        "deployed": lambda: install_verifier.is_deployed(require_all=args.require_all),
        "running": lambda: install_verifier.is_running(require_all=args.require_all),
    }

    plan: CheckPlan = [(name, installation_checks[name]) for name in DEFAULT_CHECKS if name in args.checks]
    for alias, condition in args.conditions:
        plan.append(
            (f"condition:{alias}={condition}", lambda a=alias, c=condition: install_verifier.is_condition(a, c))
        )
    for alias, action in args.actions:
        plan.append((f"action:{alias}={action}", lambda a=alias, x=action: install_verifier.is_action(a, x)))
    return plan


def execute_checks(plan: CheckPlan) -> list[CheckResult]:
    """Run the checks in order; the first check that does not pass skips the rest.

    Args:
        plan: Ordered ``(name, check)`` pairs.

    Returns:
        One ``CheckResult`` per planned check.
    """
    results: list[CheckResult] = []
    stopped = False

    for name, check in plan:
        if stopped:
            results.append(CheckResult(name=name, status=VerificationStatus.SKIPPED))
            continue

        logger.info(f"Running check {name}")
        try:
            passed = check()
        except Exception as e:
            logger.error(f"Check {name} failed with error: {e}")
            results.append(CheckResult(name=name, status=VerificationStatus.ERROR, error=str(e)))
            stopped = True
            continue

        if passed:
            logger.info(f"Check {name} passed")
            results.append(CheckResult(name=name, status=VerificationStatus.PASS))
        else:
            logger.warning(f"Check {name} did not pass")
            results.append(CheckResult(name=name, status=VerificationStatus.FAIL))
            stopped = True

    return results


# ---------------------------------------------------------------------------
# Report generation
# ---------------------------------------------------------------------------


def generate_report(results: list[CheckResult], installation: Installation, context: str) -> VerificationReport:
    """Generate the final verification report.

    The overall status is ERROR if any check errored, FAIL if any check failed,
    and PASS otherwise.
    """
    summary = ReportSummary(total_checks=len(results))
    for result in results:
        if result.status == VerificationStatus.PASS:
            summary.passed += 1
        elif result.status == VerificationStatus.FAIL:
            summary.failed += 1
        elif result.status == VerificationStatus.ERROR:
            summary.errored += 1
        else:
            summary.skipped += 1

    if summary.errored:
        status = VerificationStatus.ERROR
    elif summary.failed:
        status = VerificationStatus.FAIL
    else:
        status = VerificationStatus.PASS

    return VerificationReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        context=context,
        verify_id=installation.verify_id,
        version=installation.version,
        status=status,
        summary=summary,
        checks=results,
    )


# ---------------------------------------------------------------------------
# Main execution
# ---------------------------------------------------------------------------


def run_verification(args: argparse.Namespace) -> int:
    """Main execution flow.

    Args:
        args: Parsed CLI arguments.

    Returns:
        Process exit code (0 = PASS, 1 = FAIL, 2 = ERROR).
    """
    try:
        k8s_controller = KubernetesController(
            context=args.context,
            gke_project=args.gke_project,
            insecure=args.insecure,
            namespace=args.namespace,
        )
        install_verifier = KubeInstallVerifier(runner=k8s_controller, verify_file=args.verify_file)
        connection_verifier = KubeConnectionVerifier(runner=k8s_controller)
    except Exception as e:
        logger.error(f"Initialization failed: {e}")
        return 1

    plan = build_check_plan(
        args=args, install_verifier=install_verifier, connection_verifier=connection_verifier,
    )
    if not plan:
        logger.error("No checks requested")
        return 1

    results = execute_checks(plan)

    try:
        report = generate_report(
            results=results,
            installation=install_verifier.installation,
            context=args.context or args.gke_project or "in-cluster",
        )
        print(json.dumps(report.to_dict(), indent=2))
    except Exception as e:
        logger.error(f"Failed to generate report: {e}")
        return 1

    return report.status.exit_code


def main() -> None:
    """CLI entry point for kubeverify."""
    _setup_logging()
    try:
        parsed_args = parse_args()
        sys.exit(run_verification(args=parsed_args))
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
