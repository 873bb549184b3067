"""kubeverify — Kubernetes installation verification.

Verify that the components of an installation are deployed and running in a
Kubernetes cluster, check placement conditions and induce pod failures for
resiliency testing.
"""

import logging

from kubeverify._version import __version__
from kubeverify.models import Action, Component, Condition, Installation, VerificationStatus
from kubeverify.verify import KubeConnectionVerifier, KubeInstallVerifier, VerifyException

__all__ = [
    "Action",
    "Component",
    "Condition",
    "Installation",
    "KubeConnectionVerifier",
    "KubeInstallVerifier",
    "VerificationStatus",
    "VerifyException",
    "__version__",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())
