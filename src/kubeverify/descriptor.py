"""Installation descriptor loading for kubeverify.

A descriptor is a YAML document describing the components of an installation::

    verifyID: mysql-resiliency
    version: 1.0.0
    components:
      - name: percona
        namespace: litmus
        kind: pod
        apiVersion: v1
        labels: name=percona
        alias: db
"""

from __future__ import annotations

import logging

import yaml

from .models import Installation

logger = logging.getLogger(__name__)


def unmarshal(data: str | bytes) -> Installation:
    """Parse raw YAML descriptor text into an :class:`Installation`.

    Raises:
        ValueError: If the text is not valid YAML or does not describe an installation.
    """
    try:
        document = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise ValueError(f"Verify file is not valid YAML: {exc}") from exc

    if document is None:
        return Installation()
    if not isinstance(document, dict):
        raise ValueError(f"Verify file must contain a mapping, got {type(document).__name__}")

    return Installation.from_dict(document)


def load(verify_file: str) -> Installation:
    """Load a verify file into an :class:`Installation`.

    Args:
        verify_file: Path to the YAML descriptor.

    Returns:
        The parsed installation.

    Raises:
        ValueError: If no path is given or the file cannot be parsed.
        OSError: If the file cannot be read.
    """
    if not verify_file or not str(verify_file).strip():
        raise ValueError("failed to load: verify file is not provided")

    with open(verify_file, encoding="utf-8") as f:
        data = f.read()

    installation = unmarshal(data)
    logger.info(
        f"Loaded installation '{installation.verify_id}' version '{installation.version}' "
        f"with {len(installation.components)} components from {verify_file}"
    )
    return installation
