from __future__ import annotations

from dataclasses import replace
from typing import TypeVar

from .constants import MYSQL_OPERATOR_VERSION_LABEL
from .models import OperationResource

R = TypeVar("R", bound=OperationResource)


def require_operator_version(version: str) -> str:
    normalized = version.strip()
    if not normalized:
        raise ValueError("operator version must be a non-empty string")
    return normalized


def stamp_provenance(resource: R, version: str) -> R:
    """Return ``resource`` labelled with the operator version that processed it.

    Stamping the version already present returns the same object; a different
    version (after an operator upgrade) replaces the previous value.
    """
    normalized = require_operator_version(version)
    if resource.labels.get(MYSQL_OPERATOR_VERSION_LABEL) == normalized:
        return resource
    labels = {**resource.labels, MYSQL_OPERATOR_VERSION_LABEL: normalized}
    return replace(resource, labels=labels)


def provenance_version(resource: OperationResource) -> str | None:
    return resource.labels.get(MYSQL_OPERATOR_VERSION_LABEL)


def provenance_mismatch(resource: OperationResource, expected_version: str) -> str | None:
    actual = provenance_version(resource)
    if actual == expected_version:
        return None
    rendered = actual if actual is not None else "<missing>"
    return (
        f"{resource.kind} {resource.display_name} label {MYSQL_OPERATOR_VERSION_LABEL} "
        f"was {rendered}, expected {expected_version}"
    )
