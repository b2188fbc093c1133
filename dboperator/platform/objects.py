"""
Helpers for objects the controller owns.

create_or_update follows the usual controller contract: read the live
object, create it when absent, otherwise let a mutate function adjust the
fields the controller owns and only write when something actually changed.
"""
import copy
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from dboperator.config.logging import get_logger
from dboperator.models.database import API_VERSION, KIND, Database
from dboperator.platform.base import Kind, PlatformClient

logger = get_logger(__name__)

LABEL_NAME = "app.kubernetes.io/name"
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_ENGINE = "dboperator.io/engine"
MANAGED_BY = "dboperator"

Mutator = Callable[[Dict[str, Any]], None]


class OperationResult(str, Enum):
    """Outcome of create_or_update."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def labels_for(database: Database) -> Dict[str, str]:
    """Standard label set carried by every object owned by a Database."""
    return {
        LABEL_NAME: "database",
        LABEL_INSTANCE: database.name,
        LABEL_MANAGED_BY: MANAGED_BY,
        LABEL_ENGINE: database.spec.engine.value.lower(),
    }


def selector_labels(database: Database) -> Dict[str, str]:
    """Subset of labels used for pod selection. Must stay stable."""
    return {
        LABEL_NAME: "database",
        LABEL_INSTANCE: database.name,
    }


def owner_reference(database: Database) -> Dict[str, Any]:
    return {
        "apiVersion": API_VERSION,
        "kind": KIND,
        "name": database.name,
        "uid": database.metadata.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def object_meta(database: Database, name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Metadata for a new owned object in the Database's namespace."""
    merged = labels_for(database)
    merged.update(labels or {})
    return {
        "name": name,
        "namespace": database.namespace,
        "labels": merged,
        "ownerReferences": [owner_reference(database)],
    }


def clear_owner_references(obj: Dict[str, Any], owner_uid: Optional[str]) -> bool:
    """
    Drop references to the owner with ``owner_uid`` from ``obj``.

    Returns:
        True if anything was removed
    """
    metadata = obj.setdefault("metadata", {})
    refs = metadata.get("ownerReferences") or []
    kept = [ref for ref in refs if ref.get("uid") != owner_uid]
    if len(kept) == len(refs):
        return False
    metadata["ownerReferences"] = kept
    return True


def has_finalizer(database: Database, finalizer: str) -> bool:
    return finalizer in database.metadata.finalizers


def add_finalizer(database: Database, finalizer: str) -> bool:
    """Add the finalizer. Returns True when the object changed."""
    if has_finalizer(database, finalizer):
        return False
    database.metadata.finalizers.append(finalizer)
    return True


def remove_finalizer(database: Database, finalizer: str) -> bool:
    """Remove the finalizer. Returns True when the object changed."""
    if not has_finalizer(database, finalizer):
        return False
    database.metadata.finalizers = [f for f in database.metadata.finalizers if f != finalizer]
    return True


def secret_data(secret: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Raw base64 ``data`` map of a Secret."""
    if not secret:
        return {}
    return dict(secret.get("data") or {})


async def create_or_update(
    platform: PlatformClient,
    kind: Kind,
    desired: Dict[str, Any],
    mutate: Optional[Mutator] = None,
) -> Tuple[OperationResult, Dict[str, Any]]:
    """
    Converge one object towards ``desired``.

    Args:
        platform: Platform client
        kind: Object kind
        desired: Full body used when the object does not exist yet
        mutate: Applied to the live body when it exists; must only touch
            fields the controller owns. Without it the live object is
            left alone.

    Returns:
        (result, live body)
    """
    metadata = desired["metadata"]
    existing = await platform.get(kind, metadata["namespace"], metadata["name"])
    if existing is None:
        created = await platform.create(kind, desired)
        logger.info(
            "owned_object_created",
            kind=kind.value,
            namespace=metadata["namespace"],
            name=metadata["name"],
        )
        return OperationResult.CREATED, created

    if mutate is None:
        return OperationResult.UNCHANGED, existing

    before = copy.deepcopy(existing)
    mutate(existing)
    if existing == before:
        return OperationResult.UNCHANGED, existing

    updated = await platform.update(kind, existing)
    logger.info(
        "owned_object_updated",
        kind=kind.value,
        namespace=metadata["namespace"],
        name=metadata["name"],
    )
    return OperationResult.UPDATED, updated
