"""
Spec validation run before any engine call.

Problems are collected and reported together as one ValidationError; a
spec is never silently coerced into something valid.
"""
from typing import Dict, FrozenSet, List, Optional

from croniter import croniter

from dboperator.core.maintenance import resolve_timezone
from dboperator.exceptions import ValidationError
from dboperator.models.database import Database, DatabaseEngine, TopologyMode
from dboperator.utils.timeutils import parse_duration
from dboperator.utils.version import is_downgrade, parse_version

# Technologies that can only ever run one instance
SINGLE_INSTANCE: FrozenSet[DatabaseEngine] = frozenset({DatabaseEngine.SQLITE})

# Technologies that need a minimum cluster size
MINIMUM_REPLICAS: Dict[DatabaseEngine, int] = {
    DatabaseEngine.ELASTICSEARCH: 3,
}

SUPPORTED_TOPOLOGIES: Dict[DatabaseEngine, FrozenSet[TopologyMode]] = {
    DatabaseEngine.POSTGRESQL: frozenset({TopologyMode.STANDALONE, TopologyMode.REPLICATED, TopologyMode.CLUSTER}),
    DatabaseEngine.MONGODB: frozenset({TopologyMode.STANDALONE, TopologyMode.REPLICATED, TopologyMode.SHARDED}),
    DatabaseEngine.REDIS: frozenset({TopologyMode.STANDALONE, TopologyMode.REPLICATED, TopologyMode.CLUSTER}),
    DatabaseEngine.ELASTICSEARCH: frozenset({TopologyMode.CLUSTER}),
    DatabaseEngine.SQLITE: frozenset({TopologyMode.STANDALONE}),
}

MULTI_NODE_MODES = frozenset({TopologyMode.REPLICATED, TopologyMode.CLUSTER})


def validate_version_change(current: Optional[str], desired: str) -> None:
    """
    Reject a downgrade from the observed running version.

    Raises:
        ValidationError: desired is older than current
    """
    problems = _version_problems(current, desired)
    if problems:
        raise ValidationError(problems, reason="VersionDowngrade")


def _version_problems(current: Optional[str], desired: str) -> List[str]:
    if not desired or not desired.strip():
        return ["version is required"]
    try:
        parse_version(desired)
    except ValueError as e:
        return [str(e)]
    if current and is_downgrade(current, desired):
        return [f"version downgrade from {current} to {desired} is not supported"]
    return []


def _topology_problems(database: Database) -> List[str]:
    problems = []
    engine = database.spec.engine
    topology = database.spec.topology

    if engine in SINGLE_INSTANCE and topology.replicas > 1:
        problems.append(f"{engine.value} does not support multiple replicas")

    minimum = MINIMUM_REPLICAS.get(engine)
    if minimum is not None:
        if topology.mode == TopologyMode.STANDALONE:
            problems.append(f"{engine.value} requires at least {minimum} nodes and cannot run standalone")
        elif topology.replicas < minimum:
            problems.append(f"{engine.value} requires at least {minimum} replicas, got {topology.replicas}")

    supported = SUPPORTED_TOPOLOGIES.get(engine, frozenset())
    if topology.mode not in supported:
        problems.append(f"{engine.value} does not support {topology.mode.value} topology")

    if topology.mode == TopologyMode.STANDALONE and topology.replicas > 1 and engine not in SINGLE_INSTANCE:
        problems.append("Standalone topology runs exactly one replica")
    if topology.mode in MULTI_NODE_MODES and topology.replicas < 2:
        problems.append(f"{topology.mode.value} topology requires at least 2 replicas")
    if topology.mode == TopologyMode.SHARDED and not topology.shards:
        problems.append("Sharded topology requires shards")
    if topology.shards and topology.mode != TopologyMode.SHARDED:
        problems.append("shards are only valid with Sharded topology")
    return problems


def _schedule_problems(database: Database) -> List[str]:
    problems = []
    backup = database.spec.backup
    if backup.enabled:
        if not backup.schedule:
            problems.append("backup.schedule is required when backups are enabled")
        elif not croniter.is_valid(backup.schedule):
            problems.append(f"backup.schedule {backup.schedule!r} is not a valid cron expression")
        destination = backup.destination
        if destination.s3 is not None and destination.pvc is not None:
            problems.append("backup.destination must name either s3 or pvc, not both")

    policy = database.spec.auth.rotation_policy
    if policy is not None and policy.enabled:
        if not policy.schedule:
            problems.append("rotationPolicy.schedule is required when rotation is enabled")
        elif not croniter.is_valid(policy.schedule):
            problems.append(f"rotationPolicy.schedule {policy.schedule!r} is not a valid cron expression")
        if policy.stuck_threshold:
            try:
                parse_duration(policy.stuck_threshold)
            except ValueError as e:
                problems.append(f"rotationPolicy.stuckThreshold: {e}")

    timezone_name = database.spec.maintenance.timezone
    if timezone_name:
        try:
            resolve_timezone(timezone_name)
        except (KeyError, ValueError):
            problems.append(f"maintenance.timezone {timezone_name!r} is not a known IANA timezone")
    return problems


def collect_problems(database: Database) -> List[str]:
    """Every invariant violation in a Database spec."""
    problems = _version_problems(database.status.current_version, database.spec.version)
    problems.extend(_topology_problems(database))
    problems.extend(_schedule_problems(database))
    return problems


def validate_database(database: Database) -> None:
    """
    Validate a Database before any engine call.

    Raises:
        ValidationError: With every problem found
    """
    problems = collect_problems(database)
    if problems:
        raise ValidationError(problems)
