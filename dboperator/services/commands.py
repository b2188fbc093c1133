"""
Per-technology images and shell commands for execution units.

Backup, restore and credential commands run inside one-shot jobs. They read
connection details from the environment the job is launched with
(DB_HOST, DB_PORT, DB_USER, PGPASSWORD / DB_PASSWORD, ...), never from
literal values.
"""
from typing import List

from dboperator.models.database import (
    BackupMethod,
    Database,
    DatabaseEngine,
    RotationStrategy,
)

BACKUP_DIR = "/backup"
FALLBACK_IMAGE = "busybox:latest"

IMAGE_REPOSITORIES = {
    DatabaseEngine.POSTGRESQL: "postgres",
    DatabaseEngine.MONGODB: "mongo",
    DatabaseEngine.REDIS: "redis",
    DatabaseEngine.ELASTICSEARCH: "elasticsearch",
}

# Logins created by the database image itself; rotation never drops them
BOOTSTRAP_USERS = {
    DatabaseEngine.POSTGRESQL: "postgres",
}


def _shell(script: str) -> List[str]:
    return ["/bin/sh", "-c", script]


def image_for(database: Database) -> str:
    """Tool image matching the running server version."""
    repository = IMAGE_REPOSITORIES.get(database.spec.engine)
    if repository is None:
        return FALLBACK_IMAGE
    version = database.status.current_version or database.spec.version
    return f"{repository}:{version}"


def backup_target(database: Database) -> str:
    return f"{BACKUP_DIR}/{database.name}-$(date +%Y%m%d-%H%M%S).backup"


def backup_command(database: Database) -> List[str]:
    """Command for one backup run, selected by technology and method."""
    target = backup_target(database)
    engine = database.spec.engine
    method = database.spec.backup.method

    if engine == DatabaseEngine.POSTGRESQL:
        if method == BackupMethod.SNAPSHOT:
            return _shell(f'pg_basebackup -h "$DB_HOST" -p "$DB_PORT" -U "$DB_USER" -D {target} -Ft -z')
        if method == BackupMethod.WAL:
            return _shell(
                f'pg_basebackup -h "$DB_HOST" -p "$DB_PORT" -U "$DB_USER" -D {target} -Ft -z -X stream'
            )
        return _shell(f'pg_dump -h "$DB_HOST" -p "$DB_PORT" -U "$DB_USER" -Fc -f {target}')

    if engine == DatabaseEngine.MONGODB:
        return _shell(
            'mongodump --host="$DB_HOST" --port="$DB_PORT" --username="$DB_USER" '
            f'--password="$DB_PASSWORD" --out={target}'
        )

    if engine == DatabaseEngine.REDIS:
        return _shell(f'redis-cli -h "$DB_HOST" -p "$DB_PORT" --rdb {BACKUP_DIR}/dump.rdb')

    return _shell("echo 'Backup not implemented for this engine' && exit 1")


def restore_command(database: Database, backup_name: str) -> List[str]:
    """
    Command replaying a backup into the data volume before the workload starts.

    PostgreSQL restores are physical: the base backup tarballs are unpacked
    into PGDATA and, for point-in-time requests, a recovery target is
    written so the server replays WAL up to it on first start.
    """
    source = f"{BACKUP_DIR}/{backup_name}"
    engine = database.spec.engine

    if engine == DatabaseEngine.POSTGRESQL:
        script = (
            'set -e; mkdir -p "$PGDATA"; '
            f'tar -xzf {source}/base.tar.gz -C "$PGDATA"; '
            f'if [ -f {source}/pg_wal.tar.gz ]; then tar -xzf {source}/pg_wal.tar.gz -C "$PGDATA/pg_wal"; fi; '
            'if [ -n "$RECOVERY_TARGET_TIME" ]; then '
            'echo "recovery_target_time = \'$RECOVERY_TARGET_TIME\'" >> "$PGDATA/postgresql.auto.conf"; '
            'touch "$PGDATA/recovery.signal"; fi; '
            'chown -R 999:999 "$PGDATA"'
        )
        return _shell(script)

    if engine == DatabaseEngine.MONGODB:
        return _shell(
            'mongorestore --host="$DB_HOST" --port="$DB_PORT" --username="$DB_USER" '
            f'--password="$DB_PASSWORD" --drop {source}'
        )

    return _shell("echo 'Restore not implemented for this engine' && exit 1")


def grant_command(database: Database, strategy: RotationStrategy) -> List[str]:
    """Command that makes the new credential valid on the server."""
    if database.spec.engine != DatabaseEngine.POSTGRESQL:
        return _shell("echo 'Rotation not implemented for this engine' && exit 1")

    psql = 'psql -h "$DB_HOST" -p "$DB_PORT" -U "$OLD_USERNAME" -d postgres -v ON_ERROR_STOP=1'
    if strategy == RotationStrategy.IMMEDIATE:
        return _shell(f'{psql} -c "ALTER USER \\"$OLD_USERNAME\\" WITH PASSWORD \'$NEW_PASSWORD\';"')
    return _shell(
        f'{psql} -c "CREATE USER \\"$NEW_USERNAME\\" WITH LOGIN CREATEROLE PASSWORD \'$NEW_PASSWORD\'; '
        'GRANT ALL PRIVILEGES ON DATABASE postgres TO \\"$NEW_USERNAME\\";"'
    )


def revoke_command(database: Database) -> List[str]:
    """Command that removes the previous login. Bootstrap logins are kept."""
    if database.spec.engine != DatabaseEngine.POSTGRESQL:
        return _shell("echo 'Rotation not implemented for this engine' && exit 1")

    bootstrap = BOOTSTRAP_USERS[DatabaseEngine.POSTGRESQL]
    psql = 'psql -h "$DB_HOST" -p "$DB_PORT" -U "$NEW_USERNAME" -d postgres -v ON_ERROR_STOP=1'
    # A login that is already gone means an earlier revoke finished
    return _shell(
        f'if [ "$OLD_USERNAME" = "{bootstrap}" ]; then echo "keeping bootstrap user"; exit 0; fi; '
        f'{psql} -tAc "SELECT 1 FROM pg_roles WHERE rolname = \'$OLD_USERNAME\'" | grep -q 1 || exit 0; '
        f'{psql} -c "REVOKE ALL PRIVILEGES ON DATABASE postgres FROM \\"$OLD_USERNAME\\"; '
        'DROP USER \\"$OLD_USERNAME\\";"'
    )
