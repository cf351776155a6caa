"""DDL for the database-backed task queue."""

from jobnet.db.connection import ConnectionPool

SCHEMA_SQL = """
create table if not exists jobnets (
    jobnet_id       serial primary key,
    subsystem       varchar(64) not null,
    jobnet_name     varchar(128) not null,
    executor_id     varchar(128),
    created_at      timestamptz not null default now(),
    unique (subsystem, jobnet_name)
);

create table if not exists jobs (
    job_id          serial primary key,
    jobnet_id       integer not null references jobnets (jobnet_id),
    subsystem       varchar(64) not null,
    job_name        varchar(128) not null,
    executor_id     varchar(128),
    unique (jobnet_id, subsystem, job_name)
);

create table if not exists job_executions (
    job_execution_id    serial primary key,
    job_id              integer not null unique references jobs (job_id),
    execution_sequence  integer not null,
    status              varchar(16) not null,
    message             text,
    submitted_at        timestamptz,
    started_at          timestamptz,
    finished_at         timestamptz
);

create table if not exists job_execution_states (
    job_execution_state_id  serial primary key,
    job_execution_id        integer not null references job_executions (job_execution_id) on delete cascade,
    job_id                  integer not null,
    status                  varchar(16) not null,
    message                 text,
    created_at              timestamptz not null default now()
);
"""


def create_schema(pool: ConnectionPool) -> None:
    with pool.get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
