"""jobnet-runner: dependency-graph resolution and durable job queue execution for ETL jobnets."""

__version__ = "1.0.0"
