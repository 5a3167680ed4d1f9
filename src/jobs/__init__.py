"""Job catalog and background execution engine."""

from jobs.catalog import (
    CatalogError,
    CommandJob,
    JobCatalog,
    JobDefinition,
    PipelineDefinition,
    build_catalog,
    default_catalog,
    load_catalog,
)
from jobs.engine import JobEngine, JobStatus, RunningJob

__all__ = [
    "CatalogError",
    "CommandJob",
    "JobCatalog",
    "JobDefinition",
    "JobEngine",
    "JobStatus",
    "PipelineDefinition",
    "RunningJob",
    "build_catalog",
    "default_catalog",
    "load_catalog",
]
