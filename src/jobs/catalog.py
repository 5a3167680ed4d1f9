"""Job and pipeline catalog.

A ``JobCatalog`` is built once at startup and handed to the engine and the
orchestrator. Lookups are case-insensitive. Pipeline steps are not checked
against the job list here: an unknown step fails the pipeline when it runs.

Sources:
    default_catalog(settings)  -- built-in data-collection jobs run as external commands
    load_catalog(path)         -- JSON file (see catalog.example.json)
"""

from __future__ import annotations

import asyncio
import json
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from infra.cancellation import CancelToken, OperationCancelled
from utils.config import Settings

#: A job entry point: receives its cancellation token, returns an exit code (0 = success).
JobExecutor = Callable[[CancelToken], Awaitable[int]]

PIPELINE_KEY_PREFIX = "pipeline:"


class CatalogError(Exception):
    """Raised for an invalid catalog definition."""
    pass


@dataclass(frozen=True)
class JobDefinition:
    name: str
    description: str
    execute: JobExecutor = field(compare=False, repr=False)


@dataclass(frozen=True)
class PipelineDefinition:
    name: str
    steps: Tuple[str, ...]

    @property
    def key(self) -> str:
        return f"{PIPELINE_KEY_PREFIX}{self.name}"


class JobCatalog:
    """Immutable, case-insensitive registry of jobs and pipelines."""

    def __init__(
        self,
        jobs: Iterable[JobDefinition],
        pipelines: Iterable[PipelineDefinition] = (),
    ) -> None:
        self._jobs: Mapping[str, JobDefinition] = MappingProxyType(
            self._index(jobs, "job")
        )
        self._pipelines: Mapping[str, PipelineDefinition] = MappingProxyType(
            self._index(pipelines, "pipeline")
        )

    @staticmethod
    def _index(items: Iterable, kind: str) -> Dict:
        index: Dict = {}
        for item in items:
            name = item.name.strip()
            if not name:
                raise CatalogError(f"Empty {kind} name")
            folded = name.lower()
            if folded in index:
                raise CatalogError(f"Duplicate {kind} name: {name}")
            index[folded] = item
        return index

    def get_job(self, name: str) -> Optional[JobDefinition]:
        return self._jobs.get(name.strip().lower()) if name else None

    def get_pipeline(self, name: str) -> Optional[PipelineDefinition]:
        return self._pipelines.get(name.strip().lower()) if name else None

    @property
    def jobs(self) -> List[JobDefinition]:
        return sorted(self._jobs.values(), key=lambda j: j.name.lower())

    @property
    def pipelines(self) -> List[PipelineDefinition]:
        return sorted(self._pipelines.values(), key=lambda p: p.name.lower())

    @property
    def job_names(self) -> List[str]:
        return [j.name for j in self.jobs]

    @property
    def pipeline_names(self) -> List[str]:
        return [p.name for p in self.pipelines]


# ---------------------------------------------------------------------------
# External command jobs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CommandJob:
    """Runs an external command; the exit status is the job outcome.

    Output lines are forwarded to the log. When the token is cancelled the
    process is terminated (then killed after ``kill_after`` seconds).
    """

    name: str
    argv: Tuple[str, ...]
    cwd: Optional[str] = None
    kill_after: float = 10.0

    async def __call__(self, cancel: CancelToken) -> int:
        cancel.raise_if_cancelled()
        logger.debug(f"[{self.name}] exec: {shlex.join(self.argv)}")
        proc = await asyncio.create_subprocess_exec(
            *self.argv,
            cwd=self.cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        pump = asyncio.create_task(self._pump_output(proc.stdout))
        try:
            return await cancel.guard(proc.wait())
        except OperationCancelled:
            await self._terminate(proc)
            raise
        finally:
            await pump

    async def _pump_output(self, stream: Optional[asyncio.StreamReader]) -> None:
        if stream is None:
            return
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                logger.debug(f"[{self.name}] {line}")

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        logger.info(f"[{self.name}] terminating pid {proc.pid}")
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_after)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()


# ---------------------------------------------------------------------------
# Built-in catalog
# ---------------------------------------------------------------------------

BUILTIN_JOBS: Dict[str, str] = {
    "foxland-format": "Convert foxland dump into LLM context",
    "dataroma-rss": "Fetch Dataroma RSS feed",
    "vic-collect-links": "Collect VIC idea links",
    "vic-crawl": "Crawl VIC ideas",
    "extract-tickers": "Rank tickers from all sources",
    "fetch-overview": "Fetch financial data for top tickers",
}

BUILTIN_PIPELINES: Dict[str, Tuple[str, ...]] = {
    "default": ("dataroma-rss", "extract-tickers", "fetch-overview"),
    "full": (
        "foxland-format",
        "dataroma-rss",
        "vic-collect-links",
        "vic-crawl",
        "extract-tickers",
        "fetch-overview",
    ),
}


def default_catalog(config: Settings) -> JobCatalog:
    """Built-in jobs, each run as ``<job_command> <job-name>``."""
    prefix = tuple(shlex.split(config.job_command))
    jobs = [
        JobDefinition(name, description, CommandJob(name, prefix + (name,)))
        for name, description in BUILTIN_JOBS.items()
    ]
    pipelines = [PipelineDefinition(name, steps) for name, steps in BUILTIN_PIPELINES.items()]
    return JobCatalog(jobs, pipelines)


class _JobEntry(BaseModel):
    description: str = ""
    command: List[str] = Field(min_length=1)
    cwd: Optional[str] = None


class _CatalogFile(BaseModel):
    jobs: Dict[str, _JobEntry]
    pipelines: Dict[str, List[str]] = Field(default_factory=dict)


def load_catalog(path: Path) -> JobCatalog:
    """Load a catalog from a JSON file.

    Raises:
        CatalogError: When the file is unreadable or does not match the schema.
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        parsed = _CatalogFile.model_validate(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise CatalogError(f"Invalid job catalog {path}: {e}") from e

    jobs = [
        JobDefinition(
            name,
            entry.description or name,
            CommandJob(name, tuple(entry.command), cwd=entry.cwd),
        )
        for name, entry in parsed.jobs.items()
    ]
    pipelines = [PipelineDefinition(name, tuple(steps)) for name, steps in parsed.pipelines.items()]
    logger.info(f"Loaded job catalog {path}: {len(jobs)} job(s), {len(pipelines)} pipeline(s)")
    return JobCatalog(jobs, pipelines)


def build_catalog(config: Settings) -> JobCatalog:
    """Catalog selected by configuration: JSON file when set, else built-in."""
    if config.job_catalog_path:
        return load_catalog(Path(config.job_catalog_path))
    return default_catalog(config)
