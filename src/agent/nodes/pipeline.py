"""Pipeline node: refreshes the data sources by running the default pipeline."""

from typing import Any, Dict

from loguru import logger

from agent.state import CycleState
from jobs.engine import JobEngine


class PipelineNode:
    """Runs (or attaches to) ``pipeline_name`` and waits for it to finish.

    A failed or unknown pipeline does not stop the cycle: the collector still
    reads whatever documents are on disk.
    """

    def __init__(self, engine: JobEngine, pipeline_name: str) -> None:
        self.engine = engine
        self.pipeline_name = pipeline_name

    async def __call__(self, state: CycleState) -> Dict[str, Any]:
        ok = await self.engine.run_pipeline_and_await(self.pipeline_name, state["cancel"])
        logger.info(f"Heartbeat pipeline {self.pipeline_name} finished: success={ok}")
        return {"pipeline_ok": ok}
