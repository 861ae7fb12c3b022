"""Explicit creation and lookup of workers for the orchestration layer"""

import asyncio
import json
from collections.abc import Iterable, Mapping
from typing import Any

from ..core.environment import Environment
from ..utils.docker_client import ContainerEngine
from ..utils.logger import get_logger
from .container_worker import ContainerWorker

logger = get_logger(__name__)


def load_capabilities(raw: str) -> list[dict[str, Any]]:
    """
    Parse declared worker capabilities from JSON.

    Accepts a single object or a list of objects; raises ValueError otherwise.
    """
    data = json.loads(raw)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise ValueError("Worker capabilities must be a JSON object or a list of objects")
    return data


class WorkerRegistry:
    """Workers created by this process, keyed by worker id"""

    def __init__(
        self,
        engine: ContainerEngine | None = None,
        environment: Environment | None = None,
    ):
        self.engine = engine or ContainerEngine()
        self.environment = environment or Environment()
        self.workers: dict[str, ContainerWorker] = {}

    def create_worker(
        self,
        container_id: str,
        capabilities: Iterable[Mapping[str, Any]],
        start_polling: bool = False,
        **options: Any,
    ) -> ContainerWorker:
        """
        Build a worker for a running container and register it.

        `options` are passed to ContainerWorker (timeouts, paths, callback URL).
        Starting the watchdog needs a running event loop.
        """
        worker = ContainerWorker(
            capabilities,
            engine=self.engine,
            environment=self.environment,
            **options,
        )
        worker.bind_container(container_id)
        self.workers[worker.worker_id] = worker

        if start_polling:
            worker.start_polling()

        logger.info(
            f"Worker {worker.worker_id[:8]} registered | Container: {container_id[:12]} | "
            f"Capabilities: {worker.capabilities}"
        )
        return worker

    def get(self, worker_id: str) -> ContainerWorker | None:
        return self.workers.get(worker_id)

    def prune(self) -> list[str]:
        """Forget workers that are down; returns their ids"""
        removed = [
            worker_id for worker_id, worker in self.workers.items() if worker.is_down()
        ]
        for worker_id in removed:
            del self.workers[worker_id]
        if removed:
            logger.debug(f"Pruned {len(removed)} down worker(s)")
        return removed

    async def shutdown(self):
        if not self.workers:
            return

        logger.info(f"Shutting down {len(self.workers)} worker(s)")
        semaphore = asyncio.Semaphore(3)

        async def shutdown_with_semaphore(worker: ContainerWorker):
            async with semaphore:
                await worker.shutdown()

        await asyncio.gather(
            *(shutdown_with_semaphore(worker) for worker in self.workers.values()),
            return_exceptions=True,
        )
