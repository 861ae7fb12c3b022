import asyncio
import json
import signal
import sys

from aiohttp import web
from pydantic import ValidationError

from browser_worker.core.config import settings
from browser_worker.session.models import CommandRequest, TestSession
from browser_worker.utils.logger import get_logger, setup_root_logger
from browser_worker.workers.container_worker import ContainerWorker
from browser_worker.workers.factory import WorkerRegistry, load_capabilities

logger = get_logger(__name__)


class WorkerNodeService:
    """HTTP surface that exposes one worker's hooks to the routing layer"""

    def __init__(
        self,
        registry: WorkerRegistry | None = None,
        container_id: str | None = None,
        capabilities: list[dict] | None = None,
    ):
        self.registry = registry or WorkerRegistry()
        self.container_id = (
            container_id if container_id is not None else settings.container_id
        )
        self.capabilities = capabilities
        self.worker: ContainerWorker | None = None
        self.sessions: dict[str, TestSession] = {}

        self._shutdown = False
        self._stopped = False
        self._runner: web.AppRunner | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.add_routes(
            [
                web.post("/session", self.handle_new_session),
                web.post("/session/release", self.handle_release_session),
                web.post("/commands/before", self.handle_before_command),
                web.post("/commands/after", self.handle_after_command),
                web.get("/status", self.handle_status),
            ]
        )
        return app

    def start_worker(self, start_polling: bool = True) -> ContainerWorker:
        """Register the worker for the container this process was started for"""
        if not self.container_id:
            raise ValueError("CONTAINER_ID not configured")

        capabilities = self.capabilities
        if capabilities is None:
            capabilities = load_capabilities(settings.worker_capabilities)

        self.worker = self.registry.create_worker(
            self.container_id, capabilities, start_polling=start_polling
        )
        return self.worker

    async def _read_json(self, request: web.Request) -> dict | None:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        return body if isinstance(body, dict) else None

    async def handle_new_session(self, request: web.Request) -> web.Response:
        body = await self._read_json(request)
        if body is None:
            return web.json_response(
                {"error": "Body must be a JSON object of capabilities"}, status=400
            )

        session = await self.worker.request_session(body)
        if session is None:
            return web.json_response(
                {"status": "refused", "worker_id": self.worker.worker_id}, status=409
            )

        self.sessions[session.session_id] = session
        return web.json_response(session.model_dump(mode="json"), status=201)

    async def _read_command(
        self, request: web.Request
    ) -> tuple[TestSession | None, CommandRequest | None, web.Response | None]:
        body = await self._read_json(request)
        if body is None:
            return None, None, web.json_response({"error": "Invalid JSON body"}, status=400)

        session = self.sessions.get(str(body.get("session_id", "")))
        if session is None:
            return None, None, web.json_response({"error": "Unknown session"}, status=404)

        try:
            command = CommandRequest(
                method=body.get("method", ""),
                request_type=body.get("request_type", "REGULAR"),
                path=body.get("path"),
            )
        except ValidationError as e:
            return None, None, web.json_response({"error": str(e)}, status=400)

        return session, command, None

    async def handle_before_command(self, request: web.Request) -> web.Response:
        session, command, error = await self._read_command(request)
        if error is not None:
            return error
        await self.worker.on_before_command(session, command)
        return web.Response(status=204)

    async def handle_after_command(self, request: web.Request) -> web.Response:
        session, command, error = await self._read_command(request)
        if error is not None:
            return error
        await self.worker.on_after_command(session, command)
        return web.Response(status=204)

    async def handle_release_session(self, request: web.Request) -> web.Response:
        body = await self._read_json(request)
        if body is None:
            return web.json_response({"error": "Invalid JSON body"}, status=400)

        session = self.sessions.get(str(body.get("session_id", "")))
        if session is None:
            return web.json_response({"error": "Unknown session"}, status=404)

        await self.worker.after_session(session)
        return web.Response(status=204)

    async def handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.worker.status().model_dump(mode="json"))

    async def start(self):
        """Serve the hooks until the worker is down or shutdown is requested"""
        self.start_worker()

        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, settings.worker_host, settings.worker_port)
        await site.start()

        logger.info(
            f"Worker node started | Environment: {settings.environment.upper()} | "
            f"Worker: {self.worker.worker_id[:8]} | Container: {self.container_id[:12]} | "
            f"Listening: {settings.worker_host}:{settings.worker_port}"
        )

        while not self._shutdown and not self.worker.is_down():
            await asyncio.sleep(1)

        if self.worker.is_down():
            logger.info("Worker is down - exiting")

    async def shutdown(self):
        """Tear down the worker (if still up) and stop serving"""
        if self._stopped:
            return

        self._stopped = True
        self._shutdown = True
        logger.info("Shutting down worker node")

        await self.registry.shutdown()

        if self._runner:
            await self._runner.cleanup()

        logger.info("Shutdown complete")

    def request_shutdown(self):
        """Request graceful shutdown"""
        if not self._shutdown:
            self._shutdown = True
            logger.info("Shutdown requested")


async def main() -> int:
    """Main entry point"""
    setup_root_logger(level=settings.log_level, log_file=settings.log_file)
    service = WorkerNodeService()

    def signal_handler(sig, _frame):
        logger.info(f"Received signal {sig}")
        service.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    exit_code = 0
    try:
        await service.start()
    except ValueError as e:
        logger.error(f"Invalid worker configuration: {e}")
        exit_code = 1
    except asyncio.CancelledError:
        logger.info("Main task cancelled")
    finally:
        await service.shutdown()

    return exit_code


def run():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Application interrupted")
        sys.exit(0)


if __name__ == "__main__":
    run()
