import asyncio
import uuid
from collections.abc import Coroutine, Iterable, Mapping
from contextlib import suppress
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..core.config import (
    DEFAULT_VIDEO_RECORDING_ENABLED,
    VIDEO_RECORDING_ENABLED_ENV,
    settings,
)
from ..core.environment import Environment
from ..session.models import (
    CommandRequest,
    ContainerAction,
    RequestType,
    TerminatedWorker,
    TestSession,
    WorkerStatus,
)
from ..utils.docker_client import ContainerEngine, DockerException
from ..utils.http_client import notify_worker_terminated
from ..utils.logger import get_logger
from .capabilities import (
    TEST_GROUP,
    TEST_NAME,
    capabilities_match,
    parse_idle_timeout,
    parse_label,
    parse_record_video,
)
from .video_recorder import VideoRecorder

logger = get_logger(__name__)


def _session_marker(request: Any) -> RequestType | None:
    """Classify a routed command; anything unreadable counts as a regular command"""
    try:
        if not isinstance(request, CommandRequest):
            request = CommandRequest(
                method=str(request.method), request_type=request.request_type
            )
    except (AttributeError, TypeError, ValidationError):
        return None

    if request.is_session_start():
        return RequestType.START_SESSION
    if request.is_session_stop():
        return RequestType.STOP_SESSION
    return None


class ContainerWorker:
    """
    Single-use browser worker bound to one container.

    Admits at most one session, watches its traffic, reclaims it when idle and
    stops the container exactly once. Hooks are called by the routing layer;
    the idle watchdog runs as a background task started by `start_polling()`.
    """

    def __init__(
        self,
        capabilities: Iterable[Mapping[str, Any]],
        container_id: str | None = None,
        engine: ContainerEngine | None = None,
        environment: Environment | None = None,
        default_idle_timeout: float | None = None,
        poll_interval: float | None = None,
        stop_timeout: int | None = None,
        videos_dir: str | Path | None = None,
        container_videos_path: str | None = None,
        callback_url: str | None = None,
        worker_id: str | None = None,
    ):
        self.worker_id = worker_id or str(uuid.uuid4())
        self.capabilities = [dict(capability) for capability in capabilities]
        self.engine = engine or ContainerEngine()
        self.environment = environment or Environment()

        self.default_idle_timeout = (
            default_idle_timeout
            if default_idle_timeout is not None
            else settings.default_idle_timeout_seconds
        )
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.poll_interval_seconds
        )
        self.stop_timeout = (
            stop_timeout
            if stop_timeout is not None
            else settings.container_stop_timeout_seconds
        )
        if callback_url is None and settings.worker_callback_enabled:
            callback_url = settings.worker_callback_url
        self.callback_url = callback_url or ""
        self.callback_timeout = settings.worker_callback_timeout

        self._container_id = container_id
        self.max_idle_seconds: float = self.default_idle_timeout
        self.tests_executed = 0
        self.session_limit_reached = False
        self.current_session: TestSession | None = None
        self.test_name: str | None = None
        self.test_group: str | None = None
        self.termination: TerminatedWorker | None = None

        self.registered_at = datetime.now(UTC)
        self._last_activity_at = self.registered_at
        self._down = False

        self.recorder = VideoRecorder(
            self.engine,
            globally_enabled=self.read_video_recording_flag(),
            videos_dir=videos_dir,
            container_videos_path=container_videos_path,
        )

        # Guards session binding, activity timestamp and the down flag
        self._state_lock = asyncio.Lock()
        self._poller_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    @property
    def container_id(self) -> str | None:
        return self._container_id

    def bind_container(self, container_id: str):
        """Called once by the starter that created the container"""
        if self._container_id and self._container_id != container_id:
            raise ValueError(
                f"Worker {self.worker_id[:8]} already bound to container {self._container_id[:12]}"
            )
        self._container_id = container_id
        logger.info(
            f"Worker {self.worker_id[:8]} bound to container {container_id[:12]}"
        )

    def read_video_recording_flag(self) -> bool:
        return self.environment.get_bool_env_variable(
            VIDEO_RECORDING_ENABLED_ENV, DEFAULT_VIDEO_RECORDING_ENABLED
        )

    @property
    def video_recording_enabled(self) -> bool:
        return self.recorder.enabled

    def is_busy(self) -> bool:
        return self.current_session is not None

    def is_down(self) -> bool:
        return self._down

    def idle_seconds(self, now: datetime | None = None) -> float:
        now = now or datetime.now(UTC)
        reference = (
            self._last_activity_at if self.current_session else self.registered_at
        )
        return (now - reference).total_seconds()

    def status(self) -> WorkerStatus:
        session = self.current_session
        return WorkerStatus(
            worker_id=self.worker_id,
            container_id=self.container_id,
            busy=self.is_busy(),
            down=self.is_down(),
            tests_executed=self.tests_executed,
            session_limit_reached=self.session_limit_reached,
            max_idle_seconds=self.max_idle_seconds,
            idle_seconds=round(self.idle_seconds(), 3),
            recording_state=self.recorder.state,
            video_recording_enabled=self.video_recording_enabled,
            session_id=session.session_id if session else None,
            test_name=self.test_name,
            test_group=self.test_group,
        )

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def request_session(
        self, requested_capabilities: Mapping[str, Any]
    ) -> TestSession | None:
        """
        Bind a new session to this worker.

        Returns None when the worker is down, has already served its session or
        does not offer the requested browser and platform. A refusal is not an
        error: the router should try another worker.
        """
        requested = dict(requested_capabilities or {})

        async with self._state_lock:
            if self._down:
                logger.debug(f"Worker {self.worker_id[:8]} is down - refusing session")
                return None

            if self.session_limit_reached:
                logger.debug(
                    f"Worker {self.worker_id[:8]} already executed {self.tests_executed} test(s) - refusing session"
                )
                return None

            if not capabilities_match(self.capabilities, requested):
                logger.debug(
                    f"Worker {self.worker_id[:8]} does not support requested capabilities {requested}"
                )
                return None

            idle_timeout = parse_idle_timeout(requested, self.default_idle_timeout)
            session = TestSession(
                worker_id=self.worker_id,
                requested_capabilities=requested,
                name=parse_label(requested, TEST_NAME),
                group=parse_label(requested, TEST_GROUP),
                idle_timeout_seconds=idle_timeout,
                record_video=parse_record_video(requested),
            )

            self.session_limit_reached = True
            self.tests_executed += 1
            self.current_session = session
            self.max_idle_seconds = idle_timeout
            self.test_name = session.name
            self.test_group = session.group
            self._last_activity_at = session.started_at
            self.recorder.configure_for_session(session.record_video)

        logger.info(
            f"Session {session.session_id[:8]} admitted | Worker: {self.worker_id[:8]} | "
            f"Name: {session.name} | Group: {session.group} | Idle timeout: {idle_timeout}s | "
            f"Recording: {self.video_recording_enabled}"
        )
        return session

    # ------------------------------------------------------------------
    # Command interception
    # ------------------------------------------------------------------

    async def _register_activity(self, session: TestSession | None):
        now = datetime.now(UTC)
        async with self._state_lock:
            self._last_activity_at = now
            if session is not None:
                session.last_activity_at = now

    async def on_before_command(self, session: TestSession | None, request: Any):
        """Called by the router before a command is relayed to the container"""
        try:
            await self._register_activity(session)

            if _session_marker(request) == RequestType.START_SESSION:
                logger.info(f"Session start detected | Worker: {self.worker_id[:8]}")
                await self.recorder.video_recording(
                    ContainerAction.START_RECORDING, self.container_id
                )
        except Exception as e:
            logger.error(
                f"Error in before-command hook | Worker: {self.worker_id[:8]} | Error: {e}",
                exc_info=True,
            )

    async def on_after_command(
        self, session: TestSession | None, request: Any, response: Any = None
    ):
        """Called by the router after the container answered a command"""
        try:
            await self._register_activity(session)

            if _session_marker(request) == RequestType.STOP_SESSION:
                logger.info(f"Session stop detected | Worker: {self.worker_id[:8]}")
                await self._teardown_in_background("session_stopped")
        except Exception as e:
            logger.error(
                f"Error in after-command hook | Worker: {self.worker_id[:8]} | Error: {e}",
                exc_info=True,
            )

    async def after_session(self, session: TestSession):
        """Router released the session; a released worker is never reused"""
        current = self.current_session
        if current is None or current.session_id != session.session_id:
            return
        logger.info(
            f"Session {session.session_id[:8]} released by router | Worker: {self.worker_id[:8]}"
        )
        await self._teardown_in_background("session_released")

    # ------------------------------------------------------------------
    # Idle watchdog
    # ------------------------------------------------------------------

    def start_polling(self):
        """Start the idle watchdog on the running event loop"""
        if self._poller_task and not self._poller_task.done():
            logger.warning(f"Idle watchdog already running | Worker: {self.worker_id[:8]}")
            return

        self._poller_task = asyncio.create_task(
            self._poll_loop(), name=f"idle-watchdog-{self.worker_id[:8]}"
        )
        logger.debug(
            f"Idle watchdog started | Worker: {self.worker_id[:8]} | Interval: {self.poll_interval}s"
        )

    async def is_idle_expired(self) -> bool:
        async with self._state_lock:
            if self._down:
                return False
            return self.idle_seconds() > self.max_idle_seconds

    async def _poll_loop(self):
        try:
            while not self._down:
                await asyncio.sleep(self.poll_interval)
                if self._down:
                    break

                try:
                    if await self.is_idle_expired():
                        logger.warning(
                            f"Worker {self.worker_id[:8]} idle for more than {self.max_idle_seconds}s - tearing down | "
                            f"Busy: {self.is_busy()}"
                        )
                        await self._teardown_in_background("idle_timeout")
                        break
                except Exception as e:
                    logger.error(
                        f"Error in idle watchdog | Worker: {self.worker_id[:8]} | Error: {e}",
                        exc_info=True,
                    )
        except asyncio.CancelledError:
            logger.debug(f"Idle watchdog cancelled | Worker: {self.worker_id[:8]}")

        logger.debug(f"Idle watchdog stopped | Worker: {self.worker_id[:8]}")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def teardown(self, reason: str = "teardown") -> bool:
        """
        Stop recording and the container; runs at most once per worker.

        Returns True for the call that performed the teardown, False when the
        worker was already down.
        """
        record = await self._begin_teardown(reason)
        if record is None:
            return False
        await self._finish_teardown(record)
        return True

    async def _teardown_in_background(self, reason: str):
        # The state change happens now; engine calls must not block the router
        record = await self._begin_teardown(reason)
        if record is not None:
            self._spawn(self._finish_teardown_logged(record))

    async def _begin_teardown(self, reason: str) -> TerminatedWorker | None:
        async with self._state_lock:
            if self._down:
                logger.debug(
                    f"Worker {self.worker_id[:8]} already down - ignoring teardown ({reason})"
                )
                return None
            self._down = True
            session = self.current_session
            self.current_session = None

        now = datetime.now(UTC)
        record = TerminatedWorker(
            worker_id=self.worker_id,
            container_id=self.container_id,
            session_id=session.session_id if session else None,
            test_name=self.test_name,
            test_group=self.test_group,
            termination_reason=reason,
            termination_time=now,
            session_duration_seconds=(
                (now - session.started_at).total_seconds() if session else None
            ),
        )
        self.termination = record
        logger.info(
            f"Tearing down worker {self.worker_id[:8]} | Reason: {reason} | "
            f"Container: {(self.container_id or 'unbound')[:12]}"
        )
        return record

    async def _finish_teardown(self, record: TerminatedWorker):
        label = self.test_name or record.session_id or self.worker_id
        videos = await self.recorder.video_recording(
            ContainerAction.STOP_RECORDING, self.container_id, label=label
        )
        record.video_files = [str(path) for path in videos]

        record.container_stopped = await self._stop_container()

        if self.callback_url:
            await notify_worker_terminated(
                self.callback_url,
                record.model_dump(mode="json"),
                timeout=self.callback_timeout,
            )

        logger.info(
            f"Worker {self.worker_id[:8]} is down | Reason: {record.termination_reason} | "
            f"Container stopped: {record.container_stopped} | Videos: {len(record.video_files)}"
        )

    async def _finish_teardown_logged(self, record: TerminatedWorker):
        try:
            await self._finish_teardown(record)
        except Exception as e:
            logger.error(
                f"Error finishing teardown | Worker: {self.worker_id[:8]} | Error: {e}",
                exc_info=True,
            )

    async def _stop_container(self) -> bool:
        container_id = self.container_id
        if not container_id:
            logger.warning(f"Worker {self.worker_id[:8]} has no container to stop")
            return False

        try:
            await self.engine.stop_container(container_id, self.stop_timeout)
        except (DockerException, OSError, asyncio.TimeoutError) as e:
            # The engine's auto-remove policy cleans up whatever is left
            logger.error(
                f"Failed to stop container {container_id[:12]} | Worker: {self.worker_id[:8]} | Error: {e}"
            )
            return False

        logger.info(
            f"Container {container_id[:12]} stopped | Timeout: {self.stop_timeout}s"
        )
        return True

    def _spawn(self, coro: Coroutine):
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def shutdown(self):
        """Tear down if still up, then wait for the watchdog and background work"""
        await self.teardown("shutdown")

        if self._poller_task and not self._poller_task.done():
            self._poller_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._poller_task

        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
