"""Screen recording inside the worker container, keyed to session boundaries"""

import asyncio
import tarfile
from pathlib import Path

from ..core.config import settings
from ..session.models import ContainerAction, RecordingState
from ..utils.docker_client import ContainerEngine, DockerException
from ..utils.logger import get_logger

logger = get_logger(__name__)


class VideoRecorder:
    """
    NOT_STARTED -> RECORDING -> STOPPED, driven by START_RECORDING and
    STOP_RECORDING.

    Every requested action is appended to `actions`, but the container is only
    touched when recording is enabled and the transition is valid.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        globally_enabled: bool = True,
        videos_dir: str | Path | None = None,
        container_videos_path: str | None = None,
    ):
        self.engine = engine
        self.globally_enabled = globally_enabled
        self.videos_dir = Path(videos_dir or settings.videos_dir)
        self.container_videos_path = (
            container_videos_path or settings.container_videos_path
        )

        self.state = RecordingState.NOT_STARTED
        self.actions: list[ContainerAction] = []
        self.video_files: list[Path] = []

        self._session_enabled = True
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.globally_enabled and self._session_enabled

    def configure_for_session(self, record_video: bool):
        self._session_enabled = record_video
        if self.globally_enabled and not record_video:
            logger.info("Video recording disabled by session capability")

    async def video_recording(
        self, action: ContainerAction, container_id: str | None, label: str = ""
    ) -> list[Path]:
        """
        Apply a recording action.

        Returns the video files retrieved from the container (only ever non-empty
        for a STOP_RECORDING that ends an active recording).
        """
        self.actions.append(action)

        async with self._lock:
            previous = self.state
            if action == ContainerAction.START_RECORDING:
                run = self.enabled and previous == RecordingState.NOT_STARTED
                if run:
                    self.state = RecordingState.RECORDING
            else:
                run = previous == RecordingState.RECORDING
                self.state = RecordingState.STOPPED

        if not run:
            logger.debug(
                f"Recording action {action.name} skipped | Enabled: {self.enabled} | State: {previous.value}"
            )
            return []

        if not container_id:
            logger.warning(f"Recording action {action.name} skipped - no container bound")
            return []

        await self.process_container_action(action, container_id)

        if action == ContainerAction.STOP_RECORDING:
            self.video_files = await self.copy_videos(container_id, label)
            return self.video_files
        return []

    async def process_container_action(
        self, action: ContainerAction, container_id: str
    ) -> bool:
        try:
            exit_code, output = await self.engine.exec_command(
                container_id, action.command
            )
        except (DockerException, OSError, asyncio.TimeoutError) as e:
            logger.error(
                f"Recording action {action.name} failed | Container: {container_id[:12]} | Error: {e}"
            )
            return False

        if exit_code not in (0, None):
            logger.warning(
                f"Recording action {action.name} exited with {exit_code} | "
                f"Container: {container_id[:12]} | Output: {output.strip()[:200]}"
            )
            return False

        logger.info(f"Recording action {action.name} done | Container: {container_id[:12]}")
        return True

    async def copy_videos(self, container_id: str, label: str = "") -> list[Path]:
        """Retrieve the recorded videos into the host video directory"""
        try:
            copied = await self.engine.copy_from_container(
                container_id, self.container_videos_path, self.videos_dir, prefix=label
            )
        except (DockerException, OSError, asyncio.TimeoutError, tarfile.TarError) as e:
            logger.error(
                f"Video retrieval failed | Container: {container_id[:12]} | Error: {e}"
            )
            return []

        if copied:
            logger.info(
                f"Copied {len(copied)} video file(s) to {self.videos_dir} | Container: {container_id[:12]}"
            )
        else:
            logger.warning(f"No video files found in container {container_id[:12]}")
        return copied
