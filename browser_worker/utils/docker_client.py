"""Container engine access through the docker SDK"""

import asyncio
import io
import os
import re
import tarfile
import threading
from pathlib import Path

import docker
from docker.errors import DockerException

from .logger import get_logger

logger = get_logger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


def safe_file_name(value: str) -> str:
    """Replace anything that is not safe in a file name with '_'"""
    return _SAFE_NAME.sub("_", value).strip("._") or "unnamed"


class ContainerEngine:
    """
    Thin async adapter over the low-level docker API client.

    All docker SDK calls are blocking; each one runs in a worker thread so the
    event loop keeps serving command hooks while the engine is busy.
    """

    def __init__(self, client: docker.APIClient | None = None):
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def client(self) -> docker.APIClient:
        # Lazy init so a worker can be built before the daemon is reachable
        if self._client is not None:
            return self._client

        with self._client_lock:
            if self._client is None:
                self._client = docker.from_env().api
                logger.info("Docker API client initialized")
        return self._client

    def _exec_sync(self, container_id: str, command: list[str]) -> tuple[int | None, str]:
        execution = self.client.exec_create(
            container_id, command, stdout=True, stderr=True
        )
        exec_id = execution["Id"]
        output = self.client.exec_start(exec_id)
        exit_code = self.client.exec_inspect(exec_id).get("ExitCode")
        if isinstance(output, bytes):
            output = output.decode("utf-8", errors="replace")
        return exit_code, output or ""

    async def exec_command(
        self, container_id: str, command: list[str]
    ) -> tuple[int | None, str]:
        """
        Run a one-shot command inside the container.

        Returns:
            Tuple of (exit_code, output); exit_code is None when the engine did
            not report one
        """
        logger.debug(f"Exec in container {container_id[:12]} | Command: {command}")
        return await asyncio.to_thread(self._exec_sync, container_id, command)

    async def stop_container(self, container_id: str, timeout: int) -> None:
        """Graceful stop; the daemon kills the container after `timeout` seconds"""
        # Give the HTTP call some slack over the daemon-side timeout
        await asyncio.wait_for(
            asyncio.to_thread(self.client.stop, container_id, timeout=timeout),
            timeout=timeout + 10,
        )

    def _copy_sync(
        self, container_id: str, container_path: str, dest_dir: Path, prefix: str
    ) -> list[Path]:
        bits, _stat = self.client.get_archive(container_id, container_path)
        data = b"".join(bits)

        dest_dir.mkdir(parents=True, exist_ok=True)
        copied: list[Path] = []
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
            for member in tar.getmembers():
                if not member.isfile():
                    continue
                source = tar.extractfile(member)
                if source is None:
                    continue
                file_name = os.path.basename(member.name)
                if prefix:
                    file_name = f"{safe_file_name(prefix)}_{file_name}"
                target = dest_dir / file_name
                with source, open(target, "wb") as out:
                    out.write(source.read())
                copied.append(target)
        return copied

    async def copy_from_container(
        self,
        container_id: str,
        container_path: str,
        dest_dir: str | Path,
        prefix: str = "",
    ) -> list[Path]:
        """
        Copy the regular files under `container_path` to `dest_dir`.

        Directory structure inside the archive is flattened; each file keeps its
        base name, prefixed with `prefix` when one is given.
        """
        return await asyncio.to_thread(
            self._copy_sync, container_id, container_path, Path(dest_dir), prefix
        )


__all__ = ["ContainerEngine", "DockerException", "safe_file_name"]
