# tests/conftest.py
"""
Pytest fixtures: a mocked docker API client and worker builders.
"""

from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from browser_worker.core.environment import Environment
from browser_worker.utils.docker_client import ContainerEngine
from browser_worker.workers.container_worker import ContainerWorker
from support import CONTAINER_ID, DECLARED_CAPABILITIES, make_archive


@pytest.fixture
def docker_api():
    """Stands in for docker.APIClient"""
    api = MagicMock()
    api.exec_create.return_value = {"Id": "ANY_ID"}
    api.exec_start.return_value = b"ANY_STRING"
    api.exec_inspect.return_value = {"ExitCode": 0}
    api.stop.return_value = None
    api.get_archive.side_effect = lambda container, path: (
        iter([make_archive({"videos/recording.mp4": b"\x00\x00\x00\x18ftypmp42"})]),
        {"name": "videos", "size": 4096},
    )
    return api


@pytest.fixture
def engine(docker_api):
    return ContainerEngine(client=docker_api)


@pytest.fixture
def environment():
    return Environment({"VIDEO_RECORDING_ENABLED": "true"})


@pytest.fixture
def videos_dir(tmp_path):
    return tmp_path / "videos"


@pytest_asyncio.fixture
async def make_worker(engine, environment, videos_dir):
    """Build workers against the mocked engine; all are shut down afterwards"""
    created: list[ContainerWorker] = []

    def _make(capabilities=None, **options) -> ContainerWorker:
        options.setdefault("container_id", CONTAINER_ID)
        options.setdefault("engine", engine)
        options.setdefault("environment", environment)
        options.setdefault("poll_interval", 0.1)
        options.setdefault("stop_timeout", 5)
        options.setdefault("videos_dir", videos_dir)
        options.setdefault("container_videos_path", "/videos/")
        options.setdefault("callback_url", "")
        worker = ContainerWorker(capabilities or DECLARED_CAPABILITIES, **options)
        created.append(worker)
        return worker

    yield _make

    for worker in created:
        await worker.shutdown()


@pytest_asyncio.fixture
async def worker(make_worker):
    return make_worker()
