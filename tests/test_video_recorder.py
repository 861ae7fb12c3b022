import pytest
from docker.errors import APIError

from browser_worker.core.config import (
    DEFAULT_VIDEO_RECORDING_ENABLED,
    VIDEO_RECORDING_ENABLED_ENV,
)
from browser_worker.core.environment import Environment
from browser_worker.session.models import (
    CommandRequest,
    ContainerAction,
    RecordingState,
    RequestType,
)
from browser_worker.workers.video_recorder import VideoRecorder
from support import CONTAINER_ID, chrome_on_linux

START = CommandRequest(method="POST", request_type=RequestType.START_SESSION)
STOP = CommandRequest(method="DELETE", request_type=RequestType.STOP_SESSION)


def exec_commands(docker_api) -> list[list[str]]:
    return [call.args[1] for call in docker_api.exec_create.call_args_list]


@pytest.mark.asyncio
async def test_video_recording_is_started_and_stopped(worker, docker_api, videos_dir):
    session = await worker.request_session(chrome_on_linux(name="loginTest"))

    await worker.on_before_command(session, START)

    assert worker.recorder.actions == [ContainerAction.START_RECORDING]
    assert worker.recorder.state == RecordingState.RECORDING
    docker_api.exec_create.assert_called_once_with(
        CONTAINER_ID, ["bash", "-c", "start-video"], stdout=True, stderr=True
    )

    await worker.on_after_command(session, STOP)
    await worker.shutdown()

    assert worker.recorder.actions == [
        ContainerAction.START_RECORDING,
        ContainerAction.STOP_RECORDING,
    ]
    assert worker.recorder.state == RecordingState.STOPPED
    assert exec_commands(docker_api) == [
        ["bash", "-c", "start-video"],
        ["bash", "-c", "stop-video"],
    ]
    docker_api.get_archive.assert_called_once_with(CONTAINER_ID, "/videos/")
    assert (videos_dir / "loginTest_recording.mp4").exists()
    assert worker.termination.video_files == [str(videos_dir / "loginTest_recording.mp4")]
    docker_api.stop.assert_called_once()


@pytest.mark.asyncio
async def test_start_marker_only_records_once(worker, docker_api):
    session = await worker.request_session(chrome_on_linux())

    await worker.on_before_command(session, START)
    await worker.on_before_command(session, START)

    assert len(worker.recorder.actions) == 2
    assert docker_api.exec_create.call_count == 1


@pytest.mark.asyncio
async def test_video_recording_is_disabled(make_worker, docker_api):
    worker = make_worker(environment=Environment({VIDEO_RECORDING_ENABLED_ENV: "false"}))
    session = await worker.request_session(chrome_on_linux())

    await worker.on_before_command(session, START)
    await worker.on_after_command(session, STOP)
    await worker.shutdown()

    assert worker.recorder.actions == [
        ContainerAction.START_RECORDING,
        ContainerAction.STOP_RECORDING,
    ]
    docker_api.exec_create.assert_not_called()
    docker_api.get_archive.assert_not_called()
    docker_api.stop.assert_called_once()


@pytest.mark.asyncio
@pytest.mark.parametrize("record_video", [False, "false", "FALSE"])
async def test_video_recording_is_disabled_via_capability(worker, docker_api, record_video):
    session = await worker.request_session(chrome_on_linux(recordVideo=record_video))

    assert session is not None
    assert worker.video_recording_enabled is False

    await worker.on_before_command(session, START)
    docker_api.exec_create.assert_not_called()


@pytest.mark.asyncio
async def test_record_video_defaults_to_true(worker):
    await worker.request_session(chrome_on_linux(recordVideo="yes please"))

    assert worker.video_recording_enabled is True


def test_fallback_to_default_value_when_env_variable_is_not_a_boolean():
    environment = Environment({VIDEO_RECORDING_ENABLED_ENV: "any_nonsense_value"})

    assert (
        environment.get_bool_env_variable(
            VIDEO_RECORDING_ENABLED_ENV, DEFAULT_VIDEO_RECORDING_ENABLED
        )
        == DEFAULT_VIDEO_RECORDING_ENABLED
    )


@pytest.mark.parametrize(
    "value, expected", [("true", True), ("False", False), (" TRUE ", True), (None, True)]
)
def test_boolean_env_variable_parsing(value, expected):
    variables = {} if value is None else {"FLAG": value}

    assert Environment(variables).get_bool_env_variable("FLAG", True) is expected


@pytest.mark.asyncio
async def test_recording_failure_does_not_block_teardown(worker, docker_api):
    docker_api.exec_create.side_effect = APIError("exec failed")
    session = await worker.request_session(chrome_on_linux())

    await worker.on_before_command(session, START)
    assert await worker.teardown("session_stopped") is True

    assert worker.is_down()
    docker_api.stop.assert_called_once()


@pytest.mark.asyncio
async def test_archive_failure_is_logged_not_raised(worker, docker_api):
    docker_api.get_archive.side_effect = APIError("no such path")
    session = await worker.request_session(chrome_on_linux())

    await worker.on_before_command(session, START)
    await worker.teardown()

    assert worker.termination.video_files == []
    assert worker.termination.container_stopped is True


@pytest.mark.asyncio
async def test_non_zero_exit_code_is_reported(engine, docker_api):
    docker_api.exec_inspect.return_value = {"ExitCode": 1}
    recorder = VideoRecorder(engine)

    assert (
        await recorder.process_container_action(
            ContainerAction.START_RECORDING, CONTAINER_ID
        )
        is False
    )


@pytest.mark.asyncio
async def test_stop_without_start_skips_container(engine, docker_api, videos_dir):
    recorder = VideoRecorder(engine, videos_dir=videos_dir)

    files = await recorder.video_recording(ContainerAction.STOP_RECORDING, CONTAINER_ID)

    assert files == []
    assert recorder.state == RecordingState.STOPPED
    docker_api.exec_create.assert_not_called()
    docker_api.get_archive.assert_not_called()

    await recorder.video_recording(ContainerAction.START_RECORDING, CONTAINER_ID)
    assert recorder.state == RecordingState.STOPPED
    docker_api.exec_create.assert_not_called()
