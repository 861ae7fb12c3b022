import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RequestType(str, Enum):
    START_SESSION = "START_SESSION"
    STOP_SESSION = "STOP_SESSION"
    REGULAR = "REGULAR"


class RecordingState(str, Enum):
    NOT_STARTED = "not_started"
    RECORDING = "recording"
    STOPPED = "stopped"


class ContainerAction(str, Enum):
    """In-container commands driven by session boundaries"""

    START_RECORDING = "start-video"
    STOP_RECORDING = "stop-video"

    @property
    def command(self) -> list[str]:
        return ["bash", "-c", self.value]


class CommandRequest(BaseModel):
    """An automation command as classified by the routing layer"""

    method: str
    request_type: RequestType = RequestType.REGULAR
    path: str | None = None

    def is_session_start(self) -> bool:
        return (
            self.method.upper() == "POST"
            and self.request_type == RequestType.START_SESSION
        )

    def is_session_stop(self) -> bool:
        return (
            self.method.upper() == "DELETE"
            and self.request_type == RequestType.STOP_SESSION
        )


class TestSession(BaseModel):
    __test__ = False  # not a pytest test class

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    worker_id: str
    requested_capabilities: dict[str, Any] = Field(default_factory=dict)
    name: str | None = None
    group: str | None = None
    idle_timeout_seconds: float
    record_video: bool = True
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_activity_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class WorkerStatus(BaseModel):
    worker_id: str
    container_id: str | None = None
    busy: bool
    down: bool
    tests_executed: int
    session_limit_reached: bool
    max_idle_seconds: float
    idle_seconds: float
    recording_state: RecordingState
    video_recording_enabled: bool
    session_id: str | None = None
    test_name: str | None = None
    test_group: str | None = None


class TerminatedWorker(BaseModel):
    """Information about a worker after its one-time teardown"""

    worker_id: str
    container_id: str | None = None
    session_id: str | None = None
    test_name: str | None = None
    test_group: str | None = None
    termination_reason: str
    termination_time: datetime = Field(default_factory=lambda: datetime.now(UTC))
    session_duration_seconds: float | None = None
    container_stopped: bool = False
    video_files: list[str] = Field(default_factory=list)
