import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (parent of browser_worker directory)
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path, override=True)

VIDEO_RECORDING_ENABLED_ENV = "VIDEO_RECORDING_ENABLED"
DEFAULT_VIDEO_RECORDING_ENABLED = True
DEFAULT_IDLE_TIMEOUT_SECONDS = 90


class Settings:
    environment: str = os.getenv("ENV", "local")  # local, staging, production

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str | None = os.getenv("LOG_FILE") or None

    # Idle watchdog
    default_idle_timeout_seconds: int = int(
        os.getenv("DEFAULT_IDLE_TIMEOUT_SECONDS", str(DEFAULT_IDLE_TIMEOUT_SECONDS))
    )
    poll_interval_seconds: float = float(os.getenv("POLL_INTERVAL_SECONDS", "5"))

    # Container engine
    container_stop_timeout_seconds: int = int(
        os.getenv("CONTAINER_STOP_TIMEOUT_SECONDS", "5")
    )

    # Video recording
    videos_dir: str = os.getenv("VIDEOS_DIR", "/tmp/videos")
    container_videos_path: str = os.getenv("CONTAINER_VIDEOS_PATH", "/videos/")

    worker_callback_enabled: bool = (
        os.getenv("WORKER_CALLBACK_ENABLED", "false").lower() == "true"
    )
    worker_callback_url: str = os.getenv("WORKER_CALLBACK_URL", "")
    worker_callback_timeout: int = int(os.getenv("WORKER_CALLBACK_TIMEOUT", "30"))

    # Bootstrap (set by the starter that created the container)
    container_id: str = os.getenv("CONTAINER_ID", "")
    worker_capabilities: str = os.getenv(
        "WORKER_CAPABILITIES",
        '[{"browserName": "chrome", "platform": "LINUX"}, '
        '{"browserName": "firefox", "platform": "LINUX"}]',
    )
    worker_host: str = os.getenv("WORKER_HOST", "0.0.0.0")
    worker_port: int = int(os.getenv("WORKER_PORT", "5555"))


settings = Settings()
