"""Shared constants and helpers for the test suite"""

import asyncio
import io
import tarfile
import time

CONTAINER_ID = "3f1c2a9be0d4c8a7f6e5d4c3b2a10987"

DECLARED_CAPABILITIES = [
    {"browserName": "chrome", "platform": "LINUX"},
    {"browserName": "firefox", "platform": "LINUX"},
]


def chrome_on_linux(**extra) -> dict:
    return {"browserName": "chrome", "platform": "LINUX", **extra}


def make_archive(files: dict[str, bytes], directories: tuple[str, ...] = ("videos",)) -> bytes:
    """Build a tar archive the way the docker daemon returns a directory"""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for directory in directories:
            info = tarfile.TarInfo(directory)
            info.type = tarfile.DIRTYPE
            tar.addfile(info)
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.05) -> bool:
    """Poll `predicate` until it is true or `timeout` seconds have passed"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return bool(predicate())
