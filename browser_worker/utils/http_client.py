"""HTTP client utilities for the worker status callback"""

import asyncio
from typing import Any

import aiohttp

from ..utils.logger import get_logger

logger = get_logger(__name__)


async def send_post_request(
    url: str,
    data: dict[str, Any],
    timeout: int = 30,
    headers: dict[str, str] | None = None,
) -> tuple[bool, int | None, str]:
    """
    Send async POST request to URL

    Args:
        url: Target URL
        data: JSON data to send
        timeout: Request timeout in seconds (default: 30)
        headers: Optional HTTP headers

    Returns:
        Tuple of (success: bool, status_code: int | None, response_text: str)
    """
    if not url:
        logger.warning("Empty URL provided to send_post_request")
        return False, None, "Empty URL"

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                url,
                json=data,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                response_text = await response.text()
                success = 200 <= response.status < 300

                if success:
                    logger.debug(
                        f"POST request successful | URL: {url} | Status: {response.status}"
                    )
                else:
                    logger.warning(
                        f"POST request failed | URL: {url} | Status: {response.status} | Response: {response_text[:200]}"
                    )

                return success, response.status, response_text

    except asyncio.TimeoutError:
        logger.error(f"POST request timeout after {timeout}s | URL: {url}")
        return False, None, f"Timeout after {timeout}s"

    except aiohttp.ClientError as e:
        logger.error(f"POST request client error | URL: {url} | Error: {e}")
        return False, None, f"Client error: {str(e)}"


async def notify_worker_terminated(
    url: str, record: dict[str, Any], timeout: int = 30
) -> bool:
    """Post a worker termination record to the registry callback URL"""
    success, status_code, _ = await send_post_request(url, record, timeout=timeout)
    if success:
        logger.info(
            f"Termination callback delivered | Worker: {str(record.get('worker_id', ''))[:8]} | Status: {status_code}"
        )
    return success
