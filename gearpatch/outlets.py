# gearpatch/outlets.py
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import aiohttp
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .exceptions import NodeExecutionError
from .security import AbortSignal, run_with_signal, validate_http_url

logger = logging.getLogger("gearpatch.outlets")


class HttpOutlet:
    """POSTs a node's input to a guarded URL and returns the response body.

    A shared aiohttp session may be injected; otherwise one is opened per call.
    Redirects are not followed, so a 3xx cannot bounce the request past the
    egress guard.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, allowed_hosts: Optional[List[str]] = None):
        self.session = session
        self.allowed_hosts = allowed_hosts

    def build_body(self, node_id: str, data: Any) -> Dict[str, Any]:
        return {
            "source_gear": {"id": node_id},
            "message_id": str(uuid.uuid4()),
            "data": data,
        }

    async def post(self, node_id: str, url: str, data: Any, signal: AbortSignal, max_attempts: int = 1) -> Any:
        validate_http_url(url, self.allowed_hosts)
        body = self.build_body(node_id, data)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                retry=retry_if_exception_type(aiohttp.ClientError),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info("Retrying %s (attempt %d)", url, attempt.retry_state.attempt_number)
                    return await run_with_signal(self._send(url, body), signal)
        except aiohttp.ClientError as e:
            raise NodeExecutionError(f"Request to {url} failed: {e}") from e

    async def _send(self, url: str, body: Dict[str, Any]) -> Any:
        if self.session is not None:
            return await self._request(self.session, url, body)
        async with aiohttp.ClientSession() as session:
            return await self._request(session, url, body)

    async def _request(self, session: aiohttp.ClientSession, url: str, body: Dict[str, Any]) -> Any:
        async with session.post(
            url,
            json=body,
            headers={"Content-Type": "application/json"},
            allow_redirects=False,
        ) as resp:
            text = await resp.text()
            if not 200 <= resp.status < 300:
                logger.error("Error response from %s: %s %s", url, resp.status, text)
                raise NodeExecutionError(f"HTTP error! status: {resp.status} - {text}")
            if resp.content_type == "application/json" and text:
                return json.loads(text)
            return text
