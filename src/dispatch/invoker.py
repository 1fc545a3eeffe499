"""
Agent invocation boundary.

The wire protocol used to reach agents belongs to the embedding host; the
coordinator only needs an object with an async invoke(agent_id, payload).
"""

from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import httpx

from core.errors import DispatchFailure


class AgentInvoker(Protocol):
    """Calls one agent endpoint with a task payload"""

    async def invoke(self, agent_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


class CallableInvoker:
    """Adapts a plain async function to the AgentInvoker interface"""

    def __init__(self, func: Callable[[str, Dict[str, Any]], Awaitable[Dict[str, Any]]]):
        self.func = func

    async def invoke(self, agent_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.func(agent_id, payload)


def check_response(agent_id: str, response: Any) -> Optional[Any]:
    """
    Validate an agent response.

    A dict carrying a non-2xx status_code, or an "error" key, is a failure.

    Raises:
        DispatchFailure: Response signals an agent-side error
    """
    if isinstance(response, dict):
        status_code = response.get("status_code")
        if status_code is not None and not 200 <= int(status_code) < 300:
            raise DispatchFailure(agent_id, f"agent returned HTTP {status_code}")
        if response.get("error"):
            raise DispatchFailure(agent_id, str(response["error"]))
    return response


class HttpInvoker:
    """
    Invokes agents by POSTing the task payload as JSON.

    The endpoint for an agent comes from a resolver (typically the manifest
    registry). Timeouts are imposed by the coordinator, not here.
    """

    def __init__(
        self,
        resolve_endpoint: Callable[[str], Optional[str]],
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize HTTP invoker.

        Args:
            resolve_endpoint: Maps agent id to its URL (None if unknown)
            client: Shared httpx.AsyncClient (created lazily if omitted)
        """
        self.resolve_endpoint = resolve_endpoint
        self.client = client

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient()
        return self.client

    async def invoke(self, agent_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = self.resolve_endpoint(agent_id)
        if not url:
            raise DispatchFailure(agent_id, "no endpoint configured")

        client = await self._ensure_client()
        try:
            response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise DispatchFailure(agent_id, f"{type(e).__name__}: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {"text": response.text}

        return {"status_code": response.status_code, "body": body}

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None
