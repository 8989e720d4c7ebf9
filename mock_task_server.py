import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from aiohttp import web
from loguru import logger


@dataclass
class ScriptedResponse:
    status: int = 200
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class RecordedRequest:
    method: str
    path: str
    query: Dict[str, str]
    headers: Dict[str, str]


class MockTaskServer:
    """Answers every request with the next scripted response, in order"""

    def __init__(self):
        self.responses: Deque[ScriptedResponse] = deque()
        self.requests: List[RecordedRequest] = []
        self.app = web.Application()
        self.app.router.add_route("*", "/{tail:.*}", self.handle_request)
        self.logger = logger
        self.runner: Optional[web.AppRunner] = None
        self.port: Optional[int] = None

    @property
    def root_url(self) -> str:
        return f"http://127.0.0.1:{self.port}/"

    def enqueue(
        self,
        status: int = 200,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.responses.append(ScriptedResponse(status, body, dict(headers or {})))

    async def handle_request(self, request: web.Request) -> web.Response:
        self.requests.append(
            RecordedRequest(
                method=request.method,
                path=request.path,
                query=dict(request.query),
                headers=dict(request.headers),
            )
        )
        if not self.responses:
            self.logger.info(f"No scripted response left for {request.path_qs}")
            return web.json_response(
                {"success": False, "error": {"id": "mock", "message": "no response scripted"}},
                status=404,
            )

        scripted = self.responses.popleft()
        self.logger.info(f"Returning {scripted.status} for {request.path_qs}")
        body = scripted.body
        if body is not None and not isinstance(body, (str, bytes)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode()
        return web.Response(
            status=scripted.status,
            body=body,
            headers=scripted.headers,
            content_type="application/json",
        )

    async def start(self, port: int = 0) -> web.TCPSite:
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "127.0.0.1", port)
        await site.start()
        self.port = self.runner.addresses[0][1]
        self.logger.info(f"Server started on port {self.port}")
        return site

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
