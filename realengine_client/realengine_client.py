import time
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger
from yarl import URL

from realengine_client.exchange import RequestExchanger
from realengine_client.handle import ResultHandle
from realengine_client.lifecycle import Operation, TaskLifecycle
from realengine_client.models import ClientConfig
from realengine_client.scheduler import LoopScheduler, Scheduler


class RealEngineClient:
    def __init__(
        self,
        config: ClientConfig,
        session: Optional[aiohttp.ClientSession] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        if config is None:
            raise ValueError("config must not be None")
        self.config = config
        self.root_url = URL(config.root_url)
        self.scheduler = scheduler or LoopScheduler()
        self.logger = logger
        self._session = session
        self._owns_session = session is None
        self._exchanger: Optional[RequestExchanger] = None

    async def __aenter__(self) -> "RealEngineClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
        self._exchanger = None

    def _create_session(self) -> aiohttp.ClientSession:
        """Builds the shared session from the configured timeouts and limits"""
        timeout = aiohttp.ClientTimeout(
            sock_connect=self.config.connect_timeout,
            sock_read=self.config.read_timeout,
        )
        connector = aiohttp.TCPConnector(
            limit=self.config.max_concurrent_requests,
            limit_per_host=self.config.max_concurrent_requests,
            keepalive_timeout=self.config.keepalive_timeout,
        )
        return aiohttp.ClientSession(timeout=timeout, connector=connector)

    def _get_exchanger(self) -> RequestExchanger:
        if self._exchanger is None:
            if self._session is None:
                self._session = self._create_session()
                self._owns_session = True
            self._exchanger = RequestExchanger(
                self._session,
                self.root_url,
                self.config.token,
                default_retry_after_ms=self.config.default_wait_ms,
            )
        return self._exchanger

    def build_url(self, path: str, query_params: Optional[Dict[str, Any]] = None) -> URL:
        """Appends ``path`` segments to the root URL and adds the query"""
        url = self.root_url
        for segment in path.strip("/").split("/"):
            if segment:
                url = url / segment
        if query_params:
            url = url.update_query({k: str(v) for k, v in query_params.items()})
        return url

    def submit(
        self,
        path: str,
        query_params: Optional[Dict[str, Any]] = None,
        *,
        data_type: Any = Any,
        deadline: Optional[float] = None,
    ) -> ResultHandle:
        """Starts one operation against ``path`` and returns its handle.

        Must be called with a running event loop. The returned handle resolves
        to the envelope's ``data`` decoded as ``data_type``.
        """
        params = {k: str(v) for k, v in (query_params or {}).items()}
        operation = Operation(
            url=self.build_url(path, params),
            query_params=params,
            deadline=deadline,
        )
        lifecycle: TaskLifecycle = TaskLifecycle(
            operation,
            self._get_exchanger(),
            self.scheduler,
            max_retries=self.config.max_retries,
            data_type=data_type,
            default_wait_ms=self.config.default_wait_ms,
            max_base_wait_ms=self.config.max_base_wait_ms,
        )
        self.logger.debug(f"Submitting {operation.url}")
        return lifecycle.start()

    def get_caption(self, url: str) -> ResultHandle:
        """Requests a caption for the image at ``url``"""
        deadline = time.time() + self.config.caption_deadline
        return self.submit(
            "caption",
            {"url": url, "deadline": int(deadline * 1000)},
            data_type=str,
            deadline=deadline,
        )
