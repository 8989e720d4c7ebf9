import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

from loguru import logger
from yarl import URL

from realengine_client.backoff import compute_delay_ms
from realengine_client.exceptions import (
    ProtocolError,
    RemoteError,
    RetryBudgetExhausted,
)
from realengine_client.exchange import (
    Decoded,
    Outcome,
    Pending,
    RequestExchanger,
    Retryable,
    TransportFailure,
)
from realengine_client.handle import ResultHandle
from realengine_client.scheduler import Scheduler

T = TypeVar("T")


class LifecycleState(str, enum.Enum):
    dispatching = "dispatching"
    retrying = "retrying"
    polling = "polling"
    completed = "completed"
    failed = "failed"


@dataclass
class Operation:
    """One logical call; the retry counter is only touched from loop callbacks"""

    url: URL
    query_params: Dict[str, str] = field(default_factory=dict)
    deadline: Optional[float] = None  # epoch seconds, advisory
    retry_count: int = 0

    @property
    def path(self) -> str:
        return self.url.raw_path


class TaskLifecycle(Generic[T]):
    """Drives one Operation from its first dispatch to a terminal state.

    Each exchange runs in its own task; its outcome is handled in a done
    callback that either resolves the handle or schedules the next dispatch on
    the scheduler. Only one exchange per operation is ever outstanding.
    """

    def __init__(
        self,
        operation: Operation,
        exchanger: RequestExchanger,
        scheduler: Scheduler,
        max_retries: int,
        data_type: Any = Any,
        default_wait_ms: Optional[int] = None,
        max_base_wait_ms: Optional[int] = None,
    ):
        self.operation = operation
        self.exchanger = exchanger
        self.scheduler = scheduler
        self.max_retries = max_retries
        self.data_type = data_type
        self.attempts = 0
        self.state = LifecycleState.dispatching
        self.logger = logger
        self._backoff_kwargs: Dict[str, int] = {}
        if default_wait_ms is not None:
            self._backoff_kwargs["default_wait_ms"] = default_wait_ms
        if max_base_wait_ms is not None:
            self._backoff_kwargs["max_base_wait_ms"] = max_base_wait_ms
        self._handle: Optional[ResultHandle[T]] = None

    def start(self) -> ResultHandle[T]:
        if self._handle is not None:
            raise RuntimeError("lifecycle already started")
        self._handle = ResultHandle()
        self._dispatch(self.operation.url)
        return self._handle

    def _dispatch(self, url: URL) -> None:
        """Starts the next exchange and binds it to the handle"""
        if self._handle.done():
            return
        self.state = LifecycleState.dispatching
        self.attempts += 1
        task = asyncio.ensure_future(self.exchanger.exchange(url, self.data_type))
        self._handle.bind(task)
        task.add_done_callback(self._on_exchange_done)

    def _on_exchange_done(self, task: "asyncio.Future[Outcome]") -> None:
        if self._handle.done():
            return
        if task.cancelled():
            self._handle.cancel()
            return
        error = task.exception()
        if error is not None:
            self._fail(error)
            return
        self._transition(task.result())

    def _transition(self, outcome: Outcome) -> None:
        """Applies one exchange outcome: retry, poll, complete or fail"""
        operation = self.operation

        if isinstance(outcome, Retryable):
            if operation.retry_count >= self.max_retries:
                self._fail(RetryBudgetExhausted(outcome.status, outcome.path))
                return
            operation.retry_count += 1
            delay = compute_delay_ms(operation.retry_count, **self._backoff_kwargs)
            self.state = LifecycleState.retrying
            self.logger.debug(
                f"Got {outcome.status} at {outcome.path}, retrying in {delay}ms "
                f"(attempt {operation.retry_count}/{self.max_retries})"
            )
            self._schedule(delay, operation.url)
            return

        if isinstance(outcome, Pending):
            operation.retry_count = 0
            delay = compute_delay_ms(0, outcome.retry_after_ms)
            self.state = LifecycleState.polling
            self.logger.debug(
                f"Task at {outcome.path} not ready, polling {outcome.location} in {delay}ms"
            )
            self._schedule(delay, outcome.location)
            return

        if isinstance(outcome, Decoded):
            envelope = outcome.envelope
            if envelope.success:
                self.state = LifecycleState.completed
                self._handle.set_result(envelope.data)
            elif envelope.error is None:
                self._fail(
                    ProtocolError(
                        "response not successful but error is null",
                        outcome.status,
                        outcome.path,
                    )
                )
            else:
                self._fail(
                    RemoteError.from_error_info(
                        envelope.error, outcome.status, outcome.path
                    )
                )
            return

        if isinstance(outcome, TransportFailure):
            self._fail(outcome.cause)
            return

        self._fail(TypeError(f"Unexpected exchange outcome: {outcome!r}"))

    def _schedule(self, delay_ms: int, url: URL) -> None:
        """Schedules a dispatch to ``url`` after ``delay_ms``"""
        timer = self.scheduler.schedule(delay_ms, lambda: self._dispatch(url))
        self._handle.bind(timer)

    def _fail(self, error: BaseException) -> None:
        self.state = LifecycleState.failed
        self.logger.debug(
            f"Operation {self.operation.path} failed after {self.attempts} attempts: {error!r}"
        )
        self._handle.set_exception(error)
