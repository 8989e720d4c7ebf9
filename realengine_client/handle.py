import asyncio
from typing import Any, Callable, Generator, Generic, Optional, TypeVar

from realengine_client.scheduler import Cancellable

T = TypeVar("T")


class ResultHandle(Generic[T]):
    """Single-assignment result of one operation.

    Awaiting the handle yields the result or raises the failure. Cancelling it
    also cancels whatever unit of work is currently bound: the in-flight
    exchange task or the timer of the next retry/poll.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future = loop.create_future()
        self._work: Optional[Cancellable] = None
        self._future.add_done_callback(self._on_done)

    def bind(self, work: Cancellable) -> None:
        """Make ``work`` the unit cancelled along with this handle"""
        if self._future.cancelled():
            work.cancel()
            return
        self._work = work

    def set_result(self, value: T) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def set_exception(self, error: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(error)
        return True

    def cancel(self) -> bool:
        # Runs the observer synchronously so the bound work stops right away
        # rather than on the next loop iteration.
        cancelled = self._future.cancel()
        if cancelled:
            self._cancel_work()
        return cancelled

    def done(self) -> bool:
        return self._future.done()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def result(self) -> T:
        return self._future.result()

    def exception(self) -> Optional[BaseException]:
        return self._future.exception()

    def add_done_callback(self, fn: Callable[["ResultHandle[T]"], Any]) -> None:
        self._future.add_done_callback(lambda _: fn(self))

    def __await__(self) -> Generator[Any, None, T]:
        return self._future.__await__()

    def _on_done(self, future: asyncio.Future) -> None:
        if future.cancelled():
            self._cancel_work()
        else:
            self._work = None

    def _cancel_work(self) -> None:
        work, self._work = self._work, None
        if work is not None:
            work.cancel()
