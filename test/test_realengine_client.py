import asyncio

import aiohttp
import pytest
from realengine_client.exceptions import (
    OperationError,
    ProtocolError,
    RemoteError,
    RetryBudgetExhausted,
)
from realengine_client.models import ClientConfig
from realengine_client.realengine_client import RealEngineClient

IMAGE_URL = "http://example.com/testImage"


def assert_caption_request(request):
    assert request.method == "GET"
    assert request.path == "/caption"
    assert request.query["url"] == IMAGE_URL
    assert request.headers["Authorization"] == "Bearer test-token"


async def wait_for_requests(server, count: int, timeout: float = 2.0) -> None:
    async def _wait():
        while len(server.requests) < count:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_wait(), timeout)


@pytest.mark.asyncio
async def test_caption_success(server, client):
    """Test a caption answered on the first request."""
    server.enqueue(200, {"success": True, "data": "This is a test caption"})

    caption = await client.get_caption(IMAGE_URL)

    assert caption == "This is a test caption"
    assert len(server.requests) == 1
    assert_caption_request(server.requests[0])
    assert int(server.requests[0].query["deadline"]) > 0


@pytest.mark.asyncio
async def test_caption_remote_error(server, client):
    """Test that a success=false envelope fails without retrying."""
    server.enqueue(
        400,
        {
            "success": False,
            "error": {"id": "test-error-id", "msg": "The link is not accessible"},
        },
    )

    with pytest.raises(RemoteError) as exc_info:
        await client.get_caption(IMAGE_URL)

    error = exc_info.value
    assert str(error) == (
        "Error id: test-error-id, message: The link is not accessible, "
        "http status: 400, path: /caption"
    )
    assert error.error_id == "test-error-id"
    assert error.http_status == 400
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_caption_remote_error_with_null_id(server, client):
    """Test that a null error id still surfaces the server's message."""
    server.enqueue(400, {"success": False, "error": {"id": None, "message": "bad link"}})

    with pytest.raises(RemoteError) as exc_info:
        await client.get_caption(IMAGE_URL)

    error = exc_info.value
    assert error.error_id == ""
    assert error.error_message == "bad link"
    assert error.http_status == 400
    assert str(error) == "bad link http status: 400, path: /caption"
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_caption_numeric_data_is_coerced_to_str(server, client):
    server.enqueue(200, {"success": True, "data": 42})

    assert await client.get_caption(IMAGE_URL) == "42"


@pytest.mark.asyncio
async def test_caption_retries_server_error(server, client):
    """Test that a 500 is retried against the original request."""
    server.enqueue(500, {"success": False, "error": {"id": "e", "message": "boom"}})
    server.enqueue(200, {"success": True, "data": "caption"})

    caption = await client.get_caption(IMAGE_URL)

    assert caption == "caption"
    assert len(server.requests) == 2
    for request in server.requests:
        assert_caption_request(request)


@pytest.mark.asyncio
async def test_caption_retries_rate_limit(server, client):
    server.enqueue(429)
    server.enqueue(200, {"success": True, "data": "caption"})

    assert await client.get_caption(IMAGE_URL) == "caption"
    assert len(server.requests) == 2


@pytest.mark.asyncio
async def test_caption_not_ready_polls_location(server, client):
    """Test two 202 responses followed by the result."""
    not_ready = {"Location": "/task?id=test-task-id", "X-Retry-After": "0.01"}
    server.enqueue(202, {"success": True}, not_ready)
    server.enqueue(202, {"success": True}, not_ready)
    server.enqueue(200, {"success": True, "data": "This is a test caption"})

    caption = await client.get_caption(IMAGE_URL)

    assert caption == "This is a test caption"
    assert len(server.requests) == 3
    assert_caption_request(server.requests[0])
    for request in server.requests[1:]:
        assert request.method == "GET"
        assert request.path == "/task"
        assert request.query == {"id": "test-task-id"}
        assert request.headers["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_absolute_location_used_as_is(server, client):
    server.enqueue(202, headers={"Location": f"{server.root_url}jobs/abc"})
    server.enqueue(200, {"success": True, "data": "done"})

    assert await client.get_caption(IMAGE_URL) == "done"
    assert server.requests[1].path == "/jobs/abc"


@pytest.mark.asyncio
async def test_retry_budget_exhausted(server, client, config):
    """Test that max_retries + 1 transient errors fail the operation."""
    for _ in range(config.max_retries + 1):
        server.enqueue(503)

    with pytest.raises(RetryBudgetExhausted) as exc_info:
        await client.get_caption(IMAGE_URL)

    assert exc_info.value.http_status == 503
    assert exc_info.value.path == "/caption"
    assert str(exc_info.value) == "Too many retries http status: 503, path: /caption"
    assert len(server.requests) == config.max_retries + 1


@pytest.mark.asyncio
async def test_retries_up_to_budget_then_success(server, client, config):
    for _ in range(config.max_retries):
        server.enqueue(502)
    server.enqueue(200, {"success": True, "data": "caption"})

    assert await client.get_caption(IMAGE_URL) == "caption"
    assert len(server.requests) == config.max_retries + 1


@pytest.mark.asyncio
async def test_missing_location_header(server, client):
    server.enqueue(202, {"success": True})

    with pytest.raises(ProtocolError, match="Location header is missing"):
        await client.get_caption(IMAGE_URL)
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_unsuccessful_response_without_error(server, client):
    server.enqueue(409, {"success": False})

    with pytest.raises(ProtocolError) as exc_info:
        await client.get_caption(IMAGE_URL)

    assert exc_info.value.error_message == "response not successful but error is null"
    assert exc_info.value.http_status == 409


@pytest.mark.asyncio
async def test_cancel_during_poll_delay(server, client):
    """Test that cancelling while a poll is scheduled stops further requests."""
    server.enqueue(202, headers={"Location": "/task?id=T", "X-Retry-After": "0.2"})
    server.enqueue(200, {"success": True, "data": "too late"})

    handle = client.get_caption(IMAGE_URL)
    await wait_for_requests(server, 1)
    await asyncio.sleep(0.05)

    assert handle.cancel() is True
    await asyncio.sleep(0.4)

    assert handle.cancelled()
    assert len(server.requests) == 1
    with pytest.raises(asyncio.CancelledError):
        await handle


@pytest.mark.asyncio
async def test_wait_for_timeout_cancels_operation(server, client):
    server.enqueue(202, headers={"Location": "/task?id=T", "X-Retry-After": "0.3"})

    handle = client.get_caption(IMAGE_URL)
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(handle, timeout=0.1)

    await asyncio.sleep(0.4)
    assert handle.cancelled()
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_submit_generic_path(server, client):
    server.enqueue(200, {"success": True, "data": {"tags": ["a", "b"]}})

    data = await client.submit("/v1/tags", {"limit": 2}, data_type=dict)

    assert data == {"tags": ["a", "b"]}
    assert server.requests[0].path == "/v1/tags"
    assert server.requests[0].query == {"limit": "2"}


@pytest.mark.asyncio
async def test_multiple_operations(server, client):
    """Test several operations sharing one client."""
    for _ in range(3):
        server.enqueue(200, {"success": True, "data": "caption"})

    results = await asyncio.gather(*[client.get_caption(IMAGE_URL) for _ in range(3)])

    assert results == ["caption"] * 3
    assert len(server.requests) == 3


@pytest.mark.asyncio
async def test_server_unavailable():
    """Test that a connection failure is surfaced without retrying."""
    config = ClientConfig(token="test-token", root_url="http://127.0.0.1:9999")

    async with RealEngineClient(config) as client:
        with pytest.raises(aiohttp.ClientConnectionError):
            await client.get_caption(IMAGE_URL)


def test_operation_error_is_base():
    assert issubclass(RemoteError, OperationError)
    assert issubclass(ProtocolError, OperationError)
    assert issubclass(RetryBudgetExhausted, OperationError)


def test_build_url_appends_path_segments():
    config = ClientConfig(token="t", root_url="https://api.example.com/v2/")
    client = RealEngineClient(config)

    url = client.build_url("caption", {"url": IMAGE_URL})

    assert url.path == "/v2/caption"
    assert url.query["url"] == IMAGE_URL
