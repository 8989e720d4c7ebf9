import asyncio

from mock_task_server import MockTaskServer
from realengine_client.models import ClientConfig
from realengine_client.realengine_client import RealEngineClient


async def main():
    server = MockTaskServer()
    await server.start()
    print(f"Server started on {server.root_url}")

    server.enqueue(503)
    server.enqueue(202, headers={"Location": "/task?id=demo", "X-Retry-After": "0.5"})
    server.enqueue(202, headers={"Location": "/task?id=demo", "X-Retry-After": "0.5"})
    server.enqueue(200, {"success": True, "data": "A cozy living room with a fireplace"})

    config = ClientConfig(token="demo-token", root_url=server.root_url)

    try:
        async with RealEngineClient(config) as client:
            caption = await asyncio.wait_for(
                client.get_caption("http://example.com/living-room.jpg"), timeout=30.0
            )
            print(f"Caption: {caption}")
            print(f"Requests made: {len(server.requests)}")
    except asyncio.TimeoutError:
        print("Captioning timed out")
    except Exception as e:
        print(f"Error occurred: {e}")
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
