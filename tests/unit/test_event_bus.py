from __future__ import annotations

import asyncio
import threading

from jobcodex.core.events import EventBus


def test_publish_without_subscribers_delivers_nothing() -> None:
    assert EventBus().publish("unit-1", {"step": "status"}) == 0


def test_events_published_from_worker_threads_reach_subscriber() -> None:
    bus = EventBus()

    async def consume() -> list[dict]:
        received: list[dict] = []
        stream = bus.subscribe("unit-1")
        first = asyncio.ensure_future(stream.__anext__())
        while bus.subscriber_count("unit-1") == 0:
            await asyncio.sleep(0)

        def produce() -> None:
            for index in range(3):
                bus.publish("unit-1", {"id": index})
            bus.publish("unit-2", {"id": 99})

        worker = threading.Thread(target=produce)
        worker.start()
        received.append(await first)
        received.append(await stream.__anext__())
        received.append(await stream.__anext__())
        worker.join()
        await stream.aclose()
        return received

    assert asyncio.run(consume()) == [{"id": 0}, {"id": 1}, {"id": 2}]
    assert bus.subscriber_count("unit-1") == 0
