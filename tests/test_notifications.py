import asyncio
import json

import httpx

from shared.notifications import PAYMENT_REMINDER, NotificationClient

SNAPSHOT = {"order_id": "ORD-1", "amount": 120.0, "status": "pending_payment"}


async def test_notice_is_posted():
    seen = []

    def handler(request):
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(202)

    client = NotificationClient(base_url="https://notify.test/", transport=httpx.MockTransport(handler))

    assert await client.notify(PAYMENT_REMINDER, SNAPSHOT) is True
    assert seen == [("https://notify.test/notifications", {"kind": "payment_reminder", "order": SNAPSHOT})]


async def test_failures_are_swallowed():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    down = NotificationClient(base_url="https://notify.test", transport=httpx.MockTransport(handler))
    rejecting = NotificationClient(
        base_url="https://notify.test", transport=httpx.MockTransport(lambda r: httpx.Response(500)),
    )

    assert await down.notify(PAYMENT_REMINDER, SNAPSHOT) is False
    assert await rejecting.notify(PAYMENT_REMINDER, SNAPSHOT) is False


async def test_unconfigured_service_is_skipped():
    assert await NotificationClient(base_url="").notify(PAYMENT_REMINDER, SNAPSHOT) is False


async def test_dispatch_does_not_wait():
    release = asyncio.Event()
    seen = []

    async def slow(request):
        await release.wait()
        seen.append(request)
        return httpx.Response(202)

    client = NotificationClient(base_url="https://notify.test", transport=httpx.MockTransport(slow))
    client.dispatch(PAYMENT_REMINDER, SNAPSHOT)
    assert seen == []

    release.set()
    for _ in range(20):
        await asyncio.sleep(0)
        if seen:
            break
    await asyncio.gather(*client._background)
    assert len(seen) == 1
