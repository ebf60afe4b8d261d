import asyncio
import json

import httpx

from sitehooks.services import admin_control, event_source, webhook_registry

SITE_ID = 1
HOOK_URL = "https://hooks.example.com/forum"


class FakeEndpoint:
    """Records what the dispatcher POSTs and answers with a canned status.

    Set `gate` to an unset asyncio.Event to hold requests until the test
    releases them; `entered` is set as soon as a request arrives.
    """

    def __init__(self, status_code: int = 200, body: str = "OK"):
        self.status_code = status_code
        self.body = body
        self.requests: list[httpx.Request] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        return httpx.Response(self.status_code, text=self.body)

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]

    @property
    def sent_event_ids(self) -> list[int]:
        return [e["id"] for p in self.payloads for e in p["events"]]


class FakeRedis:
    """In-memory Redis mock for testing."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._ttls: dict[str, float] = {}
        self._zsets: dict[str, dict[str, float]] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(
        self,
        key: str,
        value: str,
        ex: int | None = None,
        px: int | None = None,
        nx: bool = False,
    ) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = str(value)
        if ex:
            self._ttls[key] = ex
        if px:
            self._ttls[key] = px / 1000
        return True

    async def delete(self, key: str) -> int:
        self._ttls.pop(key, None)
        return 1 if self._store.pop(key, None) is not None else 0

    async def incr(self, key: str) -> int:
        val = int(self._store.get(key, "0")) + 1
        self._store[key] = str(val)
        return val

    async def expire(self, key: str, seconds: int) -> None:
        self._ttls[key] = seconds

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass

    def pipeline(self) -> "FakePipeline":
        return FakePipeline(self)


class FakePipeline:
    """Just the sorted set commands the rate limiter queues up."""

    def __init__(self, redis: FakeRedis):
        self._redis = redis
        self._ops: list = []

    def zremrangebyscore(self, key: str, low: float, high: float) -> None:
        self._ops.append(("zremrangebyscore", key, low, high))

    def zadd(self, key: str, mapping: dict[str, float]) -> None:
        self._ops.append(("zadd", key, mapping))

    def zcard(self, key: str) -> None:
        self._ops.append(("zcard", key))

    def expire(self, key: str, seconds: int) -> None:
        self._ops.append(("expire", key, seconds))

    async def execute(self) -> list:
        results = []
        for op, key, *args in self._ops:
            zset = self._redis._zsets.setdefault(key, {})
            if op == "zremrangebyscore":
                low, high = args
                gone = [m for m, score in zset.items() if low <= score <= high]
                for member in gone:
                    del zset[member]
                results.append(len(gone))
            elif op == "zadd":
                zset.update(args[0])
                results.append(len(args[0]))
            elif op == "zcard":
                results.append(len(zset))
            else:
                self._redis._ttls[key] = args[0]
                results.append(True)
        self._ops = []
        return results


def post_data(post_nr: int, text: str = "Hello") -> dict:
    return {
        "post": {
            "post_id": 1000 + post_nr,
            "post_nr": post_nr,
            "page_id": "123",
            "parent_nr": 1,
            "author_id": 101,
            "approved_html_sanitized": f"<p>{text}</p>",
        }
    }


async def add_post_event(
    session_factory,
    post_nr: int,
    site_id: int = SITE_ID,
    private_to_user_id: int | None = None,
) -> int:
    async with session_factory() as db:
        event = await event_source.append_event(
            db,
            site_id,
            "PostCreated",
            post_data(post_nr),
            private_to_user_id=private_to_user_id,
        )
        await db.commit()
        return event.event_id


async def add_page_event(session_factory, page_id: str = "123", site_id: int = SITE_ID) -> int:
    async with session_factory() as db:
        event = await event_source.append_event(
            db, site_id, "PageCreated", {"page": {"page_id": page_id, "title": "A problem"}}
        )
        await db.commit()
        return event.event_id


async def make_webhook(session_factory, site_id: int = SITE_ID, url: str = HOOK_URL, **config):
    """The site's default webhook, configured but not started."""
    async with session_factory() as db:
        webhook = await webhook_registry.get_or_create_default_webhook(db, site_id)
        webhook = await webhook_registry.upsert_webhook(
            db, site_id, webhook.webhook_id, {"send_to_url": url, **config}
        )
        await db.commit()
        return webhook


async def load_webhook(session_factory, site_id: int = SITE_ID, webhook_id: int = 1):
    async with session_factory() as db:
        return await webhook_registry.get_webhook(db, site_id, webhook_id)


async def alter(session_factory, site_id: int = SITE_ID, webhook_id: int = 1, **kwargs):
    async with session_factory() as db:
        webhook = await admin_control.alter_webhook(db, site_id, webhook_id, **kwargs)
        await db.commit()
        return webhook


async def start_webhook(session_factory, site_id: int = SITE_ID, webhook_id: int = 1):
    return await alter(session_factory, site_id, webhook_id, set_paused=False)
