import asyncio
import copy
import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("KHALTI_SECRET_KEY", "")

import fakeredis
import pytest

from tableside.api.order_service import OrderService
from tableside.api.payment_service import PaymentService
from tableside.api.schemas import OrderItemIn
from tableside.services.redis import RedisClient
from tableside.services.stores import OrderStore, TableRegistry, PaymentStore, MenuCatalog, StaffDirectory
from tableside.services.timeout_scheduler import OrderTimeoutScheduler
from tableside.utils.time import parse_timestamp


def _encode(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def _comparable(value):
    if isinstance(value, str):
        try:
            return parse_timestamp(value)
        except ValueError:
            return value
    if isinstance(value, datetime):
        return parse_timestamp(value)
    return value


class InMemoryDocumentStore:
    """DocumentStore double keeping rows as plain dicts"""

    def __init__(self):
        self.tables = {}
        self.client = None

    def rows(self, table):
        return self.tables.setdefault(table, {})

    def _matches(self, doc, eq=None, in_=None, gte=None, lte=None):
        for column, value in (eq or {}).items():
            if doc.get(column) != _encode(value):
                return False
        for column, values in (in_ or {}).items():
            if doc.get(column) not in [_encode(v) for v in values]:
                return False
        for column, value in (gte or {}).items():
            if doc.get(column) is None or _comparable(doc[column]) < _comparable(value):
                return False
        for column, value in (lte or {}).items():
            if doc.get(column) is None or _comparable(doc[column]) > _comparable(value):
                return False
        return True

    async def insert(self, table, data):
        now = datetime.now(timezone.utc).isoformat()
        document = {k: _encode(v) for k, v in data.items()}
        document.setdefault("id", str(uuid.uuid4()))
        document.setdefault("created_at", now)
        document.setdefault("updated_at", now)
        self.rows(table)[document["id"]] = document
        return copy.deepcopy(document)

    async def get(self, table, doc_id):
        doc = self.rows(table).get(doc_id)
        return copy.deepcopy(doc) if doc else None

    async def find(self, table, eq=None, in_=None, gte=None, lte=None,
                   order_by=None, desc=False, limit=None, offset=0):
        docs = [d for d in self.rows(table).values() if self._matches(d, eq, in_, gte, lte)]
        if order_by:
            docs.sort(key=lambda d: (d.get(order_by) is None, _comparable(d.get(order_by)) or 0), reverse=desc)
        if limit:
            docs = docs[offset:offset + limit]
        return copy.deepcopy(docs)

    async def count(self, table, eq=None, in_=None, gte=None, lte=None):
        return len([d for d in self.rows(table).values() if self._matches(d, eq, in_, gte, lte)])

    async def update(self, table, doc_id, data):
        doc = self.rows(table).get(doc_id)
        if doc is None:
            return None
        doc.update({k: _encode(v) for k, v in data.items()})
        doc["updated_at"] = datetime.now(timezone.utc).isoformat()
        return copy.deepcopy(doc)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def emit_order_event(self, event, order_id=None, table_id=None, order=None):
        self.events.append((event, order_id, table_id))

    def names(self):
        return [e[0] for e in self.events]


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 14, 6, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


class ManualSleep:
    """Sleep replacement that blocks until the test releases it"""

    def __init__(self):
        self.waits = []

    async def __call__(self, seconds):
        event = asyncio.Event()
        self.waits.append((seconds, event))
        await event.wait()

    def release_all(self):
        for _, event in self.waits:
            event.set()


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def db():
    return InMemoryDocumentStore()


@pytest.fixture
def cache():
    return RedisClient(fakeredis.FakeRedis(decode_responses=True))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def sleeper():
    return ManualSleep()


@pytest.fixture
async def scheduler(clock, sleeper):
    sched = OrderTimeoutScheduler(clock=clock, sleep=sleeper)
    yield sched
    sched.shutdown()
    await settle()


@pytest.fixture
def order_service(db, cache, clock, notifier, scheduler):
    return OrderService(
        orders=OrderStore(db),
        tables=TableRegistry(db),
        menu=MenuCatalog(db),
        staff=StaffDirectory(db),
        scheduler=scheduler,
        notifier=notifier,
        cache=cache,
        max_kitchen_orders=20,
        duplicate_window_minutes=5,
        timeout_minutes=30,
        clock=clock,
    )


@pytest.fixture
def payment_service(db, order_service, cache, clock):
    return PaymentService(
        payments=PaymentStore(db),
        order_service=order_service,
        staff=order_service.staff,
        cache=cache,
        clock=clock,
    )


@pytest.fixture
def restaurant(db):
    """A table, two menu items (100 and 50), one sold-out item and two waiters"""
    table_id = str(uuid.uuid4())
    db.rows("tables")[table_id] = {
        "id": table_id, "table_number": 7, "capacity": 4,
        "status": "Available", "current_order": None, "assigned_waiter": None,
    }

    menu = {}
    for key, name, price, availability in [
        ("momo", "Chicken Momo", 100, "Available"),
        ("tea", "Masala Tea", 50, "Available"),
        ("thali", "Thakali Thali", 400, "Out of Stock"),
    ]:
        menu_id = str(uuid.uuid4())
        db.rows("menu_items")[menu_id] = {
            "id": menu_id, "name": name, "price": price, "availability_status": availability,
        }
        menu[key] = menu_id

    waiters = []
    for index, (first_name, role) in enumerate([("Sita", "waiter"), ("Ram", "staff")]):
        user_id = str(uuid.uuid4())
        db.rows("profiles")[user_id] = {
            "id": user_id, "email": f"{first_name.lower()}@example.com", "first_name": first_name,
            "role": role, "is_active": True,
            "created_at": f"2026-01-0{index + 1}T00:00:00+00:00",
        }
        waiters.append(user_id)

    return {"table": table_id, "menu": menu, "waiters": waiters}


def add_table(db, number):
    table_id = str(uuid.uuid4())
    db.rows("tables")[table_id] = {
        "id": table_id, "table_number": number, "capacity": 2,
        "status": "Available", "current_order": None, "assigned_waiter": None,
    }
    return table_id


def items(*pairs):
    return [OrderItemIn(menu_item=menu_id, quantity=qty) for menu_id, qty in pairs]
