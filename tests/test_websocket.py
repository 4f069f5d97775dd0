from tableside.api.websocket import ConnectionManager, is_valid_room


class FakeSocket:
    def __init__(self, broken=False):
        self.broken = broken
        self.sent = []

    async def accept(self):
        pass

    async def send_json(self, message):
        if self.broken:
            raise RuntimeError("connection closed")
        self.sent.append(message)


async def test_disconnect_drops_empty_rooms():
    manager = ConnectionManager()
    guest, kitchen = FakeSocket(), FakeSocket()
    await manager.connect(guest, ["order:abc", "table:7"])
    await manager.connect(kitchen, ["kitchen"])

    manager.disconnect(guest)

    assert set(manager.rooms) == {"kitchen"}


async def test_events_reach_order_and_kitchen_rooms():
    manager = ConnectionManager()
    guest, kitchen = FakeSocket(), FakeSocket()
    await manager.connect(guest, ["order:abc"])
    await manager.connect(kitchen, ["kitchen"])

    await manager.emit_order_event("order:new", order_id="abc", table_id="t1")

    assert [m["event"] for m in guest.sent] == ["order:new"]
    assert [m["orderId"] for m in kitchen.sent] == ["abc"]


async def test_dead_connection_is_pruned_with_its_room():
    manager = ConnectionManager()
    await manager.connect(FakeSocket(broken=True), ["table:7"])

    await manager.emit_order_event("order:cancelled", table_id="7")

    assert "table:7" not in manager.rooms


def test_room_names():
    assert is_valid_room("kitchen")
    assert is_valid_room("order:abc")
    assert not is_valid_room("lobby")
