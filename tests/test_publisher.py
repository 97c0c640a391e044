from __future__ import annotations

import asyncio
from pathlib import Path

from territory_models import Base, TerritorySnapshot, WarState
from territory_publisher import SlotState, TerritoryService, build_territory_embed
from territory_store import TerritoryStore


class StubSink:
    def __init__(self, fail_delete: bool = False, fail_send: bool = False) -> None:
        self.fail_delete = fail_delete
        self.fail_send = fail_send
        self.sent: list[tuple[object, object]] = []
        self.deleted: list[int] = []
        self._next_id = 100

    async def send(self, embed, file) -> int:
        if self.fail_send:
            raise RuntimeError("send rejected")
        self._next_id += 1
        self.sent.append((embed, file))
        return self._next_id

    async def delete(self, message_id: int) -> None:
        if self.fail_delete:
            raise RuntimeError("cannot delete")
        self.deleted.append(message_id)


def _service(tmp_path: Path) -> TerritoryService:
    store = TerritoryStore(str(tmp_path / "territory.json"), str(tmp_path / "war.json"))
    return TerritoryService(store, background_path=None, canvas_size=300)


def _fields(embed) -> dict[str, str]:
    return {f.name: f.value for f in embed.fields}


def test_empty_snapshot_shows_placeholder() -> None:
    embed = build_territory_embed(TerritorySnapshot(), WarState())

    assert _fields(embed) == {"No Data": "Waiting for game server to send territory data..."}
    assert "PEACE TIME" in embed.description
    assert "Base capture is disabled" in embed.description
    assert embed.footer.text == "No updates received yet"


def test_war_description_names_declarer() -> None:
    embed = build_territory_embed(TerritorySnapshot(), WarState(active=True, declared_by="General Volkov"))
    assert "WAR ACTIVE" in embed.description
    assert "General Volkov" in embed.description


def test_summary_groups_bases_per_faction() -> None:
    snapshot = TerritorySnapshot(
        bases=[
            Base(name="Main", faction="US", type="HQ"),
            Base(name="Hill", faction="US", type="FOB"),
            Base(name="Mast", faction="US", type="POI", poi_type="Radio Tower"),
            Base(name="Dish", faction="US", type="POI", poi_type="Radio Tower"),
            Base(name="Silo", faction="US", type="POI"),
            Base(name="Town", faction="Neutral", type="POI", poi_type="Village"),
        ]
    )
    fields = _fields(build_territory_embed(snapshot, WarState()))

    assert list(fields) == ["Meridian Federation 🔵 - 5 bases", "Neutral ⚪ - 1 bases"]
    us = fields["Meridian Federation 🔵 - 5 bases"]
    assert "**HQ (1):** Main" in us
    assert "**FOBs (1):** Hill" in us
    assert "**Radio Towers (2):** Mast, Dish" in us
    assert "**Others (1):** Silo" in us


def test_publish_empty_snapshot_replaces_slot_with_text_only(tmp_path: Path) -> None:
    service = _service(tmp_path)
    sink = StubSink()

    async def _run():
        first = await service.publish(sink)
        second = await service.publish(sink)
        return first, second

    first, second = asyncio.run(_run())

    assert sink.deleted == [first]
    assert service.slot_id == second
    assert service.slot_state == SlotState.PUBLISHED
    embed, file = sink.sent[-1]
    assert file is None
    assert "No Data" in _fields(embed)


def test_publish_attaches_map_when_bases_exist(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.store.save_snapshot(TerritorySnapshot(bases=[Base(name="Alpha", x=100, z=200, faction="US", type="FOB")]))
    sink = StubSink()

    asyncio.run(service.publish(sink))

    embed, file = sink.sent[0]
    assert file is not None
    assert file.filename == "territory-map.png"
    assert embed.image.url == "attachment://territory-map.png"


def test_render_failure_still_publishes_text(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.store.save_snapshot(TerritorySnapshot(bases=[Base(name="Alpha", x=100, z=200, faction="US", type="FOB")]))

    async def broken_render(bases):
        raise RuntimeError("no canvas")

    service.render = broken_render
    sink = StubSink()
    message_id = asyncio.run(service.publish(sink))

    assert message_id is not None
    embed, file = sink.sent[0]
    assert file is None
    assert "Meridian Federation 🔵 - 1 bases" in _fields(embed)


def test_failed_cleanup_does_not_block_send(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.slot_id = 42
    service.slot_state = SlotState.PUBLISHED
    sink = StubSink(fail_delete=True)

    message_id = asyncio.run(service.publish(sink))

    assert message_id == 101
    assert service.slot_id == 101


def test_failed_send_leaves_slot_empty(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.slot_id = 42
    sink = StubSink(fail_send=True)

    assert asyncio.run(service.publish(sink)) is None
    assert sink.deleted == [42]
    assert service.slot_id is None
    assert service.slot_state == SlotState.IDLE


def test_ingest_replaces_snapshot_and_triggers_publish(tmp_path: Path) -> None:
    service = _service(tmp_path)
    sink = StubSink()
    service.sink_resolver = lambda: sink

    async def _run():
        service.ingest({"bases": [{"name": "A1", "x": 10, "z": 10}, {"name": "A2", "x": 20, "z": 20}]})
        service.ingest('{"bases":[{"name":"B1","x":30,"z":30}]}')
        await service.drain()

    asyncio.run(_run())

    assert [b.name for b in service.snapshot.bases] == ["B1"]
    assert service.snapshot.last_update is not None
    reloaded = TerritoryService(service.store, background_path=None)
    assert [b.name for b in reloaded.snapshot.bases] == ["B1"]
    assert len(sink.sent) == 2
    assert "Neutral ⚪ - 1 bases" in _fields(sink.sent[-1][0])


def test_publish_without_channel_is_skipped(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.sink_resolver = lambda: None

    assert asyncio.run(service.publish_current()) is None
    assert service.slot_state == SlotState.IDLE


class SlowSink(StubSink):
    def __init__(self) -> None:
        super().__init__()
        self.live: set[int] = set()

    async def send(self, embed, file) -> int:
        await asyncio.sleep(0.01)
        message_id = await super().send(embed, file)
        self.live.add(message_id)
        return message_id

    async def delete(self, message_id: int) -> None:
        await asyncio.sleep(0.01)
        await super().delete(message_id)
        self.live.discard(message_id)


def test_overlapping_publishes_leave_one_live_message(tmp_path: Path) -> None:
    service = _service(tmp_path)
    sink = SlowSink()

    async def _run():
        await asyncio.gather(*(service.publish(sink) for _ in range(5)))

    asyncio.run(_run())

    assert len(sink.sent) == 5
    assert sink.live == {service.slot_id}
    assert service.slot_state == SlotState.PUBLISHED
