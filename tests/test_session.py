import asyncio

from orders.draft import DraftState, OrderBuilder, OrderDraft
from orders.session import DraftSession
from pricing.catalog import BUNDLED_CATALOG, Catalog, load_catalog

PROMO_CATALOG = Catalog.build(
    [{"id": "almond", "name": "Almond", "basePrice": 30}],
    {
        "pickup": {
            "id": "pickup",
            "label": "Pick Up",
            "defaultSpeed": "standard",
            "speedOptions": {"standard": {"label": "Standard", "fee": 0, "days": 14}},
        }
    },
)


def slow_loader(gate: asyncio.Event, catalog: Catalog):
    async def loader() -> Catalog:
        await gate.wait()
        return catalog

    return loader


async def test_fresh_catalog_is_applied():
    session = DraftSession(OrderBuilder.start("user-1"))

    gate = asyncio.Event()
    gate.set()
    applied = await session.refresh_catalog(slow_loader(gate, PROMO_CATALOG))

    assert applied is True
    assert session.catalog is PROMO_CATALOG


async def test_result_arriving_after_abandon_is_ignored():
    session = DraftSession(OrderBuilder.start("user-1"))
    gate = asyncio.Event()

    task = asyncio.create_task(session.refresh_catalog(slow_loader(gate, PROMO_CATALOG)))
    await asyncio.sleep(0)
    session.abandon()
    gate.set()

    assert await task is False
    assert session.catalog is BUNDLED_CATALOG
    assert session.builder.state is DraftState.DISCARDED


async def test_newer_load_wins_over_older_one():
    session = DraftSession(OrderBuilder.start("user-1"))
    old_gate, new_gate = asyncio.Event(), asyncio.Event()

    old_task = asyncio.create_task(session.refresh_catalog(slow_loader(old_gate, PROMO_CATALOG)))
    await asyncio.sleep(0)
    new_task = asyncio.create_task(session.refresh_catalog(slow_loader(new_gate, BUNDLED_CATALOG)))
    await asyncio.sleep(0)

    new_gate.set()
    assert await new_task is True
    old_gate.set()
    assert await old_task is False
    assert session.catalog is BUNDLED_CATALOG


async def test_result_for_replaced_draft_is_ignored():
    session = DraftSession(OrderBuilder.start("user-1"))
    gate = asyncio.Event()

    task = asyncio.create_task(session.refresh_catalog(slow_loader(gate, PROMO_CATALOG)))
    await asyncio.sleep(0)
    session.builder.draft = OrderDraft(user_id="user-1")
    gate.set()

    assert await task is False


def test_abandon_twice_is_safe():
    session = DraftSession(OrderBuilder.start("user-1"))
    session.abandon()
    session.abandon()

    assert session.abandoned


async def test_quote_uses_session_catalog():
    builder = OrderBuilder.start("user-1")
    editor = builder.start_new_set()
    editor.update(shape_id="almond", description="Nude")
    editor.save()
    session = DraftSession(builder, PROMO_CATALOG)

    assert session.quote().total_cents == 3000


async def test_catalog_loader_falls_back_on_provider_failure():
    async def broken():
        raise ConnectionError("catalog service is down")

    async def methods():
        return {}

    assert await load_catalog(broken, methods) is BUNDLED_CATALOG


async def test_catalog_loader_falls_back_on_empty_data():
    async def no_shapes():
        return []

    async def methods():
        return {"pickup": {}}

    assert await load_catalog(no_shapes, methods) is BUNDLED_CATALOG
