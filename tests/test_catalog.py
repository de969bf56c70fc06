from uuid import uuid4

import pytest

from roomspots.catalog import CatalogService


def make_catalog(gateway, settings, clock):
    return CatalogService(gateway, settings=settings, now=clock)


@pytest.mark.asyncio
async def test_pages_report_total_and_has_more(gateway, settings, clock):
    catalog = make_catalog(gateway, settings, clock)

    first = await catalog.page(offset=0)
    assert [s.building.id for s in first.items] == [1, 2]
    assert first.total == 3
    assert first.hasMore is True
    # live snapshots apply the same occupancy rules as cached ones
    assert (first.items[0].totalRooms, first.items[0].availableRooms) == (2, 1)
    assert [img.id for img in first.items[0].images] == [2, 1]

    second = await catalog.page(offset=2)
    assert [s.building.id for s in second.items] == [3]
    assert second.hasMore is False


@pytest.mark.asyncio
async def test_page_marks_favorites(gateway, settings, clock):
    catalog = make_catalog(gateway, settings, clock)
    user = uuid4()
    await gateway.add_favorite(user, 2)

    page = await catalog.page(offset=0, user_id=user)
    assert [s.isFavorited for s in page.items] == [False, True]


@pytest.mark.asyncio
async def test_toggle_favorite_adds_then_removes(gateway, settings, clock):
    catalog = make_catalog(gateway, settings, clock)
    user = uuid4()

    added = await catalog.toggle_favorite(user, 1)
    assert added.isFavorited is True
    assert added.favorites == 1
    assert gateway.buildings[1].favorites == 1
    assert [f.building_id for f in await gateway.favorites_for_user(user)] == [1]

    removed = await catalog.toggle_favorite(user, 1)
    assert removed.isFavorited is False
    assert removed.favorites == 0
    assert await gateway.favorites_for_user(user) == []


@pytest.mark.asyncio
async def test_favorite_counter_never_goes_negative(gateway, settings, clock):
    catalog = make_catalog(gateway, settings, clock)
    user = uuid4()
    await gateway.add_favorite(user, 3)

    state = await catalog.toggle_favorite(user, 3)
    assert state.favorites == 0


@pytest.mark.asyncio
async def test_toggle_favorite_for_unknown_building(gateway, settings, clock):
    catalog = make_catalog(gateway, settings, clock)
    with pytest.raises(LookupError):
        await catalog.toggle_favorite(uuid4(), 99)
