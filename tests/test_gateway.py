import asyncio

import pytest

from updown.config import Settings
from updown.exceptions import (
    ConstraintViolationError, EmptyUrlError, NotFoundError, StorageError,
)
from updown.gateway import Database


@pytest.mark.asyncio
async def test_login_codes_are_unique(db):
    users = [await db.create_user() for _ in range(25)]
    codes = {u.login_code for u in users}
    assert len(codes) == 25
    assert all(codes)
    assert all(u.created_at == u.updated_at for u in users)


@pytest.mark.asyncio
async def test_user_lookups(db):
    user = await db.create_user()
    assert (await db.user_by_id(user.id)).login_code == user.login_code
    assert (await db.user_by_login_code(user.login_code)).id == user.id


@pytest.mark.asyncio
async def test_missing_user_is_not_found(db):
    with pytest.raises(NotFoundError):
        await db.user_by_id(4242)
    with pytest.raises(NotFoundError):
        await db.user_by_login_code("nope")


@pytest.mark.asyncio
async def test_login_count_tracks_first_session(db):
    user = await db.create_user()
    assert await db.login_count(user.id) == 0

    await db.create_login(user.id)
    assert await db.login_count(user.id) == 1

    await db.create_login(user.id)
    assert await db.login_count(user.id) == 2


@pytest.mark.asyncio
async def test_login_for_unknown_user_is_rejected(db):
    with pytest.raises(ConstraintViolationError):
        await db.create_login(9999)


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["", "   ", None])
async def test_empty_url_is_rejected_without_writing(db, url):
    user = await db.create_user()
    await db.create_site(user.id, "https://a.test")
    before = [s.id for s in await db.sites()]

    with pytest.raises(EmptyUrlError) as exc:
        await db.create_site(user.id, url)

    assert isinstance(exc.value, ConstraintViolationError)
    assert [s.id for s in await db.sites()] == before


@pytest.mark.asyncio
async def test_sites_by_owner_and_globally(db):
    alice, bob = await db.create_user(), await db.create_user()
    a1 = await db.create_site(alice.id, "  https://a.test  ", name="A")
    a2 = await db.create_site(alice.id, "https://b.test", name="  ")
    b1 = await db.create_site(bob.id, "https://a.test")

    assert a1.url == "https://a.test"
    assert a1.name == "A"
    assert a2.name is None
    assert [s.id for s in await db.sites_by_user(alice.id)] == [a1.id, a2.id]
    assert [s.id for s in await db.sites_by_user(bob.id)] == [b1.id]
    assert [s.id for s in await db.sites()] == [a1.id, a2.id, b1.id]


@pytest.mark.asyncio
async def test_same_url_twice_for_one_user_is_rejected(db):
    user = await db.create_user()
    await db.create_site(user.id, "https://a.test")
    with pytest.raises(ConstraintViolationError):
        await db.create_site(user.id, "https://a.test")
    assert len(await db.sites_by_user(user.id)) == 1


@pytest.mark.asyncio
async def test_upsert_same_pair_only_moves_updated_at(db):
    user = await db.create_user()
    site = await db.create_site(user.id, "https://a.test")

    first = await db.upsert_response(site.id, 200)
    second = await db.upsert_response(site.id, 200)

    assert second.id == first.id
    assert second.created_at == first.created_at
    assert second.updated_at > first.updated_at
    assert len(await db.responses_for_site(site.id)) == 1


@pytest.mark.asyncio
async def test_one_row_per_distinct_status(db):
    user = await db.create_user()
    site = await db.create_site(user.id, "https://a.test")
    other = await db.create_site(user.id, "https://b.test")

    last_seen = {}
    for code in [200, 500, 200, 404, 500, 200]:
        last_seen[code] = (await db.upsert_response(site.id, code)).updated_at
    await db.upsert_response(other.id, 200)

    rows = await db.responses_for_site(site.id)
    assert sorted(r.status_code for r in rows) == [200, 404, 500]
    assert {r.status_code: r.updated_at for r in rows} == last_seen
    # newest first
    assert [r.status_code for r in rows] == [200, 500, 404]


@pytest.mark.asyncio
async def test_latest_response_follows_updated_at(db):
    user = await db.create_user()
    site = await db.create_site(user.id, "https://a.test")

    with pytest.raises(NotFoundError):
        await db.latest_response_for_site(site.id)

    await db.upsert_response(site.id, 200)
    await db.upsert_response(site.id, 500)
    assert (await db.latest_response_for_site(site.id)).status_code == 500

    await db.upsert_response(site.id, 200)
    assert (await db.latest_response_for_site(site.id)).status_code == 200


@pytest.mark.asyncio
async def test_timestamps_advance_with_a_frozen_clock(db):
    frozen = Database(db.engine, clock=lambda: 1_700_000_000.0)
    user = await frozen.create_user()
    site = await frozen.create_site(user.id, "https://a.test")

    first = await frozen.upsert_response(site.id, 200)
    second = await frozen.upsert_response(site.id, 200)

    assert site.created_at > user.created_at
    assert second.updated_at > first.updated_at


@pytest.mark.asyncio
async def test_unreachable_store_is_a_storage_error(tmp_path):
    settings = Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'updown.db'}",
        DB_POOL_TIMEOUT=1.0,
    )
    db = Database.from_settings(settings)
    try:
        with pytest.raises(StorageError):
            await db.sites()
        assert await db.ping() is False
    finally:
        await db.dispose()


@pytest.mark.asyncio
async def test_ping(db):
    assert await db.ping() is True


@pytest.mark.asyncio
async def test_concurrent_upserts_of_one_pair_leave_one_row(db):
    user = await db.create_user()
    site = await db.create_site(user.id, "https://a.test")

    rows = await asyncio.gather(*[db.upsert_response(site.id, 200) for _ in range(40)])

    assert len({r.id for r in rows}) == 1
    stored = await db.responses_for_site(site.id)
    assert len(stored) == 1
    assert stored[0].id == rows[0].id
