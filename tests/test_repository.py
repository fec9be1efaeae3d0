import dataclasses

import pytest

from buytracker.models import GroupConfig, Network, TokenIdentity, utc_now
from buytracker.store.db import Database, GroupSetting
from buytracker.store.repository import Repository


async def _database(tmp_path, name: str) -> Database:
    db = Database(f"sqlite+aiosqlite:///{tmp_path / name}")
    db.connect()
    await db.init_models()
    return db


def _config(**overrides) -> GroupConfig:
    values = dict(
        network=Network.BNB,
        token_address="0xtoken",
        emoji="🚀",
        token_identity=TokenIdentity("Token One", "TK1"),
    )
    values.update(overrides)
    return GroupConfig(**values)


@pytest.mark.asyncio
async def test_save_and_load_group_config(tmp_path):
    """A saved config comes back with identity and image."""
    db = await _database(tmp_path, "groups.db")

    async with db.session() as session:
        repo = Repository(session)
        assert await repo.get_group_config(-100) is None

        saved = await repo.save_group_config(-100, _config(image_ref="photo-1"))
        assert saved.token_identity == TokenIdentity("Token One", "TK1")
        assert saved.created_at is not None

    async with db.session() as session:
        loaded = await Repository(session).get_group_config(-100)

    assert loaded.network is Network.BNB
    assert loaded.token_address == "0xtoken"
    assert loaded.image_ref == "photo-1"
    assert loaded.active
    await db.dispose()


@pytest.mark.asyncio
async def test_save_replaces_existing_config(tmp_path):
    db = await _database(tmp_path, "replace.db")

    async with db.session() as session:
        repo = Repository(session)
        first = await repo.save_group_config(-1, _config())
        second = await repo.save_group_config(
            -1,
            _config(network=Network.SOLANA, token_address="Mint", emoji="🔥"),
        )

    assert second.network is Network.SOLANA
    assert second.emoji == "🔥"
    assert second.created_at == first.created_at

    async with db.session() as session:
        rows = await Repository(session).list_active_group_configs()
    assert [(chat_id, cfg.token_address) for chat_id, cfg in rows] == [(-1, "Mint")]
    await db.dispose()


@pytest.mark.asyncio
async def test_deactivate_hides_group_from_restore(tmp_path):
    db = await _database(tmp_path, "deactivate.db")

    async with db.session() as session:
        repo = Repository(session)
        await repo.save_group_config(-1, _config())
        await repo.save_group_config(-2, _config(token_address="0xother"))

        assert await repo.deactivate_group(-1) is True
        assert await repo.deactivate_group(-999) is False

        active = await repo.list_active_group_configs()
        assert [chat_id for chat_id, _ in active] == [-2]

        stopped = await repo.get_group_config(-1)
        assert stopped is not None
        assert not stopped.active

        resumed = await repo.save_group_config(-1, dataclasses.replace(stopped, active=True))
        assert resumed.active
    await db.dispose()


@pytest.mark.asyncio
async def test_config_without_identity_round_trips_as_none(tmp_path):
    db = await _database(tmp_path, "identity.db")

    async with db.session() as session:
        saved = await Repository(session).save_group_config(
            -5, _config(token_identity=None)
        )

    assert saved.token_identity is None
    await db.dispose()


@pytest.mark.asyncio
async def test_timestamps_are_timezone_aware(tmp_path):
    """Default and saved timestamps carry UTC so SQLModel accepts them."""
    assert utc_now().tzinfo is not None
    config = _config()
    assert config.created_at.tzinfo is not None
    assert config.updated_at.tzinfo is not None
    row = GroupSetting(chat_id=-1, network="bnb", token_address="0xtoken")
    assert row.created_at.tzinfo is not None

    db = await _database(tmp_path, "aware.db")
    async with db.session() as session:
        repo = Repository(session)
        assert (await repo.save_group_config(-100, config)).active
        assert await repo.deactivate_group(-100)
    async with db.session() as session:
        assert (await Repository(session).get_group_config(-100)).active is False
    await db.dispose()
