"""High-level database operations."""

from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import select

from buytracker.models import GroupConfig, Network, TokenIdentity, utc_now

from .db import GroupSetting


class Repository:
    """CRUD utilities wrapping SQLModel sessions."""

    def __init__(self, session) -> None:
        self.session = session

    async def get_group_setting(self, chat_id: int) -> Optional[GroupSetting]:
        result = await self.session.execute(
            select(GroupSetting).where(GroupSetting.chat_id == chat_id)
        )
        return result.scalar_one_or_none()

    async def get_group_config(self, chat_id: int) -> Optional[GroupConfig]:
        row = await self.get_group_setting(chat_id)
        return _to_config(row) if row else None

    async def save_group_config(self, chat_id: int, config: GroupConfig) -> GroupConfig:
        """Insert or replace the configuration for a group."""
        now = utc_now()
        identity = config.token_identity
        row = await self.get_group_setting(chat_id)
        if row is None:
            row = GroupSetting(
                chat_id=chat_id,
                network=config.network.value,
                token_address=config.token_address,
                created_at=now,
            )
            self.session.add(row)

        row.network = config.network.value
        row.token_address = config.token_address
        row.token_name = identity.name if identity else None
        row.token_symbol = identity.symbol if identity else None
        row.emoji = config.emoji
        row.image_ref = config.image_ref
        row.active = config.active
        row.updated_at = now

        await self.session.commit()
        await self.session.refresh(row)
        return _to_config(row)

    async def deactivate_group(self, chat_id: int) -> bool:
        """Mark a group's tracking inactive; return False if nothing was configured."""
        row = await self.get_group_setting(chat_id)
        if row is None:
            return False
        row.active = False
        row.updated_at = utc_now()
        await self.session.commit()
        return True

    async def list_active_group_configs(self) -> List[Tuple[int, GroupConfig]]:
        result = await self.session.execute(
            select(GroupSetting).where(GroupSetting.active == True)  # noqa: E712
        )
        return [(row.chat_id, _to_config(row)) for row in result.scalars().all()]


def _to_config(row: GroupSetting) -> GroupConfig:
    identity = None
    if row.token_name and row.token_symbol:
        identity = TokenIdentity(name=row.token_name, symbol=row.token_symbol)
    return GroupConfig(
        network=Network(row.network),
        token_address=row.token_address,
        emoji=row.emoji,
        token_identity=identity,
        image_ref=row.image_ref,
        active=row.active,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
