"""Candidate accounts: find-or-create by email and an admin listing."""

from __future__ import annotations

import logging
from typing import List

from sqlmodel import select

from viva.db import get_session
from viva.models import UserRecord

LOG = logging.getLogger("viva.users")


async def save_user(name: str, email: str) -> UserRecord:
    email = email.strip().lower()
    async with get_session() as session:
        existing = (await session.exec(select(UserRecord).where(UserRecord.email == email))).first()
        if existing:
            return existing
        user = UserRecord(name=name.strip(), email=email)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        LOG.info("User created: id=%s", user.id)
        return user


async def list_users() -> List[UserRecord]:
    async with get_session() as session:
        rows = (await session.exec(select(UserRecord).order_by(UserRecord.created_at.desc(), UserRecord.id.desc()))).all()
        return list(rows)
