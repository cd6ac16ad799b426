#!/usr/bin/env python3
"""Seed a development database with lookup rows, an admin account and one study.

Usage:
    python -m scripts.seed_dev
    # or from project root:
    python scripts/seed_dev.py
"""

import asyncio
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

import bcrypt
from sqlalchemy import select

from clinica_gateway.common.config import get_settings
from clinica_gateway.common.database import DatabaseManager
from clinica_gateway.common.reference import UserAccountModel, seed_reference_data
from clinica_gateway.studies.schemas import StudyCreate
from clinica_gateway.studies.store import StudyStore

DEV_USER = "root"
DEV_PASSWORD = "12345678"
DEV_STUDY = StudyCreate(
    name="Demo Study",
    unique_identifier="DEMO-001",
    summary="Development study created by seed_dev",
    event_definitions=[{"name": "Baseline"}, {"name": "Follow-up", "repeating": True}],
)


async def seed_dev() -> None:
    settings = get_settings()
    db = DatabaseManager(settings)
    await db.init()
    await db.create_all()

    store = StudyStore(settings.admin_user_type_ids, settings.admin_user_type_names)

    async with db.get_session() as session:
        added = await seed_reference_data(session)
        print(f"  [lookup] {added} rows added")

        result = await session.execute(
            select(UserAccountModel).where(UserAccountModel.user_name == DEV_USER)
        )
        user = result.scalar_one_or_none()
        if user:
            print(f"  [skip] user {DEV_USER} already exists")
        else:
            user = UserAccountModel(
                user_name=DEV_USER,
                passwd=bcrypt.hashpw(DEV_PASSWORD.encode(), bcrypt.gensalt()).decode(),
                first_name="Root",
                last_name="User",
                email="root@example.org",
                user_type_id=1,
            )
            session.add(user)
            await session.flush()
            print(f"  [created] user {DEV_USER} (id {user.user_id})")

        if await store.identifier_taken(session, DEV_STUDY.unique_identifier):
            print(f"  [skip] study {DEV_STUDY.unique_identifier} already exists")
        else:
            study = await store.insert_study(session, DEV_STUDY, user.user_id)
            await store.assign_role(session, study.study_id, DEV_USER, "admin", user.user_id)
            await store.insert_default_parameters(session, study.study_id)
            await store.insert_event_definitions(
                session, study.study_id, DEV_STUDY.event_definitions, user.user_id,
            )
            print(f"  [created] study {DEV_STUDY.unique_identifier} (id {study.study_id})")

    await db.close()
    print("\nDone.")


if __name__ == "__main__":
    asyncio.run(seed_dev())
