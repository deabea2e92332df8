#!/usr/bin/env python3
"""Seed a development database with a board, members, cards, and their feeds.

Usage:
    uv run python scripts/seed_dev_data.py

Requires BF_DATABASE_URL (or defaults to localhost). Mutations go through the
service layer, so events are logged and fanned out exactly as the API would.
"""

import asyncio
import uuid

from boardfeed.core.auth import Identity, create_identity_token
from boardfeed.core.database import async_session_factory, engine, init_db
from boardfeed.core.jobs import FanOutQueue, commit_and_dispatch, set_dispatcher
from boardfeed.services import boards, cards, subscriptions
from boardfeed.tasks.fanout import JOB_HANDLERS
from boardfeed_shared.schemas.boards import BoardCreate
from boardfeed_shared.schemas.cards import CardCreate, CardUpdate

# Deterministic UUIDs for reproducibility
ORG_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
ALICE = Identity(user_id=uuid.UUID("00000000-0000-0000-0000-000000000010"), org_id=ORG_ID)
BOB = Identity(user_id=uuid.UUID("00000000-0000-0000-0000-000000000011"), org_id=ORG_ID)
CAROL = Identity(user_id=uuid.UUID("00000000-0000-0000-0000-000000000012"), org_id=ORG_ID)


async def seed():
    await init_db()

    queue = FanOutQueue(JOB_HANDLERS, async_session_factory, workers=2)
    set_dispatcher(queue)
    await queue.start()

    async with async_session_factory() as session:
        board = await boards.create_board(
            session,
            ALICE,
            BoardCreate(
                name="Product Launch",
                editor_ids=[BOB.user_id],
                viewer_ids=[CAROL.user_id],
            ),
        )
        await commit_and_dispatch(session)

        card_specs = [
            ("Draft announcement post", "next_up"),
            ("Record demo video", "someday"),
            ("Update pricing page", "next_up"),
        ]
        created = []
        for title, status in card_specs:
            created.append(
                await cards.create_card(
                    session, ALICE, CardCreate(title=title, board_id=board.id, status=status)
                )
            )
            await commit_and_dispatch(session)

        await cards.update_card(session, BOB, created[0].id, CardUpdate(status="done"))
        await cards.add_comment(session, CAROL, created[1].id, "Happy to narrate this one.")
        await subscriptions.mute_card(session, BOB, created[2].id)
        await commit_and_dispatch(session)

    await queue.stop()
    set_dispatcher(None)
    await engine.dispose()

    print(f"Seeded board '{board.id}' in org '{ORG_ID}' with 3 members and {len(created)} cards.")
    for name, identity in (("alice", ALICE), ("bob", BOB), ("carol", CAROL)):
        print(f"  {name}: {create_identity_token(identity.user_id, identity.org_id)}")


if __name__ == "__main__":
    asyncio.run(seed())
