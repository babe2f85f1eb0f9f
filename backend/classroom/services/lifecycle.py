"""Applies phase transitions to the stored session.

Status, ``paused_at`` and ``total_paused_ms`` are written with a
compare-and-set on the status read beforehand, so a double-clicked advance
or pause loses cleanly instead of skipping a phase.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ..content.gateway import ContentGenerator
from ..core.errors import ConflictError
from ..db.models import Session, Tutor
from ..engine.phases import SideEffect, Transition, plan_advance, plan_toggle_pause
from .analysis import claim_analysis, run_analysis
from .retest import prepare_retests
from .sessions import load_owned_session
from .tasks import run_background

logger = logging.getLogger(__name__)


async def _apply(db: AsyncSession, session: Session, transition: Transition) -> None:
    result = await db.execute(
        update(Session)
        .where(Session.id == session.id, Session.status == session.status)
        .values(**transition.updates)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConflictError("Session status changed concurrently, refresh and retry")


async def advance_session(
    db: AsyncSession,
    session_id: int,
    tutor: Tutor,
    now: Optional[datetime] = None,
) -> Transition:
    """Move the session one phase forward.

    Entering ``analyzing`` claims the analysis job in the same transaction;
    the pipeline itself and retest preparation are left to
    ``schedule_side_effects``.
    """
    session = await load_owned_session(db, session_id, tutor)
    transition = plan_advance(session.status, session.paused_at, session.total_paused_ms, now)

    await _apply(db, session, transition)
    if SideEffect.START_ANALYSIS in transition.side_effects:
        await claim_analysis(db, session.id, now)
    await db.commit()

    logger.info(
        f"Session {session.id}: {transition.from_status.value} -> {transition.to_status.value}"
    )
    return transition


async def toggle_pause(
    db: AsyncSession,
    session_id: int,
    tutor: Tutor,
    now: Optional[datetime] = None,
) -> Transition:
    """Pause a running test or resume a paused one."""
    session = await load_owned_session(db, session_id, tutor)
    transition = plan_toggle_pause(session.status, session.paused_at, session.total_paused_ms, now)

    await _apply(db, session, transition)
    await db.commit()

    logger.info(
        f"Session {session.id}: {transition.from_status.value} -> {transition.to_status.value}"
    )
    return transition


def schedule_side_effects(
    background_tasks: BackgroundTasks,
    session_id: int,
    transition: Transition,
    generator: ContentGenerator,
) -> None:
    """Hand the transition's follow-up work to the background."""
    for effect in transition.side_effects:
        if effect is SideEffect.START_ANALYSIS:
            background_tasks.add_task(
                run_background, f"analysis[{session_id}]", run_analysis, session_id, generator
            )
        elif effect is SideEffect.PREPARE_RETESTS:
            background_tasks.add_task(
                run_background, f"prepare_retests[{session_id}]", prepare_retests, session_id
            )
