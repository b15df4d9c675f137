"""
Credential issuance.

Provisioning publishes a MemberInserted event once per newly created
identity; on_member_inserted() consumes it and issues the member's login.
The consumer is idempotent: a member that already has a Credential is left
untouched, so a replayed event never issues a second username/password.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.credentials import build_username_base, generate_default_password, username_candidates
from app.models.credential import Credential

logger = logging.getLogger(__name__)

# Bound for retries when a concurrent insert takes the username we picked
MAX_USERNAME_RACES = 5


@dataclass(frozen=True)
class MemberInserted:
    member_id: uuid.UUID
    tenant_id: Optional[uuid.UUID]
    first_name: Optional[str]
    last_name: Optional[str]
    role: str


@dataclass(frozen=True)
class IssuedCredential:
    member_id: uuid.UUID
    username: str
    default_password: Optional[str]
    created: bool


async def _username_taken(db: AsyncSession, username: str) -> bool:
    row = (await db.execute(select(Credential.id).where(Credential.username == username))).first()
    return row is not None


async def generate_username(
    db: AsyncSession,
    first_name: Optional[str],
    last_name: Optional[str],
    role: str,
    tenant_id: Optional[uuid.UUID] = None,
) -> str:
    """
    First free candidate of build_username_base(). Usernames are global, so
    tenant_id does not narrow the search.
    """
    candidates = username_candidates(build_username_base(first_name, last_name, role))
    candidate = next(candidates)
    while await _username_taken(db, candidate):
        candidate = next(candidates)
    return candidate


async def get_credential(db: AsyncSession, member_id: uuid.UUID) -> Optional[Credential]:
    return (
        await db.execute(select(Credential).where(Credential.member_id == member_id))
    ).scalar_one_or_none()


async def on_member_inserted(
    db: AsyncSession,
    event: MemberInserted,
    *,
    default_password: Optional[str] = None,
) -> IssuedCredential:
    existing = await get_credential(db, event.member_id)
    if existing is not None:
        logger.info("credential already issued", extra={"member_id": str(event.member_id)})
        return IssuedCredential(
            member_id=event.member_id,
            username=existing.username,
            default_password=existing.default_password,
            created=False,
        )

    password = default_password or generate_default_password()

    for attempt in range(1, MAX_USERNAME_RACES + 1):
        username = await generate_username(db, event.first_name, event.last_name, event.role, event.tenant_id)
        db.add(
            Credential(
                member_id=event.member_id,
                username=username,
                default_password=password,
                password_changed=False,
                is_active=True,
            )
        )
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            # Either the username was taken between check and insert, or a
            # duplicate event raced us for the same member.
            existing = await get_credential(db, event.member_id)
            if existing is not None:
                return IssuedCredential(
                    member_id=event.member_id,
                    username=existing.username,
                    default_password=existing.default_password,
                    created=False,
                )
            logger.warning("username race, retrying", extra={"username": username, "attempt": attempt})
            continue

        logger.info(
            "credential issued",
            extra={"member_id": str(event.member_id), "username": username, "tenant": str(event.tenant_id)},
        )
        return IssuedCredential(
            member_id=event.member_id,
            username=username,
            default_password=password,
            created=True,
        )

    raise RuntimeError(f"could not allocate a unique username after {MAX_USERNAME_RACES} attempts")
