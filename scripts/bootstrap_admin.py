#!/usr/bin/env python3
"""Register a user if needed and grant the admin or sub-admin flag."""

from __future__ import annotations

import argparse
import asyncio

from quotebook.core.config import get_settings
from quotebook.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from quotebook.schemas.entities import User
from quotebook.schemas.queries import UserMutation
from quotebook.services.repository import UserRepository, get_repositories


async def grant(users: UserRepository, *, user_id: int, sub_admin: bool) -> tuple[User, bool]:
    created = await users.insert(User(id=user_id))
    mutation = UserMutation(sub_admin=True) if sub_admin else UserMutation(admin=True)
    return await users.update(user_id, mutation), created


def render_summary(user: User, *, created: bool) -> str:
    state = "created" if created else "existing"
    return f"user {user.id}: admin={user.admin} sub_admin={user.sub_admin} ({state})"


async def _main(user_id: int, sub_admin: bool) -> str:
    repositories = get_repositories()
    try:
        user, created = await grant(repositories.users, user_id=user_id, sub_admin=sub_admin)
    finally:
        await repositories.close()
    return render_summary(user, created=created)


def main() -> None:
    parser = argparse.ArgumentParser(description="Grant the admin flag to a quotebook user.")
    parser.add_argument("--user-id", type=int, required=True, help="Chat platform user id")
    parser.add_argument(
        "--sub-admin",
        action="store_true",
        help="Grant sub_admin instead of admin",
    )
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings)
    runtime = setup_telemetry(settings)
    try:
        print(asyncio.run(_main(args.user_id, args.sub_admin)))
    finally:
        shutdown_telemetry(runtime)


if __name__ == "__main__":
    main()
