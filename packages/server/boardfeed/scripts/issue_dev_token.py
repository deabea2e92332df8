"""
Script to mint an identity token for local testing.
"""

import argparse
import uuid
from datetime import timedelta

from boardfeed.core.auth import create_identity_token


def issue(user_id: uuid.UUID, org_id: uuid.UUID, minutes: int | None) -> str:
    expires = timedelta(minutes=minutes) if minutes else None
    return create_identity_token(user_id, org_id, expires_delta=expires)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Mint a local identity token.")
    parser.add_argument("--user-id", type=uuid.UUID, default=None, help="User id (random if omitted)")
    parser.add_argument("--org-id", type=uuid.UUID, required=True, help="Tenant id")
    parser.add_argument("--minutes", type=int, default=None, help="Lifetime in minutes")

    args = parser.parse_args()
    user_id = args.user_id or uuid.uuid4()

    print(f"user_id: {user_id}")
    print(issue(user_id, args.org_id, args.minutes))
