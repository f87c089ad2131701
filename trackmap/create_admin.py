"""Create an administrator account, or reset the password of an existing one.

Usage::

    python -m trackmap.create_admin --username admin --email admin@example.com \
        --password 's3cret-pass'
"""

import argparse
import logging
import sys

from pydantic import ValidationError as SchemaValidationError

from . import crud, schemas
from .auth import get_password_hash
from .core import setup_logging
from .database import SessionLocal
from .exceptions import TrackMapError
from .schema_sync import reconcile_schema

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m trackmap.create_admin",
        description="Create an admin user or reset an existing admin's password.",
    )
    parser.add_argument("--username", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        # Reuse registration validation for username, email and password length.
        user_in = schemas.UserCreate(
            username=args.username, email=args.email, password=args.password
        )
    except SchemaValidationError as exc:
        for error in exc.errors():
            logger.error("%s: %s", ".".join(map(str, error["loc"])), error["msg"])
        return 2

    reconcile_schema()
    db = SessionLocal()
    try:
        user, created = crud.ensure_admin(
            db, user_in.username, user_in.email, get_password_hash(user_in.password)
        )
    except TrackMapError as exc:
        logger.error("Could not create admin: %s", exc.message)
        return 1
    finally:
        db.close()

    if created:
        logger.info("Admin user %s created", user.username)
    else:
        logger.info("Admin user %s updated with new password", user.username)
    return 0


if __name__ == "__main__":
    sys.exit(main())
