"""
Accreditation numbers and verification tokens.

Numbers look like ``ACC-0001``: the prefix, a dash and the next integer
after the highest existing number with that prefix, zero-padded to four
digits. There is no lock: the insert runs in a SAVEPOINT and a collision on
the unique number rolls back just that savepoint, waits a few milliseconds
and tries again with a fresh read. Gaps are fine, duplicates are not.
"""

from __future__ import annotations

import logging
import os
import random
import time
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from opsdb.utils.identifiers import generate_verification_token

from . import models
from .errors import GenerationExhaustedError

logger = logging.getLogger(__name__)

ACCREDITATION_NUMBER_PREFIX = os.getenv("ACCREDITATION_NUMBER_PREFIX", "ACC") or "ACC"
NUMBER_WIDTH = 4
MAX_INSERT_ATTEMPTS = int(os.getenv("ACCREDITATION_MAX_INSERT_ATTEMPTS", "5"))
MAX_TOKEN_ATTEMPTS = int(os.getenv("ACCREDITATION_MAX_TOKEN_ATTEMPTS", "10"))
BACKOFF_MIN_SEC = 0.010
BACKOFF_MAX_SEC = 0.050


def format_number(prefix: str, value: int) -> str:
    return f"{prefix}-{value:0{NUMBER_WIDTH}d}"


def parse_number(prefix: str, number: Optional[str]) -> Optional[int]:
    if not number or not number.startswith(f"{prefix}-"):
        return None
    suffix = number[len(prefix) + 1:]
    if not (suffix.isascii() and suffix.isdigit()):
        return None
    return int(suffix)


def current_max(db: Session, prefix: str) -> int:
    """Highest numeric suffix in use for `prefix`, 0 when none."""
    column = models.Accreditation.accreditation_number
    rows = (
        db.query(column)
        .filter(column.like(f"{prefix}-%"))
        .order_by(func.length(column).desc(), column.desc())
    )
    for (number,) in rows:
        value = parse_number(prefix, number)
        if value is not None:
            return value
    return 0


def next_accreditation_number(db: Session, prefix: Optional[str] = None) -> str:
    prefix = prefix or ACCREDITATION_NUMBER_PREFIX
    return format_number(prefix, current_max(db, prefix) + 1)


def _number_taken(db: Session, number: str) -> bool:
    return (
        db.query(models.Accreditation.id)
        .filter(models.Accreditation.accreditation_number == number)
        .first()
        is not None
    )


def _backoff() -> None:
    time.sleep(random.uniform(BACKOFF_MIN_SEC, BACKOFF_MAX_SEC))


def insert_with_number(
    db: Session,
    build: Callable[[str], models.Accreditation],
    *,
    prefix: Optional[str] = None,
) -> models.Accreditation:
    """
    Insert the accreditation returned by `build(number)` under a fresh number.

    Integrity errors that are not a number collision (for example the
    identity-document partial indexes) are re-raised for the caller.
    """
    prefix = prefix or ACCREDITATION_NUMBER_PREFIX
    for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
        number = next_accreditation_number(db, prefix)
        accreditation = build(number)
        try:
            with db.begin_nested():
                db.add(accreditation)
                db.flush()
            return accreditation
        except IntegrityError:
            if not _number_taken(db, number):
                raise
            logger.warning(
                "Accreditation number collision, retrying",
                extra={"accreditation_number": number, "attempt": attempt},
            )
            if attempt < MAX_INSERT_ATTEMPTS:
                _backoff()

    logger.error(
        "Accreditation number generation exhausted",
        extra={"prefix": prefix, "attempts": MAX_INSERT_ATTEMPTS},
    )
    raise GenerationExhaustedError("Failed to generate unique accreditation number. Please try again.")


def generate_unique_token(db: Session) -> str:
    """A verification token no other accreditation holds."""
    for attempt in range(1, MAX_TOKEN_ATTEMPTS + 1):
        token = generate_verification_token()
        taken = (
            db.query(models.Accreditation.id)
            .filter(models.Accreditation.verification_token == token)
            .first()
        )
        if taken is None:
            return token
        logger.warning("Verification token collision", extra={"attempt": attempt})

    logger.error("Verification token generation exhausted", extra={"attempts": MAX_TOKEN_ATTEMPTS})
    raise GenerationExhaustedError("Failed to generate QR code token")
