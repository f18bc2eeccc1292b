"""
Recipient resolution for transfers.

A transfer target is looked up by account number first, then by phone.
Phones are not unique, so a phone lookup can end in one of three ways and
the caller gets a tagged result instead of "one account or a list".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import Account
from ..logging_config import get_logger

logger = get_logger("ledger_bank.services.recipients")


@dataclass(frozen=True)
class Resolved:
    account: Account


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class Ambiguous:
    candidates: List[Dict[str, Any]] = field(default_factory=list)


Resolution = Union[Resolved, NotFound, Ambiguous]


def describe_candidate(account: Account) -> Dict[str, Any]:
    return {
        "id": str(account.account_id),
        "name": account.name,
        "account_number": account.account_number,
        "bank_details": account.bank_details,
    }


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


async def resolve_recipient(
    db: AsyncSession,
    account_number: Optional[str] = None,
    phone: Optional[str] = None,
) -> Resolution:
    account_number = _clean(account_number)
    phone = _clean(phone)

    if account_number:
        res = await db.execute(select(Account).where(Account.account_number == account_number))
        account = res.scalars().first()
        if account is None:
            logger.info("No internal account for account_number=%s", account_number)
            return NotFound()
        return Resolved(account)

    if phone:
        res = await db.execute(
            select(Account).where(Account.phone == phone).order_by(Account.account_number)
        )
        matches = res.scalars().all()
        if not matches:
            logger.info("No internal account for phone=%s", phone)
            return NotFound()
        if len(matches) == 1:
            return Resolved(matches[0])
        logger.info("Phone %s matches %d accounts; selection required", phone, len(matches))
        return Ambiguous([describe_candidate(a) for a in matches])

    return NotFound()
