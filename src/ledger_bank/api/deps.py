from typing import AsyncGenerator, Optional
from uuid import UUID

from fastapi import Header, HTTPException, status

from ..db.session import AsyncSessionLocal
from ..logging_config import get_logger
from ..security import account_id_from_token

logger = get_logger("ledger_bank.api.deps")


async def get_db() -> AsyncGenerator:
    """
    Async DB session dependency for FastAPI routes.
    """
    async with AsyncSessionLocal() as session:
        yield session


async def get_current_account_id(authorization: Optional[str] = Header(None)) -> UUID:
    """
    Caller identity from an ``Authorization: Bearer <jwt>`` header.
    Deliberately does not touch the database so services own their transactions.
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    account_id = account_id_from_token(authorization.split(" ", 1)[1].strip())
    if account_id is None:
        logger.warning("Rejected invalid bearer token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return account_id
