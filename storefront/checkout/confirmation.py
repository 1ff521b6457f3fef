"""
Page de succès: attente bornée de la commande créée par le webhook.
Le webhook peut arriver après la redirection du client; on interroge le registre
au plus `attempts` fois, espacées de `interval` secondes, puis on abandonne (état "pending").
"""
import asyncio
import logging
from typing import Awaitable, Callable

from starlette.concurrency import run_in_threadpool

from storefront.config import CONFIRMATION_POLL_ATTEMPTS, CONFIRMATION_POLL_INTERVAL
from storefront.orders.service import is_session_confirmed

logger = logging.getLogger(__name__)

async def wait_for_confirmation(
    session_id: str,
    *,
    attempts: int = CONFIRMATION_POLL_ATTEMPTS,
    interval: float = CONFIRMATION_POLL_INTERVAL,
    lookup: Callable[[str], bool] = is_session_confirmed,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    for attempt in range(1, max(1, attempts) + 1):
        if await run_in_threadpool(lookup, session_id):
            return True
        if attempt < attempts:
            await sleep(interval)
    logger.info("checkout.confirmation: commande non confirmée après %s tentatives session=%s", attempts, session_id)
    return False
