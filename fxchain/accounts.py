"""
Node-managed accounts on development chains.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

from fxchain.errors import RpcError

from .chain.base import ChainClient

log = logging.getLogger(__name__)


async def unlock_all(chain: ChainClient, password: str, duration: int = 0) -> List[str]:
    """
    Unlock every account the node manages; returns the accounts that unlocked.

    `duration=0` keeps them unlocked until the node restarts (geth semantics).
    """
    accounts = await chain.accounts()
    results = await asyncio.gather(
        *(chain.unlock_account(a, password, duration) for a in accounts), return_exceptions=True
    )
    unlocked: List[str] = []
    for addr, res in zip(accounts, results):
        if isinstance(res, RpcError):
            log.warning("unlock %s failed: %s", addr, res.message)
        elif isinstance(res, BaseException):
            raise res
        elif res:
            unlocked.append(addr)
        else:
            log.warning("unlock %s refused", addr)
    log.info("unlocked %d/%d accounts", len(unlocked), len(accounts))
    return unlocked


__all__ = ["unlock_all"]
