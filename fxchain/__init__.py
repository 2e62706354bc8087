"""
fxchain
=======

Transaction lifecycle and agreement coordination for FX-forward agreements
held by an engine contract on an Ethereum-compatible chain.

Quick start
-----------
    import asyncio
    from fxchain import (FxConfig, JsonRpcChainClient, FileSourceProvider, DeploymentTracker,
                         TransactionCorrelator, TokenPermissionLayer, AgreementCoordinator)

    async def main():
        cfg = FxConfig.from_env()
        async with JsonRpcChainClient.from_config(cfg) as chain:
            master, party1, party2 = (await chain.accounts())[:3]
            tracker = DeploymentTracker(chain, FileSourceProvider(cfg.source_dir))
            engine = await tracker.deploy("ContractEngine", master, cfg.gas_limit)
            ...

    asyncio.run(main())
"""

from __future__ import annotations

from .version import __version__, user_agent, version_info
from .config import FxConfig
from .errors import (AbiError, CorrelationFailure, EngineError, FxChainError,
                     PendingTimeout, PreconditionViolation, RpcError,
                     SubmissionError)
from .types import (Agreement, AgreementState, Event, FeedEntry, FxForwardTerms,
                    Party, PendingDeployment, Permission, Receipt, TxHandle)
from .contracts import (ContractHandle, ContractSourceProvider,
                        DeploymentTracker, FileSourceProvider)
from .chain import ChainClient, EventStream, JsonRpcChainClient
from .tx import Correlation, EventMatcher, TransactionCorrelator
from .tokens import TokenPermissionLayer
from .agreements import AgreementCoordinator
from .feed import FeedClient
from .accounts import unlock_all

__all__ = [
    "__version__",
    "user_agent",
    "version_info",
    "FxConfig",
    # errors
    "FxChainError",
    "RpcError",
    "AbiError",
    "EngineError",
    "SubmissionError",
    "PendingTimeout",
    "CorrelationFailure",
    "PreconditionViolation",
    # types
    "Agreement",
    "AgreementState",
    "Event",
    "FeedEntry",
    "FxForwardTerms",
    "Party",
    "PendingDeployment",
    "Permission",
    "Receipt",
    "TxHandle",
    # components
    "ChainClient",
    "EventStream",
    "JsonRpcChainClient",
    "ContractHandle",
    "ContractSourceProvider",
    "FileSourceProvider",
    "DeploymentTracker",
    "Correlation",
    "EventMatcher",
    "TransactionCorrelator",
    "TokenPermissionLayer",
    "AgreementCoordinator",
    "FeedClient",
    "unlock_all",
]
