"""
fxchain.contracts.deployer
==========================

Deployment Tracker: submit a compiled artifact and wait until the chain
assigns it an address.

    tracker = DeploymentTracker(chain, FileSourceProvider("./source"))
    usd = await tracker.deploy("CurrencyToken", master, None, "USD")
    feed, engine = await tracker.deploy_many(
        [("SimpleFeed", ()), ("ContractEngine", ())], creator=master
    )

Outcomes of a deployment
------------------------
* submission rejected            -> SubmissionError (no polling)
* pending                        -> logged at DEBUG, keep polling
* RpcError while polling         -> logged at WARNING, keep polling
* address assigned               -> bound ContractHandle; `on_deployed` fires once
* creation reverted / no address -> SubmissionError(reverted=True)
* not mined within `timeout`     -> PendingTimeout (retryable, never a rejection)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, List, Optional, Sequence, Tuple

from fxchain.errors import PendingTimeout, RpcError, SubmissionError
from fxchain.types.abi import AbiModel
from fxchain.utils.bytes import ensure_bytes

from ..chain.base import ChainClient
from .client import ContractHandle
from .source import ContractSourceProvider

log = logging.getLogger(__name__)

OnDeployed = Callable[[ContractHandle], None]


class DeploymentTracker:
    def __init__(
        self,
        chain: ChainClient,
        source: ContractSourceProvider,
        *,
        gas_limit: int = 1_000_000,
        poll_interval: float = 1.0,
        timeout: float = 120.0,
        on_deployed: Optional[OnDeployed] = None,
    ) -> None:
        self.chain = chain
        self.source = source
        self.gas_limit = int(gas_limit)
        self.poll_interval = float(poll_interval)
        self.timeout = float(timeout)
        self.on_deployed = on_deployed

    def at(self, name: str, address: str) -> ContractHandle:
        """Bind an existing deployment of `name`."""
        return ContractHandle.bind(name, address, self.source.get_abi(name))

    async def deploy(
        self,
        artifact: str,
        creator: str,
        gas_limit: Optional[int] = None,
        *ctor_args: Any,
        timeout: Optional[float] = None,
    ) -> ContractHandle:
        model = AbiModel.from_list(self.source.get_abi(artifact))
        code = ensure_bytes(self.source.get_code(artifact)) + model.encode_constructor(ctor_args)
        gas = int(gas_limit) if gas_limit is not None else self.gas_limit

        pending = await self.chain.deploy(code, creator, gas, artifact=artifact)
        log.info("%s submitted (tx=%s)", artifact, pending.submitted_tx_id)

        bound = self.timeout if timeout is None else float(timeout)
        started = time.monotonic()
        deadline = started + bound
        polls = 0
        while True:
            try:
                pending = await self.chain.refresh_deployment(pending)
            except RpcError as e:
                log.warning("%s status unavailable, retrying (tx=%s): %s", artifact, pending.submitted_tx_id, e)
            else:
                if pending.resolved:
                    break
                if pending.failed:
                    raise SubmissionError(
                        f"creation failed: {pending.failure}",
                        subject=f"artifact {artifact}",
                        transition="deploy",
                        tx_id=pending.submitted_tx_id,
                        reverted=True,
                    )
            polls += 1
            log.debug("%s waiting to be mined (poll %d, tx=%s)", artifact, polls, pending.submitted_tx_id)
            if time.monotonic() >= deadline:
                raise PendingTimeout(
                    f"not mined after {bound:.1f}s",
                    subject=f"artifact {artifact}",
                    transition="deploy",
                    tx_id=pending.submitted_tx_id,
                    waited_s=time.monotonic() - started,
                )
            await asyncio.sleep(self.poll_interval)

        handle = ContractHandle(name=artifact, address=pending.resolved_address, model=model)
        log.info("%s deployed at %s", artifact, handle.address)
        if self.on_deployed is not None:
            self.on_deployed(handle)
        return handle

    async def deploy_many(
        self,
        artifacts: Sequence[Tuple[str, Sequence[Any]]],
        *,
        creator: str,
        gas_limit: Optional[int] = None,
    ) -> List[ContractHandle]:
        """Deploy independent artifacts concurrently; results in input order."""
        return list(
            await asyncio.gather(
                *(self.deploy(name, creator, gas_limit, *args) for name, args in artifacts)
            )
        )


__all__ = ["DeploymentTracker", "OnDeployed"]
