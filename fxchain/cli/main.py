"""
fxchain.cli.main
================

`fxchain` - operator commands for an engine deployment on a development chain.

Examples
--------
    $ fxchain bootstrap                       # tokens USD/DKK/GBP + feed, endow parties
    $ fxchain deploy-engine
    $ fxchain forward --engine 0x85.. --token USD=0x5f.. --token DKK=0xa9.. --feed 0x6b..
    $ fxchain balances --token USD=0x5f.. --token DKK=0xa9..
    $ fxchain watch 0x5f.. --artifact CurrencyToken --from-block 1810

Accounts default to the node's `eth_accounts`: index 0 is the deployer
("master"), 1 and 2 are the two counterparties.

Configuration
-------------
Every FXCHAIN_* variable understood by `FxConfig.from_env()`; `--rpc`, `--ws`,
`--source-dir` and `--log-level` override them for one invocation.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional, Tuple, TypeVar

import typer

from ..accounts import unlock_all
from ..agreements.coordinator import AgreementCoordinator
from ..chain.jsonrpc import JsonRpcChainClient
from ..config import FxConfig
from ..contracts.client import ContractHandle
from ..contracts.deployer import DeploymentTracker
from ..contracts.source import FileSourceProvider
from ..errors import EngineError, FxChainError
from ..feed import FeedClient
from ..tokens.permissions import TokenPermissionLayer
from ..tx.correlator import TransactionCorrelator
from ..types.core import Event, FxForwardTerms, Party
from ..utils.bytes import is_address, to_hex
from ..version import __version__

log = logging.getLogger(__name__)

T = TypeVar("T")

app = typer.Typer(
    name="fxchain",
    help="Deploy and drive FX-forward agreements on an engine contract.",
    no_args_is_help=True,
    add_completion=False,
)

__all__ = ["app", "main", "run"]


@dataclass
class Ctx:
    cfg: FxConfig


def _print_json(obj: Any) -> None:
    typer.echo(json.dumps(_jsonable(obj), indent=2, ensure_ascii=False))


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, (bytes, bytearray)):
        return to_hex(obj)
    if isinstance(obj, dict):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    if isinstance(obj, Event):
        return {
            "contract": obj.contract_address,
            "event": obj.name,
            "args": _jsonable(obj.as_dict()),
            "tx": obj.origin_tx_id,
            "block": obj.block_number,
        }
    return obj


def _run(coro: Awaitable[T]) -> T:
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except EngineError as e:
        typer.echo(json.dumps(e.context()), err=True)
        raise typer.Exit(code=1) from e
    except FxChainError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1) from e


def _parse_pairs(values: Optional[List[str]], what: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for v in values or []:
        label, sep, addr = v.partition("=")
        if not sep or not label or not addr:
            raise typer.BadParameter(f"{what} must look like LABEL=0xADDRESS, got {v!r}")
        if not is_address(addr):
            raise typer.BadParameter(f"{what}: {addr!r} is not a 20-byte address")
        out[label] = addr
    return out


@app.callback()
def _root(
    ctx: typer.Context,
    rpc: Optional[str] = typer.Option(None, "--rpc", help="Node HTTP JSON-RPC URL."),
    ws: Optional[str] = typer.Option(None, "--ws", help="Node WebSocket URL for log subscriptions."),
    source_dir: Optional[str] = typer.Option(None, "--source-dir", help="Directory with <Name>.abi / <Name>.bin."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ..."),
) -> None:
    cfg = FxConfig.with_overrides(
        FxConfig.from_env(),
        rpc_url=rpc,
        ws_url=ws,
        source_dir=source_dir,
        log_level=log_level.upper() if log_level else None,
    )
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = Ctx(cfg=cfg)


# --- wiring --------------------------------------------------------------------


@dataclass
class _Session:
    cfg: FxConfig
    chain: JsonRpcChainClient
    source: FileSourceProvider
    tracker: DeploymentTracker
    correlator: TransactionCorrelator

    @classmethod
    def open(cls, cfg: FxConfig) -> "_Session":
        chain = JsonRpcChainClient.from_config(cfg)
        source = FileSourceProvider(cfg.source_dir)
        tracker = DeploymentTracker(
            chain,
            source,
            gas_limit=cfg.token_gas_limit,
            poll_interval=cfg.deploy_poll_interval,
            timeout=cfg.deploy_timeout,
        )
        correlator = TransactionCorrelator(
            chain, timeout=cfg.correlation_timeout, receipt_poll_interval=cfg.receipt_poll_interval
        )
        return cls(cfg, chain, source, tracker, correlator)

    def permissions(self, engine: str) -> TokenPermissionLayer:
        return TokenPermissionLayer(self.correlator, self.chain, engine, gas_limit=self.cfg.token_gas_limit)

    async def parties(self, master: Optional[str], party_a: Optional[str], party_b: Optional[str]) -> Tuple[str, str, str]:
        accounts = await self.chain.accounts()
        picked = [master, party_a, party_b]
        for i, v in enumerate(picked):
            if v is None:
                if len(accounts) <= i:
                    raise typer.BadParameter(f"node manages {len(accounts)} accounts; pass addresses explicitly")
                picked[i] = accounts[i]
        return picked[0], picked[1], picked[2]  # type: ignore[return-value]

    async def unlock(self) -> None:
        if self.cfg.account_password:
            await unlock_all(self.chain, self.cfg.account_password)


# --- commands ------------------------------------------------------------------


@app.command("version")
def version(ctx: typer.Context) -> None:
    """Print the fxchain version and, when reachable, the node's client version."""
    cfg: FxConfig = ctx.obj.cfg

    async def _go() -> Dict[str, Any]:
        async with JsonRpcChainClient.from_config(cfg) as chain:
            try:
                node = await chain.client_version()
            except FxChainError as e:
                log.debug("node unreachable: %s", e)
                node = None
        return {"fxchain": __version__, "node": node, "rpc": cfg.rpc_url}

    _print_json(_run(_go()))


@app.command("bootstrap")
def bootstrap(
    ctx: typer.Context,
    currency: Optional[List[str]] = typer.Option(None, "--currency", "-c", help="Token to launch (repeatable)."),
    endowment: int = typer.Option(9_999_999, "--endowment", help="Amount endowed to each counterparty."),
    recompile: bool = typer.Option(False, "--recompile", help="Run recompile.sh before deploying."),
) -> None:
    """Launch currency tokens and a feed, endow both counterparties, record the launch date."""
    cfg: FxConfig = ctx.obj.cfg
    currencies = currency or ["USD", "DKK", "GBP"]

    async def _go() -> Dict[str, Any]:
        s = _Session.open(cfg)
        try:
            if recompile:
                await s.source.recompile()
            await s.unlock()
            master, party1, party2 = await s.parties(None, None, None)
            handles = await s.tracker.deploy_many(
                [("CurrencyToken", (ccy,)) for ccy in currencies] + [("SimpleFeed", ())], creator=master
            )
            tokens, feed = handles[:-1], handles[-1]
            perms = s.permissions(master)
            await asyncio.gather(
                *(perms.endow(t, p, endowment, master) for t in tokens for p in (party1, party2))
            )
            launched = await FeedClient(feed, s.correlator, s.chain, gas_limit=cfg.token_gas_limit).record_launch(master)
            balances = {
                ccy: {p: await perms.balance_of(t, p) for p in (party1, party2)}
                for ccy, t in zip(currencies, tokens)
            }
            return {
                "tokens": {ccy: t.address for ccy, t in zip(currencies, tokens)},
                "feed": feed.address,
                "launchedOn": launched.value,
                "balances": balances,
            }
        finally:
            await s.chain.close()

    _print_json(_run(_go()))


@app.command("deploy-engine")
def deploy_engine(
    ctx: typer.Context,
    artifact: str = typer.Option("ContractEngine", "--artifact", help="Engine artifact name."),
) -> None:
    """Deploy the engine contract and print its address."""
    cfg: FxConfig = ctx.obj.cfg

    async def _go() -> Dict[str, Any]:
        s = _Session.open(cfg)
        try:
            await s.unlock()
            master, _, _ = await s.parties(None, None, None)
            engine = await s.tracker.deploy(artifact, master, cfg.gas_limit)
            return {"engine": engine.address, "artifact": artifact}
        finally:
            await s.chain.close()

    _print_json(_run(_go()))


@app.command("forward")
def forward(
    ctx: typer.Context,
    engine_addr: str = typer.Option(..., "--engine", help="Engine contract address."),
    token: List[str] = typer.Option(..., "--token", help="LABEL=0xADDRESS; party A's currency first (twice)."),
    feed_addr: Optional[str] = typer.Option(None, "--feed", help="Feed contract address."),
    artifact: str = typer.Option("ContractEngine", "--artifact", help="Engine artifact name."),
    label_a: str = typer.Option("X", "--label-a"),
    label_b: str = typer.Option("Y", "--label-b"),
    notional: int = typer.Option(10_000, "--notional"),
    tenor: int = typer.Option(7, "--tenor"),
    maturity_in: int = typer.Option(60, "--maturity-in", help="Seconds from now until maturity."),
    contract_id: Optional[int] = typer.Option(None, "--contract-id", help="Register an existing contract id."),
    kill: bool = typer.Option(False, "--kill", help="Kill the agreement after signing instead of executing."),
) -> None:
    """Create, register, permit, sign and execute (or kill) one FX forward."""
    cfg: FxConfig = ctx.obj.cfg
    tokens = _parse_pairs(token, "--token")
    if len(tokens) != 2:
        raise typer.BadParameter("exactly two --token values are required")

    async def _go() -> Dict[str, Any]:
        s = _Session.open(cfg)
        try:
            await s.unlock()
            master, party1, party2 = await s.parties(None, None, None)
            engine = s.tracker.at(artifact, engine_addr)
            handles = {label: s.tracker.at("CurrencyToken", addr) for label, addr in tokens.items()}
            feed = s.tracker.at("SimpleFeed", feed_addr) if feed_addr else None
            coordinator = AgreementCoordinator(
                s.correlator, engine, s.permissions(engine.address), gas_limit=cfg.gas_limit
            )
            ccy_a, ccy_b = list(handles)
            cid = contract_id
            if cid is None:
                terms = FxForwardTerms(
                    party_a=label_a,
                    party_b=label_b,
                    currency_a=ccy_a,
                    currency_b=ccy_b,
                    maturity=int(time.time()) + maturity_in,
                    notional=notional,
                    tenor=tenor,
                )
                cid = await coordinator.create_fx_forward(terms, master)
            pa, pb = Party(label_a, party1), Party(label_b, party2)
            agreement = await coordinator.register(cid, pa, pb, handles, feed, master)
            for h in handles.values():
                for p in (pa, pb):
                    await coordinator.permit(h, p)
            await coordinator.sign(agreement.id, party1)
            await coordinator.sign(agreement.id, party2)
            out: Dict[str, Any] = {"contractId": cid}
            if kill:
                await coordinator.kill(agreement.id, party1)
            else:
                res = await coordinator.execute(agreement.id, party1)
                out["events"] = list(res.events)
            out["agreement"] = coordinator.get(agreement.id).snapshot()
            return out
        finally:
            await s.chain.close()

    _print_json(_run(_go()))


@app.command("balances")
def balances(
    ctx: typer.Context,
    token: List[str] = typer.Option(..., "--token", help="LABEL=0xADDRESS (repeatable)."),
    party: Optional[List[str]] = typer.Option(None, "--party", help="Address to query (default: accounts 1 and 2)."),
) -> None:
    """Print token balances of the counterparties."""
    cfg: FxConfig = ctx.obj.cfg
    tokens = _parse_pairs(token, "--token")

    async def _go() -> Dict[str, Any]:
        s = _Session.open(cfg)
        try:
            parties = list(party or [])
            if not parties:
                _, p1, p2 = await s.parties(None, None, None)
                parties = [p1, p2]
            out: Dict[str, Any] = {}
            for label, addr in tokens.items():
                h = s.tracker.at("CurrencyToken", addr)
                out[label] = {
                    "name": await s.chain.read_only_call(h, "name"),
                    "balances": {p: await s.chain.read_only_call(h, "balanceOf", [p]) for p in parties},
                }
            return out
        finally:
            await s.chain.close()

    _print_json(_run(_go()))


@app.command("watch")
def watch(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Contract address to follow."),
    artifact: str = typer.Option("CurrencyToken", "--artifact", help="Artifact whose ABI decodes the logs."),
    from_block: Optional[int] = typer.Option(None, "--from-block", help="Start block (default: latest)."),
    limit: Optional[int] = typer.Option(None, "--limit", help="Stop after this many events."),
) -> None:
    """Print decoded events of a contract as they arrive (Ctrl+C to stop)."""
    cfg: FxConfig = ctx.obj.cfg

    async def _go() -> int:
        s = _Session.open(cfg)
        seen = 0
        try:
            handle: ContractHandle = s.tracker.at(artifact, address)
            start = from_block if from_block is not None else await s.chain.block_number()
            stream = await s.chain.subscribe_events([handle], start)
            try:
                async for ev in stream:
                    _print_json(ev)
                    seen += 1
                    if limit is not None and seen >= limit:
                        break
            finally:
                await stream.close()
        finally:
            await s.chain.close()
        return seen

    try:
        _run(_go())
    except KeyboardInterrupt:
        typer.echo("bye")


# --- Entrypoints -----------------------------------------------------------------


def main(argv: Optional[List[str]] = None) -> int:
    """Run the CLI. Returns an integer exit code."""
    try:
        rc = app(prog_name="fxchain", standalone_mode=False, args=argv)
        # click returns the exit code of typer.Exit instead of raising it here
        return rc if isinstance(rc, int) else 0
    except typer.Exit as e:
        return int(e.exit_code)
    except Exception as e:
        typer.echo(f"error: {e}", err=True)
        return 1


def run(argv: Optional[List[str]] = None) -> int:
    """Alias for :func:`main`."""
    return main(argv)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
