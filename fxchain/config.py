"""
fxchain configuration: RPC endpoints, polling intervals, wait bounds and gas.

- Loads sane defaults and supports overrides via environment variables (FXCHAIN_*).
- Every wait the engine performs (mining, receipts, event correlation) has an
  explicit, configurable bound here.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from .version import user_agent

_DEFAULT_RPC = "http://localhost:8545"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    return v if v is not None and v != "" else default


def _ensure_scheme(url: Optional[str], allowed: tuple[str, ...]) -> Optional[str]:
    if not url:
        return url
    lower = url.lower()
    if not any(lower.startswith(f"{sch}://") for sch in allowed):
        raise ValueError(f"URL must start with {allowed}, got: {url!r}")
    return url


@dataclass(slots=True)
class FxConfig:
    # Endpoints
    rpc_url: str = field(default_factory=lambda: _DEFAULT_RPC)
    ws_url: Optional[str] = None
    # HTTP/WS behavior
    request_timeout: float = 10.0
    ws_connect_timeout: float = 10.0
    max_retries: int = 3
    backoff_base: float = 0.15
    # Deployment tracker
    deploy_poll_interval: float = 1.0
    deploy_timeout: float = 120.0
    # Transaction correlator
    correlation_timeout: float = 120.0
    filter_poll_interval: float = 0.5
    receipt_poll_interval: float = 1.0
    # Gas
    gas_limit: int = 10_000_000
    token_gas_limit: int = 1_000_000
    # Artifacts / accounts
    source_dir: str = "./source"
    account_password: Optional[str] = None
    # Logging
    log_level: str = "INFO"
    user_agent: str = field(default_factory=user_agent)

    @classmethod
    def from_env(cls, prefix: str = "FXCHAIN_") -> "FxConfig":
        """
        Create config from environment variables:

        FXCHAIN_RPC_URL              (http/https)
        FXCHAIN_WS_URL               (ws/wss) optional, enables push log subscriptions
        FXCHAIN_TIMEOUT              (float seconds, per HTTP request)
        FXCHAIN_MAX_RETRIES          (int)
        FXCHAIN_BACKOFF              (float seconds, first retry delay)
        FXCHAIN_DEPLOY_POLL          (float seconds)
        FXCHAIN_DEPLOY_TIMEOUT       (float seconds)
        FXCHAIN_CORRELATION_TIMEOUT  (float seconds)
        FXCHAIN_FILTER_POLL          (float seconds)
        FXCHAIN_RECEIPT_POLL         (float seconds)
        FXCHAIN_GAS_LIMIT            (int, engine/agreement calls)
        FXCHAIN_TOKEN_GAS_LIMIT      (int, token/feed calls and deploys)
        FXCHAIN_SOURCE_DIR           (path with <Name>.abi / <Name>.bin)
        FXCHAIN_ACCOUNT_PASSWORD     (dev chains: password for personal_unlockAccount)
        FXCHAIN_LOG_LEVEL            (DEBUG/INFO/WARNING/...)
        """
        rpc = _env(f"{prefix}RPC_URL", _DEFAULT_RPC)
        ws = _env(f"{prefix}WS_URL")
        _ensure_scheme(rpc, ("http", "https"))
        _ensure_scheme(ws, ("ws", "wss"))

        return cls(
            rpc_url=rpc or _DEFAULT_RPC,
            ws_url=ws,
            request_timeout=float(_env(f"{prefix}TIMEOUT", "10.0")),
            max_retries=int(_env(f"{prefix}MAX_RETRIES", "3")),
            backoff_base=float(_env(f"{prefix}BACKOFF", "0.15")),
            deploy_poll_interval=float(_env(f"{prefix}DEPLOY_POLL", "1.0")),
            deploy_timeout=float(_env(f"{prefix}DEPLOY_TIMEOUT", "120.0")),
            correlation_timeout=float(_env(f"{prefix}CORRELATION_TIMEOUT", "120.0")),
            filter_poll_interval=float(_env(f"{prefix}FILTER_POLL", "0.5")),
            receipt_poll_interval=float(_env(f"{prefix}RECEIPT_POLL", "1.0")),
            gas_limit=int(_env(f"{prefix}GAS_LIMIT", "10000000")),
            token_gas_limit=int(_env(f"{prefix}TOKEN_GAS_LIMIT", "1000000")),
            source_dir=_env(f"{prefix}SOURCE_DIR", "./source") or "./source",
            account_password=_env(f"{prefix}ACCOUNT_PASSWORD"),
            log_level=(_env(f"{prefix}LOG_LEVEL", "INFO") or "INFO").upper(),
        )

    @classmethod
    def with_overrides(
        cls, base: Optional["FxConfig"] = None, **overrides: Any
    ) -> "FxConfig":
        """
        Build from an existing config plus keyword overrides.
        Unknown keys and None values are ignored.
        """
        base = base or cls.from_env()
        data = base.to_dict()
        data.update({k: v for k, v in overrides.items() if k in data and v is not None})
        if "rpc_url" in overrides:
            _ensure_scheme(data["rpc_url"], ("http", "https"))
        if "ws_url" in overrides:
            _ensure_scheme(data["ws_url"], ("ws", "wss"))
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def redacted(self) -> Dict[str, Any]:
        """Like to_dict() but safe to print or log."""
        out = self.to_dict()
        if out.get("account_password"):
            out["account_password"] = "***"
        return out


__all__ = ["FxConfig"]
