"""
fxchain.rpc
-----------

Transport helpers.

This package exposes:
- RpcClient: async HTTP JSON-RPC client (see .http)
- WsClient:  async WebSocket client for eth_subscribe streams (see .ws)

Import style:

    from fxchain.rpc import RpcClient, WsClient
    rpc = RpcClient(url="http://localhost:8545")
    ws  = WsClient(url="ws://localhost:8546")
"""

from __future__ import annotations

from .http import RpcClient
from .ws import WsClient

__all__ = ["RpcClient", "WsClient"]
