"""
fxchain.chain
-------------

Chain Client protocol and the JSON-RPC implementation.

    from fxchain.chain import JsonRpcChainClient
    chain = JsonRpcChainClient.from_config(FxConfig.from_env())
"""

from .base import ChainClient, EventStream
from .jsonrpc import JsonRpcChainClient
from .streams import BaseEventStream, FilterEventStream, WsEventStream

__all__ = [
    "ChainClient",
    "EventStream",
    "JsonRpcChainClient",
    "BaseEventStream",
    "FilterEventStream",
    "WsEventStream",
]
