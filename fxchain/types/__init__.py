"""
fxchain.types
-------------

Value types (core) and the contract ABI codec (abi).
"""

from .abi import AbiModel, decode_abi, encode_abi, event_topic, function_selector
from .core import (KILLABLE, SIGNABLE, Agreement, AgreementState, Event,
                   FeedEntry, FxForwardTerms, Party, PendingDeployment,
                   Permission, Receipt, TxHandle)

__all__ = [
    "AbiModel",
    "encode_abi",
    "decode_abi",
    "event_topic",
    "function_selector",
    "TxHandle",
    "Receipt",
    "Event",
    "PendingDeployment",
    "Party",
    "FxForwardTerms",
    "AgreementState",
    "SIGNABLE",
    "KILLABLE",
    "Agreement",
    "Permission",
    "FeedEntry",
]
