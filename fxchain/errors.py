"""
Typed error classes for fxchain.

The taxonomy follows the lifecycle of a chain interaction:

- RpcError              the node answered with a JSON-RPC error object, or the
                        transport failed after retries
- AbiError              arguments/return data did not fit the contract ABI
- SubmissionError       the chain rejected or reverted a transaction
- PendingTimeout        no confirmation within the configured bound (retryable)
- CorrelationFailure    the event subscription ended, was cancelled, or the
                        transaction was mined without the awaited event;
                        treated as a PendingTimeout
- PreconditionViolation a lifecycle rule was not met (e.g. execute before both
                        parties signed); carries the specific `condition`

Every engine error names the logical subject (agreement id, contract id or
artifact) and the transition that was attempted, so callers and logs can tell
*what* failed without unpacking tracebacks.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional

__all__ = [
    "FxChainError",
    "RpcError",
    "AbiError",
    "EngineError",
    "SubmissionError",
    "PendingTimeout",
    "CorrelationFailure",
    "PreconditionViolation",
    "JsonRpcCode",
    "from_jsonrpc_error",
]


class FxChainError(Exception):
    """Base class for all fxchain errors."""


class JsonRpcCode(IntEnum):
    # JSON-RPC 2.0 spec
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Server errors (implementation-defined range: -32099 to -32000)
    SERVER_ERROR = -32000

    # Local: transport gave up after retries
    TRANSPORT_FAILED = -32098


@dataclass(eq=False)
class RpcError(FxChainError):
    """Raised when a JSON-RPC call returns an error object or cannot be delivered."""

    code: int
    message: str
    method: Optional[str] = None
    data: Optional[Any] = None
    http_status: Optional[int] = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        parts = [f"RPC[{self.method or '-'}] code={self.code} msg={self.message!r}"]
        if self.http_status is not None:
            parts.append(f"http={self.http_status}")
        if self.data is not None:
            parts.append(f"data={self.data!r}")
        return " ".join(parts)

    @property
    def code_enum(self) -> Optional[JsonRpcCode]:
        try:
            return JsonRpcCode(self.code)
        except ValueError:
            return None


@dataclass(eq=False)
class AbiError(FxChainError):
    """
    Raised when ABI encoding/decoding or lookup fails.

    Typical causes: unknown method, wrong argument count, out-of-range integers,
    malformed addresses or truncated return data.
    """

    message: str
    function: Optional[str] = None
    parameter: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        where = []
        if self.function:
            where.append(f"fn={self.function}")
        if self.parameter:
            where.append(f"param={self.parameter}")
        where_s = (" [" + ", ".join(where) + "]") if where else ""
        return f"AbiError{where_s}: {self.message}"


@dataclass(eq=False)
class EngineError(FxChainError):
    """
    Common shape of lifecycle errors.

    Fields:
      - message: human-readable description
      - subject: logical id the operation was about ("agreement 0", "contract 6",
        "artifact CurrencyToken", ...)
      - transition: the operation attempted ("register", "sign", "deploy", ...)
      - tx_id: transaction hash if one was submitted
    """

    message: str
    subject: Optional[str] = None
    transition: Optional[str] = None
    tx_id: Optional[str] = None

    def __str__(self) -> str:
        bits = [f"{type(self).__name__}:"]
        if self.transition:
            bits.append(f"[{self.transition}]")
        if self.subject:
            bits.append(f"{self.subject}:")
        bits.append(self.message)
        if self.tx_id:
            bits.append(f"(tx={self.tx_id})")
        return " ".join(bits)

    def context(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "subject": self.subject,
            "transition": self.transition,
            "tx_id": self.tx_id,
        }


@dataclass(eq=False)
class SubmissionError(EngineError):
    """The chain rejected the transaction outright, or it was mined and reverted."""

    reverted: bool = False


@dataclass(eq=False)
class PendingTimeout(EngineError):
    """No confirmation within the configured bound. Retryable; never a rejection."""

    waited_s: Optional[float] = None


@dataclass(eq=False)
class CorrelationFailure(PendingTimeout):
    """
    The subscription closed, was cancelled or exhausted before a matching event arrived.

    `mined` is set when the transaction's receipt showed it succeeded but it
    emitted no event the caller was waiting for.
    """

    mined: bool = False


@dataclass(eq=False)
class PreconditionViolation(EngineError):
    """A lifecycle rule was not met; `condition` names which one."""

    condition: Optional[str] = None

    def __str__(self) -> str:
        base = EngineError.__str__(self)
        return f"{base} <{self.condition}>" if self.condition else base


def from_jsonrpc_error(
    err_obj: Dict[str, Any],
    *,
    method: Optional[str] = None,
    http_status: Optional[int] = None,
) -> RpcError:
    """
    Convert a JSON-RPC error object into RpcError.

    `err_obj` should resemble: {"code": int, "message": str, "data": any?}
    """
    if not isinstance(err_obj, dict):
        err_obj = {"message": str(err_obj)}
    return RpcError(
        code=int(err_obj.get("code", JsonRpcCode.SERVER_ERROR)),
        message=str(err_obj.get("message", "Unknown JSON-RPC error")),
        method=method,
        data=err_obj.get("data"),
        http_status=http_status,
    )
