from __future__ import annotations

"""
Contract ABI datatypes, validation and the Ethereum ABI codec.

This module defines:
- TypedDict shapes for solc-style ABI entries (functions/constructor/events)
- A small validator/normalizer for ABI lists (tolerates pre-0.4.16 `constant`)
- Helpers to compute canonical signatures, 4-byte selectors and event topics
- `encode_abi` / `decode_abi` for the head/tail encoding used by calldata,
  return data and log data

Supported types: uint<M>, int<M>, address, bool, bytes<M>, bytes, string and
arrays (`T[]`, `T[k]`) of any of them. Tuples are not used by the contracts we
talk to and are rejected.
"""

import re
from dataclasses import dataclass, field
from typing import (Any, Dict, List, Literal, Mapping, Optional, Sequence,
                    Tuple, TypedDict, Union)

from fxchain.errors import AbiError
from fxchain.utils.bytes import ensure_bytes, normalize_address, to_hex
from fxchain.utils.hash import keccak256

WORD = 32

# --- Type-string parsing -----------------------------------------------------

_ALIASES = {"uint": "uint256", "int": "int256", "byte": "bytes1"}
_INT_RE = re.compile(r"^(u?int)(\d+)$")
_FIXED_BYTES_RE = re.compile(r"^bytes(\d+)$")
_ARRAY_RE = re.compile(r"^(.*)\[(\d*)\]$")


def canonical_type(type_str: str) -> str:
    """Normalize an ABI type string (`uint` -> `uint256`, strip spaces) and validate it."""
    s = re.sub(r"\s+", "", str(type_str))
    m = _ARRAY_RE.match(s)
    if m:
        inner, size = m.group(1), m.group(2)
        if size and int(size) <= 0:
            raise AbiError(f"fixed array dimension must be positive: {type_str}")
        return f"{canonical_type(inner)}[{size}]"
    s = _ALIASES.get(s, s)
    m = _INT_RE.match(s)
    if m:
        bits = int(m.group(2))
        if bits % 8 != 0 or not 8 <= bits <= 256:
            raise AbiError(f"invalid integer width: {type_str}")
        return s
    m = _FIXED_BYTES_RE.match(s)
    if m:
        if not 1 <= int(m.group(1)) <= 32:
            raise AbiError(f"invalid fixed bytes width: {type_str}")
        return s
    if s in ("address", "bool", "bytes", "string"):
        return s
    raise AbiError(f"unsupported ABI type: {type_str}")


def _split_array(t: str) -> Optional[Tuple[str, Optional[int]]]:
    m = _ARRAY_RE.match(t)
    if not m:
        return None
    size = m.group(2)
    return m.group(1), (int(size) if size else None)


def is_dynamic(t: str) -> bool:
    if t in ("bytes", "string"):
        return True
    arr = _split_array(t)
    if arr is None:
        return False
    inner, size = arr
    return size is None or is_dynamic(inner)


def _head_size(t: str) -> int:
    """Bytes a value of type `t` occupies in the head section."""
    if is_dynamic(t):
        return WORD
    arr = _split_array(t)
    if arr is not None:
        inner, size = arr
        return int(size or 0) * _head_size(inner)
    return WORD


# --- ABI shapes --------------------------------------------------------------


class AbiParam(TypedDict, total=False):
    name: str
    type: str
    indexed: bool  # only meaningful for event inputs


class AbiFunction(TypedDict, total=False):
    type: Literal["function", "constructor"]
    name: str
    inputs: List[AbiParam]
    outputs: List[AbiParam]
    stateMutability: Literal["view", "pure", "nonpayable", "payable"]


class AbiEvent(TypedDict, total=False):
    type: Literal["event"]
    name: str
    inputs: List[AbiParam]
    anonymous: bool


AbiEntry = Union[AbiFunction, AbiEvent]
Abi = List[AbiEntry]


# --- Validation & normalization ---------------------------------------------


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise AbiError(msg)


def _validate_param(p: Any, ctx: str) -> AbiParam:
    _require(isinstance(p, Mapping), f"{ctx}: parameter must be an object")
    name = p.get("name", "") or ""
    _require(isinstance(name, str), f"{ctx}: param.name must be string")
    typ = p.get("type")
    _require(isinstance(typ, str), f"{ctx}: param.type must be string")
    out: AbiParam = {"name": name, "type": canonical_type(typ)}
    if "indexed" in p:
        out["indexed"] = bool(p["indexed"])
    return out


def _mutability(e: Mapping[str, Any]) -> str:
    mut = e.get("stateMutability")
    if mut is None:
        # solc < 0.4.16 only emitted constant/payable flags
        if e.get("constant"):
            mut = "view"
        elif e.get("payable"):
            mut = "payable"
        else:
            mut = "nonpayable"
    _require(mut in ("view", "pure", "nonpayable", "payable"), f"invalid stateMutability: {mut}")
    return mut


def validate_abi(abi: Any) -> Abi:
    """
    Validate and normalize a solc ABI (list of entries).
    - Ensures structure is correct
    - Canonicalizes all type strings
    - Keeps function, constructor and event entries; drops fallback/receive/error
    Returns a new normalized list (does not mutate input).
    """
    _require(isinstance(abi, (list, tuple)), "ABI must be a list of entries")
    out: List[AbiEntry] = []
    for i, raw in enumerate(abi):
        _require(isinstance(raw, Mapping), f"ABI entry at index {i} must be an object")
        etype = raw.get("type", "function")
        if etype in ("fallback", "receive", "error"):
            continue
        _require(etype in ("function", "constructor", "event"), f"unsupported ABI entry type: {etype}")
        name = raw.get("name", "") if etype != "constructor" else ""
        if etype != "constructor":
            _require(isinstance(name, str) and bool(name), f"{etype}.name must be non-empty string")
        inputs = raw.get("inputs", []) or []
        _require(isinstance(inputs, list), f"{etype} {name}: inputs must be a list")
        v_inputs = [_validate_param(p, f"{etype} {name} input") for p in inputs]
        if etype == "event":
            out.append(
                {
                    "type": "event",
                    "name": name,
                    "inputs": v_inputs,
                    "anonymous": bool(raw.get("anonymous", False)),
                }
            )
            continue
        outputs = raw.get("outputs", []) or []
        _require(isinstance(outputs, list), f"{etype} {name}: outputs must be a list")
        out.append(
            {
                "type": etype,  # type: ignore[typeddict-item]
                "name": name,
                "inputs": v_inputs,
                "outputs": [_validate_param(p, f"{etype} {name} output") for p in outputs],
                "stateMutability": _mutability(raw),  # type: ignore[typeddict-item]
            }
        )
    return out


# --- Signatures, selectors, topics ------------------------------------------


def canonical_signature(name: str, inputs: Sequence[AbiParam]) -> str:
    """e.g. transferFrom(address,address,uint256)"""
    return f"{name}(" + ",".join(canonical_type(p["type"]) for p in inputs) + ")"


def function_selector(fn: Union[AbiFunction, Tuple[str, Sequence[AbiParam]]]) -> bytes:
    """First 4 bytes of keccak256(signature)."""
    if isinstance(fn, tuple):
        name, inputs = fn
    else:
        name, inputs = fn["name"], fn.get("inputs", [])
    return keccak256(canonical_signature(name, inputs), text=True)[:4]


def event_topic(ev: Union[AbiEvent, Tuple[str, Sequence[AbiParam]]]) -> bytes:
    """Full 32-byte keccak256 of the event signature (indexed and non-indexed inputs)."""
    if isinstance(ev, tuple):
        name, inputs = ev
    else:
        name, inputs = ev["name"], ev.get("inputs", [])
    return keccak256(canonical_signature(name, inputs), text=True)


# --- Encoding ----------------------------------------------------------------


def _uint_word(n: int) -> bytes:
    return int(n).to_bytes(WORD, "big")


def _pad_right(b: bytes) -> bytes:
    rem = len(b) % WORD
    return b if rem == 0 else b + b"\x00" * (WORD - rem)


def _as_bytes(value: Any, t: str) -> bytes:
    if isinstance(value, str):
        try:
            return ensure_bytes(value)
        except ValueError as e:
            raise AbiError(f"expected hex for {t}: {e}") from e
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise AbiError(f"expected bytes for {t}, got {type(value).__name__}")


def _encode_static(t: str, value: Any) -> bytes:
    m = _INT_RE.match(t)
    if m:
        if isinstance(value, bool) or not isinstance(value, int):
            raise AbiError(f"expected int for {t}, got {type(value).__name__}")
        bits = int(m.group(2))
        if m.group(1) == "uint":
            if not 0 <= value < (1 << bits):
                raise AbiError(f"value out of range for {t}: {value}")
            return _uint_word(value)
        lo, hi = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
        if not lo <= value <= hi:
            raise AbiError(f"value out of range for {t}: {value}")
        return _uint_word(value % (1 << 256))
    if t == "bool":
        if not isinstance(value, bool):
            raise AbiError(f"expected bool, got {type(value).__name__}")
        return _uint_word(1 if value else 0)
    if t == "address":
        try:
            raw = ensure_bytes(normalize_address(value))
        except (TypeError, ValueError) as e:
            raise AbiError(f"invalid address {value!r}: {e}") from e
        return b"\x00" * 12 + raw
    m = _FIXED_BYTES_RE.match(t)
    if m:
        size = int(m.group(1))
        raw = _as_bytes(value, t)
        if len(raw) > size:
            raise AbiError(f"{t} value too long ({len(raw)} bytes)")
        return raw + b"\x00" * (WORD - len(raw))
    arr = _split_array(t)
    if arr is not None:
        inner, size = arr
        seq = list(value)
        if size is None or len(seq) != size:
            raise AbiError(f"{t} expects {size} elements, got {len(seq)}")
        return b"".join(_encode_static(inner, v) for v in seq)
    raise AbiError(f"not a static type: {t}")


def _encode_dynamic(t: str, value: Any) -> bytes:
    if t == "string":
        if not isinstance(value, str):
            raise AbiError(f"expected str, got {type(value).__name__}")
        raw = value.encode("utf-8")
        return _uint_word(len(raw)) + _pad_right(raw)
    if t == "bytes":
        raw = _as_bytes(value, t)
        return _uint_word(len(raw)) + _pad_right(raw)
    arr = _split_array(t)
    if arr is None:
        raise AbiError(f"not a dynamic type: {t}")
    inner, size = arr
    if isinstance(value, (str, bytes)):
        raise AbiError(f"expected a sequence for {t}")
    seq = list(value)
    if size is None:
        return _uint_word(len(seq)) + encode_abi([inner] * len(seq), seq)
    if len(seq) != size:
        raise AbiError(f"{t} expects {size} elements, got {len(seq)}")
    return encode_abi([inner] * size, seq)


def encode_abi(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """Head/tail encode `values` according to `types`."""
    types = [canonical_type(t) for t in types]
    if len(types) != len(values):
        raise AbiError(f"expected {len(types)} values, got {len(values)}")
    head_len = sum(_head_size(t) for t in types)
    heads: List[bytes] = []
    tails: List[bytes] = []
    tail_len = 0
    for t, v in zip(types, values):
        if is_dynamic(t):
            heads.append(_uint_word(head_len + tail_len))
            enc = _encode_dynamic(t, v)
            tails.append(enc)
            tail_len += len(enc)
        else:
            heads.append(_encode_static(t, v))
    return b"".join(heads) + b"".join(tails)


# --- Decoding ----------------------------------------------------------------


def _read_word(data: bytes, offset: int) -> bytes:
    if offset < 0 or offset + WORD > len(data):
        raise AbiError(f"data too short: need word at {offset}, have {len(data)} bytes")
    return data[offset : offset + WORD]


def _read_uint(data: bytes, offset: int) -> int:
    return int.from_bytes(_read_word(data, offset), "big")


def decode_word(t: str, word: bytes) -> Any:
    """Decode a single 32-byte word of static, non-array type `t` (also used for topics)."""
    m = _INT_RE.match(t)
    if m:
        n = int.from_bytes(word, "big")
        if m.group(1) == "int" and n >= (1 << 255):
            n -= 1 << 256
        return n
    if t == "bool":
        return int.from_bytes(word, "big") != 0
    if t == "address":
        return to_hex(word[12:])
    m = _FIXED_BYTES_RE.match(t)
    if m:
        return bytes(word[: int(m.group(1))])
    # Indexed dynamic values are only present as their keccak256 hash
    return bytes(word)


def _decode_at(t: str, data: bytes, base: int, head: int) -> Any:
    """Decode value of type `t` whose head is at absolute offset `head`; dynamic tails are relative to `base`."""
    if is_dynamic(t):
        start = base + _read_uint(data, head)
        if t in ("bytes", "string"):
            length = _read_uint(data, start)
            raw = data[start + WORD : start + WORD + length]
            if len(raw) != length:
                raise AbiError(f"{t} payload truncated")
            return raw.decode("utf-8", errors="replace") if t == "string" else bytes(raw)
        inner, size = _split_array(t)  # type: ignore[misc]
        if size is None:
            size = _read_uint(data, start)
            start += WORD
        return list(decode_abi([inner] * size, data, offset=start))
    arr = _split_array(t)
    if arr is not None:
        inner, size = arr
        step = _head_size(inner)
        return [_decode_at(inner, data, base, head + i * step) for i in range(int(size or 0))]
    return decode_word(t, _read_word(data, head))


def decode_abi(types: Sequence[str], data: bytes, *, offset: int = 0) -> Tuple[Any, ...]:
    """Decode head/tail encoded `data` into a tuple of Python values."""
    types = [canonical_type(t) for t in types]
    out: List[Any] = []
    head = offset
    for t in types:
        out.append(_decode_at(t, data, offset, head))
        head += _head_size(t)
    return tuple(out)


# --- Convenience model -------------------------------------------------------


@dataclass(frozen=True, eq=False)
class AbiModel:
    """
    Index over a validated ABI: functions by name (overloads kept in order),
    events by name and by topic, and the constructor.
    """

    entries: Tuple[AbiEntry, ...]
    functions: Dict[str, Tuple[AbiFunction, ...]] = field(default_factory=dict)
    events: Dict[str, AbiEvent] = field(default_factory=dict)
    topics: Dict[bytes, AbiEvent] = field(default_factory=dict)
    constructor: Optional[AbiFunction] = None

    @staticmethod
    def from_list(entries: Any) -> "AbiModel":
        v = validate_abi(entries)
        fns: Dict[str, List[AbiFunction]] = {}
        evs: Dict[str, AbiEvent] = {}
        topics: Dict[bytes, AbiEvent] = {}
        ctor: Optional[AbiFunction] = None
        for e in v:
            if e["type"] == "function":
                fns.setdefault(e["name"], []).append(e)  # type: ignore[arg-type]
            elif e["type"] == "constructor":
                ctor = e  # type: ignore[assignment]
            else:
                evs[e["name"]] = e  # type: ignore[assignment]
                if not e.get("anonymous"):
                    topics[event_topic(e)] = e  # type: ignore[arg-type]
        return AbiModel(
            entries=tuple(v),
            functions={k: tuple(vs) for k, vs in fns.items()},
            events=evs,
            topics=topics,
            constructor=ctor,
        )

    def get_function(self, name: str, arg_count: Optional[int] = None) -> AbiFunction:
        overloads = self.functions.get(name)
        if not overloads:
            raise AbiError("function not found in ABI", function=name)
        if arg_count is None:
            return overloads[0]
        for fn in overloads:
            if len(fn.get("inputs", [])) == arg_count:
                return fn
        raise AbiError(f"no overload taking {arg_count} arguments", function=name)

    def get_event(self, name: str) -> AbiEvent:
        try:
            return self.events[name]
        except KeyError:
            raise AbiError("event not found in ABI", function=name) from None

    def encode_call(self, name: str, args: Sequence[Any]) -> bytes:
        fn = self.get_function(name, len(args))
        types = [p["type"] for p in fn.get("inputs", [])]
        try:
            return function_selector(fn) + encode_abi(types, list(args))
        except AbiError as e:
            raise AbiError(e.message, function=name, parameter=e.parameter) from e

    def decode_output(self, name: str, data: bytes, arg_count: Optional[int] = None) -> Any:
        """Decode return data; a single output is returned bare, several as a tuple."""
        fn = self.get_function(name, arg_count)
        types = [p["type"] for p in fn.get("outputs", [])]
        if not types:
            return None
        values = decode_abi(types, data)
        return values[0] if len(values) == 1 else values

    def encode_constructor(self, args: Sequence[Any]) -> bytes:
        inputs = self.constructor.get("inputs", []) if self.constructor else []
        if len(inputs) != len(args):
            raise AbiError(f"constructor expects {len(inputs)} arguments, got {len(args)}", function="constructor")
        return encode_abi([p["type"] for p in inputs], list(args))

    def decode_log(self, topics: Sequence[bytes], data: bytes) -> Optional[Tuple[AbiEvent, Tuple[str, ...], Tuple[Any, ...]]]:
        """
        Decode a raw log. Returns (event, names, values) in declaration order, or
        None when the first topic is not one of our events.
        """
        if not topics:
            return None
        ev = self.topics.get(bytes(topics[0]))
        if ev is None:
            return None
        inputs = ev.get("inputs", [])
        indexed = [p for p in inputs if p.get("indexed")]
        if len(topics) - 1 != len(indexed):
            raise AbiError(f"expected {len(indexed)} indexed topics, got {len(topics) - 1}", function=ev["name"])
        plain_values = iter(decode_abi([p["type"] for p in inputs if not p.get("indexed")], data))
        topic_values = iter(topics[1:])
        names: List[str] = []
        values: List[Any] = []
        for i, p in enumerate(inputs):
            names.append(p.get("name") or f"arg{i}")
            if p.get("indexed"):
                values.append(decode_word(p["type"], bytes(next(topic_values))))
            else:
                values.append(next(plain_values))
        return ev, tuple(names), tuple(values)


__all__ = [
    "AbiParam",
    "AbiFunction",
    "AbiEvent",
    "AbiEntry",
    "Abi",
    "AbiModel",
    "validate_abi",
    "canonical_type",
    "is_dynamic",
    "canonical_signature",
    "function_selector",
    "event_topic",
    "encode_abi",
    "decode_abi",
    "decode_word",
]
