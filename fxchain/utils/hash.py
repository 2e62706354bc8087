from __future__ import annotations

from typing import Union

from Crypto.Hash import keccak as _keccak

from .bytes import BytesLike, ensure_bytes, to_hex

# --- Keccak-256 (Ethereum-style) ----------------------------------------------
# CPython's hashlib exposes NIST SHA3 but not the original Keccak padding that
# Ethereum uses for selectors, event topics and web3.sha3(). pycryptodome
# provides it as Crypto.Hash.keccak.


def keccak256(data: Union[BytesLike, str], *, text: bool = False) -> bytes:
    """
    Return the Keccak-256 digest of *data*.

    With `text=True` a str is hashed as UTF-8 text (like `web3.sha3("label")`);
    otherwise a str is interpreted as hex.
    """
    if text:
        if not isinstance(data, str):
            raise TypeError("text=True expects a str")
        payload = data.encode("utf-8")
    else:
        payload = ensure_bytes(data)
    h = _keccak.new(digest_bits=256)
    h.update(payload)
    return h.digest()


def keccak256_hex(data: Union[BytesLike, str], *, text: bool = False, prefix: bool = True) -> str:
    """Return hex string of Keccak-256 digest (0x-prefixed by default)."""
    return to_hex(keccak256(data, text=text), prefix=prefix)


def label_key(label: str) -> bytes:
    """32-byte key for a human label, as used by feed entries."""
    return keccak256(label, text=True)


__all__ = ["keccak256", "keccak256_hex", "label_key"]
