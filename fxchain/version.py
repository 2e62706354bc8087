"""
Version helpers for fxchain.
We keep a static __version__ (PEP 440) and expose a small helper that adds
the connected node's client string when one is available.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# Bump this when publishing
__version__ = "0.1.0"


@dataclass(frozen=True)
class VersionInfo:
    base: str
    node: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.base if not self.node else f"{self.base} (node: {self.node})"


def version_info(node: Optional[str] = None) -> VersionInfo:
    """Structured version info (base PEP440 plus optional `web3_clientVersion`)."""
    return VersionInfo(base=__version__, node=node or None)


def user_agent() -> str:
    return f"fxchain-python/{__version__}"


__all__ = ["__version__", "VersionInfo", "version_info", "user_agent"]
