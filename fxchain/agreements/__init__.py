"""
fxchain.agreements
------------------

Multi-party agreement lifecycle on top of the engine contract.
"""

from .coordinator import AgreementCoordinator

__all__ = ["AgreementCoordinator"]
