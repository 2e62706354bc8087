"""
fxchain.contracts
-----------------

Contract handles, artifact sources and the deployment tracker.
"""

from .client import ContractHandle
from .source import ContractSourceProvider, FileSourceProvider
from .deployer import DeploymentTracker

__all__ = ["ContractHandle", "ContractSourceProvider", "FileSourceProvider", "DeploymentTracker"]
