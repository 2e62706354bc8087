"""
fxchain.tx
----------

Submission-to-event correlation.
"""

from .correlator import Correlation, EventMatcher, TransactionCorrelator

__all__ = ["Correlation", "EventMatcher", "TransactionCorrelator"]
