"""
Remote collaborators: the network fetch and operation submit contracts.
"""

from .fetcher import Fetcher, HttpFetcher
from .submitter import CallableSubmitter, HttpOperationSubmitter, OperationSubmitter, SubmitOutcome

__all__ = [
    "Fetcher",
    "HttpFetcher",
    "OperationSubmitter",
    "HttpOperationSubmitter",
    "CallableSubmitter",
    "SubmitOutcome",
]
