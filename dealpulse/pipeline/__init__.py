"""
DealPulse Pipeline

Orchestration facades, the confirmation queue, webhook handlers, the CRM
adapter contract and the HTTP server.
"""

from .crm import CrmAdapter, HttpCrmAdapter, InMemoryCrmAdapter, build_crm_adapter
from .confirmations import ConfirmationQueue, ConfirmationItem
from .call_pipeline import CallPipeline
from .stall_pipeline import StallPipeline

__all__ = [
    "CrmAdapter",
    "HttpCrmAdapter",
    "InMemoryCrmAdapter",
    "build_crm_adapter",
    "ConfirmationQueue",
    "ConfirmationItem",
    "CallPipeline",
    "StallPipeline",
]
