"""
Base Handler

Abstract base class for inbound webhook handlers: signature verification,
payload parsing and event filtering.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pydantic import BaseModel


class BaseHandler(ABC):
    """
    Abstract base class for inbound webhook sources.

    Each handler must implement:
    - parse_event: Convert raw event to a typed payload
    - verify_signature: Verify webhook signature (if applicable)
    """

    def __init__(self, source_name: str):
        """
        Initialize handler.

        Args:
            source_name: Name of the webhook source (e.g., "call_recorder")
        """
        self.source_name = source_name

    @abstractmethod
    def parse_event(self, raw_data: Dict[str, Any]) -> BaseModel:
        """
        Parse raw event data.

        Raises:
            ValidationError: if the payload is malformed
        """
        pass

    @abstractmethod
    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """
        Verify the webhook signature.

        Args:
            body: Raw request body
            signature: Signature from headers

        Returns:
            True if signature is valid
        """
        pass

    def should_process(self, event: BaseModel) -> bool:
        """Override in subclass for source-specific filtering"""
        return True
