from reconsafe.models.base import RSBaseModel
from reconsafe.models.requests import (
    AcknowledgeSignalRequest,
    ResetStatusRequest,
    SuggestionActionRequest,
)

__all__ = [
    "AcknowledgeSignalRequest",
    "RSBaseModel",
    "ResetStatusRequest",
    "SuggestionActionRequest",
]
