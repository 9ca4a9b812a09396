"""API request models."""
from typing import Optional
from pydantic import Field
from reconsafe.models.base import RSBaseModel


class SuggestionActionRequest(RSBaseModel):
    suggestion_id: Optional[str] = Field(default=None, alias="suggestionId")


class AcknowledgeSignalRequest(RSBaseModel):
    signal_id: Optional[str] = Field(default=None, alias="signalId")


class ResetStatusRequest(RSBaseModel):
    status: Optional[str] = None
