"""
Pydantic models for the bridge's REST API.

Field names follow the camelCase used on the wire by the call-initiation and
monitoring collaborators.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from voice_bridge.models.session import SessionStatus


class StartSessionRequest(BaseModel):
    subjectId: str = Field(..., min_length=1)
    callRef: str = Field(..., min_length=1)
    customInstructions: Optional[str] = None
    subjectName: Optional[str] = None

    @field_validator("subjectId", "callRef")
    def not_blank(cls, v):
        """Identifiers must contain something other than whitespace."""
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class StartSessionResponse(BaseModel):
    sessionId: str
    streamUrl: str
    twimlUrl: str


class SessionListResponse(BaseModel):
    count: int
    sessions: List[SessionStatus]


class EndSessionResponse(BaseModel):
    sessionId: str
    ended: bool = True


class EvictionResponse(BaseModel):
    subjectId: str
    evicted: int


class ErrorResponse(BaseModel):
    detail: str
