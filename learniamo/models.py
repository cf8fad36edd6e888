"""
DATA MODELS MODULE
==================

This file defines the Pydantic models used for API requests, responses, and
the in-memory transcript. FastAPI uses these to validate incoming JSON and to
serialize responses; the session store and orchestrators use Turn.

MODELS:
  Turn            - One message in a transcript (role + text). Immutable.
  ChatRequest     - Body of POST /chat (message + optional stream flag).
  ChatResponse    - Non-streamed reply of POST /chat.
  VoiceResponse   - Reply of POST /voice (text, optional base64 MP3, warnings).
  HistoryResponse - Body of GET /chat/history.
  ErrorResponse   - Body of every error response (and its OpenAPI schema).
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# "model" (not "assistant") is the role name the relay has always used for replies.
Role = Literal["user", "model"]


# ==============================================================================
# TRANSCRIPT
# ==============================================================================

class Turn(BaseModel):
    """
    A single message in a conversation. Insertion order defines chronology,
    so there is no timestamp. Frozen: a turn never changes after it is created.
    """
    model_config = ConfigDict(frozen=True)

    role: Role
    text: str


# ==============================================================================
# REQUEST / RESPONSE MODELS
# ==============================================================================

class ChatRequest(BaseModel):
    """
    Request body for POST /chat.

    - message: The user's message. Emptiness is checked by the chat service so
      the client gets an InvalidInput error body instead of a 422 schema error.
    - stream: Optional. True asks for a text/event-stream reply.
    """
    message: Optional[str] = None
    stream: Optional[bool] = None


class ChatResponse(BaseModel):
    """
    - reply: Display HTML (escaped paragraphs wrapped in <p>).
    - text:  The raw reply text as stored in history.
    """
    reply: str
    text: str


class VoiceResponse(BaseModel):
    """
    Response body for POST /voice.

    audio is base64 MP3, or None when synthesis failed; in that case warnings
    contains "SynthesisDegraded" and the text reply is still valid.
    """
    reply: str
    text: str
    transcript: str
    audio: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class HistoryResponse(BaseModel):
    messages: List[Turn]


class ErrorResponse(BaseModel):
    error: str
    kind: str
    retryable: bool
    action: str
