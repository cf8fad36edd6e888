"""
LEARNIAMO RELAY MAIN API
========================

This module defines the FastAPI application and all HTTP endpoints. The relay
sits between the browser chat widget and the hosted AI services: it keeps a
short per-browser conversation history and forwards each turn to Groq (text)
or Speech-to-Text -> Groq -> Text-to-Speech (voice).

ENDPOINTS:
  GET  /              - Returns API name and list of endpoints.
  GET  /health        - Returns status of all services (for monitoring).
  POST /chat          - Text chat. JSON reply, or a text/event-stream of reply
                        fragments when the body has "stream": true or the
                        client sends Accept: text/event-stream.
  POST /voice         - Voice chat. multipart form: "audio" file + optional
                        "language". Returns reply text and base64 MP3 audio.
  GET  /chat/history  - Returns the caller's conversation (oldest first).

SESSION:
  The browser is identified by the "sessionId" cookie (HttpOnly, 24 h). The first
  request without one gets a new id in Set-Cookie, on success AND error responses;
  every later request reuses it. History lives in memory only and is lost on restart.

ERRORS:
  Every failure is a JSON body {"error", "kind", "retryable", "action"} where kind
  is one of InvalidInput, NoSpeechDetected, UpstreamAuth, UpstreamThrottled,
  UpstreamUnavailable. Provider error text is logged, never returned.

STARTUP:
  The lifespan function creates the session store and the Groq / Google
  services. Without GROQ_API_KEY the chat endpoints answer 503.
"""


from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from contextlib import asynccontextmanager
from typing import Optional
import base64
import logging
import uvicorn

from config import CORS_ORIGINS, DEFAULT_LANGUAGE, GROQ_MODEL, HOST, PORT, STREAM_REPLIES
from learniamo.errors import ErrorKind, RelayError
from learniamo.models import ChatRequest, ChatResponse, ErrorResponse, HistoryResponse, VoiceResponse
from learniamo.services.chat_service import ChatService
from learniamo.services.groq_service import GroqCompletionService
from learniamo.services.session_identity import SessionIdentity, mask_token
from learniamo.services.session_store import InMemorySessionStore, SessionStore
from learniamo.services.speech_service import GoogleSpeechService
from learniamo.services.tts_service import GoogleTextToSpeechService
from learniamo.services.voice_service import VoiceService
from learniamo.utils.formatting import format_reply_for_display
from learniamo.utils.sse import SSE_HEADERS, SSE_MEDIA_TYPE


# -----------------------------------------------------------------------------
# LOGGING
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("LEARNIAMO")


# -----------------------------------------------------------------------------
# GLOBAL SERVICE REFERENCES
# -----------------------------------------------------------------------------
# Set during startup (lifespan) and used by all route handlers.
session_identity = SessionIdentity()
session_store: Optional[SessionStore] = None
chat_service: Optional[ChatService] = None
voice_service: Optional[VoiceService] = None


# -------------------------------------------------------------------------
# LIFESPAN (STARTUP / SHUTDOWN)
# -------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    - STARTUP: session store first, then the completion provider, then the
      chat service (store + completion) and the voice service (chat + Google
      Speech-to-Text / Text-to-Speech).
    - SHUTDOWN: nothing to persist; in-memory sessions are dropped.
    """
    global session_store, chat_service, voice_service

    logger.info("=" * 60)
    logger.info("LEARNIAMO relay - Starting Up...")
    logger.info("=" * 60)

    session_store = InMemorySessionStore()
    logger.info("Session store ready (max %s turns per session)", session_store.max_turns)

    try:
        completion = GroqCompletionService()
    except ValueError as e:
        # Keep serving /health so the misconfiguration is visible; chat endpoints return 503.
        logger.error("Completion service not available: %s", e)
        completion = None

    if completion is not None:
        chat_service = ChatService(session_store, completion)
        try:
            voice_service = VoiceService(
                chat_service,
                GoogleSpeechService(),
                GoogleTextToSpeechService(),
                default_language=DEFAULT_LANGUAGE,
            )
        except ValueError as e:
            # Text chat keeps working; /voice returns 503.
            logger.error("Voice service not available: %s", e)
            voice_service = None

    logger.info("Service Status:")
    logger.info("    - Sessions: Ready")
    logger.info("    - Chat (%s): %s", GROQ_MODEL, "Ready" if chat_service else "UNAVAILABLE")
    logger.info("    - Voice: %s", "Ready" if voice_service else "UNAVAILABLE")
    logger.info("Listening on http://%s:%s", HOST, PORT)
    logger.info("=" * 60)

    yield

    count = session_store.session_count() if session_store else 0
    logger.info("Shutting down LEARNIAMO relay (%s in-memory session(s) discarded). Goodbye!", count)


# -------------------------------------------------------------------------
# FASTAPI APP AND CORS
# -------------------------------------------------------------------------
app = FastAPI(
    title="LEARNIAMO Relay API",
    description="Text and voice chat relay for the LEARNIAMO assistant",
    lifespan=lifespan
)

# Credentials must be allowed so the browser sends the session cookie cross-origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------------------------------------------------
# SESSION COOKIE HELPERS
# -------------------------------------------------------------------------

def _resolve_session(request: Request) -> str:
    """Session token for this request. A newly issued one is remembered on request.state."""
    token, credential = session_identity.resolve(request.cookies.get(session_identity.cookie_name))
    if credential is not None:
        request.state.new_session_credential = credential
        logger.info("New session issued: %s", mask_token(token))
    return token


def _with_session_cookie(request: Request, response):
    credential = getattr(request.state, "new_session_credential", None)
    if credential is not None:
        response.set_cookie(
            key=credential.name,
            value=credential.value,
            max_age=credential.max_age,
            httponly=credential.httponly,
            samesite=credential.samesite,
            secure=credential.secure,
        )
    return response


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    """Every RelayError becomes {"error", "kind", "retryable", "action"} with the kind's status code."""
    body = ErrorResponse(**exc.to_dict())
    return _with_session_cookie(
        request,
        JSONResponse(status_code=exc.kind.status_code, content=body.model_dump()),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies (bad JSON, wrong field types) are InvalidInput like any other bad request."""
    logger.warning("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    _resolve_session(request)
    return await relay_error_handler(
        request,
        RelayError(ErrorKind.INVALID_INPUT, "Request body is malformed."),
    )


# Documented error bodies for the OpenAPI schema.
ERROR_RESPONSES = {
    kind.status_code: {"model": ErrorResponse, "description": kind.value}
    for kind in ErrorKind
    if kind is not ErrorKind.SYNTHESIS_DEGRADED
}


def _wants_stream(request: Request, body: ChatRequest) -> bool:
    if body.stream is not None:
        return body.stream
    if SSE_MEDIA_TYPE in request.headers.get("accept", ""):
        return True
    return STREAM_REPLIES


# =========================================================================
# API ENDPOINTS
# =========================================================================

@app.get("/")
async def root():
    """Return the API name and a short description of each endpoint (for discovery)."""
    return {
        "message": "LEARNIAMO Relay API",
        "endpoints": {
            "/chat": "Text chat (JSON reply or text/event-stream)",
            "/voice": "Voice chat (multipart audio + language)",
            "/chat/history": "Conversation for the current session",
            "/health": "System health check"
        }
    }


@app.get("/health")
async def health():
    """Return 'healthy' and whether each service is initialized."""
    return {
        "status": "healthy",
        "session_store": session_store is not None,
        "chat_service": chat_service is not None,
        "voice_service": voice_service is not None,
        "sessions": session_store.session_count() if session_store else 0,
    }


@app.post("/chat", responses=ERROR_RESPONSES)
async def chat(body: ChatRequest, request: Request):
    """
    Text chat endpoint.

    REQUEST BODY:
    {"message": "How do I say hello in Italian?", "stream": false}

    RESPONSE (non-streamed):
    {"reply": "<p>Ciao!</p>", "text": "Ciao!"}

    RESPONSE (streamed, text/event-stream):
    data: {"text": "Ci"}
    data: {"text": "ao!"}
    event: done
    data: {"reply": "Ciao!"}
    """
    if not chat_service:
        raise HTTPException(status_code=503, detail="Chat service not initialized")

    token = _resolve_session(request)

    if _wants_stream(request, body):
        relay = chat_service.stream_text_turn(token, body.message)
        relay.set_disconnect_check(request.is_disconnected)

        async def event_stream():
            async for event in relay.events():
                yield event.to_sse()

        response = StreamingResponse(event_stream(), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)
        return _with_session_cookie(request, response)

    try:
        reply = await chat_service.handle_text_turn(token, body.message)
    except RelayError:
        raise
    except Exception as e:
        logger.error(f"Error processing chat: {e}", exc_info=True)
        raise RelayError(ErrorKind.UPSTREAM_UNAVAILABLE) from e

    payload = ChatResponse(reply=format_reply_for_display(reply), text=reply)
    return _with_session_cookie(request, JSONResponse(content=payload.model_dump()))


@app.post("/voice", responses=ERROR_RESPONSES)
async def voice(
    request: Request,
    audio: Optional[UploadFile] = File(None),
    language: Optional[str] = Form(None),
):
    """
    Voice chat endpoint: Speech-to-Text -> chat -> Text-to-Speech.

    FORM FIELDS:
      audio    - the recording (audio/webm;codecs=opus from MediaRecorder)
      language - optional BCP-47 hint such as "it-IT"; drives recognition and the reply voice

    RESPONSE:
    {"reply": "<p>...</p>", "text": "...", "transcript": "...",
     "audio": "<base64 mp3>" | null, "warnings": ["SynthesisDegraded"]?}
    """
    if not voice_service:
        raise HTTPException(status_code=503, detail="Voice service not initialized")

    token = _resolve_session(request)
    limit = voice_service.max_audio_bytes
    if audio is not None and audio.size is not None and audio.size > limit:
        raise RelayError(ErrorKind.INVALID_INPUT, "Audio recording is too large.")
    # One byte past the limit is enough for the voice service to reject the upload.
    audio_bytes = await audio.read(limit + 1) if audio is not None else b""

    try:
        result = await voice_service.handle_voice_turn(token, audio_bytes, language)
    except RelayError:
        raise
    except Exception as e:
        logger.error(f"Error processing voice request: {e}", exc_info=True)
        raise RelayError(ErrorKind.UPSTREAM_UNAVAILABLE) from e

    payload = VoiceResponse(
        reply=format_reply_for_display(result.reply_text),
        text=result.reply_text,
        transcript=result.transcript,
        audio=base64.b64encode(result.reply_audio).decode("ascii") if result.reply_audio else None,
        warnings=[w.value for w in result.warnings],
    )
    return _with_session_cookie(request, JSONResponse(content=payload.model_dump()))


@app.get("/chat/history")
async def get_chat_history(request: Request):
    """
    Conversation for the caller's session, oldest first.

    RESPONSE:
    {"messages": [{"role": "user", "text": "Hello"}, {"role": "model", "text": "Ciao!"}]}
    """
    if not session_store:
        raise HTTPException(status_code=503, detail="Session store not initialized")

    token = _resolve_session(request)
    payload = HistoryResponse(messages=list(session_store.get_or_create(token)))
    return _with_session_cookie(request, JSONResponse(content=payload.model_dump()))


# -------------------------------------------------------------------------
# STANDALONE RUN (python -m learniamo.main)
# -------------------------------------------------------------------------
def run():
    """Start the uvicorn server (same as run.py); used if someone does python -m learniamo.main"""
    uvicorn.run(
        "learniamo.main:app",
        host=HOST,
        port=PORT,
        log_level="info"
    )

if __name__ == "__main__":
    run()
