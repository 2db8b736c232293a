"""Ishaar Assistant — FastAPI application.

Single entry point: creates the app, mounts CORS, defines all endpoints.
The chat endpoint runs the LangGraph pipeline (intents → context →
completion → action) against the caller's tenant in Supabase.

Endpoints:
  GET  /health               — liveness probe
  POST /api/ai-chat          — ask the accounting assistant
  POST /functions/v1/ai-chat — same handler at the edge-function path
"""

import asyncio
import logging
import uuid as _uuid
from typing import Annotated, Any, Optional

import jwt
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.exceptions import HTTPException as StarletteHTTPException

from ishaar_assistant.config import (
    CORS_ORIGINS,
    GROQ_API_KEY,
    LLM_BASE_URL,
    LLM_FALLBACK_MODEL,
    LLM_MAX_TOKENS,
    LLM_PRIMARY_MODEL,
    LLM_TEMPERATURE,
    LLM_TIMEOUT,
    LLM_TOP_P,
    SUPABASE_JWT_SECRET,
    SUPABASE_URL,
)
from ishaar_assistant.gateway import DataGateway, TenantScope
from ishaar_assistant.graph import build_chat_graph, initial_state
from ishaar_assistant.llm_client import CompletionClient
from ishaar_assistant.schemas import ChatRequest, ChatResponse
from ishaar_assistant.supabase_client import get_supabase_client, resolve_tenant_id

# ─────────────────────────────────────────────
# Logging
# ─────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

# User-facing error messages
MSG_MISSING_MESSAGE = "الرجاء إدخال رسالة"
MSG_MISSING_LLM_KEY = "مفتاح Groq API غير مكون"
MSG_MISSING_DATABASE = "إعدادات قاعدة البيانات غير مكتملة على الخادم"
MSG_ASSISTANT_UNAVAILABLE = "فشل الاتصال بخدمة الذكاء الاصطناعي. الرجاء المحاولة لاحقاً."
MSG_UNEXPECTED = "حدث خطأ غير متوقع"

# ─────────────────────────────────────────────
# App
# ─────────────────────────────────────────────
app = FastAPI(
    title="Ishaar Assistant",
    description="Accounting assistant for the Ishaar office: answers questions "
    "about invoices, clients, debts and tasks, and creates records on request.",
    version="1.0.0",
)

# When origins is ["*"], disable credentials (Starlette silently drops the
# Access-Control-Allow-Origin header for credentialed requests with "*").
_allow_all = CORS_ORIGINS == ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=not _allow_all,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Build the chat graph once; it holds no per-request state
_graph = build_chat_graph()


def _error(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body: dict[str, Any] = {"error": error}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error(400, "طلب غير صالح", str(exc.errors()))


# ─────────────────────────────────────────────
# Auth helpers
# ─────────────────────────────────────────────

_bearer_scheme = HTTPBearer(auto_error=False)

# Cache for the JWKS fetched from Supabase
_jwks_client: jwt.PyJWKClient | None = None


def _get_jwks_client() -> jwt.PyJWKClient | None:
    """Lazily create and cache a PyJWKClient pointing at Supabase's JWKS endpoint."""
    global _jwks_client
    if _jwks_client is not None:
        return _jwks_client
    if SUPABASE_URL:
        _jwks_client = jwt.PyJWKClient(
            f"{SUPABASE_URL}/auth/v1/.well-known/jwks.json",
            cache_keys=True,
        )
        return _jwks_client
    return None


def _decode_token(token: str) -> dict[str, Any] | None:
    """Decode and verify a Supabase JWT.

    Supports two verification strategies:
    1. **ES256** — public key from Supabase's JWKS endpoint.
    2. **HS256** — the symmetric SUPABASE_JWT_SECRET.

    Returns ``None`` when the token cannot be verified because the server
    has no verification material for its algorithm.  Raises HTTPException
    (401) for malformed, expired or forged tokens.
    """
    try:
        header = jwt.get_unverified_header(token)
    except jwt.DecodeError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}")

    alg = header.get("alg", "")

    try:
        if alg == "ES256":
            jwks = _get_jwks_client()
            if jwks is None:
                logger.warning("ES256 token received but SUPABASE_URL is not configured")
                return None
            signing_key = jwks.get_signing_key_from_jwt(token)
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=["ES256"],
                options={"verify_aud": False},
            )

        if not SUPABASE_JWT_SECRET:
            logger.debug("HS256 token received but SUPABASE_JWT_SECRET is not set")
            return None
        return jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )

    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}")


async def get_caller_id(
    credentials: Annotated[
        Optional[HTTPAuthorizationCredentials], Depends(_bearer_scheme)
    ],
) -> str | None:
    """FastAPI dependency returning the authenticated user id, if any.

    Anonymous calls (no header, or the project's anon key, which carries no
    ``sub``) return ``None`` and the handler falls back to the body's userId.
    """
    if credentials is None:
        return None
    payload = _decode_token(credentials.credentials)
    if not payload:
        return None
    return payload.get("sub") or None


def get_completion_client() -> CompletionClient | None:
    """FastAPI dependency building the completion client from config."""
    if not GROQ_API_KEY:
        return None
    return CompletionClient(
        api_key=GROQ_API_KEY,
        base_url=LLM_BASE_URL,
        primary_model=LLM_PRIMARY_MODEL,
        fallback_model=LLM_FALLBACK_MODEL,
        temperature=LLM_TEMPERATURE,
        max_tokens=LLM_MAX_TOKENS,
        top_p=LLM_TOP_P,
        timeout=LLM_TIMEOUT,
    )


def get_db_client() -> Any:
    """FastAPI dependency returning the Supabase client (or None)."""
    return get_supabase_client()


def _valid_uuid(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return str(_uuid.UUID(str(value)))
    except ValueError:
        return None


# ─────────────────────────────────────────────
# Routes — Public
# ─────────────────────────────────────────────


@app.get("/health")
def health():
    return {"status": "Ishaar Assistant Online"}


# ─────────────────────────────────────────────
# Routes — Chat
# ─────────────────────────────────────────────


@app.post(
    "/api/ai-chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
)
@app.post(
    "/functions/v1/ai-chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    include_in_schema=False,
)
async def ai_chat(
    req: ChatRequest,
    caller_id: Annotated[Optional[str], Depends(get_caller_id)],
    llm: Annotated[Optional[CompletionClient], Depends(get_completion_client)],
    db_client: Annotated[Any, Depends(get_db_client)],
):
    """Answer one chat message grounded in the tenant's data.

    A failed record write is still a 200: the reply succeeded and the
    ``action`` field carries ``success: false`` with the reason.
    """
    if not req.message or not req.message.strip():
        return _error(400, MSG_MISSING_MESSAGE)
    if llm is None:
        return _error(500, MSG_MISSING_LLM_KEY)
    if db_client is None:
        return _error(500, MSG_MISSING_DATABASE)

    try:
        user_id = _valid_uuid(caller_id or req.user_id)
        tenant_id = await asyncio.to_thread(resolve_tenant_id, db_client, user_id)
        gateway = DataGateway(db_client, TenantScope(tenant_id=tenant_id, user_id=user_id))

        logger.info(
            "ai_chat | user=%s | tenant=%s | history=%d | actions=%s",
            user_id,
            tenant_id,
            len(req.conversation_history),
            req.enable_actions,
        )

        final_state = await _graph.ainvoke(
            initial_state(
                req.message,
                history=req.conversation_history,
                user_name=req.user_name,
                enable_actions=req.enable_actions,
            ),
            config={"configurable": {"gateway": gateway, "llm": llm}},
        )
    except Exception as exc:
        logger.exception("ai_chat | pipeline failed")
        return _error(500, MSG_UNEXPECTED, str(exc) or type(exc).__name__)

    if final_state.get("completion_error"):
        return _error(500, MSG_ASSISTANT_UNAVAILABLE, final_state["completion_error"])

    return ChatResponse(
        response=final_state.get("reply", ""),
        model=final_state.get("model", ""),
        intents=final_state.get("intents", []),
        usage=final_state.get("usage"),
        action=final_state.get("action"),
    )
