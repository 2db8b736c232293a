import os

from dotenv import load_dotenv

load_dotenv()

# ─────────────────────────────────────────────
# Completion endpoint (OpenAI-compatible, Groq by default)
# ─────────────────────────────────────────────
#
# The assistant always talks to one endpoint with two model identifiers:
# - LLM_PRIMARY_MODEL is tried first for every request.
# - LLM_FALLBACK_MODEL (smaller/cheaper) is tried exactly once when the
#   primary call fails (non-2xx, timeout or transport error).
#
GROQ_API_KEY: str = os.getenv("GROQ_API_KEY", "")
LLM_BASE_URL: str = os.getenv("LLM_BASE_URL", "https://api.groq.com/openai/v1")
LLM_PRIMARY_MODEL: str = os.getenv("LLM_PRIMARY_MODEL", "llama-3.3-70b-versatile")
LLM_FALLBACK_MODEL: str = os.getenv("LLM_FALLBACK_MODEL", "llama-3.1-8b-instant")
LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.7"))
LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "2000"))
LLM_TOP_P: float = float(os.getenv("LLM_TOP_P", "0.9"))
LLM_TIMEOUT: float = float(os.getenv("LLM_TIMEOUT", "30"))

# ─────────────────────────────────────────────
# App Settings
# ─────────────────────────────────────────────

CORS_ORIGINS: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")

# Page sizes for the grounding context (newest first)
CONTEXT_INVOICE_LIMIT: int = int(os.getenv("CONTEXT_INVOICE_LIMIT", "50"))
CONTEXT_CLIENT_LIMIT: int = int(os.getenv("CONTEXT_CLIENT_LIMIT", "100"))
CONTEXT_DEBT_LIMIT: int = int(os.getenv("CONTEXT_DEBT_LIMIT", "50"))
CONTEXT_TASK_LIMIT: int = int(os.getenv("CONTEXT_TASK_LIMIT", "50"))

# ─────────────────────────────────────────────
# Supabase
# ─────────────────────────────────────────────

SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
SUPABASE_JWT_SECRET: str = os.getenv("SUPABASE_JWT_SECRET", "")
