"""
Runtime configuration for the support chat service.
Values come from the environment (optionally a .env file).
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _float_env(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


# OpenAI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TIMEOUT_SECONDS = _float_env("OPENAI_TIMEOUT_SECONDS", 20.0)
PROVIDER_TAG = "openai"

# Conversation context
CONTEXT_TTL_SECONDS = _float_env("CONTEXT_TTL_SECONDS", 10 * 60)
CONTEXT_SWEEP_INTERVAL_SECONDS = _float_env("CONTEXT_SWEEP_INTERVAL_SECONDS", 5 * 60)
# How long after an offer a bare "yes" still counts as confirming it
CONFIRMATION_WINDOW_SECONDS = _float_env("CONFIRMATION_WINDOW_SECONDS", 5 * 60)

# Routing
SUMMON_TOKEN = os.getenv("SUMMON_TOKEN", "@ai")
AGENT_ROOM = "admin-room"
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "50"))
REPLY_DELAY_MIN_SECONDS = _float_env("REPLY_DELAY_MIN_SECONDS", 1.5)
REPLY_DELAY_MAX_SECONDS = _float_env("REPLY_DELAY_MAX_SECONDS", 3.5)

# Automated participant identity
ASSISTANT_ID = "ai-assistant"
ASSISTANT_NAME = os.getenv("ASSISTANT_NAME", "Ai-chan 🤖")
STORE_NAME = os.getenv("STORE_NAME", "Chevai Fashion")

# Catalog seed data (JSON list of product records)
CATALOG_PATH = os.getenv(
    "CATALOG_PATH",
    os.path.join(os.path.dirname(__file__), "data", "catalog.json"),
)

# HTTP / Socket.IO
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8001"))
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://localhost:5174,http://localhost:8001",
    ).split(",")
    if origin.strip()
]

# Observability
OTEL_ENABLED = os.getenv("OTEL_ENABLED", "false").lower() in ("1", "true", "yes")
OTEL_ENDPOINT = os.getenv("OTEL_ENDPOINT", "http://localhost:4328")
SERVICE_NAME = os.getenv("SERVICE_NAME", "storefront-support-chat")
ENVIRONMENT = os.getenv("ENVIRONMENT", "production")
