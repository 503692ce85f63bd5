from __future__ import annotations

from datetime import UTC, datetime
from dotenv import load_dotenv
import logging
import os
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.chat import router as chat_router
from .routers.conversations import router as conversations_router
from .routers.files import router as files_router
from .routers.models import router as models_router
from .routers.projects import router as projects_router
from .routers.prompts import router as prompts_router
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # Load environment variables from .env if present (OPENROUTER_API_KEY, JWT_SECRET, etc.)

APP_NAME = "AI Chatbot Platform API"
APP_VERSION = "1.0.0"
DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173"

app = FastAPI(title=APP_NAME, version=APP_VERSION)

logging.basicConfig(level=logging.INFO)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

_routers = (
    projects_router,
    chat_router,
    conversations_router,
    prompts_router,
    files_router,
    models_router,
)

# Routers are served both bare and under /api (the web client uses /api)
for _router in _routers:
    app.include_router(_router)
    app.include_router(_router, prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CHATBOT_CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _health_payload() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "version": APP_VERSION,
    }


@app.get("/")
def root():
    return {"name": APP_NAME, "version": APP_VERSION}


@app.get("/health")
def health():
    return _health_payload()


@app.get("/api/health")
def api_health():
    return _health_payload()


@app.get("/metrics")
def metrics() -> Response:
    # Expose Prometheus metrics
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
