from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assistant.routes.assistant import router as assistant_router
from assistant.services.config import get_settings
from assistant.services.llm import llm_enabled

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="HRM8 Assistant API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url, "http://127.0.0.1:5173", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(assistant_router)


@app.get("/api/health")
async def health() -> dict[str, str]:
    return {
        "status": "ok",
        "real_llm_enabled": "true" if llm_enabled() else "false",
    }


def run() -> None:
    uvicorn.run("assistant.main:app", host="0.0.0.0", port=settings.api_port)


if __name__ == "__main__":
    run()
