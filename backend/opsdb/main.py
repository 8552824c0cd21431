# backend/opsdb/main.py
import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .apps.accreditation.router import router as accreditation_router
from .apps.audit.router import router as audit_router


def _allowed_origins() -> List[str]:
    """Comma-separated CORS_ALLOWED_ORIGINS, or the local frontend ports."""
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or [
        "http://127.0.0.1:3000",
        "http://localhost:3000",
    ]


app = FastAPI(title="Operations Portal API", version="1.0.0")
cors_origins = _allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials="*" not in cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(accreditation_router)
app.include_router(audit_router)
