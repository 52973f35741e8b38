# backend/app/api/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from backend.app.fraud.engine import FraudDetectionEngine
from backend.app.services.fraud_service import default_engine


def get_fraud_engine() -> FraudDetectionEngine:
    return default_engine()


def get_reviewer(request: Request, body_reviewer: Optional[str] = None) -> str:
    """
    Reviewer identity for alert decisions.

    Taken from the request body when given, otherwise from the X-User-Email /
    X-User-Id headers the surrounding system forwards.
    """
    for candidate in (body_reviewer, request.headers.get("X-User-Email"), request.headers.get("X-User-Id")):
        if candidate and candidate.strip():
            return candidate.strip().lower() if "@" in candidate else candidate.strip()
    raise HTTPException(status_code=401, detail="Missing reviewer (body reviewed_by or X-User-Email header)")
