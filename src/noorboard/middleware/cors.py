"""CORS middleware configuration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from noorboard.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Open CORS for the leaderboard endpoint: any origin by default, GET/POST/OPTIONS.

    Credentials are never used (identity travels in the payload), which is
    what allows the wildcard origin.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-request-id"],
        expose_headers=["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit"],
    )
