"""
Development entrypoint for the SessionGuard API.

    uvicorn main:app --reload
    python main.py

Production deployments should point uvicorn at `app.main:app`
directly and run `alembic upgrade head` beforehand.
"""

from app.core.config import settings
from app.main import app  # noqa: F401

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
