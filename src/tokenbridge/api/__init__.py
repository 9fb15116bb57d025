"""
tokenbridge.api

HTTP API package.

Responsibilities:
- FastAPI app factory and routers.
- Entry point for running the service locally (`python -m tokenbridge.api`).
"""

# Package marker.
