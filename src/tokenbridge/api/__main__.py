"""
tokenbridge.api.__main__

Entrypoint for running the bridge via `python -m tokenbridge.api` or the
`tokenbridge` console script.

Responsibilities:
- Load settings from the environment, with optional host/port overrides.
- Create the app; the signer and provider routes are built before the port is bound.
- Start uvicorn with structlog-compatible logging config.
"""

from __future__ import annotations

import argparse
from collections.abc import Sequence

import uvicorn

from tokenbridge.api.app import create_app
from tokenbridge.settings import get_settings


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tokenbridge", description="OIDC token bridge")
    parser.add_argument("--host", help="bind address (default: TOKENBRIDGE_API_HOST)")
    parser.add_argument("--port", type=int, help="bind port (default: TOKENBRIDGE_API_PORT)")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    settings = get_settings()
    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        log_config=None,  # structlog
        proxy_headers=True,
    )


if __name__ == "__main__":
    main()
