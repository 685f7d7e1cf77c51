"""Serve the API with uvicorn.

    python -m finplan [--host HOST] [--port PORT] [--reload]
"""

import argparse
from typing import List, Optional

import uvicorn

from .core import config


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the finplan API server.")
    parser.add_argument("--host", default=config.HOST)
    parser.add_argument("--port", type=int, default=config.PORT)
    parser.add_argument("--reload", action="store_true", help="restart on code changes (development)")
    return parser.parse_args(argv)


def run(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    # Logging is configured on import of finplan.main
    uvicorn.run(
        "finplan.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=None,
    )


if __name__ == "__main__":
    run()
