"""Process entrypoint for the analyzer server.

Configures logging and runs the FastAPI app under uvicorn. This module must
not contain engine logic beyond orchestration.
"""

from __future__ import annotations

import argparse
import logging
import os
from typing import Optional, Sequence

import uvicorn

from nr5g_analyzer.config import EngineSettings


def configure_logging(level: Optional[str] = None) -> None:
    level_name = (level or os.environ.get("NR5G_LOG_LEVEL", "WARNING")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="NR5G spectrum analyzer engine server")
    parser.add_argument("--host", default=os.environ.get("NR5G_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("NR5G_PORT", "8000")))
    parser.add_argument("--bridge-url", default=None, help="Instrument bridge websocket URL (simulator when unset)")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    if args.bridge_url:
        os.environ["NR5G_BRIDGE_URL"] = args.bridge_url
    settings = EngineSettings.from_env()
    logging.getLogger(__name__).info(
        "Starting analyzer server on %s:%d (%s)",
        args.host,
        args.port,
        f"bridge {settings.bridge_url}" if settings.bridge_mode else "simulator",
    )
    # uvicorn calls the factory, which builds the engine.
    uvicorn.run("nr5g_analyzer.server.app:create_app", factory=True, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
