from __future__ import annotations

import argparse
import logging
from typing import List

from .config.config_parser import load_config
from .engine import QueryEngine
from .errors import ConfigError
from .logging_config import init_logging
from .webserver import create_app

_UVICORN_LEVELS = {"critical", "error", "warning", "info", "debug"}


def main(argv: List[str] | None = None) -> int:
    """
    Entry point: load configuration, build the engine and serve HTTP.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code.

    Example use:
        CLI:
            PORT=3000 RATE_LIMIT_MAX_REQUESTS=10 sampwatch --config sampwatch.yaml
    """
    parser = argparse.ArgumentParser(description="Cached, rate-limited SA-MP server query API")
    parser.add_argument("--config", default=None, help="Optional path to YAML config")
    parser.add_argument("--host", default=None, help="HTTP listen address (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="HTTP listen port (overrides config)")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        print(str(exc))
        return 1

    init_logging(cfg.logging.model_dump())
    logger = logging.getLogger("sampwatch.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)

    try:
        engine = QueryEngine.from_config(cfg)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    host = args.host or cfg.http.host
    port = args.port or cfg.http.port

    import uvicorn

    engine.start()
    app = create_app(engine, cfg.http.model_dump())
    logger.info("sampwatch listening on http://%s:%d (GET /query?ip=127.0.0.1&port=7777)", host, port)
    level = cfg.logging.level.lower()
    if level not in _UVICORN_LEVELS:
        level = "info"
    try:
        uvicorn.run(app, host=host, port=port, log_level=level, log_config=None)
    except KeyboardInterrupt:  # pragma: no cover - interactive shutdown
        pass
    finally:
        engine.stop()
        logger.info("sampwatch stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
