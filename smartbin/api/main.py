from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from ..ai.mock import MockWasteClassifier
from ..ai.remote import RemoteWasteClassifier
from ..ai.service import ClassificationService
from ..errors import StorageUnavailable
from ..history.store import ResultStore
from .config_loader import AppConfig, load_config
from .server import create_app
from .weather import WeatherClient

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser with minimal CLI flags.

    Most configuration is loaded from config/smartbin.json.
    CLI flags are only for quick overrides.
    """
    parser = argparse.ArgumentParser(
        description="Run the Smart Bin API server",
        epilog="Configuration is loaded from config/smartbin.json. "
               "CLI arguments override config file settings."
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/smartbin.json",
        help="Path to JSON configuration file (default: config/smartbin.json)"
    )
    parser.add_argument("--host", type=str, default=None, help="Override server host")
    parser.add_argument("--port", type=int, default=None, help="Override server port")
    parser.add_argument("--db", type=str, default=None, help="Override SQLite database path")
    return parser


def build_classification_service(cfg: AppConfig) -> ClassificationService:
    remote = None
    if cfg.classifier.base_url:
        remote = RemoteWasteClassifier(
            base_url=cfg.classifier.base_url,
            timeout=cfg.classifier.timeout,
        )
    else:
        logger.warning("No classifier base_url configured; every scan uses the mock classifier")
    return ClassificationService(
        remote=remote,
        fallback=MockWasteClassifier(delay_seconds=cfg.classifier.fallback_delay_seconds),
        # Service deadline outlasts the HTTP client timeout.
        remote_timeout=cfg.classifier.timeout + 5.0,
    )


def main() -> None:
    load_dotenv()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s"
        )
    args = build_parser().parse_args()

    try:
        cfg = load_config(args.config if Path(args.config).exists() else None)
    except Exception as exc:
        logger.error("Failed to load configuration: %s", exc)
        sys.exit(1)

    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port
    if args.db:
        cfg.storage.database_path = args.db

    logger.info("Server configuration: %s:%d", cfg.server.host, cfg.server.port)
    logger.info("Scan history database: %s", cfg.storage.database_path)
    logger.info("Classifier endpoint: %s", cfg.classifier.base_url or "mock only")

    store = ResultStore(cfg.storage.database_path)
    try:
        store.initialize()
    except StorageUnavailable as exc:
        logger.error("Cannot start without scan history: %s", exc)
        sys.exit(1)

    weather_key = cfg.weather.api_key()
    if not weather_key:
        logger.info(
            "Environment variable %s not set; weather uses fallback data",
            cfg.weather.api_key_env,
        )

    app = create_app(
        store=store,
        classification_service=build_classification_service(cfg),
        weather_client=WeatherClient(
            api_key=weather_key,
            base_url=cfg.weather.base_url,
            timeout=cfg.weather.timeout,
        ),
        upload_dir=Path(cfg.storage.upload_dir),
        default_city=cfg.weather.default_city,
    )

    try:
        uvicorn.run(app, host=cfg.server.host, port=cfg.server.port, log_level="info")
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received during shutdown")


if __name__ == "__main__":
    main()
