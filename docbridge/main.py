"""
DocBridge - Main entry point.

Starts the HTTP gateway serving the functions registered in
DOCBRIDGE_FUNCTIONS against the schema in DOCBRIDGE_SCHEMA.

Usage:
    python -m docbridge.main

Configuration is entirely via environment variables.
See config.py and api/config.py for all available settings.

Invariants:
    - The schema registry is frozen before the first request
    - The function registry is frozen before the first request
    - The store is connected by the app lifespan and closed on shutdown

How to change safely:
    - Keep build_runner() free of network I/O so it can be used in tests
"""

from __future__ import annotations

import importlib
import logging
import sys

import json_log_formatter

from .api import Settings, create_app
from .config import DocBridgeConfig
from .functions import FunctionRegistry, FunctionRunner
from .schema import define_schema, load_schema_file
from .store import create_store

logger = logging.getLogger(__name__)

TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: DocBridgeConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: DocBridge configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)
    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_LOG_FORMAT)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_runner(config: DocBridgeConfig) -> FunctionRunner:
    """Assemble schema, functions and store into a runner.

    The store is created but not connected.

    Raises:
        SchemaError: The schema document is invalid
        ImportError: The functions module cannot be imported
    """
    if config.schema_path:
        schema = load_schema_file(config.schema_path)
        logger.info(f"Loaded schema from {config.schema_path}")
    else:
        schema = define_schema({})
        logger.warning("No DOCBRIDGE_SCHEMA set, serving an empty schema")

    functions = FunctionRegistry()
    if config.functions_module:
        module = importlib.import_module(config.functions_module)
        names = functions.register_module(module)
        logger.info(
            "Registered functions",
            extra={"module": config.functions_module, "count": len(names)},
        )
    functions.freeze()

    store = create_store(config)
    runner = FunctionRunner(schema, store, functions, config.runner)
    logger.info(f"Schema registry frozen, fingerprint: {runner.registry.fingerprint}")
    return runner


def main() -> None:
    """Main entry point."""
    try:
        config = DocBridgeConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    settings = Settings()
    runner = build_runner(config)
    app = create_app(runner, settings)

    import uvicorn

    logger.info(f"Starting DocBridge gateway on {settings.bind_address}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
