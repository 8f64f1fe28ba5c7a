"""Main entry point for the Lambda deployer.

Runs one deploy (or a permission preview) from environment configuration
and exits. Logs are JSON lines on stdout.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import UTC

from .config import Config, ConfigurationError
from .engine import Notify, NotifyLevel
from .models import DeploySpec
from .pipeline import DeployPipeline
from .spec_loader import SpecLoadError, load_spec

# Standard LogRecord attributes; anything else on a record came from `extra`
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output."""
    import json
    from datetime import datetime

    class JsonFormatter(logging.Formatter):
        """Format logs as JSON for structured logging."""

        def format(self, record: logging.LogRecord) -> str:
            log_data = {
                "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
                "level": record.levelname,
                "message": record.getMessage(),
                "logger": record.name,
            }

            for key, value in record.__dict__.items():
                if key not in _RESERVED_RECORD_KEYS:
                    log_data[key] = value

            if record.exc_info:
                log_data["exception"] = self.formatException(record.exc_info)

            return json.dumps(log_data, default=str)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the AWS SDK
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _notifier(logger: logging.Logger) -> Notify:
    def notify(message: str, level: NotifyLevel) -> None:
        if level == "error":
            logger.error(message)
        else:
            logger.info(message)

    return notify


async def run_deploy(config: Config, spec: DeploySpec, logger: logging.Logger) -> int:
    """Deploy the application.

    Returns:
        Exit code (0 for success, 1 if any resource failed).
    """
    pipeline = DeployPipeline(config, spec, notify=_notifier(logger))
    result = await pipeline.run()

    if not result.success:
        logger.error(
            "Deploy failed",
            extra={"app": result.app_name, "errors": [str(e) for e in result.errors]},
        )
        return 1

    logger.info(
        "Deploy succeeded",
        extra={
            "app": result.app_name,
            "function_arn": result.status.get("function_arn"),
            "duration_seconds": result.duration_seconds,
        },
    )
    return 0


async def run_permissions(config: Config, spec: DeploySpec) -> int:
    """Print the policy the deployer needs, as JSON on stdout."""
    pipeline = DeployPipeline(config, spec)
    document = await pipeline.permissions()
    print(document.to_json(indent=2))
    return 0


async def main() -> int:
    """Run the deployer from environment configuration.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    try:
        spec = load_spec(config.spec_path)
    except SpecLoadError as e:
        logger.error("Deploy spec loading failed", extra={"error": str(e), "spec_path": str(config.spec_path)})
        return 1

    logger.info(
        "Starting Lambda deployer",
        extra={
            "app": spec.name or config.app_name,
            "region": config.region,
            "retries": str(config.retries),
            "check_permissions": config.check_permissions,
        },
    )

    try:
        if config.check_permissions:
            return await run_permissions(config, spec)
        return await run_deploy(config, spec, logger)
    except Exception as e:
        # Unexpected error - log with full traceback for debugging
        logger.exception("Deployer failed unexpectedly", extra={"error": str(e)})
        return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
