"""
Loguru configuration shared by the API, the sweep job and the CLI.

Call sites log a message plus structured context, e.g.
``logger.info("Schedule created", event_type="schedule_created", schedule_id=...)``.
The keyword arguments land in ``record["extra"]`` and are serialized with the
record when JSON logs are enabled.
"""
import logging
import socket
import sys

from loguru import logger

from app.core.config import settings

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level> | {extra}"
)


class InterceptHandler(logging.Handler):
    """Route records from the standard logging module (uvicorn, motor) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


class SyslogSink:
    """Ship serialized records to a logstash syslog/UDP input."""

    def __init__(self, host: str, port: int):
        self.address = (host, port)
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def write(self, message) -> None:
        try:
            self.sock.sendto(str(message).encode("utf-8"), self.address)
        except OSError:
            # best-effort sink
            pass


def configure_logging(config: dict | None = None) -> None:
    """(Re)configure loguru sinks from ``settings.logging_config``."""
    config = config or settings.logging_config

    logger.remove()
    logger.configure(extra={"app_name": config["app_name"]})

    if config["json_logs"]:
        logger.add(sys.stdout, level=config["log_level"], serialize=True, enqueue=False)
    else:
        logger.add(sys.stdout, level=config["log_level"], format=TEXT_FORMAT, colorize=True)

    if config.get("enable_logstash") and config.get("syslog_host"):
        logger.add(
            SyslogSink(config["syslog_host"], config["syslog_port"]),
            level=config["log_level"],
            serialize=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "apscheduler"):
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False


configure_logging()

__all__ = ["logger", "configure_logging"]
