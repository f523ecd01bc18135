"""
Configuration Management for Nomad VMonitor
Centralizes all environment-based configuration and settings
"""

import os
import logging
from logging.handlers import RotatingFileHandler

import structlog


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class ScrapeFilter(logging.Filter):
    """Filter out successful scrape and health check requests to reduce log noise"""
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()

        # For uvicorn access logs, the message format is:
        # 'IP:PORT - "METHOD /path HTTP/1.1" STATUS'
        if '200' in message:
            if '/metrics' in message or '/health' in message:
                return False
        return True


class JsonFormatter(structlog.stdlib.ProcessorFormatter):
    """One JSON object per log line, for log shippers (LOG_MACHINE)"""
    def __init__(self):
        super().__init__(
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.EventRenamer("message"),
                structlog.processors.JSONRenderer(),
            ],
        )


def setup_logging(level: str = 'INFO', machine: bool = False, log_to_file: bool = False):
    """Configure application logging"""
    from .paths import LOG_DIR, LOG_FILE

    root_logger = logging.getLogger()

    # Close and clear any existing handlers to ensure our configuration is used
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    root_logger.setLevel(level)

    if machine:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        os.makedirs(LOG_DIR, mode=0o700, exist_ok=True)
        # Max 10MB per file, keep 14 backups
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=10*1024*1024,
            backupCount=14,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Prometheus scrapes every few seconds
    logging.getLogger("uvicorn.access").addFilter(ScrapeFilter())


def get_nomad_url() -> str:
    """
    Build the Nomad base URL from NOMAD_ADDR and NOMAD_PORT.

    NOMAD_ADDR may be a bare host ("nomad.service.consul") or a full URL
    ("https://nomad.example.com:4646"), which is used verbatim.
    """
    address = os.getenv('NOMAD_ADDR', 'localhost')
    if address.startswith(('http://', 'https://')):
        return address.rstrip('/')
    port = os.getenv('NOMAD_PORT', '4646')
    return f"http://{address}:{port}"


class AppConfig:
    """Main application configuration"""

    # Server settings
    HOST = os.getenv('VMONITOR_HOST', '0.0.0.0')
    PORT = int(os.getenv('VMONITOR_PORT', 3000))

    # Nomad
    NOMAD_URL = get_nomad_url()
    NOMAD_TOKEN = os.getenv('NOMAD_TOKEN') or None

    # Reconciliation
    CHECK_INTERVAL = float(os.getenv('VMONITOR_CHECK_INTERVAL', 15 * 60))
    REQUEST_TIMEOUT = float(os.getenv('VMONITOR_REQUEST_TIMEOUT', 30))
    CHECK_CONCURRENCY = int(os.getenv('VMONITOR_CHECK_CONCURRENCY', 1))
    REGISTRY_CLIENT_ID = os.getenv('VMONITOR_REGISTRY_CLIENT_ID', 'Nomad-VMonitor')
    EVENT_STREAM_ENABLED = _env_flag('VMONITOR_EVENT_STREAM')

    # Logging
    LOG_LEVEL = os.getenv('VMONITOR_LOG_LEVEL', 'INFO').upper()
    LOG_MACHINE = os.getenv('LOG_MACHINE') is not None
    LOG_TO_FILE = _env_flag('VMONITOR_LOG_FILE')

    @classmethod
    def validate(cls):
        """Validate configuration"""
        if cls.PORT < 1 or cls.PORT > 65535:
            raise ValueError(f"Invalid port: {cls.PORT}")

        if cls.CHECK_INTERVAL < 1:
            raise ValueError(f"Check interval must be at least 1 second: {cls.CHECK_INTERVAL}")

        if cls.REQUEST_TIMEOUT <= 0:
            raise ValueError(f"Request timeout must be positive: {cls.REQUEST_TIMEOUT}")

        if cls.CHECK_CONCURRENCY < 1:
            raise ValueError(f"Check concurrency must be at least 1: {cls.CHECK_CONCURRENCY}")

        if cls.LOG_LEVEL not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Invalid log level: {cls.LOG_LEVEL}")

        return True
