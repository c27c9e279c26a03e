import logging
import sys
from datetime import datetime, timezone

import uvicorn
from pythonjsonlogger import jsonlogger

from .app import create_app
from .config import Settings, settings
from .event_processor import EventProcessor
from .firebase import FirebaseClient
from .time_utils import ServerEpoch
from .watcher import CollectionWatcher

logger = logging.getLogger(__name__)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def __init__(self, *args, service: str = "", environment: str = "", **kwargs):
        super(CustomJsonFormatter, self).__init__(*args, **kwargs)
        self.service = service
        self.environment = environment

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        log_record['service'] = self.service
        log_record['environment'] = self.environment
        log_record['timestamp'] = datetime.now(timezone.utc).isoformat(timespec='milliseconds')


def setup_logging(config: Settings) -> None:
    """Configure structured JSON logging for the application."""
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter(
        '%(timestamp)s %(levelname)s %(service)s %(environment)s %(name)s %(message)s',
        service=config.service_name,
        environment=config.environment,
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)

    root_logger.addHandler(handler)

    # Set specific logger levels
    logging.getLogger('google').setLevel(logging.WARNING)
    logging.getLogger('grpc').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def main() -> int:
    """Main entry point for the application."""
    setup_logging(settings)
    logger.info(f"Starting Push Relay Service in {settings.environment} environment")

    # Nothing may run without a working Firebase app
    try:
        firebase_client = FirebaseClient(settings)
    except Exception as e:
        logger.critical(f"Error initializing Firebase Admin: {str(e)}")
        return 1

    server_epoch = ServerEpoch.capture()
    logger.info(f"Server epoch captured: {server_epoch.millis}")

    processor = EventProcessor(
        firebase_client=firebase_client,
        unknown_sender_nickname=settings.unknown_sender_nickname,
    )
    watcher = CollectionWatcher(
        firebase_client=firebase_client,
        processor=processor,
        server_epoch=server_epoch,
        settings=settings,
    )

    app = create_app(watcher)
    logger.info(f"Server is running on port {settings.port}")
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
