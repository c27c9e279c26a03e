import asyncio
import logging
from concurrent.futures import Future
from typing import Callable, List, Optional

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, wait_exponential

from .config import Settings
from .event_processor import EventProcessor
from .firebase import FirebaseClient
from .schemas import ChangeEvent, ChangeKind, ChatMessage
from .time_utils import ServerEpoch, current_millis

logger = logging.getLogger(__name__)


def to_change_event(document_change) -> ChangeEvent:
    """Convert a google.cloud.firestore DocumentChange into a ChangeEvent."""
    document = document_change.document
    return ChangeEvent(
        kind=ChangeKind(document_change.type.name.lower()),
        documentId=document.id,
        message=ChatMessage.model_validate(document.to_dict() or {}),
    )


def _log_batch_failure(future: Future) -> None:
    if future.cancelled():
        logger.warning("Snapshot batch processing was cancelled")
        return
    error = future.exception()
    if error is not None:
        logger.error(f"Unexpected error processing snapshot batch: {str(error)}", exc_info=error)


class CollectionWatcher:
    """
    Keeps a Firestore snapshot listener on the watched collection alive and
    hands every change batch to the event processor.

    Firestore invokes snapshot callbacks on its own background thread; batches
    are scheduled onto the event loop that runs `run()`.
    """

    def __init__(self,
                 firebase_client: FirebaseClient,
                 processor: EventProcessor,
                 server_epoch: ServerEpoch,
                 settings: Settings):
        self.firebase = firebase_client
        self.processor = processor
        self.server_epoch = server_epoch
        self.settings = settings
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._watch = None

    @property
    def collection_path(self) -> str:
        return self.settings.watched_collection_path

    async def run(self) -> None:
        """Subscribe and supervise the subscription until cancelled."""
        self._loop = asyncio.get_running_loop()
        cutoff_ms = self.server_epoch.millis

        try:
            while True:
                await self._subscribe_with_retry(cutoff_ms)

                while self._watch is not None and self._watch.is_active:
                    await asyncio.sleep(self.settings.watch_poll_interval_seconds)

                logger.error(f"Error listening to Firestore changes: subscription to {self.collection_path} stopped")
                self.stop()

                if not self.settings.resubscribe_on_error:
                    logger.critical("Resubscription disabled, no further changes will be processed")
                    return

                # The new listener replays the whole collection as added; only
                # messages newer than the resubscription are dispatched
                cutoff_ms = current_millis()
        finally:
            self.stop()

    def stop(self) -> None:
        """Unsubscribe the current snapshot listener, if any."""
        watch, self._watch = self._watch, None
        if watch is None:
            return
        try:
            watch.unsubscribe()
        except Exception as e:
            logger.warning(f"Error unsubscribing from {self.collection_path}: {str(e)}")

    async def _subscribe_with_retry(self, cutoff_ms: int) -> None:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(Exception),
            wait=wait_exponential(
                multiplier=self.settings.resubscribe_initial_backoff_seconds,
                max=self.settings.resubscribe_max_backoff_seconds,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                self._subscribe(cutoff_ms)

    def _subscribe(self, cutoff_ms: int) -> None:
        collection_ref = self.firebase.collection(self.collection_path)
        self._watch = collection_ref.on_snapshot(self._snapshot_handler(cutoff_ms))
        logger.info(f"Firestore listener set up on {self.collection_path} (cutoff {cutoff_ms}). Waiting for changes...")

    def _snapshot_handler(self, cutoff_ms: int) -> Callable:
        def on_snapshot(collection_snapshot, changes, read_time):
            events: List[ChangeEvent] = []
            for change in changes:
                try:
                    events.append(to_change_event(change))
                except Exception as e:
                    logger.error(f"Skipping malformed change for {change.document.id}: {str(e)}")

            if not events:
                return

            try:
                future = asyncio.run_coroutine_threadsafe(
                    self.processor.process_batch(events, cutoff_ms),
                    self._loop,
                )
            except RuntimeError as e:
                # Event loop already closed during shutdown
                logger.error(f"Dropping snapshot batch of {len(events)} changes: {str(e)}")
                return
            future.add_done_callback(_log_batch_failure)

        return on_snapshot
