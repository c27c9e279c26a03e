import asyncio
import logging
from collections import Counter
from typing import Iterable, List, Optional

from .firebase import FirebaseClient
from .schemas import ChangeEvent, ChangeKind, DispatchOutcome
from .time_utils import normalize_timestamp

logger = logging.getLogger(__name__)


class EventProcessor:
    """Turns newly added chat messages into push notifications."""

    def __init__(self, firebase_client: FirebaseClient, unknown_sender_nickname: str = "Unknown"):
        """
        Initialize the event processor.

        Args:
            firebase_client: Client exposing get_user_profile and send_notification
            unknown_sender_nickname: Title used when the sender has no nickname
        """
        self.firebase = firebase_client
        self.unknown_sender_nickname = unknown_sender_nickname
        logger.info("Event processor initialized")

    async def process_batch(self, changes: Iterable[ChangeEvent], cutoff_ms: int) -> List[DispatchOutcome]:
        """
        Process every change of a snapshot batch concurrently.

        Each change runs in its own task with its own error boundary, so one
        failing change never stops the others.

        Args:
            changes: Changes delivered by one snapshot
            cutoff_ms: Messages at or before this epoch-millisecond are ignored

        Returns:
            One outcome per change, in input order
        """
        changes = list(changes)
        if not changes:
            return []

        outcomes = await asyncio.gather(
            *(self.process_event(change, cutoff_ms) for change in changes)
        )

        summary = Counter(outcome.value for outcome in outcomes)
        logger.info(f"Processed {len(changes)} changes: {dict(summary)}")
        return list(outcomes)

    async def process_event(self, change: ChangeEvent, cutoff_ms: int) -> DispatchOutcome:
        """Process a single change, logging and swallowing any failure."""
        try:
            return await self._dispatch(change, cutoff_ms)
        except Exception as e:
            self._report_failure(change, e)
            return DispatchOutcome.FAILED

    async def _dispatch(self, change: ChangeEvent, cutoff_ms: int) -> DispatchOutcome:
        if change.kind is not ChangeKind.ADDED:
            return DispatchOutcome.IGNORED_KIND

        message = change.message
        normalized = normalize_timestamp(message.timestamp)
        if not normalized.ok:
            logger.error(
                f"Unsupported timestamp format in {change.documentId}: "
                f"{message.timestamp!r} ({type(message.timestamp).__name__})"
            )
            return DispatchOutcome.UNSUPPORTED_TIMESTAMP

        # Strictly newer only; a message stamped exactly at the cutoff is treated as old
        if normalized.millis <= cutoff_ms:
            logger.debug(f"Ignoring old message {change.documentId} ({normalized.millis} <= {cutoff_ms})")
            return DispatchOutcome.STALE

        logger.info(
            f"Processing new message {change.documentId}: idFrom={message.idFrom}, "
            f"idTo={message.idTo}, timestamp={normalized.millis}"
        )

        sender_nickname = await self._resolve_sender_nickname(message.idFrom)

        if not message.idTo:
            logger.warning(f"Message {change.documentId} has no recipient")
            return DispatchOutcome.NO_RECIPIENT

        recipient = await asyncio.to_thread(self.firebase.get_user_profile, message.idTo)
        if recipient is None:
            logger.info(f"User document not found for: {message.idTo}")
            return DispatchOutcome.NO_RECIPIENT
        if not recipient.pushToken:
            logger.info(f"No push token found for user: {message.idTo}")
            return DispatchOutcome.NO_TOKEN

        message_id = await asyncio.to_thread(
            self.firebase.send_notification,
            recipient.pushToken,
            sender_nickname,
            message.content,
        )
        logger.info(f"Successfully sent message to {message.idTo}: {message_id}")
        return DispatchOutcome.SENT

    async def _resolve_sender_nickname(self, sender_id: Optional[str]) -> str:
        if not sender_id:
            return self.unknown_sender_nickname

        try:
            sender = await asyncio.to_thread(self.firebase.get_user_profile, sender_id)
        except Exception as e:
            logger.warning(f"Error fetching sender {sender_id}, using placeholder nickname: {str(e)}")
            return self.unknown_sender_nickname

        if sender is None:
            logger.warning(f"Sender document not found for idFrom: {sender_id}")
            return self.unknown_sender_nickname

        return sender.nickname or self.unknown_sender_nickname

    def _report_failure(self, change: ChangeEvent, error: Exception) -> None:
        if FirebaseClient.is_invalid_token_error(error):
            logger.warning(
                f"Push token of {change.message.idTo} is no longer valid, "
                f"dropping message {change.documentId}: {str(error)}"
            )
            return
        logger.error(
            f"Error processing message {change.documentId}: {type(error).__name__}: {str(error)}",
            exc_info=error,
        )
