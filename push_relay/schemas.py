from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class ChatMessage(BaseModel):
    """Message document as stored by the chat clients"""
    model_config = ConfigDict(extra="ignore", arbitrary_types_allowed=True)

    # Strings are not coerced; a document with non-string ids or content fails validation
    idFrom: Optional[str] = None
    idTo: Optional[str] = None
    content: Optional[str] = None
    # int millis, numeric string or a Firestore timestamp
    timestamp: Any = None


class ChangeEvent(BaseModel):
    """One document change delivered by a collection snapshot"""
    kind: ChangeKind
    documentId: Optional[str] = None
    message: ChatMessage


class UserProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    userId: str
    nickname: Optional[str] = None
    pushToken: Optional[str] = None


class DispatchOutcome(str, Enum):
    IGNORED_KIND = "ignored_kind"
    UNSUPPORTED_TIMESTAMP = "unsupported_timestamp"
    STALE = "stale"
    NO_RECIPIENT = "no_recipient"
    NO_TOKEN = "no_token"
    SENT = "sent"
    FAILED = "failed"
