import logging
from typing import Optional

import firebase_admin
import google.cloud.firestore
from firebase_admin import credentials, firestore, messaging

from ..config import Settings
from ..schemas import UserProfile

logger = logging.getLogger(__name__)


def build_message(token: str, title: str, body: str) -> messaging.Message:
    """Build an FCM message that plays the default sound on Android and iOS."""
    return messaging.Message(
        token=token,
        notification=messaging.Notification(
            title=title,
            body=body
        ),
        android=messaging.AndroidConfig(
            notification=messaging.AndroidNotification(sound="default")
        ),
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(
                aps=messaging.Aps(sound="default")
            )
        ),
    )


class FirebaseClient:
    """Firestore reads and FCM sends for the Push Relay Service."""

    # Errors meaning the device token will never accept a message again
    INVALID_TOKEN_ERRORS = (
        messaging.UnregisteredError,
        messaging.SenderIdMismatchError,
    )

    def __init__(self, settings: Settings):
        """Initialize Firebase client with Firestore and FCM capabilities."""
        self.settings = settings
        self.app = None
        self.firestore_db: Optional[google.cloud.firestore.Client] = None
        self.initialized = False
        self.initialize()

    def initialize(self) -> None:
        """Initialize Firebase Admin SDK, reusing the default app if one exists."""
        if self.initialized:
            return

        try:
            self.app = firebase_admin.get_app()
            logger.info("Retrieved existing Firebase app")
        except ValueError:
            # Raises ConfigurationError on missing credentials, ValueError on a bad certificate
            cred = credentials.Certificate(self.settings.firebase_credentials())
            options = {}
            if self.settings.firebase_database_url:
                options["databaseURL"] = self.settings.firebase_database_url
            self.app = firebase_admin.initialize_app(credential=cred, options=options)
            logger.info(f"Firebase Admin initialized. App name: {self.app.name}")

        self.firestore_db = firestore.client(self.app)
        self.initialized = True

    def collection(self, path: str):
        """Return a reference to a (possibly nested) collection path."""
        return self.firestore_db.collection(path)

    def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        """
        Fetch a user's profile from Firestore.

        Args:
            user_id: The user's ID

        Returns:
            UserProfile, or None if the user document does not exist
        """
        user_doc = self.firestore_db.collection(self.settings.users_collection).document(user_id).get()
        if not user_doc.exists:
            return None

        user_data = user_doc.to_dict() or {}
        return UserProfile(
            userId=user_id,
            nickname=user_data.get("nickname"),
            pushToken=user_data.get("pushToken"),
        )

    def send_notification(self, token: str, title: str, body: str) -> str:
        """
        Send a push notification to a single device.

        Returns:
            The FCM message id
        """
        return messaging.send(build_message(token, title, body), app=self.app)

    @classmethod
    def is_invalid_token_error(cls, error: Exception) -> bool:
        return isinstance(error, cls.INVALID_TOKEN_ERRORS)
