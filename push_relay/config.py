import json
from typing import Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Chat thread watched by the original deployment
DEFAULT_CHAT_ID = "NnDlHK8QVQaBcTkXPNXIHtFFoiW2-Au1Lb3viduUE2KmfI4xXDgsVYAO2"


class ConfigurationError(ValueError):
    """Raised when the service cannot be started with the given settings."""


class Settings(BaseSettings):
    """Configuration settings for the Push Relay Service"""

    # Application settings
    service_name: str = "push-relay"
    log_level: str = "INFO"
    environment: str = "dev"
    port: int = 3000

    # Firebase credentials, either a whole service-account JSON document...
    firebase_secret: Optional[str] = None

    # ...or the individual service-account fields
    firebase_project_id: Optional[str] = None
    firebase_private_key_id: Optional[str] = None
    firebase_private_key: Optional[str] = None
    firebase_client_email: Optional[str] = None
    firebase_client_id: Optional[str] = None
    firebase_auth_uri: str = "https://accounts.google.com/o/oauth2/auth"
    firebase_token_uri: str = "https://oauth2.googleapis.com/token"
    firebase_auth_provider_cert_url: str = "https://www.googleapis.com/oauth2/v1/certs"
    firebase_client_cert_url: Optional[str] = None
    firebase_database_url: Optional[str] = None

    # Firestore layout
    watched_collection_path: str = f"messages/{DEFAULT_CHAT_ID}/{DEFAULT_CHAT_ID}"
    users_collection: str = "users"

    # Notification settings
    unknown_sender_nickname: str = "Unknown"

    # Subscription supervision
    watch_poll_interval_seconds: float = 5.0
    resubscribe_on_error: bool = True
    resubscribe_initial_backoff_seconds: float = 1.0
    resubscribe_max_backoff_seconds: float = 60.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def firebase_credentials(self) -> Dict:
        """
        Build the service-account certificate dictionary.

        Returns:
            Dict accepted by firebase_admin.credentials.Certificate

        Raises:
            ConfigurationError: if the credentials are missing or malformed
        """
        if self.firebase_secret:
            try:
                cert_dict = json.loads(self.firebase_secret)
                if isinstance(cert_dict, str):
                    cert_dict = json.loads(cert_dict)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"FIREBASE_SECRET is not valid JSON: {str(e)}") from e
            if not isinstance(cert_dict, dict):
                raise ConfigurationError("FIREBASE_SECRET must be a JSON object")
            return cert_dict

        required = {
            "FIREBASE_PROJECT_ID": self.firebase_project_id,
            "FIREBASE_PRIVATE_KEY": self.firebase_private_key,
            "FIREBASE_CLIENT_EMAIL": self.firebase_client_email,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(f"Missing Firebase credentials: {', '.join(missing)}")

        return {
            "type": "service_account",
            "project_id": self.firebase_project_id,
            "private_key_id": self.firebase_private_key_id,
            # Keys stored in env files usually carry escaped newlines
            "private_key": self.firebase_private_key.replace("\\n", "\n"),
            "client_email": self.firebase_client_email,
            "client_id": self.firebase_client_id,
            "auth_uri": self.firebase_auth_uri,
            "token_uri": self.firebase_token_uri,
            "auth_provider_x509_cert_url": self.firebase_auth_provider_cert_url,
            "client_x509_cert_url": self.firebase_client_cert_url,
        }


# Create settings instance
settings = Settings()
