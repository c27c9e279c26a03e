from .firebase import FirebaseClient, build_message

__all__ = ["FirebaseClient", "build_message"]
