from repositories.session_repository import SessionRepository
from repositories.user_repository import UserRepository
from repositories.verification_repository import VerificationRepository

__all__ = ["SessionRepository", "UserRepository", "VerificationRepository"]
