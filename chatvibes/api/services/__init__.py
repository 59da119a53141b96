"""Services layer - Business logic

Services are initialized with their dependencies and accessed through
dependency injection (see ``core.dependencies``).
"""

from .auth_service import AuthService, SessionUser
from .content_policy import PolicyResult, check_message
from .helix_client import HelixClient, HelixError, HelixErrorKind
from .identity_client import IdentityProviderClient, TokenGrant, TokenValidation
from .moderation import ModerationService, ModeratorResult
from .overlay import OverlayToken, OverlayTokenService
from .reconciler import ReconcileResult, ReconcileStatus, RewardReconciler
from .token_manager import TokenLifecycleManager

__all__ = [
    "AuthService",
    "HelixClient",
    "HelixError",
    "HelixErrorKind",
    "IdentityProviderClient",
    "ModerationService",
    "ModeratorResult",
    "OverlayToken",
    "OverlayTokenService",
    "PolicyResult",
    "ReconcileResult",
    "ReconcileStatus",
    "RewardReconciler",
    "SessionUser",
    "TokenGrant",
    "TokenLifecycleManager",
    "TokenValidation",
    "check_message",
]
