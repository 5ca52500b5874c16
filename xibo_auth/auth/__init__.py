"""Authentication and authorization against Xibo CMS.

Main Components:
    CredentialOrchestrator: Owns the active credential and authorizes requests
    GrantFlowAuthenticator: OAuth2 grants across candidate token endpoints
    FormLoginAuthenticator: Browser-style login with a cookie session
    CredentialStore: Encrypted, atomically written token records
    PermissionSet: Normalized permissions gating available operations

Quick Start:
    from xibo_auth.auth import CredentialOrchestrator
    from xibo_auth.config import load_settings, resolve_passphrase

    settings = load_settings()
    orchestrator = CredentialOrchestrator.from_settings(settings, resolve_passphrase(settings))
    orchestrator.start()

    outcome = orchestrator.login("alice", "secret")
    if outcome.ok:
        print(sorted(orchestrator.available_operations()))
"""

from .codec import Sealed, SecretCodec, decrypt, encrypt
from .errors import (
    AuthError,
    AuthenticationRejected,
    AuthExhausted,
    BackendUnreachable,
    ConfigError,
    CredentialInvalid,
    DecryptFailure,
    EndpointAttempt,
    MFARequired,
    ProtocolMismatch,
    RefreshFailed,
    TokenExpired,
)
from .form_login import FormLoginAuthenticator, LoginState
from .grant import GrantFlowAuthenticator
from .identity import resolve
from .orchestrator import (
    AuthOutcome,
    AuthStatus,
    CredentialMode,
    CredentialOrchestrator,
    OutcomeKind,
)
from .permissions import (
    CAPABILITY_CATALOG,
    CapabilityCategory,
    Level,
    PermissionFlag,
    PermissionSet,
    available_categories,
    available_operations,
    filter_operations,
    has_permission_for_operation,
    is_fallback_only,
    operation_count_by_category,
    permission_summary,
)
from .refresh import RefreshTask
from .store import CredentialStore
from .tokens import ClientCredentials, CredentialRecord, Session, TokenGrant

__all__ = [
    # Orchestrator (main entry point)
    "CredentialOrchestrator",
    "CredentialMode",
    "AuthOutcome",
    "OutcomeKind",
    "AuthStatus",
    # Authenticators
    "GrantFlowAuthenticator",
    "FormLoginAuthenticator",
    "LoginState",
    # Storage
    "CredentialStore",
    "SecretCodec",
    "Sealed",
    "encrypt",
    "decrypt",
    # Tokens
    "TokenGrant",
    "CredentialRecord",
    "Session",
    "ClientCredentials",
    # Permissions
    "resolve",
    "Level",
    "PermissionFlag",
    "PermissionSet",
    "CapabilityCategory",
    "CAPABILITY_CATALOG",
    "available_categories",
    "available_operations",
    "filter_operations",
    "has_permission_for_operation",
    "is_fallback_only",
    "operation_count_by_category",
    "permission_summary",
    # Background refresh
    "RefreshTask",
    # Errors
    "AuthError",
    "AuthenticationRejected",
    "AuthExhausted",
    "BackendUnreachable",
    "ConfigError",
    "CredentialInvalid",
    "DecryptFailure",
    "EndpointAttempt",
    "MFARequired",
    "ProtocolMismatch",
    "RefreshFailed",
    "TokenExpired",
]
