"""OAuth / PKCE bootstrap for tool servers that need delegated access."""

from .bootstrap import AuthorizationRequest, OAuthBootstrap, OAuthExchangeError, OAuthResult
from .pkce import code_challenge, generate_code_verifier
from .providers import OAUTH_PROVIDERS, OAuthProvider, OAuthProviderKind, get_provider
from .state import OAuthState, decode_state, encode_state

__all__ = [
    "AuthorizationRequest",
    "OAUTH_PROVIDERS",
    "OAuthBootstrap",
    "OAuthExchangeError",
    "OAuthProvider",
    "OAuthProviderKind",
    "OAuthResult",
    "OAuthState",
    "code_challenge",
    "decode_state",
    "encode_state",
    "generate_code_verifier",
    "get_provider",
]
