from .bridge_api import ApiEnvelope, BridgeApi, envelope_code, envelope_ok
from .bridge_http import BridgeHttpClient, RestErrorKind, RestReliabilityConfig

__all__ = [
    "ApiEnvelope",
    "BridgeApi",
    "BridgeHttpClient",
    "RestErrorKind",
    "RestReliabilityConfig",
    "envelope_code",
    "envelope_ok",
]
