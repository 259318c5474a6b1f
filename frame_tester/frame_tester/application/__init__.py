from .auto_responder import RESPONSE_FIELD_INDEX, RESPONSE_FIELD_VALUE, build_auto_response
from .frame_codec import bytes_to_display_pair, bytes_to_hex, decode_hex, encode, text_to_hex
from .iso_configs import IsoConfigService, validate_field
from .preflight import PreflightResult, run_preflight
from .session_manager import SessionManager

__all__ = [
    "IsoConfigService",
    "PreflightResult",
    "RESPONSE_FIELD_INDEX",
    "RESPONSE_FIELD_VALUE",
    "SessionManager",
    "build_auto_response",
    "bytes_to_display_pair",
    "bytes_to_hex",
    "decode_hex",
    "encode",
    "run_preflight",
    "text_to_hex",
    "validate_field",
]
