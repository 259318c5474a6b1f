from __future__ import annotations

import logging


logger = logging.getLogger(__name__)

# Response-code field of the inbound message, overwritten in place.
RESPONSE_FIELD_INDEX = 27
RESPONSE_FIELD_VALUE = "2"


def build_auto_response(text: str) -> str | None:
    if len(text) <= RESPONSE_FIELD_INDEX:
        logger.warning(
            "Inbound data too short for auto-response (%d chars, need at least %d); skipped.",
            len(text),
            RESPONSE_FIELD_INDEX + 1,
        )
        return None
    return text[:RESPONSE_FIELD_INDEX] + RESPONSE_FIELD_VALUE + text[RESPONSE_FIELD_INDEX + 1 :]
