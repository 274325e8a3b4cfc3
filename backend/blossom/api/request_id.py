"""Request id helpers shared by middleware and error handlers."""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from blossom.obs import logging as obs_logging
from blossom.obs.middleware import REQUEST_ID_ATTR


def get_request_id(request: Optional[Request] = None, default: str = "unknown") -> str:
    """Return the request id bound to the request state or the logging context."""
    if request is not None:
        rid = getattr(request.state, REQUEST_ID_ATTR, None)
        if rid:
            return str(rid)
    return obs_logging.current_request_id() or default
