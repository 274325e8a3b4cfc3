"""ASGI middleware binding request ids, recording request metrics and access logs."""

from __future__ import annotations

import time
from typing import Optional
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from blossom.obs import logging as obs_logging
from blossom.obs import metrics

REQUEST_ID_ATTR = "request_id"
REQUEST_ID_HEADER = "X-Request-Id"


def _route_template(request: Request) -> str:
	route = request.scope.get("route")
	if route and getattr(route, "path", None):
		return route.path  # type: ignore[return-value]
	return request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
	"""Every response carries an X-Request-Id; metrics and access logs only when instrumented."""

	def __init__(self, app, *, instrument: bool = True) -> None:
		super().__init__(app)
		self._instrument = instrument
		self._logger = obs_logging.get_logger("blossom.http")

	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
		setattr(request.state, REQUEST_ID_ATTR, request_id)
		tokens = obs_logging.bind_context(
			request_id=request_id,
			route=request.url.path,
			user_id=request.headers.get("X-User-Id"),
		)
		try:
			if self._instrument:
				response = await self._timed(request, call_next)
			else:
				response = await call_next(request)
		finally:
			obs_logging.reset_context(tokens)
		response.headers.setdefault(REQUEST_ID_HEADER, request_id)
		return response

	async def _timed(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		start = time.perf_counter()
		status_code = 500
		response: Optional[Response] = None
		try:
			response = await call_next(request)
			status_code = response.status_code
			return response
		except Exception:
			self._logger.exception(
				"http_request_error",
				extra={"method": request.method, "path": request.url.path},
			)
			raise
		finally:
			elapsed_seconds = time.perf_counter() - start
			metrics.observe_request(_route_template(request), request.method, status_code, elapsed_seconds)
			self._logger.info(
				"http_request",
				extra={
					"status": status_code,
					"method": request.method,
					"latency_ms": round(elapsed_seconds * 1000, 3),
				},
			)


def install(app, *, instrument: bool = True) -> None:
	app.add_middleware(ObservabilityMiddleware, instrument=instrument)
