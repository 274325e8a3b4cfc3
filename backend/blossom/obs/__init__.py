"""Observability package bootstrap."""

from __future__ import annotations

from fastapi import FastAPI

from blossom.obs import logging as obs_logging
from blossom.obs import middleware
from blossom.settings import settings


def init(app: FastAPI) -> None:
	"""Install request ids on ``app``; JSON logging and request metrics follow OBS_ENABLED."""
	if getattr(app.state, "obs_installed", False):
		return
	if settings.obs_enabled:
		obs_logging.configure_logging()
	middleware.install(app, instrument=settings.obs_enabled)
	app.state.obs_installed = True


__all__ = ["init"]
