"""HTTP triggers for the scheduled policy jobs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from blossom.domain.nudges import messages
from blossom.infra.auth import require_service
from blossom.jobs.send_conversation_nudges import ConversationNudgeJob
from blossom.jobs.send_ghosting_reminder import GhostingReminderJob
from blossom.jobs.update_ghosting_stats import GhostingStatsJob

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["jobs"], dependencies=[Depends(require_service)])


def _timestamp() -> str:
	return datetime.now(timezone.utc).isoformat()


def _failure(exc: Exception) -> JSONResponse:
	return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc) or "Unknown error"})


@router.post("/send-conversation-nudges")
async def send_conversation_nudges() -> JSONResponse:
	try:
		result = await ConversationNudgeJob().run_once()
	except Exception as exc:
		logger.exception("send-conversation-nudges failed")
		return _failure(exc)
	return JSONResponse(
		{
			"success": True,
			"conversationsChecked": result.conversations_checked,
			"nudgesSent": result.nudges_sent,
		}
	)


@router.post("/send-ghosting-reminder")
async def send_ghosting_reminder() -> JSONResponse:
	try:
		result = await GhostingReminderJob().run_once()
	except Exception as exc:
		logger.exception("send-ghosting-reminder failed")
		return _failure(exc)
	if result.conversations_checked == 0:
		message = messages.NO_REMINDERS_MESSAGE
	else:
		message = messages.reminders_sent_message(result.nudges_sent)
	return JSONResponse({"success": True, "message": message, "reminders_sent": result.nudges_sent})


@router.post("/update-ghosting-stats")
async def update_ghosting_stats() -> JSONResponse:
	try:
		stats = await GhostingStatsJob().run_once()
	except Exception as exc:
		logger.exception("update-ghosting-stats failed")
		return JSONResponse(
			status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
			content={"success": False, "error": str(exc) or "Unknown error", "timestamp": _timestamp()},
		)
	return JSONResponse(
		{
			"success": True,
			"message": "Ghosting stats updated successfully",
			"stats": stats.to_dict(),
			"timestamp": _timestamp(),
		}
	)
