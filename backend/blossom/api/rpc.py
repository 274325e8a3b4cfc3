"""Named policy procedures callable over `POST /rest/v1/rpc/{name}`."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from blossom.domain import container
from blossom.domain.conversations.exceptions import ConversationPolicyError
from blossom.infra.auth import AuthenticatedUser, get_current_user
from blossom.infra.rate_limit import enforce_rpc_budget
from blossom.obs import metrics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rest/v1/rpc", tags=["rpc"])

Handler = Callable[[Optional[str]], Awaitable[Any]]


async def _active_count(user_id: Optional[str]) -> int:
	return await container.get_policy_store().get_active_conversation_count(user_id)


async def _can_start(user_id: Optional[str]) -> bool:
	return await container.get_policy_store().can_start_new_conversation(user_id)


async def _can_pause(user_id: Optional[str]) -> list[dict]:
	check = await container.get_policy_store().can_pause_dating(user_id)
	return [check.to_dict()]


async def _needing_nudge(_: Optional[str]) -> list[dict]:
	rows = await container.get_policy_store().get_conversations_needing_nudge()
	return [row.to_dict() for row in rows]


async def _detect_ghosting(_: Optional[str]) -> int:
	return await container.get_ghosting_detector().run()


async def _trust_signals(user_id: Optional[str]) -> dict:
	signals = await container.get_trust_calculator().recalculate(user_id)
	return {**signals.flags(), "profile_completeness": signals.profile_completeness}


async def _ghosted_conversations(user_id: Optional[str]) -> list[dict]:
	rows = await container.get_policy_store().get_ghosted_conversations(user_id)
	return [row.to_dict() for row in rows]


# name -> (handler, takes p_user_id)
PROCEDURES: Dict[str, tuple[Handler, bool]] = {
	"get_active_conversation_count": (_active_count, True),
	"can_start_new_conversation": (_can_start, True),
	"can_pause_dating": (_can_pause, True),
	"get_conversations_needing_nudge": (_needing_nudge, False),
	"detect_and_record_ghosting": (_detect_ghosting, False),
	"calculate_trust_signals": (_trust_signals, True),
	"get_ghosted_conversations": (_ghosted_conversations, True),
}


def _resolve_subject(user: AuthenticatedUser, procedure: str, params: Dict[str, Any], user_scoped: bool) -> Optional[str]:
	if not user_scoped:
		if not user.is_service:
			raise HTTPException(status.HTTP_403_FORBIDDEN, detail="service_role_required")
		return None
	subject = params.get("p_user_id")
	if not subject:
		raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="missing_p_user_id")
	if not user.may_act_for(str(subject)):
		metrics.inc_policy_rpc(procedure, "forbidden")
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")
	return str(subject)


@router.post("/{name}")
async def call_procedure(
	name: str,
	params: Optional[Dict[str, Any]] = Body(default=None),
	user: AuthenticatedUser = Depends(get_current_user),
) -> Any:
	entry = PROCEDURES.get(name)
	if entry is None:
		raise HTTPException(status.HTTP_404_NOT_FOUND, detail="unknown_procedure")
	handler, user_scoped = entry
	await enforce_rpc_budget(user.id)
	subject = _resolve_subject(user, name, params or {}, user_scoped)
	try:
		result = await handler(subject)
	except ConversationPolicyError as exc:
		metrics.inc_policy_rpc(name, "error")
		raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=exc.reason) from exc
	except Exception:
		metrics.inc_policy_rpc(name, "error")
		logger.exception("policy procedure failed", extra={"procedure": name})
		raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="procedure_failed")
	metrics.inc_policy_rpc(name, "ok")
	return result
