"""Conversation actions and pause mode for signed-in users."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from blossom.domain import container
from blossom.domain.conversations import exceptions as policy_errors
from blossom.domain.conversations.schemas import (
	CloseConversationRequest,
	CloseConversationResponse,
	ConversationLimits,
	ConversationOut,
	PauseRequest,
	PauseStateOut,
	ResponsePatternOut,
	SnoozeResponse,
	StartConversationRequest,
)
from blossom.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["conversations"])

CHAT_REDIRECT = "/chat"


def _map_error(exc: policy_errors.ConversationPolicyError) -> HTTPException:
	reason = getattr(exc, "reason", "invalid")
	if isinstance(exc, policy_errors.ConversationLimitReached):
		return HTTPException(
			status.HTTP_409_CONFLICT,
			detail={
				"reason": reason,
				"active_count": exc.active_count,
				"max_conversations": exc.max_conversations,
			},
		)
	if isinstance(exc, policy_errors.PauseBlocked):
		return HTTPException(
			status.HTTP_409_CONFLICT,
			detail={
				"reason": reason,
				"active_conversation_count": exc.active_conversation_count,
				"redirect": CHAT_REDIRECT,
			},
		)
	if isinstance(exc, policy_errors.ConversationNotFound):
		return HTTPException(status.HTTP_404_NOT_FOUND, detail=reason)
	if isinstance(exc, policy_errors.ConversationForbidden):
		return HTTPException(status.HTTP_403_FORBIDDEN, detail=reason)
	if isinstance(exc, policy_errors.InvalidTransition):
		return HTTPException(status.HTTP_409_CONFLICT, detail=str(exc))
	return HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=reason)


@router.get("/conversations/limits", response_model=ConversationLimits)
async def conversation_limits(user: AuthenticatedUser = Depends(get_current_user)) -> ConversationLimits:
	store = container.get_policy_store()
	count = await store.get_active_conversation_count(user.id)
	maximum = store.policy.max_active_conversations
	return ConversationLimits(
		active_count=count,
		max_conversations=maximum,
		remaining_slots=max(0, maximum - count),
		can_start_new=count < maximum,
		is_at_limit=count >= maximum,
	)


@router.post("/conversations", response_model=ConversationOut, status_code=status.HTTP_201_CREATED)
async def start_conversation(
	payload: StartConversationRequest,
	user: AuthenticatedUser = Depends(get_current_user),
) -> ConversationOut:
	try:
		conversation = await container.get_policy_store().start_conversation(user.id, payload.match_id)
	except policy_errors.ConversationPolicyError as exc:
		raise _map_error(exc) from exc
	return ConversationOut.from_domain(conversation)


@router.post("/conversations/{conversation_id}/messages", response_model=ConversationOut)
async def record_message(
	conversation_id: str,
	user: AuthenticatedUser = Depends(get_current_user),
) -> ConversationOut:
	try:
		conversation = await container.get_policy_store().record_message(user.id, conversation_id)
	except policy_errors.ConversationPolicyError as exc:
		raise _map_error(exc) from exc
	return ConversationOut.from_domain(conversation)


@router.post("/conversations/{conversation_id}/close", response_model=CloseConversationResponse)
async def close_conversation(
	conversation_id: str,
	payload: CloseConversationRequest,
	user: AuthenticatedUser = Depends(get_current_user),
) -> CloseConversationResponse:
	try:
		conversation, pattern = await container.get_policy_store().close_conversation(
			user.id,
			conversation_id,
			payload.reason,
			payload.message,
		)
	except policy_errors.ConversationPolicyError as exc:
		raise _map_error(exc) from exc
	return CloseConversationResponse(
		conversation=ConversationOut.from_domain(conversation),
		pattern=ResponsePatternOut.from_domain(pattern),
	)


@router.post("/conversations/{conversation_id}/snooze", response_model=SnoozeResponse)
async def snooze_reminder(
	conversation_id: str,
	user: AuthenticatedUser = Depends(get_current_user),
) -> SnoozeResponse:
	try:
		until = await container.get_policy_store().snooze_reminder(user.id, conversation_id)
	except policy_errors.ConversationPolicyError as exc:
		raise _map_error(exc) from exc
	return SnoozeResponse(conversation_id=conversation_id, snoozed_until=until)


@router.get("/profile/pause", response_model=PauseStateOut)
async def get_pause(user: AuthenticatedUser = Depends(get_current_user)) -> PauseStateOut:
	store = container.get_policy_store()
	state = await store.get_pause_state(user.id)
	check = await store.can_pause_dating(user.id)
	return PauseStateOut.from_domain(
		state,
		can_pause=check.can_pause,
		active_conversation_count=check.active_conversation_count,
	)


@router.post("/profile/pause", response_model=PauseStateOut)
async def pause_dating(
	payload: PauseRequest,
	user: AuthenticatedUser = Depends(get_current_user),
) -> PauseStateOut:
	try:
		state = await container.get_policy_store().pause_dating(user.id, payload.reason)
	except policy_errors.ConversationPolicyError as exc:
		raise _map_error(exc) from exc
	return PauseStateOut.from_domain(state)


@router.post("/profile/resume", response_model=PauseStateOut)
async def resume_dating(user: AuthenticatedUser = Depends(get_current_user)) -> PauseStateOut:
	state = await container.get_policy_store().resume_dating(user.id)
	return PauseStateOut.from_domain(state)
