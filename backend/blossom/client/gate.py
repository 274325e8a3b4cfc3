"""Client-side reads of the conversation policy over the RPC surface.

Read checks fail open: a transport error, a timeout or a non-2xx answer
yields the permissive value so an outage never blocks swiping or chatting.
The server re-validates on every write. The pause check fails closed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from blossom.domain.conversations.policy_config import PolicyConfig, default_policy
from blossom.obs import metrics
from blossom.settings import settings

logger = logging.getLogger(__name__)

RPC_PATH = "/rest/v1/rpc"


@dataclass(slots=True)
class SwipeLimits:
    can_swipe: bool
    active_count: int
    remaining_slots: int
    max_conversations: int
    loading: bool = False


@dataclass(slots=True)
class ConversationStatus:
    active_count: int
    can_start_new: bool
    is_at_limit: bool
    remaining_slots: int


@dataclass(slots=True)
class ConversationLimit:
    can_start_new: bool


@dataclass(slots=True)
class PauseGate:
    can_pause: bool
    active_conversation_count: int
    verified: bool


class PolicyUnavailable(Exception):
    """The policy service could not answer a read."""


@dataclass
class PolicyGate:
    """Read-through, cache-less view of the server policy for one user."""

    http: httpx.AsyncClient
    user_id: str
    access_token: str | None = None
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    request_timeout: float = 5.0

    @classmethod
    def from_settings(cls, user_id: str, *, access_token: str | None = None) -> "PolicyGate":
        http = httpx.AsyncClient(base_url=settings.policy_base_url, timeout=settings.rpc_timeout_seconds)
        return cls(
            http=http,
            user_id=user_id,
            access_token=access_token,
            policy=default_policy(),
            request_timeout=settings.rpc_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    def _headers(self) -> dict[str, str]:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {"X-User-Id": self.user_id}

    async def _rpc(self, name: str, params: Mapping[str, Any] | None = None) -> Any:
        try:
            response = await self.http.post(
                f"{RPC_PATH}/{name}",
                json=dict(params or {"p_user_id": self.user_id}),
                headers=self._headers(),
                timeout=self.request_timeout,
            )
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PolicyUnavailable(f"{name}: {exc}") from exc

    def _slots(self, count: int) -> int:
        return max(0, self.policy.max_active_conversations - count)

    async def active_count(self) -> int:
        data = await self._rpc("get_active_conversation_count")
        try:
            return max(0, int(data or 0))
        except (TypeError, ValueError) as exc:
            raise PolicyUnavailable(f"get_active_conversation_count: {exc}") from exc

    async def swipe_limits(self) -> SwipeLimits:
        maximum = self.policy.max_active_conversations
        try:
            can_start = await self._rpc("can_start_new_conversation")
        except PolicyUnavailable:
            logger.warning("swipe limit check failed; allowing", exc_info=True)
            metrics.inc_gate_fail_open("swipe_limits")
            return SwipeLimits(can_swipe=True, active_count=0, remaining_slots=maximum, max_conversations=maximum)
        try:
            count = await self.active_count()
        except PolicyUnavailable:
            logger.warning("active conversation count failed", exc_info=True)
            count = 0
        return SwipeLimits(
            can_swipe=True if can_start is None else bool(can_start),
            active_count=count,
            remaining_slots=self._slots(count),
            max_conversations=maximum,
        )

    async def conversation_status(self) -> ConversationStatus:
        maximum = self.policy.max_active_conversations
        try:
            count = await self.active_count()
        except PolicyUnavailable:
            logger.warning("conversation status check failed; allowing", exc_info=True)
            metrics.inc_gate_fail_open("conversation_status")
            count = 0
        return ConversationStatus(
            active_count=count,
            can_start_new=count < maximum,
            is_at_limit=count >= maximum,
            remaining_slots=self._slots(count),
        )

    async def conversation_limit(self) -> ConversationLimit:
        try:
            can_start = await self._rpc("can_start_new_conversation")
        except PolicyUnavailable:
            logger.warning("conversation limit check failed; allowing", exc_info=True)
            metrics.inc_gate_fail_open("conversation_limit")
            return ConversationLimit(can_start_new=True)
        return ConversationLimit(can_start_new=True if can_start is None else bool(can_start))

    async def pause_check(self) -> PauseGate:
        try:
            rows = await self._rpc("can_pause_dating")
            row = rows[0] if isinstance(rows, list) else rows
            return PauseGate(
                can_pause=bool(row["can_pause"]),
                active_conversation_count=int(row["active_conversation_count"]),
                verified=True,
            )
        except (PolicyUnavailable, LookupError, TypeError):
            logger.warning("pause check failed; blocking pause", exc_info=True)
            return PauseGate(can_pause=False, active_conversation_count=0, verified=False)
