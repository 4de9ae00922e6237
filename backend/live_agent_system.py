"""
Live agent presence and responder selection.

Whether the automated responder answers a customer depends only on whether
any human agent is connected, unless the customer summons it explicitly.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import config
from models import AgentInfo, SenderRole


class PresenceTransition(str, Enum):
    """Change of the "any agent online" flag caused by a single mutation."""
    CAME_ONLINE = "came_online"
    WENT_OFFLINE = "went_offline"


class AgentPresence:
    """
    Set of connections currently marked as human agents.

    connect()/disconnect() report a transition only when the set flips
    between empty and non-empty, so callers can broadcast once per flip.
    """

    def __init__(self):
        self._agents: Dict[str, AgentInfo] = {}

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._agents

    @property
    def is_online(self) -> bool:
        return bool(self._agents)

    def connection_ids(self) -> List[str]:
        return list(self._agents)

    def get(self, connection_id: str) -> Optional[AgentInfo]:
        return self._agents.get(connection_id)

    def connect(self, connection_id: str, name: Optional[str] = None) -> Optional[PresenceTransition]:
        if connection_id in self._agents:
            return None
        was_empty = not self._agents
        self._agents[connection_id] = AgentInfo(agent_id=connection_id, name=name or "Admin")
        return PresenceTransition.CAME_ONLINE if was_empty else None

    def disconnect(self, connection_id: str) -> Optional[PresenceTransition]:
        if self._agents.pop(connection_id, None) is None:
            return None
        return PresenceTransition.WENT_OFFLINE if not self._agents else None


class ResponseKind(str, Enum):
    NO_RESPONSE = "no_response"
    AUTOMATED = "automated"


@dataclass(frozen=True)
class ResponderDecision:
    kind: ResponseKind
    # Message body with the summon token removed; only meaningful for AUTOMATED
    body: str = ""
    summoned: bool = False

    @property
    def automated(self) -> bool:
        return self.kind is ResponseKind.AUTOMATED


def _summon_pattern(token: str, suffix: str = "") -> "re.Pattern[str]":
    # Standalone token only: "bob@aiven.io" does not summon
    return re.compile(r"(?<!\w)" + re.escape(token) + r"(?!\w)" + suffix, re.IGNORECASE)


def contains_summon_token(body: str, token: str = config.SUMMON_TOKEN) -> bool:
    return bool(_summon_pattern(token).search(body))


def strip_summon_token(body: str, token: str = config.SUMMON_TOKEN) -> str:
    return _summon_pattern(token, r"\s*").sub("", body).strip()


def select_responder(
    body: str,
    sender_role: SenderRole,
    agents_present: int,
    token: str = config.SUMMON_TOKEN,
) -> ResponderDecision:
    """
    Decide whether the automated responder answers a message.

    Customers get an automated answer when no agent is online, or at any
    time when they include the summon token. Agent and automated messages
    never trigger one.
    """
    if sender_role is not SenderRole.CUSTOMER:
        return ResponderDecision(ResponseKind.NO_RESPONSE)

    summoned = contains_summon_token(body, token)
    if agents_present > 0 and not summoned:
        return ResponderDecision(ResponseKind.NO_RESPONSE)

    clean = strip_summon_token(body, token) if summoned else body
    return ResponderDecision(ResponseKind.AUTOMATED, body=clean, summoned=summoned)
