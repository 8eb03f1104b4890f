from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from .models import Session, utcnow


def parse_session_id(session_id: str) -> Tuple[str, str, Optional[str]]:
    """Split a composite session id into (platform, user_id, group_id).

    Accepted shapes: `platform:userId` and `platform:group:groupId[:userId]`.
    """
    platform, _, rest = session_id.partition(":")
    parts = rest.split(":") if rest else []
    user_id = parts[-1] if parts and parts[-1] else "unknown"
    group_id = None
    if len(parts) >= 2 and parts[0] == "group":
        group_id = parts[1]
    return platform, user_id, group_id


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def get_or_create(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        group_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Session:
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_active_at = utcnow()
            return session

        platform, parsed_user, parsed_group = parse_session_id(session_id)
        session = Session(
            id=session_id,
            platform=platform,
            user_id=user_id or parsed_user,
            group_id=group_id or parsed_group,
            metadata=metadata,
        )
        self._sessions[session_id] = session
        logger.info(f"session_created | id={session_id} platform={platform} group={session.group_id}")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def active_since(self, since: datetime) -> List[Session]:
        return [s for s in self._sessions.values() if s.last_active_at >= since]

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
