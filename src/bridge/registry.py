from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from bridge.session import Session

LOGGER = logging.getLogger(__name__)


class SessionRegistry:
    """In-memory index of active Sessions, keyed by session id.

    Insertion-ordered so sweeps and listings are deterministic. Mutations go
    through a lock; readers take snapshots.

    Note: This is a single-process store.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, Session] = {}

    async def add(self, session: Session) -> None:
        async with self._lock:
            if session.id in self._sessions:
                raise KeyError(f"Session {session.id} already registered")
            self._sessions[session.id] = session
        LOGGER.info("[registry] added %s (active=%d)", session.id, len(self._sessions))

    async def rename(self, session: Session, new_id: str) -> str:
        """Re-key ``session`` under ``new_id`` keeping its position.

        Returns the id actually used; a suffix is added if ``new_id`` is taken.
        """

        async with self._lock:
            old_id = session.id
            if old_id not in self._sessions:
                session.id = new_id
                return new_id
            final_id = new_id
            suffix = 1
            while final_id in self._sessions and final_id != old_id:
                suffix += 1
                final_id = f"{new_id}#{suffix}"
            self._sessions = {
                (final_id if key == old_id else key): value for key, value in self._sessions.items()
            }
            session.id = final_id
        LOGGER.debug("[registry] renamed %s -> %s", old_id, final_id)
        return final_id

    async def remove(self, session: Session) -> bool:
        async with self._lock:
            current = self._sessions.get(session.id)
            if current is not session:
                return False
            del self._sessions[session.id]
        LOGGER.info("[registry] removed %s (active=%d)", session.id, len(self._sessions))
        return True

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
