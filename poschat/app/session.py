#!/usr/bin/env python3
"""
Session management module for the POS chat backend.

This module stores each conversation's turns in Redis, falling back to an
in-memory dict when Redis is not reachable.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

import redis

from ..schemas.io_models import ConversationTurn
from ..utils.logger import get_logger
from .config import Config

logger = get_logger("session")


class SessionManager:
    """Manages conversation history per session."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, use_redis: bool = True, max_turns: int = None):
        """Initialize the session manager with Redis connection or fallback to in-memory."""
        self.use_redis = use_redis
        self.max_turns = max_turns or Config.MAX_CONVERSATION_TURNS
        self.memory_sessions: Dict[str, Dict[str, Any]] = {}
        self.redis_client = None

        if not use_redis:
            return
        try:
            self.redis_client = redis_client or redis.Redis(
                host=Config.REDIS_HOST,
                port=Config.REDIS_PORT,
                db=Config.REDIS_DB,
                decode_responses=True,
            )
            # Test Redis connection
            self.redis_client.ping()
            logger.info("Using Redis for session storage")
        except redis.RedisError as e:
            logger.warning(f"Redis not available ({e}), using in-memory session storage")
            self.use_redis = False
            self.redis_client = None

    def _get_session_key(self, session_id: str) -> str:
        return f"poschat:session:{session_id}"

    def _save(self, session_id: str, session_data: Dict[str, Any]) -> None:
        if self.use_redis:
            self.redis_client.set(self._get_session_key(session_id), json.dumps(session_data))
        else:
            self.memory_sessions[session_id] = session_data

    def create_session(self, session_id: str) -> bool:
        """
        Create a new session.

        Args:
            session_id: Unique session identifier

        Returns:
            True if session was created, False if it already exists
        """
        if self.get_session(session_id) is not None:
            return False
        now = datetime.now().isoformat()
        self._save(session_id, {"turns": [], "created_at": now, "last_updated": now})
        return True

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        if self.use_redis:
            session_data = self.redis_client.get(self._get_session_key(session_id))
            return json.loads(session_data) if session_data else None
        return self.memory_sessions.get(session_id)

    def add_turn(self, session_id: str, turn: ConversationTurn) -> None:
        """Append a turn, creating the session on first use and keeping the newest ``max_turns``."""
        session_data = self.get_session(session_id)
        if session_data is None:
            self.create_session(session_id)
            session_data = self.get_session(session_id)

        session_data["turns"].append(turn.model_dump(mode="json"))
        session_data["turns"] = session_data["turns"][-self.max_turns:]
        session_data["last_updated"] = datetime.now().isoformat()
        self._save(session_id, session_data)

    def get_recent_turns(self, session_id: str, max_turns: int = None) -> List[ConversationTurn]:
        session_data = self.get_session(session_id)
        if not session_data:
            return []
        turns = [ConversationTurn.model_validate(t) for t in session_data.get("turns", [])]
        if max_turns is not None:
            turns = turns[-max_turns:] if max_turns > 0 else []
        return turns

    def clear_session(self, session_id: str) -> bool:
        if self.use_redis:
            return bool(self.redis_client.delete(self._get_session_key(session_id)))
        return self.memory_sessions.pop(session_id, None) is not None
