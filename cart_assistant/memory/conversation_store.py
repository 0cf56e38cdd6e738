"""Store and retrieve conversation history."""

import json
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cart_assistant.analytics.logger import logger
from cart_assistant.database.db import SessionLocal
from cart_assistant.database.models import ConversationTurn
from cart_assistant.utils.exceptions import PersistenceError

SENDER_USER = "user"
SENDER_AI = "ai"
SENDER_FUNCTION_CALL = "function_call"
SENDER_FUNCTION_RESPONSE = "function_response"

SENDER_KINDS = (SENDER_USER, SENDER_AI, SENDER_FUNCTION_CALL, SENDER_FUNCTION_RESPONSE)
STRUCTURED_SENDERS = (SENDER_FUNCTION_CALL, SENDER_FUNCTION_RESPONSE)


class ConversationStore:
    """Append-only transcript keyed by chat session.

    Function turns are stored as JSON text and decoded again on read:
    ``{"name", "args"}`` for calls and ``{"name", "content"}`` for
    responses. Rows are never updated or deleted here.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def _open(self, db: Optional[Session]):
        if db is None:
            return self.session_factory(), True
        return db, False

    async def append(
        self,
        session_id: str,
        sender: str,
        content: Union[str, Dict[str, Any]],
        user_id: Optional[int] = None,
        db: Optional[Session] = None,
    ) -> int:
        """Persist one turn and return its row id."""
        if sender not in SENDER_KINDS:
            raise ValueError(f"Unknown sender kind: {sender}")

        if not isinstance(content, str):
            content = json.dumps(content, ensure_ascii=False, default=str)

        db, should_close = self._open(db)
        try:
            turn = ConversationTurn(
                session_id=session_id,
                user_id=user_id,
                sender=sender,
                content=content,
            )
            db.add(turn)
            db.commit()
            db.refresh(turn)
            logger.debug(f"Appended {sender} turn {turn.id} to session {session_id[:8]}...")
            return turn.id
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error appending {sender} turn: {e}")
            raise PersistenceError(f"Could not store {sender} turn") from e
        finally:
            if should_close:
                db.close()

    async def append_function_call(
        self, session_id: str, name: str, args: Optional[Dict[str, Any]], user_id: Optional[int] = None
    ) -> int:
        return await self.append(
            session_id, SENDER_FUNCTION_CALL, {"name": name, "args": args or {}}, user_id=user_id
        )

    async def append_function_response(
        self, session_id: str, name: str, result: Dict[str, Any], user_id: Optional[int] = None
    ) -> int:
        content = json.dumps(result, ensure_ascii=False, default=str)
        return await self.append(
            session_id, SENDER_FUNCTION_RESPONSE, {"name": name, "content": content}, user_id=user_id
        )

    @staticmethod
    def _decode(turn: ConversationTurn) -> Dict[str, Any]:
        content: Any = turn.content
        if turn.sender in STRUCTURED_SENDERS:
            try:
                content = json.loads(turn.content)
            except json.JSONDecodeError:
                logger.warning(f"Undecodable {turn.sender} turn {turn.id}, replaying as text")
        return {
            "id": turn.id,
            "sender": turn.sender,
            "content": content,
            "created_at": turn.created_at.isoformat() if turn.created_at else None,
        }

    async def get_history(self, session_id: str, db: Optional[Session] = None) -> List[Dict[str, Any]]:
        """Full transcript of a session, oldest first."""
        db, should_close = self._open(db)
        try:
            turns = (
                db.query(ConversationTurn)
                .filter(ConversationTurn.session_id == session_id)
                .order_by(ConversationTurn.created_at.asc(), ConversationTurn.id.asc())
                .all()
            )
            return [self._decode(turn) for turn in turns]
        except SQLAlchemyError as e:
            logger.error(f"Error reading history for session {session_id[:8]}...: {e}")
            raise PersistenceError("Could not read conversation history") from e
        finally:
            if should_close:
                db.close()

    async def get_user_conversations(
        self, user_id: int, limit: int = 10, offset: int = 0, db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """A user's sessions, most recently active first, for display.

        Function calls are shown as ``"⚙️ <tool>"``; function responses are
        left out.
        """
        db, should_close = self._open(db)
        try:
            last_activity = func.max(ConversationTurn.created_at).label("last_activity")
            sessions = (
                db.query(ConversationTurn.session_id, last_activity)
                .filter(ConversationTurn.user_id == user_id)
                .group_by(ConversationTurn.session_id)
                .order_by(last_activity.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )

            conversations = []
            for session_id, _ in sessions:
                turns = (
                    db.query(ConversationTurn)
                    .filter(ConversationTurn.session_id == session_id)
                    .order_by(ConversationTurn.created_at.asc(), ConversationTurn.id.asc())
                    .all()
                )
                messages = []
                for turn in turns:
                    if turn.sender == SENDER_FUNCTION_RESPONSE:
                        continue
                    decoded = self._decode(turn)
                    if turn.sender == SENDER_FUNCTION_CALL:
                        name = decoded["content"].get("name", "tool") if isinstance(decoded["content"], dict) else "tool"
                        decoded["content"] = f"⚙️ {name}"
                    messages.append(decoded)

                conversations.append({
                    "session_id": session_id,
                    "started_at": messages[0]["created_at"] if messages else None,
                    "messages": messages,
                })
            return conversations
        except SQLAlchemyError as e:
            logger.error(f"Error reading conversations for user {user_id}: {e}")
            raise PersistenceError("Could not read user conversations") from e
        finally:
            if should_close:
                db.close()
