"""
Chat turn handling: the single entry point the web layer calls.

A turn validates the payload, enforces the anonymous free-question quota,
stores the student's message, resolves the question and stores the
assistant's answer together with its solution.
"""

import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from .coordinator import ResolutionCoordinator
from .database import Conversation, Message, User, get_session
from .errors import QuotaExceeded
from .logger import get_logger
from .normalize import normalize_text, question_from_payload
from .schema import validate_question
from .storage import (
    claim_free_question,
    create_conversation,
    create_message,
    get_conversation,
    get_user,
    release_free_question,
    save_solution,
    touch_conversation,
)

logger = get_logger()

TITLE_LENGTH = 60


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "conversationId": message.conversation_id,
        "content": message.content,
        "type": message.type,
        "inputMode": message.input_mode,
        "language": message.language,
        "metadata": message.meta,
        "createdAt": message.created_at.isoformat() if message.created_at else None,
    }


class ChatService:
    def __init__(
        self,
        db_path: Path,
        coordinator: ResolutionCoordinator,
        free_question_limit: int = 2,
    ):
        self.db_path = db_path
        self.coordinator = coordinator
        self.free_question_limit = free_question_limit

    def ask(self, payload: Dict[str, Any], cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        """
        Handle one student question.

        Returns a dict with status "answered", or "validation_error" /
        "not_found" with a list of errors.

        Raises:
            QuotaExceeded: The anonymous user has used all free questions
            ResolutionCancelled: `cancel` was set before an answer was chosen
        """
        errors = validate_question(payload)
        if errors:
            return {"status": "validation_error", "errors": errors}

        session = get_session(self.db_path)
        try:
            user = None
            conversation = None
            conversation_id = payload.get("conversationId")
            if conversation_id:
                conversation = get_conversation(session, conversation_id)
                if conversation is None:
                    return {"status": "not_found", "errors": [f"Conversation not found: {conversation_id}"]}
                if conversation.user_id:
                    user = get_user(session, conversation.user_id)
            elif payload.get("userId"):
                user = get_user(session, payload["userId"])
                if user is None:
                    return {"status": "not_found", "errors": [f"User not found: {payload['userId']}"]}

            if user is None or user.is_registered:
                return self._answer(session, payload, user, conversation, cancel)

            # Anonymous turns pay up front and get the question back if no answer is stored
            if not claim_free_question(session, user.id, self.free_question_limit):
                session.refresh(user)
                raise QuotaExceeded(used=user.free_questions_used, limit=self.free_question_limit)
            try:
                return self._answer(session, payload, user, conversation, cancel)
            except Exception:
                session.rollback()
                release_free_question(session, user.id)
                raise
        finally:
            session.close()

    def _answer(
        self,
        session: Session,
        payload: Dict[str, Any],
        user: Optional[User],
        conversation: Optional[Conversation],
        cancel: Optional[threading.Event],
    ) -> Dict[str, Any]:
        if conversation is None:
            title = normalize_text(payload["content"])[:TITLE_LENGTH]
            conversation = create_conversation(session, user_id=user.id if user else None, title=title)

        question = question_from_payload(payload)
        user_message = create_message(
            session,
            content=question.text,
            type="user",
            conversation_id=conversation.id,
            input_mode=question.input_mode,
            language=question.language,
        )
        question = replace(question, question_id=user_message.id)

        resolution = self.coordinator.resolve_with_report(question, cancel=cancel)
        solution = resolution.solution

        ai_message = create_message(
            session,
            content=solution.final_answer,
            type="assistant",
            conversation_id=conversation.id,
            language=question.language,
            meta={
                "source": solution.source,
                "confidence": solution.confidence,
                "strategy": resolution.accepted_by,
                "attempts": [[a.strategy, a.outcome] for a in resolution.attempts],
            },
        )
        save_solution(session, ai_message.id, solution)
        touch_conversation(session, conversation)

        logger.debug(
            "Chat turn stored",
            conversation_id=conversation.id,
            message_id=ai_message.id,
            source=solution.source,
            fallback=solution.is_fallback,
        )
        return {
            "status": "answered",
            "conversationId": conversation.id,
            "userMessage": message_to_dict(user_message),
            "aiMessage": message_to_dict(ai_message),
            "solution": solution.to_dict(),
        }
