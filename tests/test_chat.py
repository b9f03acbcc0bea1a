"""
Tests for chat turns: validation, quota, persistence of answers.
"""

import threading

import pytest

from mathtunis.chat import ChatService
from mathtunis.coordinator import ResolutionCoordinator
from mathtunis.database import Message, get_session
from mathtunis.errors import QuotaExceeded, ResolutionCancelled
from mathtunis.storage import (
    create_conversation,
    create_user,
    get_conversation,
    get_conversation_messages,
    get_solution,
    get_user,
)
from mathtunis.strategies import HeuristicStrategy


@pytest.fixture
def coordinator(quiet_logger):
    return ResolutionCoordinator([HeuristicStrategy()], strategy_timeout=5.0, logger=quiet_logger)


@pytest.fixture
def service(db_path, coordinator):
    return ChatService(db_path, coordinator, free_question_limit=2)


class TestAsk:
    """A full chat turn."""

    def test_answered_turn_is_stored(self, service, db_path):
        outcome = service.ask({"content": "Résoudre x² + 2x - 8 = 0", "language": "fr"})

        assert outcome["status"] == "answered"
        assert outcome["solution"]["finalAnswer"] == "x = -4 ; x = 2"
        assert outcome["solution"]["source"] == "heuristic"
        assert outcome["userMessage"]["type"] == "user"
        assert outcome["aiMessage"]["content"] == "x = -4 ; x = 2"
        assert outcome["aiMessage"]["metadata"]["strategy"] == "heuristic"
        assert outcome["aiMessage"]["metadata"]["attempts"] == [["heuristic", "accepted"]]

        session = get_session(db_path)
        try:
            messages = get_conversation_messages(session, outcome["conversationId"])
            assert [m.type for m in messages] == ["user", "assistant"]
            assert messages[0].content == "Résoudre x² + 2x - 8 = 0"
            stored = get_solution(session, outcome["aiMessage"]["id"])
            assert stored.final_answer == "x = -4 ; x = 2"
        finally:
            session.close()

    def test_new_conversation_title(self, service, db_path):
        text = "Calculer " + "1 + " * 30 + "1"
        outcome = service.ask({"content": text})

        session = get_session(db_path)
        try:
            title = get_conversation(session, outcome["conversationId"]).title
        finally:
            session.close()
        assert title == text[:60]

    def test_unsolved_question_gets_fallback(self, service):
        outcome = service.ask({"content": "Bonjour, comment ça va", "language": "ar"})

        assert outcome["status"] == "answered"
        assert outcome["solution"]["confidence"] == 0
        assert outcome["solution"]["source"] == "manual"
        assert outcome["solution"]["finalAnswer"] == "الحل يتطلب تحليل أعمق"
        assert outcome["aiMessage"]["metadata"]["strategy"] is None

    def test_existing_conversation(self, service, db_path):
        session = get_session(db_path)
        conversation = create_conversation(session, title="Révisions")
        conversation_id = conversation.id
        session.close()

        first = service.ask({"content": "2 + 2 * 3", "conversationId": conversation_id})
        second = service.ask({"content": "x - 3 = 0", "conversationId": conversation_id})

        assert first["conversationId"] == second["conversationId"] == conversation_id
        session = get_session(db_path)
        try:
            assert len(get_conversation_messages(session, conversation_id)) == 4
        finally:
            session.close()

    def test_validation_error(self, service):
        outcome = service.ask({"content": "  ", "inputMode": "video"})

        assert outcome["status"] == "validation_error"
        assert len(outcome["errors"]) == 2

    def test_unknown_conversation(self, service):
        outcome = service.ask({"content": "1 + 1", "conversationId": "missing"})

        assert outcome["status"] == "not_found"

    def test_unknown_user(self, service):
        outcome = service.ask({"content": "1 + 1", "userId": "missing"})

        assert outcome["status"] == "not_found"

    def test_cancelled_turn_stores_no_answer(self, service, db_path):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ResolutionCancelled):
            service.ask({"content": "1 + 1"}, cancel=cancel)

        session = get_session(db_path)
        try:
            assert session.query(Message).filter_by(type="assistant").count() == 0
        finally:
            session.close()


class TestQuota:
    """Anonymous users get a limited number of free questions."""

    def test_anonymous_user_limited(self, service, db_path):
        session = get_session(db_path)
        user_id = create_user(session, display_name="Invité").id
        session.close()

        for _ in range(2):
            assert service.ask({"content": "1 + 1", "userId": user_id})["status"] == "answered"

        with pytest.raises(QuotaExceeded) as exc_info:
            service.ask({"content": "1 + 1", "userId": user_id})

        assert exc_info.value.used == 2
        assert exc_info.value.limit == 2
        assert "register" in str(exc_info.value)

        session = get_session(db_path)
        try:
            assert get_user(session, user_id).free_questions_used == 2
        finally:
            session.close()

    def test_quota_follows_conversation_owner(self, service, db_path):
        session = get_session(db_path)
        user = create_user(session, display_name="Invité")
        conversation_id = create_conversation(session, user_id=user.id).id
        session.close()

        service.ask({"content": "1 + 1", "conversationId": conversation_id})
        service.ask({"content": "1 + 2", "conversationId": conversation_id})

        with pytest.raises(QuotaExceeded):
            service.ask({"content": "1 + 3", "conversationId": conversation_id})

    def test_registered_user_unlimited(self, service, db_path):
        session = get_session(db_path)
        user_id = create_user(session, display_name="Amal", is_registered=True).id
        session.close()

        for _ in range(3):
            assert service.ask({"content": "1 + 1", "userId": user_id})["status"] == "answered"

    def test_conversation_without_owner_unlimited(self, service):
        outcome = service.ask({"content": "1 + 1"})

        for _ in range(3):
            assert service.ask({"content": "1 + 1", "conversationId": outcome["conversationId"]})["status"] == "answered"

    def test_cancelled_turn_gives_question_back(self, service, db_path):
        session = get_session(db_path)
        user_id = create_user(session, display_name="Invité").id
        session.close()
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ResolutionCancelled):
            service.ask({"content": "1 + 1", "userId": user_id}, cancel=cancel)

        session = get_session(db_path)
        try:
            assert get_user(session, user_id).free_questions_used == 0
        finally:
            session.close()

    def test_concurrent_turns_share_the_last_question(self, db_path, fake_strategy, quiet_logger):
        """Two simultaneous turns for one anonymous user cannot both use the last free question."""
        slow = fake_strategy("slow", delay=0.3)
        coordinator = ResolutionCoordinator([slow], strategy_timeout=5.0, logger=quiet_logger)
        service = ChatService(db_path, coordinator, free_question_limit=1)
        session = get_session(db_path)
        user_id = create_user(session, display_name="Invité").id
        session.close()

        outcomes = []
        refusals = []

        def ask():
            try:
                outcomes.append(service.ask({"content": "1 + 1", "userId": user_id})["status"])
            except QuotaExceeded as e:
                refusals.append(e)

        threads = [threading.Thread(target=ask) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert outcomes == ["answered"]
        assert len(refusals) == 1
        assert refusals[0].used == 1
        session = get_session(db_path)
        try:
            assert get_user(session, user_id).free_questions_used == 1
            assert session.query(Message).filter_by(type="assistant").count() == 1
        finally:
            session.close()
