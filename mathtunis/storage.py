"""
Persistence helpers over the SQLAlchemy models.

Functions take an open session and commit their own writes. save_solution()
is the result sink: it stores the Solution a caller decided to keep. Update
helpers accept only the fields listed next to them.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .database import AdminContent, Conversation, MathSolution, Message, User
from .models import Solution, Step


def create_user(
    session: Session,
    display_name: str,
    email: Optional[str] = None,
    external_uid: Optional[str] = None,
    school_level: Optional[str] = None,
    is_registered: bool = False,
) -> User:
    user = User(
        display_name=display_name,
        email=email,
        external_uid=external_uid,
        school_level=school_level,
        is_registered=is_registered,
    )
    session.add(user)
    session.commit()
    return user


def get_user(session: Session, user_id: str) -> Optional[User]:
    return session.get(User, user_id)


def get_user_by_external_uid(session: Session, external_uid: str) -> Optional[User]:
    return session.query(User).filter_by(external_uid=external_uid).first()


def claim_free_question(session: Session, user_id: str, limit: int) -> bool:
    """
    Take one free question for an anonymous user.

    The check and the increment are one conditional UPDATE, so concurrent
    turns cannot both take the last question. Returns False when none are left.
    """
    claimed = (
        session.query(User)
        .filter(User.id == user_id, User.free_questions_used < limit)
        .update({User.free_questions_used: User.free_questions_used + 1}, synchronize_session=False)
    )
    session.commit()
    return claimed == 1


def release_free_question(session: Session, user_id: str) -> None:
    """Give back a question claimed for a turn that stored no answer."""
    session.query(User).filter(User.id == user_id, User.free_questions_used > 0).update(
        {User.free_questions_used: User.free_questions_used - 1}, synchronize_session=False
    )
    session.commit()


def create_conversation(session: Session, user_id: Optional[str] = None, title: Optional[str] = None) -> Conversation:
    conversation = Conversation(user_id=user_id, title=title)
    session.add(conversation)
    session.commit()
    return conversation


def get_conversation(session: Session, conversation_id: str) -> Optional[Conversation]:
    return session.get(Conversation, conversation_id)


def get_user_conversations(session: Session, user_id: str) -> List[Conversation]:
    return (
        session.query(Conversation)
        .filter_by(user_id=user_id)
        .order_by(Conversation.updated_at.desc())
        .all()
    )


def touch_conversation(session: Session, conversation: Conversation) -> None:
    conversation.updated_at = datetime.now()
    session.commit()


def create_message(
    session: Session,
    content: str,
    type: str,
    conversation_id: Optional[str] = None,
    input_mode: Optional[str] = None,
    language: str = "fr",
    meta: Optional[Dict[str, Any]] = None,
) -> Message:
    message = Message(
        conversation_id=conversation_id,
        content=content,
        type=type,
        input_mode=input_mode,
        language=language,
        meta=meta,
    )
    session.add(message)
    session.commit()
    return message


def get_conversation_messages(session: Session, conversation_id: str) -> List[Message]:
    return (
        session.query(Message)
        .filter_by(conversation_id=conversation_id)
        .order_by(Message.created_at)
        .all()
    )


def save_solution(session: Session, message_id: str, solution: Solution) -> MathSolution:
    """Persist a solution against the assistant message that carries it."""
    record = MathSolution(
        message_id=message_id,
        steps=solution.steps_as_dicts(),
        final_answer=solution.final_answer,
        confidence=solution.confidence,
        source=solution.source,
    )
    session.add(record)
    session.commit()
    return record


def get_solution(session: Session, message_id: str) -> Optional[Solution]:
    record = session.query(MathSolution).filter_by(message_id=message_id).first()
    if record is None:
        return None
    return Solution(
        steps=tuple(Step.from_dict(s) for s in record.steps),
        final_answer=record.final_answer,
        confidence=record.confidence,
        source=record.source,
    )


USER_UPDATE_FIELDS = {"display_name", "email", "school_level", "is_registered", "is_admin"}


def update_user(session: Session, user_id: str, **updates: Any) -> Optional[User]:
    """Apply field updates to a user. Returns None when the user does not exist."""
    unknown = set(updates) - USER_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update user fields: {', '.join(sorted(unknown))}")
    user = session.get(User, user_id)
    if user is None:
        return None
    for field, value in updates.items():
        setattr(user, field, value)
    session.commit()
    return user


CONTENT_UPDATE_FIELDS = {"type", "title", "content", "is_published"}


def create_admin_content(
    session: Session,
    type: str,
    title: str,
    content: Optional[Dict[str, Any]] = None,
    is_published: bool = False,
    created_by: Optional[str] = None,
) -> AdminContent:
    record = AdminContent(
        type=type,
        title=title,
        content=content,
        is_published=is_published,
        created_by=created_by,
    )
    session.add(record)
    session.commit()
    return record


def get_admin_content(session: Session, content_id: str) -> Optional[AdminContent]:
    return session.get(AdminContent, content_id)


def list_admin_content(session: Session, type: Optional[str] = None) -> List[AdminContent]:
    """Admin content, newest first, optionally of one type."""
    query = session.query(AdminContent)
    if type:
        query = query.filter_by(type=type)
    return query.order_by(AdminContent.created_at.desc()).all()


def update_admin_content(session: Session, content_id: str, **updates: Any) -> Optional[AdminContent]:
    unknown = set(updates) - CONTENT_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update content fields: {', '.join(sorted(unknown))}")
    record = session.get(AdminContent, content_id)
    if record is None:
        return None
    for field, value in updates.items():
        setattr(record, field, value)
    session.commit()
    return record


def delete_admin_content(session: Session, content_id: str) -> bool:
    record = session.get(AdminContent, content_id)
    if record is None:
        return False
    session.delete(record)
    session.commit()
    return True
