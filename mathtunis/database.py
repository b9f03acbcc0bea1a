"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for users, conversations, messages, the
solutions attached to assistant messages and admin-managed content.
"""

import uuid
from datetime import datetime
from pathlib import Path

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """A student. Anonymous users have is_registered=False and a question quota."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_new_id)
    display_name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=True)
    external_uid = Column(String, unique=True, nullable=True)  # identity provider id
    school_level = Column(String, nullable=True)
    is_registered = Column(Boolean, nullable=False, default=False)
    free_questions_used = Column(Integer, nullable=False, default=0)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    conversations = relationship("Conversation", back_populates="user")


class Conversation(Base):
    """Conversation model."""

    __tablename__ = "conversations"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=True)
    title = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    user = relationship("User", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")


class Message(Base):
    """Chat message model."""

    __tablename__ = "messages"

    id = Column(String, primary_key=True, default=_new_id)
    conversation_id = Column(String, ForeignKey("conversations.id"), nullable=True)
    content = Column(Text, nullable=False)
    type = Column(String, nullable=False)  # user, assistant
    input_mode = Column(String, nullable=True)  # text, image, pdf, audio
    language = Column(String, nullable=False, default="fr")
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    conversation = relationship("Conversation", back_populates="messages")


class MathSolution(Base):
    """Step-by-step solution attached to an assistant message."""

    __tablename__ = "math_solutions"

    id = Column(String, primary_key=True, default=_new_id)
    message_id = Column(String, ForeignKey("messages.id"), nullable=False, unique=True)
    steps = Column(JSON, nullable=False)
    final_answer = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False)
    source = Column(String, nullable=False)  # huggingface, webscraping, heuristic, manual
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class AdminContent(Base):
    """Content managed by admins: articles, solution templates, categories."""

    __tablename__ = "admin_content"

    id = Column(String, primary_key=True, default=_new_id)
    type = Column(String, nullable=False)  # article, solution_template, category
    title = Column(String, nullable=False)
    content = Column(JSON, nullable=True)
    is_published = Column(Boolean, nullable=False, default=False)
    created_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


def _engine(db_path: Path):
    return create_engine(f"sqlite:///{db_path}")


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(_engine(db_path))


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    Session = sessionmaker(bind=_engine(db_path))
    return Session()
