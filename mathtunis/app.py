import argparse
import json
from pathlib import Path

from . import __version__
from .chat import ChatService, message_to_dict
from .config import ResolverSettings
from .coordinator import ResolutionCoordinator
from .database import init_database, get_session
from .env import load_env
from .errors import QuotaExceeded
from .logger import get_logger, reset_logger
from .models import Question, Solution
from .normalize import normalize_input_mode, normalize_language, normalize_text
from .schema import CONTENT_TYPES, validate_admin_content, validate_user
from .storage import (
    create_admin_content,
    create_conversation,
    create_user,
    delete_admin_content,
    get_conversation,
    get_conversation_messages,
    get_solution,
    get_user,
    get_user_by_external_uid,
    get_user_conversations,
    list_admin_content,
    update_admin_content,
    update_user,
)
from .strategies import build_strategies


def _settings(args: argparse.Namespace) -> ResolverSettings:
    settings = ResolverSettings.from_env().with_overrides(
        acceptance_threshold=getattr(args, "threshold", None),
        strategy_timeout=getattr(args, "timeout", None),
        race_width=getattr(args, "race", None),
        strategies=(args.strategies.split(",") if getattr(args, "strategies", None) else None),
        db_path=(Path(args.db) if getattr(args, "db", None) else None),
    )
    errors = settings.validate()
    if errors:
        raise SystemExit("Invalid configuration:\n" + "\n".join(f" - {e}" for e in errors))
    return settings


def _coordinator(settings: ResolverSettings) -> ResolutionCoordinator:
    try:
        strategies = build_strategies(settings)
    except ValueError as e:
        raise SystemExit(str(e))
    return ResolutionCoordinator(
        strategies,
        acceptance_threshold=settings.acceptance_threshold,
        strategy_timeout=settings.strategy_timeout,
        grace_period=settings.grace_period,
        race_width=settings.race_width,
    )


def print_solution(solution: Solution) -> None:
    for i, step in enumerate(solution.steps, 1):
        print(f"{i}. {step.title}")
        print(f"   {step.explanation}")
        if step.math:
            print(f"   {step.math}")
    print(f"Answer: {solution.final_answer}")
    print(f"Source: {solution.source} (confidence {solution.confidence:g})")


def _report_invalid(errors) -> None:
    if errors:
        print("Invalid:")
        for e in errors:
            print(f" - {e}")
        raise SystemExit(2)


def cmd_init_db(args: argparse.Namespace) -> None:
    settings = _settings(args)
    init_database(settings.db_path)
    print(f"Database ready: {settings.db_path}")


def cmd_solve(args: argparse.Namespace) -> None:
    settings = _settings(args)
    coordinator = _coordinator(settings)
    question = Question(
        text=normalize_text(args.question),
        language=normalize_language(args.language),
        input_mode=normalize_input_mode(args.input_mode),
    )
    resolution = coordinator.resolve_with_report(question)
    if args.json:
        print(json.dumps(resolution.solution.to_dict(), indent=2, ensure_ascii=False))
    else:
        print_solution(resolution.solution)
        for attempt in resolution.attempts:
            print(f"  [{attempt.outcome}] {attempt.strategy} ({attempt.elapsed:.2f}s)")
    if args.metrics:
        coordinator.logger.log_metrics_summary()


def cmd_new_user(args: argparse.Namespace) -> None:
    settings = _settings(args)
    _report_invalid(validate_user({
        "displayName": args.name,
        "email": args.email,
        "schoolLevel": args.school_level,
        "externalUid": args.external_uid,
    }))
    init_database(settings.db_path)
    session = get_session(settings.db_path)
    try:
        if args.external_uid and get_user_by_external_uid(session, args.external_uid) is not None:
            raise SystemExit(f"User already exists for external uid: {args.external_uid}")
        user = create_user(
            session,
            display_name=args.name.strip(),
            email=args.email,
            external_uid=args.external_uid,
            school_level=args.school_level,
            is_registered=args.registered,
        )
        print(f"User: {user.id}")
    finally:
        session.close()


def cmd_new_conversation(args: argparse.Namespace) -> None:
    settings = _settings(args)
    init_database(settings.db_path)
    session = get_session(settings.db_path)
    try:
        if args.user and get_user(session, args.user) is None:
            raise SystemExit(f"User not found: {args.user}")
        conversation = create_conversation(session, user_id=args.user, title=args.title)
        print(f"Conversation: {conversation.id}")
    finally:
        session.close()


def cmd_ask(args: argparse.Namespace) -> None:
    settings = _settings(args)
    init_database(settings.db_path)
    service = ChatService(settings.db_path, _coordinator(settings), settings.free_question_limit)
    payload = {"content": args.question, "language": args.language, "inputMode": args.input_mode}
    if args.conversation:
        payload["conversationId"] = args.conversation
    if args.user:
        payload["userId"] = args.user
    try:
        outcome = service.ask(payload)
    except QuotaExceeded as e:
        raise SystemExit(str(e))

    if outcome["status"] != "answered":
        print(f"[{outcome['status']}]")
        for e in outcome["errors"]:
            print(f" - {e}")
        raise SystemExit(2)
    if args.json:
        print(json.dumps(outcome, indent=2, ensure_ascii=False))
        return
    print(f"Conversation: {outcome['conversationId']}")
    print(f"Message: {outcome['aiMessage']['id']}")
    print_solution(Solution.from_dict(outcome["solution"]))


def cmd_conversations(args: argparse.Namespace) -> None:
    settings = _settings(args)
    if not settings.db_path.exists():
        print(f"Database not found: {settings.db_path}")
        return
    session = get_session(settings.db_path)
    try:
        conversations = get_user_conversations(session, args.user)
        if not conversations:
            print("No conversations.")
            return
        for c in conversations:
            print(f"{c.id} | {c.updated_at.isoformat()} | {c.title or '(untitled)'}")
    finally:
        session.close()


def cmd_history(args: argparse.Namespace) -> None:
    settings = _settings(args)
    if not settings.db_path.exists():
        print(f"Database not found: {settings.db_path}")
        return
    session = get_session(settings.db_path)
    try:
        if get_conversation(session, args.conversation) is None:
            raise SystemExit(f"Conversation not found: {args.conversation}")
        messages = get_conversation_messages(session, args.conversation)
        if not messages:
            print("No messages in conversation.")
            return
        for m in messages:
            data = message_to_dict(m)
            print(f"[{data['type']}] {data['createdAt']} ({data['id']})")
            print(f"  {data['content']}")
    finally:
        session.close()


def cmd_solution(args: argparse.Namespace) -> None:
    settings = _settings(args)
    if not settings.db_path.exists():
        print(f"Database not found: {settings.db_path}")
        return
    session = get_session(settings.db_path)
    try:
        solution = get_solution(session, args.message)
    finally:
        session.close()
    if solution is None:
        raise SystemExit(f"Solution not found for message: {args.message}")
    print_solution(solution)


def cmd_update_user(args: argparse.Namespace) -> None:
    settings = _settings(args)
    updates = {
        "display_name": args.name,
        "email": args.email,
        "school_level": args.school_level,
        "is_registered": args.registered,
        "is_admin": args.admin,
    }
    updates = {k: v for k, v in updates.items() if v is not None}
    if not updates:
        raise SystemExit("Nothing to update")
    payload = {"displayName": args.name, "email": args.email, "schoolLevel": args.school_level}
    _report_invalid(validate_user({k: v for k, v in payload.items() if v is not None}, partial=True))
    if "display_name" in updates:
        updates["display_name"] = updates["display_name"].strip()
    init_database(settings.db_path)
    session = get_session(settings.db_path)
    try:
        user = update_user(session, args.user, **updates)
        if user is None:
            raise SystemExit(f"User not found: {args.user}")
        print(f"Updated user: {user.id}")
    finally:
        session.close()


def cmd_login(args: argparse.Namespace) -> None:
    settings = _settings(args)
    init_database(settings.db_path)
    session = get_session(settings.db_path)
    try:
        user = get_user_by_external_uid(session, args.external_uid)
        if user is None:
            raise SystemExit(f"User not found for external uid: {args.external_uid}")
        print(f"User: {user.id}")
        print(f"Name: {user.display_name}")
        print(f"Registered: {'yes' if user.is_registered else 'no'}")
        if not user.is_registered:
            print(f"Free questions used: {user.free_questions_used}/{settings.free_question_limit}")
    finally:
        session.close()


def _require_admin(session, user_id: str) -> None:
    user = get_user(session, user_id)
    if user is None or not user.is_admin:
        raise SystemExit(f"Admin rights required: {user_id}")


def _content_json(raw: str) -> dict:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise SystemExit(f"Invalid --content JSON: {e}")


def cmd_content_list(args: argparse.Namespace) -> None:
    settings = _settings(args)
    if not settings.db_path.exists():
        print(f"Database not found: {settings.db_path}")
        return
    session = get_session(settings.db_path)
    try:
        records = list_admin_content(session, type=args.type)
        if not records:
            print("No content.")
            return
        for r in records:
            state = "published" if r.is_published else "draft"
            print(f"{r.id} | {r.type} | {state} | {r.title}")
    finally:
        session.close()


def cmd_content_add(args: argparse.Namespace) -> None:
    settings = _settings(args)
    content = _content_json(args.content) if args.content else None
    _report_invalid(validate_admin_content({
        "type": args.type,
        "title": args.title,
        "content": content,
        "isPublished": args.published,
    }))
    init_database(settings.db_path)
    session = get_session(settings.db_path)
    try:
        _require_admin(session, args.admin_id)
        record = create_admin_content(
            session,
            type=args.type,
            title=args.title.strip(),
            content=content,
            is_published=args.published,
            created_by=args.admin_id,
        )
        print(f"Content: {record.id}")
    finally:
        session.close()


def cmd_content_update(args: argparse.Namespace) -> None:
    settings = _settings(args)
    payload = {}
    if args.type is not None:
        payload["type"] = args.type
    if args.title is not None:
        payload["title"] = args.title
    if args.content is not None:
        payload["content"] = _content_json(args.content)
    if args.published is not None:
        payload["isPublished"] = args.published
    if not payload:
        raise SystemExit("Nothing to update")
    _report_invalid(validate_admin_content(payload, partial=True))
    updates = {
        "type": payload.get("type"),
        "title": payload["title"].strip() if "title" in payload else None,
        "content": payload.get("content"),
        "is_published": payload.get("isPublished"),
    }
    init_database(settings.db_path)
    session = get_session(settings.db_path)
    try:
        _require_admin(session, args.admin_id)
        record = update_admin_content(
            session, args.content_id, **{k: v for k, v in updates.items() if v is not None}
        )
        if record is None:
            raise SystemExit(f"Content not found: {args.content_id}")
        print(f"Updated content: {record.id}")
    finally:
        session.close()


def cmd_content_delete(args: argparse.Namespace) -> None:
    settings = _settings(args)
    init_database(settings.db_path)
    session = get_session(settings.db_path)
    try:
        _require_admin(session, args.admin_id)
        if not delete_admin_content(session, args.content_id):
            raise SystemExit(f"Content not found: {args.content_id}")
        print(f"Deleted content: {args.content_id}")
    finally:
        session.close()


def main():
    # Load .env if present (HUGGINGFACE_API_KEY, MATHTUNIS_*, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="mathtunis", description="MathTunis: step-by-step math answers")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help="Path to SQLite database (or set MATHTUNIS_DB)")

    subparsers = parser.add_subparsers(dest="command")

    init = subparsers.add_parser("init-db", help="Create database tables")
    init.set_defaults(func=cmd_init_db)

    slv = subparsers.add_parser("solve", help="Resolve a question without storing anything")
    slv.add_argument("--question", required=True, help="Question text")
    slv.add_argument("--language", default="fr", help="Language tag: fr, ar, tn (default: fr)")
    slv.add_argument("--input-mode", default="text", help="text, image, pdf or audio (default: text)")
    slv.add_argument("--threshold", type=float, help="Acceptance threshold 0-100")
    slv.add_argument("--timeout", type=float, help="Per-strategy timeout in seconds")
    slv.add_argument("--strategies", help="Comma-separated strategy order. Example: heuristic,inference")
    slv.add_argument("--race", type=int, help="Race this many top strategies concurrently")
    slv.add_argument("--json", action="store_true", help="Print the solution as JSON")
    slv.add_argument("--metrics", action="store_true", help="Log a metrics summary afterwards")
    slv.set_defaults(func=cmd_solve)

    usr = subparsers.add_parser("new-user", help="Create a user")
    usr.add_argument("--name", required=True, help="Display name")
    usr.add_argument("--email", help="Email address")
    usr.add_argument("--external-uid", help="Identity provider user id")
    usr.add_argument("--school-level", help="School level, e.g. lycee")
    usr.add_argument("--registered", action="store_true", help="Registered user (no free-question quota)")
    usr.set_defaults(func=cmd_new_user)

    upd = subparsers.add_parser("update-user", help="Change a user's profile or flags")
    upd.add_argument("--user", required=True, help="User id")
    upd.add_argument("--name", help="Display name")
    upd.add_argument("--email", help="Email address")
    upd.add_argument("--school-level", help="School level")
    upd.add_argument("--registered", action=argparse.BooleanOptionalAction, help="Registered user")
    upd.add_argument("--admin", action=argparse.BooleanOptionalAction, help="May manage admin content")
    upd.set_defaults(func=cmd_update_user)

    login = subparsers.add_parser("login", help="Look up a user by identity provider id")
    login.add_argument("--external-uid", required=True, help="Identity provider user id")
    login.set_defaults(func=cmd_login)

    conv = subparsers.add_parser("new-conversation", help="Start a conversation")
    conv.add_argument("--user", help="Owner user id")
    conv.add_argument("--title", help="Conversation title")
    conv.set_defaults(func=cmd_new_conversation)

    ask = subparsers.add_parser("ask", help="Ask a question in a conversation and store the answer")
    ask.add_argument("--question", required=True, help="Question text")
    ask.add_argument("--language", default="fr", help="Language tag (default: fr)")
    ask.add_argument("--input-mode", default="text", help="text, image, pdf or audio (default: text)")
    ask.add_argument("--conversation", help="Existing conversation id")
    ask.add_argument("--user", help="User id for a new conversation")
    ask.add_argument("--json", action="store_true", help="Print the full outcome as JSON")
    ask.set_defaults(func=cmd_ask)

    convs = subparsers.add_parser("conversations", help="List a user's conversations, most recent first")
    convs.add_argument("--user", required=True, help="User id")
    convs.set_defaults(func=cmd_conversations)

    hist = subparsers.add_parser("history", help="List messages of a conversation")
    hist.add_argument("--conversation", required=True, help="Conversation id")
    hist.set_defaults(func=cmd_history)

    sol = subparsers.add_parser("solution", help="Show the stored solution of an assistant message")
    sol.add_argument("--message", required=True, help="Assistant message id")
    sol.set_defaults(func=cmd_solution)

    cl = subparsers.add_parser("content-list", help="List admin content, newest first")
    cl.add_argument("--type", choices=CONTENT_TYPES, help="Only this content type")
    cl.set_defaults(func=cmd_content_list)

    ca = subparsers.add_parser("content-add", help="Create admin content")
    ca.add_argument("--as", dest="admin_id", required=True, help="Admin user id")
    ca.add_argument("--type", required=True, help="article, solution_template or category")
    ca.add_argument("--title", required=True, help="Title")
    ca.add_argument("--content", help="Content as a JSON object")
    ca.add_argument("--published", action="store_true", help="Publish immediately")
    ca.set_defaults(func=cmd_content_add)

    cu = subparsers.add_parser("content-update", help="Change admin content")
    cu.add_argument("content_id", help="Content id")
    cu.add_argument("--as", dest="admin_id", required=True, help="Admin user id")
    cu.add_argument("--type", help="article, solution_template or category")
    cu.add_argument("--title", help="Title")
    cu.add_argument("--content", help="Content as a JSON object")
    cu.add_argument("--published", action=argparse.BooleanOptionalAction, help="Publish or unpublish")
    cu.set_defaults(func=cmd_content_update)

    cd = subparsers.add_parser("content-delete", help="Delete admin content")
    cd.add_argument("content_id", help="Content id")
    cd.add_argument("--as", dest="admin_id", required=True, help="Admin user id")
    cd.set_defaults(func=cmd_content_delete)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        try:
            env_settings = ResolverSettings.from_env()
        except ValueError as e:
            raise SystemExit(str(e))
        errors = env_settings.validate()
        if errors:
            raise SystemExit("Invalid configuration:\n" + "\n".join(f" - {e}" for e in errors))
        reset_logger()
        get_logger(level=env_settings.log_level, log_dir=env_settings.log_dir)
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
