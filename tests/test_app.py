"""
Tests for the command-line interface.
"""

import json
import sys

import pytest

from mathtunis import __version__
from mathtunis.app import main
from mathtunis.logger import reset_logger


@pytest.fixture
def run_cli(tmp_path, monkeypatch, capsys):
    """Run `mathtunis <args>` offline with the heuristic strategy only."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MATHTUNIS_STRATEGIES", "heuristic")
    monkeypatch.setenv("MATHTUNIS_DB", str(tmp_path / "cli.db"))
    monkeypatch.setenv("MATHTUNIS_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("MATHTUNIS_LOG_LEVEL", "CRITICAL")

    def _run(*args):
        monkeypatch.setattr(sys, "argv", ["mathtunis", *args])
        main()
        return capsys.readouterr().out

    yield _run
    reset_logger()


class TestCli:
    def test_version(self, run_cli):
        assert run_cli("--version").strip() == __version__

    def test_solve_text(self, run_cli):
        out = run_cli("solve", "--question", "Résoudre x² + 2x - 8 = 0")

        assert "Answer: x = -4 ; x = 2" in out
        assert "[accepted] heuristic" in out

    def test_solve_json(self, run_cli):
        out = run_cli("solve", "--question", "حل x^2 - 4 = 0", "--language", "ar", "--json")

        data = json.loads(out)
        assert data["finalAnswer"] == "x = -2 ; x = 2"
        assert data["source"] == "heuristic"

    def test_solve_threshold_override(self, run_cli):
        out = run_cli("solve", "--question", "1 + 1", "--threshold", "95", "--json")

        assert json.loads(out)["source"] == "manual"

    def test_invalid_configuration(self, run_cli):
        with pytest.raises(SystemExit):
            run_cli("solve", "--question", "1 + 1", "--strategies", "oracle")

    def test_chat_flow(self, run_cli):
        run_cli("init-db")
        user_id = run_cli("new-user", "--name", "Amal", "--registered").split("User: ")[1].strip()
        conversation_id = run_cli(
            "new-conversation", "--user", user_id, "--title", "Révisions"
        ).split("Conversation: ")[1].strip()

        out = run_cli("ask", "--question", "x - 3 = 0", "--conversation", conversation_id, "--json")
        outcome = json.loads(out)
        assert outcome["solution"]["finalAnswer"] == "x = 3"

        history = run_cli("history", "--conversation", conversation_id)
        assert "[user]" in history
        assert "[assistant]" in history

        solution = run_cli("solution", "--message", outcome["aiMessage"]["id"])
        assert "Answer: x = 3" in solution

        listing = run_cli("conversations", "--user", user_id)
        assert conversation_id in listing
        assert "Révisions" in listing

    def test_duplicate_external_uid(self, run_cli):
        run_cli("new-user", "--name", "Amal", "--external-uid", "idp-1")

        with pytest.raises(SystemExit):
            run_cli("new-user", "--name", "Autre", "--external-uid", "idp-1")

    def test_quota_exceeded(self, run_cli, monkeypatch):
        monkeypatch.setenv("MATHTUNIS_FREE_QUESTIONS", "1")
        user_id = run_cli("new-user", "--name", "Invité").split("User: ")[1].strip()

        run_cli("ask", "--question", "1 + 1", "--user", user_id)
        with pytest.raises(SystemExit, match="Free question limit"):
            run_cli("ask", "--question", "1 + 1", "--user", user_id)

    def test_update_user_and_login(self, run_cli):
        user_id = run_cli("new-user", "--name", "Invité", "--external-uid", "idp-7").split("User: ")[1].strip()

        run_cli("update-user", "--user", user_id, "--name", "Amal", "--registered")
        out = run_cli("login", "--external-uid", "idp-7")

        assert f"User: {user_id}" in out
        assert "Name: Amal" in out
        assert "Registered: yes" in out

    def test_update_unknown_user(self, run_cli):
        run_cli("init-db")

        with pytest.raises(SystemExit, match="User not found"):
            run_cli("update-user", "--user", "missing", "--name", "Amal")

    def test_login_unknown(self, run_cli):
        with pytest.raises(SystemExit, match="User not found"):
            run_cli("login", "--external-uid", "idp-404")

    def test_admin_content_flow(self, run_cli):
        admin_id = run_cli("new-user", "--name", "Admin", "--registered").split("User: ")[1].strip()
        run_cli("update-user", "--user", admin_id, "--admin")

        content_id = run_cli(
            "content-add", "--as", admin_id, "--type", "article",
            "--title", "Les limites", "--content", '{"body": "Une limite..."}',
        ).split("Content: ")[1].strip()
        assert f"{content_id} | article | draft | Les limites" in run_cli("content-list")

        run_cli("content-update", content_id, "--as", admin_id, "--published")
        assert "| published |" in run_cli("content-list", "--type", "article")
        assert run_cli("content-list", "--type", "category").strip() == "No content."

        run_cli("content-delete", content_id, "--as", admin_id)
        assert run_cli("content-list").strip() == "No content."

    def test_content_requires_admin(self, run_cli):
        user_id = run_cli("new-user", "--name", "Amal", "--registered").split("User: ")[1].strip()

        with pytest.raises(SystemExit, match="Admin rights required"):
            run_cli("content-add", "--as", user_id, "--type", "article", "--title", "Les limites")

    def test_content_invalid_type(self, run_cli):
        admin_id = run_cli("new-user", "--name", "Admin").split("User: ")[1].strip()
        run_cli("update-user", "--user", admin_id, "--admin")

        with pytest.raises(SystemExit):
            run_cli("content-add", "--as", admin_id, "--type", "video", "--title", "Cours")
