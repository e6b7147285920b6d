"""
Tests for the route-check CLI.
"""

from src import cli


def feed(monkeypatch, answers):
    it = iter(answers)
    monkeypatch.setattr("builtins.input", lambda prompt="": next(it))


def test_describe_allow_and_redirect():
    donor = cli.session_for("donor")
    assert cli.describe("/donations/history", donor) == "ALLOW  /donations/history"
    assert cli.describe("/admin/users", donor) == \
        "REDIRECT /admin/users -> /dashboard/donor (access_denied)"
    assert cli.describe("/dashboard", cli.session_for("guest")) == \
        "REDIRECT /dashboard -> /auth/login (unauthenticated)"


def test_repl_session(monkeypatch, capsys):
    feed(monkeypatch, ["recipient", "/blood-requests/new", "", "/blood-bank", "quit"])
    cli.main()
    out = capsys.readouterr().out
    assert "Landing route: /dashboard/recipient" in out
    assert "ALLOW  /blood-requests/new" in out
    assert "REDIRECT /blood-bank -> /dashboard/recipient" in out
    assert "Goodbye." in out


def test_unknown_role(monkeypatch, capsys):
    feed(monkeypatch, ["nurse"])
    cli.main()
    assert "Unknown role 'nurse'" in capsys.readouterr().out
