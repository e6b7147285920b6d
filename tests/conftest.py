"""
Shared fakes: a SQLAlchemy-shaped engine that answers by SQL fragment.
"""

import pytest

from src.api.app import create_app
from src.api.auth import generate_token
from src.database import Backend


# ── Helpers / Fakes ──────────────────────────────────────────────────

def squash(sql) -> str:
    return " ".join(str(sql).split())


class FakeResult:
    """Mimic SQLAlchemy Result with .mappings().first()/.all(), .scalar(), .rowcount."""
    def __init__(self, rows=None, rowcount=1, scalar=None):
        self._rows = list(rows or [])
        self.rowcount = rowcount
        self._scalar = scalar

    def mappings(self):
        return self

    def first(self):
        return self._rows[0] if self._rows else None

    def all(self):
        return list(self._rows)

    def scalar(self):
        return self._scalar


class FakeConn:
    def __init__(self, engine, transaction=None):
        self._engine = engine
        self._transaction = transaction

    def execute(self, sql, params=None):
        text_sql = squash(sql)
        self._engine.executed.append((text_sql, params))
        if self._transaction is not None:
            self._transaction.append(text_sql)
        if self._engine.fail is not None:
            raise self._engine.fail
        for needle, answer in self._engine.answers:
            if needle in text_sql:
                return answer(params or {}) if callable(answer) else answer
        return FakeResult([], rowcount=self._engine.default_rowcount, scalar=0)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeEngine:
    """Mimic engine.connect()/engine.begin() context managers."""
    def __init__(self, fail=None, default_rowcount=1):
        self.answers = []
        self.executed = []
        self.transactions = []
        self.fail = fail
        self.default_rowcount = default_rowcount

    def on(self, needle, rows=None, rowcount=1, scalar=None):
        """Answer any statement containing *needle* (first registration wins)."""
        self.answers.append((needle, FakeResult(rows, rowcount=rowcount, scalar=scalar)))
        return self

    def on_call(self, needle, fn):
        self.answers.append((needle, fn))
        return self

    def connect(self):
        return FakeConn(self)

    def begin(self):
        """Each begin() block is recorded as one list of statements in .transactions."""
        self.transactions.append([])
        return FakeConn(self, self.transactions[-1])

    def statements(self, needle):
        return [(sql, params) for sql, params in self.executed if needle in sql]


def profile_row(user_id="u-1", role="donor", permissions=None, **extra):
    row = {
        "id": user_id,
        "email": f"{user_id}@example.org",
        "full_name": f"User {user_id}",
        "phone": None,
        "city": "Springfield",
        "blood_type": "O+",
        "last_donation_date": None,
        "role": role,
        "permissions": permissions,
        "is_eligible": True,
    }
    row.update(extra)
    return row


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def service_engine():
    return FakeEngine()


@pytest.fixture
def app(engine, service_engine):
    flask_app = create_app(backend=Backend(engine=engine, service_engine=service_engine))
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login_as(service_engine):
    """Register a profile row on the service engine and return auth headers for it."""
    def _login(role="donor", user_id="u-1", permissions=None, blood_bank_id=None, **extra):
        service_engine.on("FROM users WHERE id", rows=[
            profile_row(user_id=user_id, role=role, permissions=permissions, **extra)
        ])
        if blood_bank_id:
            service_engine.on("FROM blood_banks WHERE admin_id", rows=[{"id": blood_bank_id}])
        token = generate_token(user_id, f"{user_id}@example.org")
        return {"Authorization": f"Bearer {token}"}
    return _login
