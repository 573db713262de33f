import os
import sys
import threading
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient


# Ensure `import backend.powermatch...` works regardless of where pytest is run from.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# A developer .env must never leak into the test run.
os.environ["DISABLE_DOTENV"] = "1"
os.environ["SCORING_SERVICE_URL"] = ""

from backend.powermatch.config import Settings  # noqa: E402
from backend.powermatch.services.match_trigger import MatchTriggerClient  # noqa: E402

FUNCTION_SECRET = "test-secret"


class FakeMatchTriggerClient(MatchTriggerClient):
    """
    In-memory stand-in for the scoring service.

    `trigger_results` / `scores` map a subscriber id / (subscriber, job) pair to
    the value to return. Exceptions are raised, callables are called.
    """

    def __init__(self):
        self.trigger_results: dict = {}
        self.scores: dict = {}
        self.default_score = 75.0
        self.trigger_calls: list[int] = []
        self.score_calls: list[tuple[int, int]] = []
        self._lock = threading.Lock()

    def trigger_user_power_match(self, subscriber_id: int):
        with self._lock:
            self.trigger_calls.append(subscriber_id)
        result = self.trigger_results.get(
            subscriber_id,
            {"status": "success", "message": "ok", "newMatchesFound": 0},
        )
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(subscriber_id)
        return result

    def calculate_match_score(self, subscriber_id: int, job_id: int):
        with self._lock:
            self.score_calls.append((subscriber_id, job_id))
        score = self.scores.get((subscriber_id, job_id), self.default_score)
        if isinstance(score, Exception):
            raise score
        return score


class Seeder:
    """Small row factory for the temporary database."""

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._n = 0

    def _add(self, row):
        with self._session_factory() as db:
            db.add(row)
            db.commit()
            db.refresh(row)
        return row

    def subscriber(self, *, is_pro=True, active=True, last_check_in=None, email=None):
        from backend.powermatch.models.subscriber import JobSeekerProfile

        self._n += 1
        return self._add(
            JobSeekerProfile(
                full_name=f"Subscriber {self._n}",
                email=email or f"subscriber{self._n}@example.com",
                is_pro=is_pro,
                pro_active_status=active,
                last_active_check_in=last_check_in,
            )
        )

    def job(self, *, employer_id=1, title="Backend Engineer"):
        from backend.powermatch.models.job import Job

        return self._add(Job(employer_id=employer_id, title=title))

    def power_match(self, *, user_id, job_id, match_score=80.0, viewed_at=None, applied_at=None, application_id=None):
        from backend.powermatch.models.power_match import PowerMatch, PowerMatchState

        if applied_at is not None:
            state = PowerMatchState.APPLIED.value
        elif viewed_at is not None:
            state = PowerMatchState.VIEWED.value
        else:
            state = PowerMatchState.GENERATED.value
        return self._add(
            PowerMatch(
                user_id=user_id,
                job_id=job_id,
                match_score=match_score,
                state=state,
                viewed_at=viewed_at,
                applied_at=applied_at,
                application_id=application_id,
            )
        )

    def application(self, *, user_id, job_id, stage=None, status="active"):
        from backend.powermatch.models.application import Application, ApplicationStage

        return self._add(
            Application(
                user_id=user_id,
                job_id=job_id,
                stage=stage or ApplicationStage.APPLIED,
                status=status,
                cover_letter="Automatically applied via Power Match feature.",
            )
        )

    def invitation(self, *, job_id, candidate_id, employer_id=1, status="pending", responded_at=None):
        from backend.powermatch.models.invitation import CandidateInvitation

        if status != "pending" and responded_at is None:
            responded_at = datetime.now(timezone.utc)
        return self._add(
            CandidateInvitation(
                job_id=job_id,
                candidate_id=candidate_id,
                employer_id=employer_id,
                status=status,
                message="We'd like you to apply.",
                responded_at=responded_at,
            )
        )


@pytest.fixture()
def test_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.sqlite3"


@pytest.fixture()
def settings(test_db_path: Path) -> Settings:
    # One worker keeps most tests deterministic; concurrency tests override it.
    return Settings(
        database_url=f"sqlite+pysqlite:///{test_db_path}",
        function_secret=FUNCTION_SECRET,
        batch_max_workers=1,
    )


@pytest.fixture()
def make_settings(settings: Settings):
    def _make(**overrides) -> Settings:
        return replace(settings, **overrides)

    return _make


@pytest.fixture()
def session_factory(settings: Settings):
    from backend.powermatch.database import create_db_engine, create_session_factory, init_db

    engine = create_db_engine(settings.database_url)
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture()
def fake_scorer() -> FakeMatchTriggerClient:
    return FakeMatchTriggerClient()


@pytest.fixture()
def app(settings: Settings, session_factory, fake_scorer: FakeMatchTriggerClient) -> FastAPI:
    """
    FastAPI app wired to the temporary SQLite DB and the fake scoring service.
    """
    from backend.powermatch.main import create_app

    return create_app(settings, session_factory=session_factory, match_trigger_client=fake_scorer)


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def db_session(session_factory):
    """
    Direct SQLAlchemy session bound to the same temporary SQLite DB used by the test app.
    """
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {FUNCTION_SECRET}"}
