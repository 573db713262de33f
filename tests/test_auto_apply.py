from datetime import datetime, timezone

from sqlalchemy import select

from backend.powermatch.models.application import Application, ApplicationStage
from backend.powermatch.models.power_match import PowerMatch, PowerMatchState
from backend.powermatch.services.auto_apply import AutoApplyExecutor
from backend.powermatch.utils.error_handlers import MatchTriggerError


def _assert_applied_link_invariant(db):
    for match in db.scalars(select(PowerMatch)):
        assert (match.applied_at is None) == (match.application_id is None), match.id
        assert (match.state == PowerMatchState.APPLIED.value) == (match.applied_at is not None), match.id


def _three_matches(seed):
    user = seed.subscriber()
    jobs = [seed.job(title=f"Job {i}") for i in range(3)]
    matches = [seed.power_match(user_id=user.id, job_id=j.id) for j in jobs]
    return user, jobs, matches


def test_auto_apply_scoring_exception_counts_as_application_error(client, seed, fake_scorer, auth_headers, db_session):
    user, jobs, (m1, m2, m3) = _three_matches(seed)
    fake_scorer.scores[(user.id, jobs[1].id)] = MatchTriggerError("scoring unreachable")

    r = client.post("/functions/auto-apply-power-matches", headers=auth_headers)
    assert r.status_code == 200, r.text
    assert r.json() == {
        "message": "Auto-apply process complete.",
        "matchesProcessed": 3,
        "applicationsCreated": 2,
        "applicationErrors": 1,
        "updateErrors": 0,
    }

    m1 = db_session.get(PowerMatch, m1.id)
    m2 = db_session.get(PowerMatch, m2.id)
    m3 = db_session.get(PowerMatch, m3.id)
    assert m1.applied_at is not None and m1.application_id is not None
    assert m3.applied_at is not None and m3.application_id is not None
    assert m2.applied_at is None and m2.application_id is None
    assert m2.state == PowerMatchState.GENERATED.value

    application = db_session.get(Application, m1.application_id)
    assert application.user_id == user.id
    assert application.job_id == jobs[0].id
    assert application.stage == ApplicationStage.APPLIED
    assert application.status == "active"
    assert application.cover_letter == "Automatically applied via Power Match feature."
    assert application.match_score == 75.0
    _assert_applied_link_invariant(db_session)


def test_auto_apply_unavailable_score_is_stored_as_null(client, seed, fake_scorer, auth_headers, db_session):
    user = seed.subscriber()
    job_a = seed.job()
    job_b = seed.job()
    ma = seed.power_match(user_id=user.id, job_id=job_a.id)
    mb = seed.power_match(user_id=user.id, job_id=job_b.id)
    fake_scorer.scores[(user.id, job_a.id)] = None
    fake_scorer.scores[(user.id, job_b.id)] = {"error": "no profile"}

    data = client.post("/functions/auto-apply-power-matches", headers=auth_headers).json()
    assert data["applicationsCreated"] == 2
    assert data["applicationErrors"] == 0

    for match_id in (ma.id, mb.id):
        match = db_session.get(PowerMatch, match_id)
        assert db_session.get(Application, match.application_id).match_score is None


def test_auto_apply_link_failure_leaves_dangling_application(client, seed, auth_headers, db_session, monkeypatch):
    import backend.powermatch.services.auto_apply as auto_apply

    user = seed.subscriber()
    job = seed.job()
    match = seed.power_match(user_id=user.id, job_id=job.id)

    def _fail_link(*_args, **_kwargs):
        raise RuntimeError("write timeout")

    monkeypatch.setattr(auto_apply, "link_application", _fail_link)

    r = client.post("/functions/auto-apply-power-matches", headers=auth_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["matchesProcessed"] == 1
    assert data["applicationsCreated"] == 0
    assert data["applicationErrors"] == 0
    assert data["updateErrors"] == 1

    applications = list(db_session.scalars(select(Application)))
    assert len(applications) == 1
    assert data["reconciliationRequired"] == [{"powerMatchId": match.id, "applicationId": applications[0].id}]

    stored = db_session.get(PowerMatch, match.id)
    assert stored.applied_at is None
    assert stored.application_id is None
    _assert_applied_link_invariant(db_session)


def test_auto_apply_atomic_mode_rolls_back_failed_link(make_settings, session_factory, seed, fake_scorer, db_session, monkeypatch):
    import backend.powermatch.services.auto_apply as auto_apply

    user = seed.subscriber()
    job = seed.job()
    seed.power_match(user_id=user.id, job_id=job.id)

    def _fail_link(*_args, **_kwargs):
        raise RuntimeError("write timeout")

    monkeypatch.setattr(auto_apply, "link_application", _fail_link)

    result = AutoApplyExecutor(make_settings(auto_apply_atomic=True), session_factory, fake_scorer).run()

    assert result.application_errors == 1
    assert result.update_errors == 0
    assert result.applications_created == 0
    assert list(db_session.scalars(select(Application))) == []


def test_auto_apply_atomic_mode_applies(make_settings, session_factory, seed, fake_scorer, db_session):
    _, _, matches = _three_matches(seed)

    result = AutoApplyExecutor(make_settings(auto_apply_atomic=True), session_factory, fake_scorer).run()

    assert result.applications_created == 3
    for m in matches:
        assert db_session.get(PowerMatch, m.id).state == PowerMatchState.APPLIED.value
    _assert_applied_link_invariant(db_session)


def test_auto_apply_is_idempotent(client, seed, fake_scorer, auth_headers, db_session):
    _three_matches(seed)

    first = client.post("/functions/auto-apply-power-matches", headers=auth_headers).json()
    assert first["applicationsCreated"] == 3

    calls_after_first = len(fake_scorer.score_calls)
    second = client.post("/functions/auto-apply-power-matches", headers=auth_headers).json()
    assert second == {
        "message": "No power matches found requiring application.",
        "matchesProcessed": 0,
        "applicationsCreated": 0,
        "applicationErrors": 0,
        "updateErrors": 0,
    }
    assert len(fake_scorer.score_calls) == calls_after_first
    assert len(list(db_session.scalars(select(Application)))) == 3


def test_auto_apply_skips_viewed_matches_by_default(client, seed, auth_headers, db_session):
    user = seed.subscriber()
    job_a = seed.job()
    job_b = seed.job()
    unviewed = seed.power_match(user_id=user.id, job_id=job_a.id)
    viewed = seed.power_match(user_id=user.id, job_id=job_b.id, viewed_at=datetime.now(timezone.utc))

    data = client.post("/functions/auto-apply-power-matches", headers=auth_headers).json()
    assert data["matchesProcessed"] == 1
    assert db_session.get(PowerMatch, unviewed.id).application_id is not None
    assert db_session.get(PowerMatch, viewed.id).application_id is None


def test_auto_apply_include_viewed_policy(make_settings, session_factory, seed, fake_scorer, db_session):
    user = seed.subscriber()
    job = seed.job()
    viewed = seed.power_match(user_id=user.id, job_id=job.id, viewed_at=datetime.now(timezone.utc))

    result = AutoApplyExecutor(make_settings(auto_apply_policy="include_viewed"), session_factory, fake_scorer).run()

    assert result.applications_created == 1
    stored = db_session.get(PowerMatch, viewed.id)
    assert stored.state == PowerMatchState.APPLIED.value
    assert stored.viewed_at is not None


def test_auto_apply_never_touches_applied_matches(client, seed, fake_scorer, auth_headers, db_session):
    user = seed.subscriber()
    job = seed.job()
    application = seed.application(user_id=user.id, job_id=job.id)
    applied_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    match = seed.power_match(user_id=user.id, job_id=job.id, applied_at=applied_at, application_id=application.id)

    data = client.post("/functions/auto-apply-power-matches", headers=auth_headers).json()
    assert data["matchesProcessed"] == 0
    assert fake_scorer.score_calls == []
    assert db_session.get(PowerMatch, match.id).application_id == application.id


def test_auto_apply_selection_failure_is_fatal(client, seed, auth_headers, monkeypatch):
    import backend.powermatch.services.auto_apply as auto_apply

    def _fail(_db, **_kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(auto_apply, "select_unresolved_matches", _fail)

    r = client.post("/functions/auto-apply-power-matches", headers=auth_headers)
    assert r.status_code == 500
    assert r.json()["details"]["stage"] == "select_unresolved_matches"


def test_auto_apply_concurrent_workers_create_one_application_per_match(
    make_settings, session_factory, seed, fake_scorer, db_session
):
    users = [seed.subscriber() for _ in range(3)]
    jobs = [seed.job(title=f"Job {i}") for i in range(4)]
    for u in users:
        for j in jobs:
            seed.power_match(user_id=u.id, job_id=j.id)
    fake_scorer.scores[(users[0].id, jobs[0].id)] = MatchTriggerError("down")

    result = AutoApplyExecutor(make_settings(batch_max_workers=4), session_factory, fake_scorer).run()

    assert result.matches_processed == 12
    assert result.applications_created == 11
    assert result.application_errors == 1
    assert result.update_errors == 0

    applications = list(db_session.scalars(select(Application)))
    assert len(applications) == 11
    linked = [m.application_id for m in db_session.scalars(select(PowerMatch)) if m.application_id is not None]
    assert sorted(linked) == sorted(a.id for a in applications)
    _assert_applied_link_invariant(db_session)


def test_auto_apply_application_insert_failure_leaves_match_untouched(client, seed, auth_headers, db_session, monkeypatch):
    import backend.powermatch.services.auto_apply as auto_apply

    user, jobs, (m1, m2, m3) = _three_matches(seed)
    real_create = auto_apply.create_application

    def _create(db, **kwargs):
        if kwargs["job_id"] == jobs[1].id:
            raise RuntimeError("insert rejected")
        return real_create(db, **kwargs)

    monkeypatch.setattr(auto_apply, "create_application", _create)

    r = client.post("/functions/auto-apply-power-matches", headers=auth_headers)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["matchesProcessed"] == 3
    assert data["applicationsCreated"] == 2
    assert data["applicationErrors"] == 1
    assert data["updateErrors"] == 0
    assert "reconciliationRequired" not in data

    failed = db_session.get(PowerMatch, m2.id)
    assert failed.state == PowerMatchState.GENERATED.value
    assert failed.applied_at is None
    assert failed.application_id is None
    assert db_session.get(PowerMatch, m1.id).state == PowerMatchState.APPLIED.value
    assert db_session.get(PowerMatch, m3.id).state == PowerMatchState.APPLIED.value
    assert len(list(db_session.scalars(select(Application)))) == 2
    _assert_applied_link_invariant(db_session)
