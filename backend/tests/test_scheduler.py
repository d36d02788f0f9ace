"""Tests for the token sweep job."""
from datetime import timedelta

from coaching.models import ActivationToken
from coaching.services.tokens import issue_activation_token
from coaching.tasks import scheduler
from coaching.timeutils import utcnow


def test_run_token_sweep_records_result(db_session, make_user, mocker):
    user = make_user()
    issue_activation_token(db_session, user.id)
    token = db_session.query(ActivationToken).one()
    token.expires_at = utcnow() - timedelta(days=1)
    db_session.commit()
    mocker.patch.object(scheduler, "SessionLocal", return_value=db_session)

    result = scheduler.trigger_token_sweep()

    assert result["deleted"] == 1
    assert result["manual"] is True
    assert scheduler.get_scheduler_status()["last_token_sweep"]["deleted"] == 1
    assert db_session.query(ActivationToken).count() == 0


def test_run_token_sweep_logs_failures(mocker):
    session = mocker.MagicMock()
    mocker.patch.object(scheduler, "SessionLocal", return_value=session)
    mocker.patch.object(scheduler, "sweep_expired_tokens", side_effect=RuntimeError("db down"))

    result = scheduler.run_token_sweep()

    assert result["error"] == "db down"
    session.rollback.assert_called_once()
    session.close.assert_called_once()
