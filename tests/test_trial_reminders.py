"""
Tests for the trial-ending reminder sweep.
"""

from datetime import datetime, timedelta

from database.models import Profile
from svc.trial_reminders import days_until, send_trial_reminders

NOW = datetime(2026, 3, 10, 9, 30)


def _trial(db, user_id, days_ahead, email=None, status="trial", hour=18):
    end = (NOW + timedelta(days=days_ahead)).replace(hour=hour)
    db.add(
        Profile(
            user_id=user_id,
            email=email if email is not None else f"{user_id}@example.com",
            full_name=user_id.title(),
            subscription_status=status,
            trial_end_date=end,
        )
    )
    db.commit()


class TestDaysUntil:
    def test_truncates_both_sides_to_midnight(self):
        assert days_until(datetime(2026, 3, 15, 1, 0), datetime(2026, 3, 10, 23, 59)) == 5

    def test_same_day_is_zero(self):
        assert days_until(datetime(2026, 3, 10, 23, 0), datetime(2026, 3, 10, 1, 0)) == 0


class TestSweep:
    def test_only_five_and_one_day_marks(self, db, mailer):
        _trial(db, "five", 5)
        _trial(db, "one", 1)
        _trial(db, "three", 3)
        _trial(db, "paid", 5, status="active")

        result = send_trial_reminders(db, mailer, base_url="https://app.example.com", now=NOW)

        assert result == {"sent": 2, "total": 2}
        subjects = sorted(message["subject"] for message in mailer.sent)
        assert subjects == [
            "Your FreelanceFlow trial ends in 5 days",
            "Your FreelanceFlow trial ends tomorrow",
        ]
        assert all("https://app.example.com/settings/subscription" in m["text"] for m in mailer.sent)

    def test_failed_send_not_counted(self, db, mailer):
        _trial(db, "five", 5)
        _trial(db, "one", 1)
        mailer.fail_for.add("one@example.com")

        result = send_trial_reminders(db, mailer, base_url="https://app.example.com", now=NOW)

        assert result == {"sent": 1, "total": 2}

    def test_profiles_without_email_skipped(self, db, mailer):
        _trial(db, "ghost", 1, email="")
        assert send_trial_reminders(db, mailer, base_url="https://x", now=NOW) == {"sent": 0, "total": 0}


class TestEndpoint:
    def test_runs_sweep(self, client, db, mailer):
        db.add(
            Profile(
                user_id="soon",
                email="soon@example.com",
                subscription_status="trial",
                trial_end_date=datetime.utcnow() + timedelta(days=1),
            )
        )
        db.commit()

        response = client.post("/api/billing/trial-reminders")

        assert response.status_code == 200
        assert response.json() == {"sent": 1, "total": 1}

    def test_unconfigured_mailer_is_500(self, client, mailer):
        mailer.configured = False
        response = client.post("/api/billing/trial-reminders")
        assert response.status_code == 500
        assert mailer.sent == []
