"""
Test the Celery redelivery task wiring.
"""
from safeguard.celery_app import celery_app
from safeguard.tasks import report_tasks


def test_task_registered_and_scheduled():
    assert "safeguard.redeliver_pending_reports" in celery_app.tasks
    schedule = celery_app.conf.beat_schedule["redeliver-pending-authority-reports"]
    assert schedule["task"] == "safeguard.redeliver_pending_reports"


def test_task_runs_redelivery(monkeypatch):
    seen = {}

    async def fake_redeliver(limit):
        seen["limit"] = limit
        return {"delivered": 2, "failed": 1}

    monkeypatch.setattr(report_tasks, "_redeliver", fake_redeliver)
    result = report_tasks.redeliver_pending_reports_task.run(limit=7)

    assert seen["limit"] == 7
    assert result == {"status": "completed", "delivered": 2, "failed": 1}
