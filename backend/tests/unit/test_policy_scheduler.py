from __future__ import annotations

from blossom.jobs.scheduler import PolicyScheduler


def test_policy_jobs_registered() -> None:
    scheduler = PolicyScheduler()
    scheduler.schedule_policy_jobs(hours=6)
    assert sorted(scheduler.job_ids()) == [
        "send-conversation-nudges",
        "send-ghosting-reminder",
        "update-ghosting-stats",
    ]
    assert not scheduler.started


def test_shutdown_without_start_is_noop() -> None:
    scheduler = PolicyScheduler()
    scheduler.shutdown()
    assert not scheduler.started
