"""Tests for task notification fan-out."""
import pytest

from trialrisk_core import models, notifications
from trialrisk_core.notifications import dispatch


def _task_notifications(db, task):
    return (
        db.query(models.Notification)
        .filter(
            models.Notification.related_entity_type == "task",
            models.Notification.related_entity_id == task.id,
        )
        .order_by(models.Notification.user_id)
        .all()
    )


class TestDispatch:
    """Test audience resolution and idempotent fan-out."""

    def test_dispatch_to_role_members(self, db, directory, settings, make_user, make_task):
        """Each member of the assigned role gets exactly one notification."""
        alice = make_user("EDC Data Manager")
        bob = make_user("EDC Data Manager")
        make_user("Site Monitor")
        task = make_task(assigned_to="EDC Data Manager", record_id="LB-001", domain="LB", source="EDC")

        result = dispatch(db, task, directory, settings=settings)

        assert len(result.created) == 2
        rows = _task_notifications(db, task)
        assert [n.user_id for n in rows] == [alice.id, bob.id]
        for n in rows:
            assert n.action_url == f"/tasks/details/{task.id}"
            assert n.action_required is True
            assert n.type == "task"
            assert n.priority == "high"
            assert n.title.startswith(task.task_id)
            assert "Record ID: LB-001" in n.description
            assert n.target_roles == ["EDC Data Manager"]
            assert n.read is False

    def test_dispatch_is_idempotent(self, db, directory, settings, make_user, make_task):
        """Dispatching the same task twice creates nothing the second time."""
        make_user("EDC Data Manager")
        make_user("EDC Data Manager")
        task = make_task()

        dispatch(db, task, directory, settings=settings)
        second = dispatch(db, task, directory, settings=settings)

        assert second.created == []
        assert second.skipped == 2
        assert len(_task_notifications(db, task)) == 2

    def test_unique_constraint_settles_concurrent_dispatch(self, db, directory, settings, make_user, make_task, monkeypatch):
        """If the existence check misses a row, the insert is rejected and skipped."""
        make_user("EDC Data Manager")
        task = make_task()
        dispatch(db, task, directory, settings=settings)

        monkeypatch.setattr(notifications, "find_task_notification", lambda db, task_id, user_id: None)
        result = dispatch(db, task, directory, settings=settings)

        assert result.created == []
        assert result.skipped == 1
        assert result.errors == []
        assert len(_task_notifications(db, task)) == 1

    def test_role_membership_is_resolved_fresh(self, db, directory, settings, make_user, make_task):
        """A user joining the role after dispatch is picked up by the next dispatch."""
        make_user("EDC Data Manager")
        task = make_task()
        dispatch(db, task, directory, settings=settings)

        newcomer = make_user("EDC Data Manager")
        result = dispatch(db, task, directory, settings=settings)

        assert [n.user_id for n in result.created] == [newcomer.id]

    def test_explicit_users_and_roles(self, db, directory, settings, make_user, make_task):
        monitor = make_user("Site Monitor")
        dm = make_user("EDC Data Manager")
        make_user("EDC Data Manager")
        task = make_task()

        result = dispatch(db, task, directory, roles=["Site Monitor"], user_ids=[dm.id, 999], settings=settings)

        assert sorted(n.user_id for n in result.created) == sorted([monitor.id, dm.id])

    def test_empty_audience_falls_back_to_administrators(self, db, directory, settings, make_user, make_task):
        """With nobody in the target role, the fallback role is notified."""
        admin = make_user(settings.fallback_notification_role)
        task = make_task(assigned_to="Medical Monitor")

        result = dispatch(db, task, directory, settings=settings)

        assert [n.user_id for n in result.created] == [admin.id]
        assert result.created[0].target_roles == [settings.fallback_notification_role]

    def test_inactive_users_are_not_notified(self, db, directory, settings, make_user, make_task):
        active = make_user("EDC Data Manager")
        make_user("EDC Data Manager", status="inactive")
        task = make_task()

        result = dispatch(db, task, directory, settings=settings)
        assert [n.user_id for n in result.created] == [active.id]


class TestPreferences:
    """Test per-user delivery preferences."""

    def _settings_for(self, db, user, **kwargs):
        db.add(models.NotificationSettings(user_id=user.id, **kwargs))
        db.commit()

    def test_push_disabled_is_suppressed(self, db, directory, settings, make_user, make_task):
        muted = make_user("EDC Data Manager")
        make_user("EDC Data Manager")
        self._settings_for(db, muted, push_notifications=False)
        task = make_task()

        result = dispatch(db, task, directory, settings=settings)

        assert len(result.created) == 1
        assert result.suppressed == 1
        assert muted.id not in [n.user_id for n in result.created]

    @pytest.mark.parametrize("priority,delivered", [
        (models.TaskPriority.CRITICAL, True),
        (models.TaskPriority.HIGH, True),
        (models.TaskPriority.MEDIUM, False),
        (models.TaskPriority.LOW, False),
    ])
    def test_critical_only(self, db, directory, settings, make_user, make_task, priority, delivered):
        user = make_user("EDC Data Manager")
        self._settings_for(db, user, critical_only=True)
        task = make_task(priority=priority)

        result = dispatch(db, task, directory, settings=settings)

        assert (len(result.created) == 1) is delivered
        assert result.suppressed == (0 if delivered else 1)


class TestStudyAccess:
    """Test trial access filtering during role resolution."""

    def test_users_without_access_are_excluded(self, db, directory, settings, make_user, make_task):
        scoped = make_user("EDC Data Manager", study_access=["PRO-001"])
        everyone = make_user("EDC Data Manager", study_access=["All Studies"])
        unrestricted = make_user("EDC Data Manager", study_access=None)
        make_user("EDC Data Manager", study_access=["PRO-999"])
        task = make_task()

        result = dispatch(db, task, directory, settings=settings)

        assert sorted(n.user_id for n in result.created) == sorted([scoped.id, everyone.id, unrestricted.id])

    def test_no_one_with_access_uses_whole_role(self, db, directory, settings, make_user, make_task):
        """If nobody in the role can see the trial, every member is notified."""
        make_user("EDC Data Manager", study_access=["PRO-998"])
        make_user("EDC Data Manager", study_access=["PRO-999"])
        task = make_task()

        result = dispatch(db, task, directory, settings=settings)
        assert len(result.created) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
