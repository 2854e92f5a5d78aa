"""Tests for the connectivity monitor and stats poller."""
from __future__ import annotations

from client.connectivity import ConnectivityMonitor
from client.stats_poller import StatsPoller
from conftest import make_attendance, make_employee


def test_emits_only_on_transitions():
    monitor = ConnectivityMonitor(initial_state=False)
    changes = []
    monitor.online_changed.connect(changes.append)

    assert monitor.set_online(False) is False
    assert monitor.set_online(True) is True
    assert monitor.set_online(True) is False
    assert monitor.set_online(False) is True

    assert changes == [True, False]
    assert monitor.is_online is False


def test_check_uses_probe():
    answers = iter([True, True, False])
    monitor = ConnectivityMonitor(probe=lambda: next(answers))
    changes = []
    monitor.online_changed.connect(changes.append)

    assert monitor.check() is True
    assert monitor.check() is True
    assert monitor.check() is False
    assert changes == [True, False]


def test_probe_error_counts_as_offline():
    def broken_probe():
        raise OSError("network unreachable")

    monitor = ConnectivityMonitor(probe=broken_probe, initial_state=True)
    assert monitor.check() is False
    assert monitor.is_online is False


def test_without_probe_state_is_pushed_in():
    monitor = ConnectivityMonitor(initial_state=True)
    monitor.start()
    assert monitor.check() is True
    assert not monitor.check_timer.isActive()
    monitor.stop()


def test_stats_poller_refresh(store, clock):
    store.insert_employee(make_employee("E1", is_synced=True))
    store.insert_attendance(make_attendance("E1", "2024-03-04", working_minutes=90,
                                            logout_time="2024-03-04T10:30:00"))
    poller = StatsPoller(store, clock=clock)
    updates = []
    poller.stats_updated.connect(updates.append)

    stats = poller.refresh()

    assert stats["today_attendance"] == 1
    assert stats["total_working_minutes_today"] == 90
    assert stats["pending_sync"] == 1
    assert updates == [stats]
    assert poller.latest == stats


def test_set_probe_replaces_probe_and_restarts_checks():
    monitor = ConnectivityMonitor()
    changes = []
    monitor.online_changed.connect(changes.append)
    monitor.start()
    assert not monitor.check_timer.isActive()

    assert monitor.set_probe(lambda: True) is True
    assert monitor.is_online is True
    assert monitor.check_timer.isActive()

    assert monitor.set_probe(None) is False
    assert monitor.is_online is False
    assert not monitor.check_timer.isActive()
    assert changes == [True, False]
    monitor.stop()
