from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from triptrack.data.models import AppState, Booking, BookingStatus, StartOutcome, TrackerState
from triptrack.data.trip_monitor import ActiveTripMonitor
from triptrack.tracking.durable import BACKGROUND_LOCATION_TASK


def test_foreground_start_streams_over_socket(make_harness, sample_at) -> None:
    h = make_harness()
    h.connect_socket()

    outcome = h.coordinator.start_tracking("B1")
    h.sampler.emit(sample_at(lat=24.9, lng=67.1))

    assert outcome is StartOutcome.STARTED
    assert h.coordinator.state is TrackerState.FOREGROUND_TRACKING
    session = h.coordinator.session
    assert session.trip_id == "B1"
    assert session.realtime_active
    assert session.durable_active
    assert session.last_sample_sent_at is not None
    assert h.sent_locations() == [
        {
            "bookingId": "B1",
            "lat": 24.9,
            "lng": 67.1,
            "heading": 90.0,
            "speed": 3.5,
            "timestamp": "2026-10-16T09:00:00+00:00",
        }
    ]


def test_background_samples_are_posted_while_tracking(make_harness, sample_at) -> None:
    h = make_harness()
    h.coordinator.start_tracking("B1")
    sample = sample_at()

    h.registry.fire(BACKGROUND_LOCATION_TASK, sample)

    h.api.post_location.assert_called_once_with("B1", sample)
    assert h.coordinator.session.last_sample_sent_at is not None


def test_start_in_background_uses_durable_channel_only(make_harness) -> None:
    h = make_harness(app_state=AppState.BACKGROUND)

    outcome = h.coordinator.start_tracking("B1")

    assert outcome is StartOutcome.STARTED
    assert h.coordinator.state is TrackerState.BACKGROUND_TRACKING
    assert h.sampler.start_calls == 0
    assert h.registry.running[BACKGROUND_LOCATION_TASK] == {"trip_id": "B1"}


def test_foreground_permission_denied(make_harness) -> None:
    h = make_harness(foreground=False, deny_sampler=True)

    outcome = h.coordinator.start_tracking("B1")

    assert outcome is StartOutcome.PERMISSION_DENIED
    session = h.coordinator.session
    assert session.permission_denied
    assert not session.realtime_active
    assert not session.durable_active
    assert h.registry.start_calls == 0


def test_background_permission_denied_keeps_foreground(make_harness) -> None:
    h = make_harness(background=False)

    outcome = h.coordinator.start_tracking("B1")

    assert outcome is StartOutcome.STARTED
    assert h.coordinator.state is TrackerState.FOREGROUND_TRACKING
    session = h.coordinator.session
    assert session.realtime_active
    assert not session.durable_active
    assert "Background location permission denied" in session.last_error


def test_start_requires_trip_id(make_harness) -> None:
    h = make_harness()

    with pytest.raises(ValueError):
        h.coordinator.start_tracking("")


def test_start_is_idempotent(make_harness) -> None:
    h = make_harness()

    h.coordinator.start_tracking("B1")
    outcome = h.coordinator.start_tracking("B1")

    assert outcome is StartOutcome.ALREADY_TRACKING
    assert h.sampler.start_calls == 1
    assert h.registry.start_calls == 1


def test_switching_trips_stops_previous_session(make_harness, sample_at) -> None:
    h = make_harness()
    h.connect_socket()

    h.coordinator.start_tracking("A")
    h.coordinator.start_tracking("B")
    h.sampler.emit(sample_at())

    assert h.coordinator.session.trip_id == "B"
    assert h.sampler.stop_calls == 1
    assert h.sampler.start_calls == 2
    assert h.registry.running[BACKGROUND_LOCATION_TASK] == {"trip_id": "B"}
    assert [data["bookingId"] for data in h.sent_locations()] == ["B"]


def test_samples_dropped_until_socket_connects(make_harness, sample_at) -> None:
    h = make_harness()

    h.coordinator.start_tracking("B1")
    h.sampler.emit(sample_at(seconds=0))
    h.sampler.emit(sample_at(lat=24.87, seconds=60))

    assert h.sent_locations() == []
    assert h.coordinator.session.last_sample_sent_at is None
    h.channel.connect.assert_called()

    h.connect_socket()

    sent = h.sent_locations()
    assert len(sent) == 1
    assert sent[0]["lat"] == 24.87
    assert h.coordinator.session.last_sample_sent_at is not None


def test_reconnect_resends_latest_sample(make_harness, sample_at) -> None:
    h = make_harness()
    h.connect_socket()
    h.coordinator.start_tracking("B1")
    h.sampler.emit(sample_at())

    h.socket.drop()
    h.connect_socket()

    assert len(h.sent_locations()) == 2


def test_backgrounding_switches_to_durable(make_harness) -> None:
    h = make_harness()
    h.coordinator.start_tracking("B1")

    h.coordinator.on_app_state_change(AppState.BACKGROUND)

    assert h.coordinator.state is TrackerState.BACKGROUND_TRACKING
    assert h.registry.start_calls == 1


def test_inactive_does_not_change_state(make_harness) -> None:
    h = make_harness()
    h.coordinator.start_tracking("B1")

    h.coordinator.on_app_state_change(AppState.INACTIVE)

    assert h.coordinator.state is TrackerState.FOREGROUND_TRACKING
    assert h.coordinator.app_state is AppState.INACTIVE


def test_resume_restarts_lost_background_registration(make_harness) -> None:
    h = make_harness()
    h.coordinator.start_tracking("B1")
    h.coordinator.on_app_state_change(AppState.BACKGROUND)
    h.registry.terminate(BACKGROUND_LOCATION_TASK)

    h.coordinator.on_app_state_change(AppState.ACTIVE)

    assert h.registry.start_calls == 2
    assert h.registry.running[BACKGROUND_LOCATION_TASK] == {"trip_id": "B1"}
    assert h.coordinator.state is TrackerState.FOREGROUND_TRACKING
    session = h.coordinator.session
    assert session.durable_active
    assert "Background tracking lost" in session.last_error


def test_resume_does_not_duplicate_running_registration(make_harness) -> None:
    h = make_harness()
    h.coordinator.start_tracking("B1")

    h.coordinator.on_app_state_change(AppState.BACKGROUND)
    h.coordinator.on_app_state_change(AppState.ACTIVE)
    h.coordinator.on_app_state_change(AppState.BACKGROUND)
    h.coordinator.on_app_state_change(AppState.ACTIVE)

    assert h.registry.start_calls == 1
    assert h.sampler.start_calls == 1


def test_resume_starts_realtime_for_background_session(make_harness) -> None:
    h = make_harness(app_state=AppState.BACKGROUND)
    h.coordinator.start_tracking("B1")

    h.coordinator.on_app_state_change(AppState.ACTIVE)

    assert h.sampler.start_calls == 1
    assert h.coordinator.state is TrackerState.FOREGROUND_TRACKING
    assert h.coordinator.session.realtime_active


def test_stop_tracking_returns_to_idle(make_harness, sample_at) -> None:
    h = make_harness()
    h.connect_socket()
    h.coordinator.start_tracking("B1")

    h.coordinator.stop_tracking()
    h.registry.handlers[BACKGROUND_LOCATION_TASK]({"trip_id": "B1"}, [sample_at()], None)

    assert h.coordinator.state is TrackerState.IDLE
    assert h.coordinator.session.trip_id is None
    assert not h.sampler.is_running
    assert BACKGROUND_LOCATION_TASK not in h.registry.running
    h.api.post_location.assert_not_called()


def test_stop_when_idle_cleans_up_leftover_registration(make_harness) -> None:
    h = make_harness()
    h.registry.running[BACKGROUND_LOCATION_TASK] = {"trip_id": "OLD"}

    h.coordinator.stop_tracking()

    assert BACKGROUND_LOCATION_TASK not in h.registry.running


def test_active_trip_changes_drive_tracking(make_harness) -> None:
    h = make_harness()

    h.coordinator.on_active_trip_changed("B1")
    assert h.coordinator.session.trip_id == "B1"

    h.coordinator.on_active_trip_changed(None)
    assert h.coordinator.state is TrackerState.IDLE


def test_logout_stops_monitor_and_tracking(make_harness) -> None:
    h = make_harness()
    monitor = MagicMock()
    h.coordinator.attach_monitor(monitor)
    h.coordinator.start_tracking("B1")

    h.coordinator.logout()

    monitor.stop.assert_called_once_with()
    assert h.coordinator.state is TrackerState.IDLE
    assert BACKGROUND_LOCATION_TASK not in h.registry.running


def test_tracking_resumes_after_logout_and_sign_in(make_harness) -> None:
    h = make_harness()
    client = MagicMock()
    client.get_my_bookings.return_value = [Booking("B1", BookingStatus.ONGOING)]
    monitor = ActiveTripMonitor(client, on_change=h.coordinator.on_active_trip_changed)
    h.coordinator.attach_monitor(monitor)

    monitor.refresh()
    assert h.coordinator.state is TrackerState.FOREGROUND_TRACKING

    h.coordinator.logout()
    assert h.coordinator.state is TrackerState.IDLE

    monitor.refresh()

    assert h.coordinator.state is TrackerState.FOREGROUND_TRACKING
    assert h.coordinator.session.trip_id == "B1"
    assert h.registry.running[BACKGROUND_LOCATION_TASK] == {"trip_id": "B1"}
