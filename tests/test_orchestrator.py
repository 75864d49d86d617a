from __future__ import annotations

import pytest

from punch_core.api import AttendanceLogClient
from punch_core.errors import CaptureCancelled, PunchError
from punch_core.models import (
    Anomaly, ErrorKind, Failure, Identity, LocationInfo, Other, PunchMode, Success, WifiInfo,
)
from punch_core.orchestrator import MESSAGES, PunchOrchestrator, PunchStage
from punch_core.revalidator import PeriodicRevalidator

from conftest import (
    OFFICE_LOCATION, OFFICE_WIFI, PUNCH_TIME, USER_ID,
    FakeCapture, FakeClient, FakeLocationProbe, FakeNetworkProbe, FakeResponse, FakeSession,
)


def make(identity, state, network=None, location=None, capture=None, client=None, **kwargs):
    deps = {
        "network_probe": network or FakeNetworkProbe(),
        "location_probe": location or FakeLocationProbe(),
        "capture": capture or FakeCapture(),
        "client": client or FakeClient(),
    }
    orchestrator = PunchOrchestrator(
        identity=identity,
        state=state,
        clock=lambda: PUNCH_TIME,
        device_info=lambda: "Linux 6.8",
        **deps,
        **kwargs,
    )
    return orchestrator, deps


# ─── Scenarios ───────────────────────────────────────────────────

def test_check_in_success_records_state(identity, state):
    orchestrator, deps = make(identity, state)

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.stage is PunchStage.SUCCEEDED
    assert result.recorded
    assert "Check-in successful" in result.message
    assert state.is_checked_in is True
    assert state.punch_in_time == PUNCH_TIME
    assert state.last_punch_time == PUNCH_TIME

    attempt, sent_identity = deps["client"].submitted[0]
    assert sent_identity == identity
    assert attempt.wifi.ssid == "Office-5G"
    assert (attempt.location.latitude, attempt.location.longitude) == (19.07, 72.87)
    assert attempt.device_info == "Linux 6.8"
    assert attempt.started_at == PUNCH_TIME


def test_wifi_disconnected_stops_before_capture(identity, state):
    capture = FakeCapture()
    client = FakeClient()
    orchestrator, _ = make(identity, state, network=FakeNetworkProbe(WifiInfo.invalid()),
                           capture=capture, client=client)

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.stage is PunchStage.REJECTED
    assert result.error_kind is ErrorKind.WIFI_UNAVAILABLE
    assert "WiFi required" in result.message
    assert capture.calls == 0
    assert client.submitted == []
    assert state.is_checked_in is False
    assert state.punch_in_time is None


def test_location_permission_denied(identity, state):
    orchestrator, deps = make(identity, state, location=FakeLocationProbe(LocationInfo.denied()))

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.stage is PunchStage.REJECTED
    assert result.error_kind is ErrorKind.PERMISSION_DENIED
    assert deps["capture"].calls == 1
    assert deps["client"].submitted == []
    assert state.is_checked_in is False


def test_location_fix_failure_is_distinct_from_permission(identity, state):
    orchestrator, _ = make(identity, state, location=FakeLocationProbe(LocationInfo.unavailable()))

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.error_kind is ErrorKind.LOCATION_UNAVAILABLE
    assert result.message == MESSAGES[ErrorKind.LOCATION_UNAVAILABLE]
    assert result.message != MESSAGES[ErrorKind.PERMISSION_DENIED]


def test_anomaly_is_recorded_and_reported(identity, state):
    client = FakeClient(outcome=Anomaly(("off-site",)))
    orchestrator, _ = make(identity, state, client=client)

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.stage is PunchStage.ANOMALY_ACCEPTED
    assert result.recorded
    assert "off-site" in result.message
    assert state.is_checked_in is True


def test_malformed_organization_id_never_reaches_http(state):
    session = FakeSession()
    client = AttendanceLogClient("https://hr.example.com", session=session)
    capture = FakeCapture()
    network = FakeNetworkProbe()
    orchestrator, _ = make(Identity("not-a-uuid", USER_ID), state,
                           client=client, capture=capture, network=network)

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.stage is PunchStage.REJECTED
    assert result.error_kind is ErrorKind.INVALID_IDENTIFIER
    assert "organization" in result.message.lower()
    assert session.calls == []
    assert capture.calls == 0
    assert network.calls == []


# ─── Properties ──────────────────────────────────────────────────

@pytest.mark.parametrize("wifi", [
    WifiInfo.invalid(),
    WifiInfo.invalid(local_ip="192.168.1.20"),
    WifiInfo.invalid(local_ip="192.168.1.20", public_ip="203.0.113.7"),
])
def test_no_capture_without_valid_wifi(identity, state, wifi):
    capture = FakeCapture()
    orchestrator, _ = make(identity, state, network=FakeNetworkProbe(wifi), capture=capture)

    orchestrator.run(PunchMode.CHECK_OUT)

    assert capture.calls == 0


@pytest.mark.parametrize("outcome", [
    Failure(ErrorKind.TIMEOUT, "Request timeout."),
    Failure(ErrorKind.SERVER_REJECTED, "Server error. Please try again later.", 500),
    Failure(ErrorKind.NETWORK_UNREACHABLE, "No response from server."),
    Other("pending"),
])
def test_failed_attempts_never_toggle_state(identity, state, outcome):
    for _ in range(3):
        orchestrator, _ = make(identity, state, client=FakeClient(outcome=outcome))
        result = orchestrator.run(PunchMode.CHECK_IN)
        assert result.stage is PunchStage.REJECTED
        assert not result.recorded

    assert state.is_checked_in is False
    assert state.punch_in_time is None
    assert state.last_punch_time is None


def test_anomaly_and_success_update_state_identically(identity):
    from punch_core.state import AttendanceState

    success_state, anomaly_state = AttendanceState(), AttendanceState()
    make(identity, success_state, client=FakeClient(Success()))[0].run(PunchMode.CHECK_IN)
    make(identity, anomaly_state, client=FakeClient(Anomaly(())))[0].run(PunchMode.CHECK_IN)

    assert success_state.is_checked_in == anomaly_state.is_checked_in is True
    assert success_state.punch_in_time == anomaly_state.punch_in_time
    assert success_state.last_punch_time == anomaly_state.last_punch_time


def test_background_revalidation_does_not_alter_attempt(identity, state):
    home_wifi = WifiInfo(ssid="Home", bssid="11:22:33:44:55:66", local_ip="10.0.0.5", is_valid=True)
    elsewhere = LocationInfo(latitude=12.97, longitude=77.59, is_valid=True)
    # Gate + re-verify see the office network; the background run sees another one.
    network = FakeNetworkProbe(OFFICE_WIFI, OFFICE_WIFI, home_wifi)
    background_location = FakeLocationProbe(elsewhere)
    revalidator = PeriodicRevalidator(network, background_location, state)

    location = FakeLocationProbe(OFFICE_LOCATION, side_effect=revalidator.run_once)
    client = FakeClient(side_effect=revalidator.run_once)
    orchestrator, _ = make(identity, state, network=network, location=location, client=client)

    result = orchestrator.run(PunchMode.CHECK_IN)

    submitted, _ = client.submitted[0]
    assert result.stage is PunchStage.SUCCEEDED
    assert submitted.wifi == OFFICE_WIFI
    assert submitted.location == OFFICE_LOCATION
    assert result.attempt.wifi == OFFICE_WIFI
    assert state.last_wifi == home_wifi
    assert state.last_location == elsewhere


# ─── Transitions ─────────────────────────────────────────────────

def test_check_out_success_clears_checked_in(identity, state):
    state.apply_punch(PunchMode.CHECK_IN, PUNCH_TIME.replace(hour=8))
    orchestrator, _ = make(identity, state)

    result = orchestrator.run(PunchMode.CHECK_OUT)

    assert "Check-out successful" in result.message
    assert state.is_checked_in is False
    assert state.punch_in_time == PUNCH_TIME.replace(hour=8)
    assert state.last_punch_time == PUNCH_TIME


def test_wifi_lost_during_capture(identity, state):
    network = FakeNetworkProbe(OFFICE_WIFI, WifiInfo.invalid())
    capture = FakeCapture()
    client = FakeClient()
    orchestrator, _ = make(identity, state, network=network, capture=capture, client=client)

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.error_kind is ErrorKind.WIFI_UNAVAILABLE
    assert capture.calls == 1
    assert network.calls == [True, True]
    assert client.submitted == []


def test_capture_without_image(identity, state):
    orchestrator, deps = make(identity, state, capture=FakeCapture(uri=None))

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.error_kind is ErrorKind.CAPTURE_FAILED
    assert deps["client"].submitted == []


def test_capture_closed_by_user_is_cancelled(identity, state):
    orchestrator, deps = make(identity, state, capture=FakeCapture(error=CaptureCancelled()))

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.stage is PunchStage.CANCELLED
    assert result.error_kind is None
    assert deps["client"].submitted == []


def test_cancel_while_capturing(identity, state):
    holder = {}
    capture = FakeCapture(side_effect=lambda: holder.update(accepted=holder["o"].cancel()))
    orchestrator, deps = make(identity, state, capture=capture)
    holder["o"] = orchestrator

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert holder["accepted"] is True
    assert result.stage is PunchStage.CANCELLED
    assert deps["network_probe"].calls == [True]
    assert deps["client"].submitted == []
    assert state.is_checked_in is False


def test_cancel_refused_once_submitting(identity, state):
    holder = {}
    client = FakeClient(side_effect=lambda: holder.update(accepted=holder["o"].cancel()))
    orchestrator, _ = make(identity, state, client=client)
    holder["o"] = orchestrator

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert holder["accepted"] is False
    assert result.stage is PunchStage.SUCCEEDED
    assert state.is_checked_in is True


def test_connectivity_drop_before_submit(identity, state):
    client = FakeClient()
    orchestrator, _ = make(identity, state, network=FakeNetworkProbe(connected=False), client=client)

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.error_kind is ErrorKind.NETWORK_UNREACHABLE
    assert client.submitted == []


def test_server_rejection_message_is_prefixed(identity, state):
    outcome = Failure(ErrorKind.SERVER_REJECTED, "Access denied. Please contact administrator.", 403)
    orchestrator, _ = make(identity, state, client=FakeClient(outcome=outcome))

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.error_kind is ErrorKind.SERVER_REJECTED
    assert result.message == "Server rejected the punch: Access denied. Please contact administrator."
    assert result.outcome is outcome


def test_unrecognised_status_is_informational(identity, state):
    orchestrator, _ = make(identity, state, client=FakeClient(outcome=Other("queued")))

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.stage is PunchStage.REJECTED
    assert result.error_kind is None
    assert "'queued'" in result.message


def test_unexpected_exception_becomes_unknown(identity, state):
    def boom():
        raise RuntimeError("disk on fire")

    orchestrator, _ = make(identity, state, client=FakeClient(side_effect=boom))

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.error_kind is ErrorKind.UNKNOWN
    assert result.message.startswith("Attendance failed: ")
    assert state.is_checked_in is False


def test_stages_are_visited_in_order(identity, state):
    seen = []
    orchestrator, _ = make(identity, state, on_stage=seen.append)

    orchestrator.run(PunchMode.CHECK_IN)

    assert seen == [
        PunchStage.WIFI_GATING,
        PunchStage.CAPTURING,
        PunchStage.REVERIFYING,
        PunchStage.LOCATION_RESOLVING,
        PunchStage.SUBMITTING,
        PunchStage.SUCCEEDED,
    ]


def test_instance_runs_once(identity, state):
    orchestrator, _ = make(identity, state)
    orchestrator.run(PunchMode.CHECK_IN)

    with pytest.raises(RuntimeError):
        orchestrator.run(PunchMode.CHECK_IN)
    assert orchestrator.done
    assert orchestrator.wait(0).stage is PunchStage.SUCCEEDED


def test_end_to_end_with_real_client(identity, state, photo):
    session = FakeSession(post_response=FakeResponse(200, {"status": "success"}))
    client = AttendanceLogClient("https://hr.example.com", session=session)
    orchestrator, _ = make(identity, state, client=client, capture=FakeCapture(uri=photo))

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.stage is PunchStage.SUCCEEDED
    assert len(session.calls) == 1
    method, url, kwargs, files = session.calls[0]
    assert (method, url) == ("POST", "https://hr.example.com/attendance/log")
    assert kwargs["data"]["wifiSsid"] == "Office-5G"
    assert files == {"photo": ("attendance_photo.jpg", "image/jpeg")}


def test_anomaly_without_reasons_names_unknown_reason(identity, state):
    orchestrator, _ = make(identity, state, client=FakeClient(outcome=Anomaly(())))

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.stage is PunchStage.ANOMALY_ACCEPTED
    assert result.message == "Check-in recorded but flagged for review: unknown reason."


def test_pipeline_error_keeps_its_kind(identity, state):
    def gps_locked():
        raise PunchError("GPS locked by another app", kind=ErrorKind.LOCATION_UNAVAILABLE)

    client = FakeClient()
    orchestrator, _ = make(identity, state, client=client,
                           location=FakeLocationProbe(side_effect=gps_locked))

    result = orchestrator.run(PunchMode.CHECK_IN)

    assert result.stage is PunchStage.REJECTED
    assert result.error_kind is ErrorKind.LOCATION_UNAVAILABLE
    assert client.submitted == []
