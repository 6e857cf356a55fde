from gems_api.logging import REDACTED, redact_credentials


def test_credentials_are_redacted():
    event = redact_credentials(None, "info", {
        "event": "session_started",
        "uid": "u-alice",
        "refresh_token": "idtok-alice-1",
        "access_token": "eyJ...",
    })
    assert event["uid"] == "u-alice"
    assert event["refresh_token"] == REDACTED
    assert event["access_token"] == REDACTED


def test_events_without_credentials_are_untouched():
    event = {"event": "http_request", "status_code": 200}
    assert redact_credentials(None, "info", dict(event)) == event
