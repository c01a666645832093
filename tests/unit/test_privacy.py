from __future__ import annotations

import pytest

from overwatch.config import PrivacyConfig
from overwatch.models import Breadcrumb, ErrorReport, LogEntry, Metric, TelemetryEvent
from overwatch.privacy import REDACTION_TOKEN, PrivacyScrubber


def test_default_patterns_redact_email_and_phone() -> None:
    scrubber = PrivacyScrubber(PrivacyConfig())

    scrubbed = scrubber.scrub("Contact me at user@example.com or call 555-123-4567")

    assert "user@example.com" not in scrubbed
    assert "555-123-4567" not in scrubbed
    assert REDACTION_TOKEN in scrubbed


@pytest.mark.parametrize(
    "secret",
    ["4111 1111 1111 1111", "123-45-6789", "192.168.10.20", "jane.doe+tag@mail.example.org"],
)
def test_default_patterns_cover_cards_ssn_ip_and_plus_emails(secret: str) -> None:
    scrubbed = PrivacyScrubber(PrivacyConfig()).scrub(f"value={secret};")
    assert secret not in scrubbed
    assert REDACTION_TOKEN in scrubbed


def test_custom_patterns_apply_after_defaults() -> None:
    scrubber = PrivacyScrubber(PrivacyConfig(pii_patterns=[r"acct-\d+"]))

    assert scrubber.scrub("acct-991 paid") == f"{REDACTION_TOKEN} paid"


def test_custom_pattern_sees_output_of_earlier_patterns() -> None:
    # Defaults run first, so a custom pattern can match the token they wrote.
    scrubber = PrivacyScrubber(PrivacyConfig(pii_patterns=["REDACTED"]))

    assert scrubber.scrub("mail a@b.io") == "mail [[REDACTED]]"


def test_each_pattern_is_a_single_pass() -> None:
    scrubber = PrivacyScrubber(PrivacyConfig(pii_patterns=["aa"]))

    assert scrubber.scrub("aaa") == f"{REDACTION_TOKEN}a"


def test_scrub_recurses_through_maps_and_lists() -> None:
    marker = object()
    payload = {
        "email": "x@y.com",
        "nested": {"list": ["ok", "call 555-123-4567", 7, None]},
        "count": 3,
        "opaque": marker,
    }

    scrubbed = PrivacyScrubber(PrivacyConfig()).scrub(payload)

    assert scrubbed["email"] == REDACTION_TOKEN
    assert scrubbed["nested"]["list"] == ["ok", f"call {REDACTION_TOKEN}", 7, None]
    assert scrubbed["count"] == 3
    assert scrubbed["opaque"] is marker
    # Input is left untouched.
    assert payload["email"] == "x@y.com"


def test_scrub_disabled_is_identity() -> None:
    payload = {"email": "x@y.com", "items": ["555-123-4567"]}
    scrubber = PrivacyScrubber(PrivacyConfig(scrub_pii=False))

    assert scrubber.scrub(payload) is payload
    assert scrubber.scrub("x@y.com") == "x@y.com"

    record = LogEntry(message="x@y.com")
    assert scrubber.scrub_record(record) is record


def test_scrub_record_covers_error_fields_and_breadcrumbs() -> None:
    error = ErrorReport(
        exception="lookup failed for a@b.com",
        message="user 555-123-4567",
        user_id="user-1",
        breadcrumbs=[
            Breadcrumb(message="opened a@b.com", data={"ip": "10.0.0.1"}),
            Breadcrumb(message="clicked save"),
        ],
        context={"who": "a@b.com"},
    )

    scrubbed = PrivacyScrubber(PrivacyConfig()).scrub_record(error)

    assert isinstance(scrubbed, ErrorReport)
    assert "a@b.com" not in scrubbed.exception
    assert scrubbed.message == f"user {REDACTION_TOKEN}"
    assert [b.message for b in scrubbed.breadcrumbs] == [f"opened {REDACTION_TOKEN}", "clicked save"]
    assert scrubbed.breadcrumbs[0].data == {"ip": REDACTION_TOKEN}
    assert scrubbed.context == {"who": REDACTION_TOKEN}
    assert scrubbed.user_id == "user-1"
    assert error.exception == "lookup failed for a@b.com"


def test_scrub_record_leaves_metric_numbers_and_ids() -> None:
    metric = Metric(name="latency", value=12.5, tags={"client": "10.1.2.3"}, trace_id="abc")

    scrubbed = PrivacyScrubber(PrivacyConfig()).scrub_record(metric)

    assert scrubbed.value == 12.5
    assert scrubbed.trace_id == "abc"
    assert scrubbed.tags == {"client": REDACTION_TOKEN}


def test_feature_gates_per_kind() -> None:
    scrubber = PrivacyScrubber(
        PrivacyConfig(enable_analytics=False, enable_performance_monitoring=False)
    )

    assert scrubber.is_enabled_for("event") is False
    assert scrubber.is_enabled_for("metric") is False
    assert scrubber.is_enabled_for("error") is True
    assert scrubber.is_enabled_for("log") is True


def test_scrub_record_returns_new_event() -> None:
    event = TelemetryEvent(name="signup", properties={"email": "a@b.com"})

    scrubbed = PrivacyScrubber(PrivacyConfig()).scrub_record(event)

    assert scrubbed is not event
    assert scrubbed.properties == {"email": REDACTION_TOKEN}
    assert event.properties == {"email": "a@b.com"}


def test_invalid_custom_pattern_is_rejected() -> None:
    with pytest.raises(ValueError):
        PrivacyConfig(pii_patterns=["(unclosed"])
