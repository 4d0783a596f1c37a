# tests/unit/test_dns_tracker.py
import pytest

from tracenet.analysis.dns_tracker import DNS_TYPE_A, DnsLifecycleTracker, DnsQueryKey
from tracenet.models.schemas import ProcessIdentity

AAAA = 28
APP = ProcessIdentity(5, "app.exe", 0.0)
BROWSER = ProcessIdentity(7, "browser.exe", 0.0)


def test_start_complete_emits_event():
    tracker = DnsLifecycleTracker()
    tracker.start("foo.example", APP, AAAA, 0.0)
    dns = tracker.complete("foo.example", APP, AAAA, 0.1, "1.2.3.4", 0)

    assert dns is not None
    assert dns.duration == pytest.approx(0.1)
    assert dns.result == "1.2.3.4"
    assert dns.process == APP
    assert dns.start == 0.0
    assert dns.server_list == ""
    assert not dns.timed_out
    assert dns.adapters is None


def test_ipv4_queries_are_not_tracked():
    tracker = DnsLifecycleTracker()
    tracker.start("foo.example", APP, DNS_TYPE_A, 0.0)
    assert tracker.states == {}
    assert tracker.complete("foo.example", APP, DNS_TYPE_A, 0.1, "1.2.3.4", 0) is None


def test_completion_without_start():
    tracker = DnsLifecycleTracker()
    assert tracker.complete("foo.example", APP, AAAA, 0.1, "", 0) is None


def test_completion_is_process_scoped():
    tracker = DnsLifecycleTracker()
    tracker.start("foo.example", APP, AAAA, 0.0)
    assert tracker.complete("foo.example", BROWSER, AAAA, 0.1, "", 0) is None


def test_new_start_overwrites_in_flight_state():
    tracker = DnsLifecycleTracker()
    tracker.start("foo.example", APP, AAAA, 0.0)
    tracker.server_attempt("foo.example", "8.8.8.8")
    tracker.start("foo.example", APP, AAAA, 1.0)

    dns = tracker.complete("foo.example", APP, AAAA, 1.5, "", 0)
    assert dns.start == 1.0
    assert dns.duration == pytest.approx(0.5)
    assert dns.server_list == ""


def test_server_adapter_and_timeout_are_merged():
    tracker = DnsLifecycleTracker()
    tracker.start("foo.example", APP, AAAA, 0.0)
    tracker.server_attempt("foo.example", "8.8.8.8")
    tracker.server_attempt("foo.example", "8.8.4.4")
    tracker.server_attempt("foo.example", "8.8.8.8")
    tracker.adapter_observed("foo.example", "Ethernet")
    tracker.adapter_observed("foo.example", "Wi;Fi")
    tracker.timeout("foo.example", "8.8.4.4")

    dns = tracker.complete("foo.example", APP, AAAA, 2.0, "::1", 0)
    assert dns.server_list == "8.8.8.8;8.8.4.4;8.8.8.8"
    assert dns.adapters == "Ethernet;Wi_Fi"
    assert dns.timed_out
    assert dns.timed_out_server == "8.8.4.4"


def test_sub_events_without_in_flight_query_are_ignored():
    tracker = DnsLifecycleTracker()
    tracker.server_attempt("bar.example", "8.8.8.8")
    tracker.adapter_observed("bar.example", "Ethernet")
    tracker.timeout("bar.example", "8.8.8.8")
    assert tracker.states == {}


def test_sub_events_go_to_most_recent_start():
    """Process-agnostic sub events land on the latest started query with that name."""
    tracker = DnsLifecycleTracker()
    tracker.start("foo.example", APP, AAAA, 0.0)
    tracker.start("foo.example", BROWSER, AAAA, 0.1)
    tracker.server_attempt("foo.example", "8.8.8.8")

    app = tracker.complete("foo.example", APP, AAAA, 1.0, "", 0)
    browser = tracker.complete("foo.example", BROWSER, AAAA, 1.0, "", 0)
    assert app.server_list == ""
    assert browser.server_list == "8.8.8.8"


def test_completed_query_does_not_take_sub_events_of_a_later_one():
    tracker = DnsLifecycleTracker()
    tracker.start("foo.example", APP, AAAA, 0.0)
    tracker.complete("foo.example", APP, AAAA, 0.1, "", 0)

    tracker.start("foo.example", BROWSER, AAAA, 50.0)
    tracker.server_attempt("foo.example", "8.8.8.8")
    tracker.adapter_observed("foo.example", "Ethernet")
    tracker.timeout("foo.example", "8.8.8.8")
    browser = tracker.complete("foo.example", BROWSER, AAAA, 51.0, "", 0)

    assert browser.server_list == "8.8.8.8"
    assert browser.adapters == "Ethernet"
    assert browser.timed_out
    assert browser.timed_out_server == "8.8.8.8"

    # the stale state is still reusable by its own process
    app = tracker.complete("foo.example", APP, AAAA, 52.0, "", 0)
    assert app.server_list == ""
    assert not app.timed_out


def test_restart_by_same_process_takes_sub_events():
    tracker = DnsLifecycleTracker()
    tracker.start("foo.example", APP, AAAA, 0.0)
    tracker.start("foo.example", BROWSER, AAAA, 1.0)
    tracker.start("foo.example", APP, AAAA, 2.0)
    tracker.server_attempt("foo.example", "1.1.1.1")

    assert tracker.complete("foo.example", APP, AAAA, 3.0, "", 0).server_list == "1.1.1.1"
    assert tracker.complete("foo.example", BROWSER, AAAA, 3.0, "", 0).server_list == ""


def test_completed_state_is_reused_by_second_completion():
    tracker = DnsLifecycleTracker()
    tracker.start("foo.example", APP, AAAA, 0.0)
    first = tracker.complete("foo.example", APP, AAAA, 1.0, "a", 0)
    second = tracker.complete("foo.example", APP, AAAA, 3.0, "b", 0)

    assert first.duration == pytest.approx(1.0)
    assert second is not None
    assert second.start == 0.0
    assert second.duration == pytest.approx(3.0)


def test_emitted_event_is_a_snapshot():
    tracker = DnsLifecycleTracker()
    tracker.start("foo.example", APP, AAAA, 0.0)
    dns = tracker.complete("foo.example", APP, AAAA, 1.0, "", 0)
    tracker.server_attempt("foo.example", "8.8.8.8")
    assert dns.server_list == ""


def test_wildcard_key():
    assert DnsQueryKey("foo.example").is_wildcard
    assert not DnsQueryKey("foo.example", APP).is_wildcard
