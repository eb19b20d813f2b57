import socket

from syshealth_agent import __version__
from syshealth_agent.report import collect_report, core_hash, get_machine_id

from conftest import StaticChecker, make_report


def test_core_hash_ignores_timestamp():
    r1 = make_report(timestamp="2024-05-01T10:00:00.000+00:00")
    r2 = make_report(timestamp="2024-05-01T11:30:00.000+00:00")
    assert core_hash(r1) == core_hash(r2)


def test_core_hash_ignores_heartbeat_flag():
    assert core_hash(make_report()) == core_hash(make_report(heartbeat=True))


def test_core_hash_tracks_status_changes():
    before = make_report(statuses={"disk_encryption": "ok"})
    after = make_report(statuses={"disk_encryption": "issue"})
    assert core_hash(before) != core_hash(after)


def test_core_hash_independent_of_key_order():
    report = make_report()
    reordered = dict(reversed(list(report.items())))
    assert core_hash(report) == core_hash(reordered)


def test_machine_id_is_host_platform_user():
    assert get_machine_id("darwin", hostname="mbp", user="alice") == "mbp|darwin|alice"
    assert get_machine_id("linux") == get_machine_id("linux")


def test_collect_report_assembles_all_checks():
    checkers = [
        StaticChecker("disk_encryption", "ok"),
        StaticChecker("os_update_status", "issue", {"updates": "available"}),
        StaticChecker("antivirus", "unknown"),
        StaticChecker("inactivity_sleep", "unknown"),
    ]
    report = collect_report("linux", checkers)

    assert report["hostname"] == socket.gethostname()
    assert report["machine_id"].startswith(socket.gethostname() + "|linux|")
    assert report["os"] == "linux"
    assert report["agent_version"] == __version__
    assert report["timestamp"]
    assert report["checks"]["disk_encryption"] == {"status": "ok", "details": {}}
    assert report["checks"]["os_update_status"] == {"status": "issue", "details": {"updates": "available"}}
    assert set(report["checks"]) == {"disk_encryption", "os_update_status", "antivirus", "inactivity_sleep"}


def test_collect_report_survives_failing_check():
    class Broken(StaticChecker):
        def probe(self):
            raise OSError("no such device")

    checkers = [StaticChecker("disk_encryption", "ok"), Broken("antivirus", "ok")]
    report = collect_report("linux", checkers)
    assert report["checks"]["disk_encryption"]["status"] == "ok"
    assert report["checks"]["antivirus"] == {"status": "unknown", "details": {}}
