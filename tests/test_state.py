from syshealth_agent.state import ChangeState, StateStore


def test_missing_state_reads_as_never_sent(tmp_path):
    assert StateStore(tmp_path / "absent").load() == ChangeState(None, 0)


def test_save_then_load(tmp_path):
    store = StateStore(tmp_path / "state")
    store.save("abc123", 1_700_000_000_000)
    assert store.load() == ChangeState("abc123", 1_700_000_000_000)
    assert (tmp_path / "state" / "last_hash").read_text() == "abc123"
    assert (tmp_path / "state" / "last_sent_at").read_text() == "1700000000000"


def test_save_overwrites_in_place(tmp_path):
    store = StateStore(tmp_path)
    store.save("first", 1)
    store.save("second", 2)
    assert store.load() == ChangeState("second", 2)


def test_corrupt_timestamp_reads_as_never_sent(tmp_path):
    store = StateStore(tmp_path)
    store.save("abc", 5)
    (tmp_path / "last_sent_at").write_text("not a number")
    assert store.load() == ChangeState("abc", 0)


def test_empty_hash_reads_as_no_prior_state(tmp_path):
    (tmp_path / "last_hash").write_text("  \n")
    assert StateStore(tmp_path).load().last_core_hash is None


def test_unreadable_state_reads_as_no_prior_state(tmp_path):
    # A directory where the file should be makes the read fail with an OSError
    (tmp_path / "last_hash").mkdir()
    (tmp_path / "last_sent_at").mkdir()
    assert StateStore(tmp_path).load() == ChangeState(None, 0)
