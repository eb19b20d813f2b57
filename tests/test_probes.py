import sys

from syshealth_agent.probes import detect_platform, run_command


def test_successful_command_combines_output():
    result = run_command([sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)"], 10)
    assert result.ok
    assert result.returncode == 0
    assert "out" in result.output
    assert "err" in result.output


def test_nonzero_exit_is_not_ok():
    result = run_command([sys.executable, "-c", "import sys; sys.exit(3)"], 10)
    assert not result.ok
    assert result.returncode == 3


def test_timeout_returns_instead_of_raising():
    result = run_command([sys.executable, "-c", "import time; time.sleep(30)"], 0.5)
    assert not result.ok
    assert result.output == ""


def test_missing_binary_is_not_ok():
    result = run_command(["definitely-not-a-real-binary-4711"], 5)
    assert not result.ok


def test_detect_platform_is_a_known_class():
    assert detect_platform() in ("linux", "darwin", "windows")
