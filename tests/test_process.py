import pytest

from kdisrupt.process import (
    CallbackExecutor,
    DefaultExecutor,
    FakeExecutor,
    ProcessError,
)


@pytest.mark.parametrize(
    "cmd, args, expected",
    [
        ("echo", ["-n", "hello world"], b"hello world"),
        ("sh", ["-c", "echo hello world 2>&1"], b"hello world\n"),
        ("true", [], b""),
    ],
)
def test_default_executor_output(cmd, args, expected):
    assert DefaultExecutor().exec(cmd, *args) == expected


def test_default_executor_error_code():
    with pytest.raises(ProcessError) as info:
        DefaultExecutor().exec("false")
    assert info.value.output == b""
    assert info.value.returncode == 1


def test_default_executor_error_code_and_stderr():
    with pytest.raises(ProcessError) as info:
        DefaultExecutor().exec("sh", "-c", "echo hello world 2>&1; kill -KILL $$")
    assert info.value.output == b"hello world\n"
    assert info.value.returncode != 0


def test_default_executor_missing_command():
    with pytest.raises(ProcessError) as info:
        DefaultExecutor().exec("kdisrupt-command-that-does-not-exist")
    assert info.value.returncode is None


@pytest.mark.parametrize(
    "cmd_line, out",
    [
        ("cat -n hello world", b"hello world"),
        ("true", b""),
    ],
)
def test_fake_executor(cmd_line, out):
    fake = FakeExecutor(out)
    parts = cmd_line.split(" ")
    result = fake.exec(parts[0], *parts)
    assert fake.invoked()
    assert result == out
    assert fake.invocations() == 1


def test_fake_executor_error():
    error = RuntimeError("command exited with rc 1")
    fake = FakeExecutor(b"", error)
    with pytest.raises(RuntimeError) as info:
        fake.exec("false", "false")
    assert info.value is error
    assert fake.invoked()


def test_fake_executor_not_invoked():
    fake = FakeExecutor(b"out")
    assert not fake.invoked()
    assert fake.cmd() == ""
    assert fake.cmd_history() == []
    assert fake.invocations() == 0


def test_fake_executor_cmd_line_format():
    fake = FakeExecutor()
    fake.exec("true")
    assert fake.cmd() == "true "
    fake.exec("cat", "-n", "x")
    assert fake.cmd() == "cat -n x"


def test_multiple_executions():
    cmd_lines = ["cat -n 'hello'", "cat -n 'world'"]
    fake = FakeExecutor(b"")
    for line in cmd_lines:
        parts = line.split(" ")
        assert fake.exec(parts[0], *parts[1:]) == b""
    assert "\n".join(fake.cmd_history()) == "\n".join(cmd_lines)
    assert fake.invocations() == 2
    assert fake.cmd() == "cat -n 'world'"


def test_reset():
    fake = FakeExecutor()
    fake.exec("ls", "-l")
    fake.reset()
    assert fake.invocations() == 0
    assert fake.cmd_history() == []
    assert not fake.invoked()


@pytest.mark.parametrize(
    "cmd_line, out",
    [
        ("cat -n hello world", b"hello world"),
        ("true", b""),
    ],
)
def test_callbacks(cmd_line, out):
    received = []

    def callback(cmd, *args):
        received.append((cmd, args))
        return out

    fake = CallbackExecutor(callback)
    parts = cmd_line.split(" ")
    result = fake.exec(parts[0], *parts)
    assert fake.invoked()
    assert result == out
    assert received == [(parts[0], tuple(parts))]


def test_callback_error():
    error = RuntimeError("command exited with rc 1")

    def callback(cmd, *args):
        raise error

    fake = CallbackExecutor(callback)
    with pytest.raises(RuntimeError) as info:
        fake.exec("false")
    assert info.value is error
    assert fake.cmd_history() == ["false "]