"""
Tests for the notice task: output format, counter and serialisation.
"""

import re
import threading

import pytest

from notice_scheduler.config import NoticeConfig
from notice_scheduler.errors import ContractViolation
from notice_scheduler.jobs import NoticeTask, epoch_millis, format_notice


@pytest.fixture
def config():
    return NoticeConfig(name="Sam", message="hello", cron="0/5 * * * * *")


@pytest.fixture
def lines():
    return []


def test_format_notice(config):
    line = format_notice(config, 3, 1700000000000)
    assert line == "Sam说：hello:定时任务执行了3次1700000000000"


def test_first_trigger_line(config, lines):
    task = NoticeTask(config, sink=lines.append)

    returned = task.on_trigger()

    assert lines == [returned]
    assert re.fullmatch(r"Sam说：hello:定时任务执行了1次\d+", returned)


def test_clock_is_appended_without_separator(config, lines):
    task = NoticeTask(config, sink=lines.append, clock=lambda: 1700000000123)
    task.on_trigger()
    assert lines == ["Sam说：hello:定时任务执行了1次1700000000123"]


@pytest.mark.parametrize("triggers", [0, 1, 7, 100])
def test_counter_equals_number_of_triggers(config, lines, triggers):
    task = NoticeTask(config, sink=lines.append)

    for _ in range(triggers):
        task.on_trigger()

    assert task.count == triggers
    assert len(lines) == triggers
    if triggers:
        assert f"执行了{triggers}次" in lines[-1]


def test_sequential_triggers_count_up(config, lines):
    task = NoticeTask(config, sink=lines.append)

    for _ in range(3):
        task.on_trigger()

    pattern = re.compile(r"Sam说：hello:定时任务执行了(\d+)次(\d+)")
    matches = [pattern.fullmatch(line) for line in lines]
    assert [int(m.group(1)) for m in matches] == [1, 2, 3]

    timestamps = [int(m.group(2)) for m in matches]
    assert timestamps == sorted(timestamps)


def test_default_sink_prints_to_stdout(config, capsys):
    task = NoticeTask(config)
    task.on_trigger()
    task.on_trigger()

    out = capsys.readouterr().out.splitlines()
    assert len(out) == 2
    assert "定时任务执行了1次" in out[0]
    assert "定时任务执行了2次" in out[1]


def test_missing_config_fails_at_construction():
    with pytest.raises(ContractViolation):
        NoticeTask(None)


def test_missing_config_at_trigger_time_writes_nothing(config, lines):
    task = NoticeTask(config, sink=lines.append)
    task._config = None

    with pytest.raises(ContractViolation):
        task.on_trigger()

    assert lines == []
    assert task.count == 0


def test_sink_failure_propagates(config):
    def broken_sink(line):
        raise OSError("stdout closed")

    task = NoticeTask(config, sink=broken_sink)

    with pytest.raises(OSError):
        task.on_trigger()


def test_concurrent_triggers_are_serialised(config, lines):
    task = NoticeTask(config, sink=lines.append)
    threads_count = 8
    per_thread = 50
    barrier = threading.Barrier(threads_count)

    def worker():
        barrier.wait()
        for _ in range(per_thread):
            task.on_trigger()

    threads = [threading.Thread(target=worker) for _ in range(threads_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    total = threads_count * per_thread
    assert task.count == total
    counts = [int(re.search(r"执行了(\d+)次", line).group(1)) for line in lines]
    assert counts == list(range(1, total + 1))


def test_epoch_millis_is_milliseconds():
    value = epoch_millis()
    # Between 2020 and 2100 in milliseconds
    assert 1_577_836_800_000 < value < 4_102_444_800_000
