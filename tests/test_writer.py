import io
import os
import time

import pytest

from neonexcore.writer import FileWriter, FileWriterConfig, MultiWriter

MB = 1024 * 1024


def backups_of(directory, base="app.log"):
    return sorted(n for n in os.listdir(directory) if n.startswith(base) and n != base)


def test_write_returns_length_and_persists(tmp_path):
    path = tmp_path / "app.log"
    with FileWriter(FileWriterConfig(filename=str(path))) as writer:
        assert writer.write(b"hello\n") == 6
        writer.write(b"world\n")
    assert path.read_bytes() == b"hello\nworld\n"


def test_appends_to_existing_file(tmp_path):
    path = tmp_path / "app.log"
    path.write_bytes(b"old\n")
    with FileWriter(FileWriterConfig(filename=str(path))) as writer:
        writer.write(b"new\n")
    assert path.read_bytes() == b"old\nnew\n"


def test_creates_missing_directories(tmp_path):
    path = tmp_path / "logs" / "nested" / "app.log"
    with FileWriter(FileWriterConfig(filename=str(path))) as writer:
        writer.write(b"x")
    assert path.read_bytes() == b"x"


def test_rotates_when_size_reached(tmp_path):
    path = tmp_path / "app.log"
    block = b"a" * MB
    with FileWriter(FileWriterConfig(filename=str(path), max_size=1)) as writer:
        writer.write(block)
        writer.write(b"next")
    assert path.read_bytes() == b"next"
    backups = backups_of(tmp_path)
    assert len(backups) == 1
    assert (tmp_path / backups[0]).read_bytes() == block


def test_existing_large_file_rotates_on_first_write(tmp_path):
    path = tmp_path / "app.log"
    path.write_bytes(b"b" * MB)
    with FileWriter(FileWriterConfig(filename=str(path), max_size=1)) as writer:
        writer.write(b"fresh")
    assert path.read_bytes() == b"fresh"
    assert len(backups_of(tmp_path)) == 1


def test_no_rotation_below_limit(tmp_path):
    path = tmp_path / "app.log"
    with FileWriter(FileWriterConfig(filename=str(path), max_size=1)) as writer:
        writer.write(b"c" * (MB - 1))
        writer.write(b"d")
    assert backups_of(tmp_path) == []
    assert path.stat().st_size == MB


def test_max_backups_prunes_oldest(tmp_path):
    path = tmp_path / "app.log"
    path.write_bytes(b"e" * MB)
    old_one = tmp_path / "app.log.20000101-000000"
    old_two = tmp_path / "app.log.20000102-000000"
    unrelated = tmp_path / "other.log"
    for f in (old_one, old_two, unrelated):
        f.write_bytes(b"z")
    with FileWriter(FileWriterConfig(filename=str(path), max_size=1, max_backups=1)) as writer:
        writer.write(b"x")
    remaining = backups_of(tmp_path)
    assert len(remaining) == 1
    assert not old_one.exists()
    assert not old_two.exists()
    assert unrelated.exists()
    assert (tmp_path / remaining[0]).stat().st_size == MB


def test_max_age_prunes_old_backups(tmp_path):
    path = tmp_path / "app.log"
    path.write_bytes(b"f" * MB)
    stale = tmp_path / "app.log.20000101-000000"
    stale.write_bytes(b"z")
    past = time.time() - 10 * 86400
    os.utime(stale, (past, past))
    with FileWriter(FileWriterConfig(filename=str(path), max_size=1, max_age=1)) as writer:
        written = writer.write(b"x")
    assert written == 1
    assert path.read_bytes() == b"x"
    assert not stale.exists()
    remaining = backups_of(tmp_path)
    assert len(remaining) == 1
    assert (tmp_path / remaining[0]).stat().st_size == MB


def test_write_after_close_fails(tmp_path):
    path = tmp_path / "app.log"
    writer = FileWriter(FileWriterConfig(filename=str(path)))
    writer.close()
    with pytest.raises(ValueError):
        writer.write(b"late")


def test_multi_writer_fans_out():
    first, second, third = io.BytesIO(), io.BytesIO(), io.BytesIO()
    multi = MultiWriter(first, second)
    assert multi.write(b"abc") == 3
    multi.add(third)
    multi.write(b"def")
    assert first.getvalue() == b"abcdef"
    assert second.getvalue() == b"abcdef"
    assert third.getvalue() == b"def"


def test_multi_writer_stops_on_error():
    class Failing:
        def write(self, data):
            raise OSError("disk full")

    after = io.BytesIO()
    multi = MultiWriter(Failing(), after)
    with pytest.raises(OSError):
        multi.write(b"data")
    assert after.getvalue() == b""