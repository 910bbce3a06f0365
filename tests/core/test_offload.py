"""Tests for output offloading and scratch cleanup."""

import hashlib
import os
import time

import pytest

from sherpa.core.config import Config
from sherpa.core.offload import cleanup_scratch, count_tokens, offload_output


@pytest.fixture
def config():
    return Config(max_tokens=50, preview_tokens=5)


def numbered_lines(n: int) -> str:
    return "\n".join(f"line {i}" for i in range(n))


class TestCountTokens:
    @pytest.mark.parametrize("text, tokens", [("", 0), ("a", 1), ("abcd", 1), ("abcde", 2)])
    def test_estimate(self, text, tokens):
        assert count_tokens(text) == tokens


class TestOffloadOutput:
    def test_small_output_unchanged(self, tmp_path, config):
        result = offload_output("hello\n", 0, config, tmp_path)
        assert not result.modified
        assert result.result == "hello\n"
        assert not (tmp_path / config.scratch_dir).exists()

    def test_exactly_at_threshold_unchanged(self, tmp_path, config):
        text = "x" * (config.max_tokens * 4)
        assert not offload_output(text, 0, config, tmp_path).modified

    def test_large_output_written(self, tmp_path, config):
        text = numbered_lines(100)
        result = offload_output(text, 1, config, tmp_path)

        digest = hashlib.md5(text.encode()).hexdigest()[:8]
        path = tmp_path / ".claude" / "scratch" / f"out_{digest}_exit1.txt"
        assert result.modified
        assert path.read_text() == text
        assert f"│ File: {path}" in result.result
        assert f"│ Hint: grep <pattern> {path}" in result.result

    def test_header(self, tmp_path, config):
        text = numbered_lines(100)
        result = offload_output(text, 0, config, tmp_path)
        tokens = count_tokens(text)
        first = result.result.split("\n")[0]
        assert first == f"┌─ Output offloaded (100 lines, {len(text) / 1024:.1f}KB, ~{tokens} tokens)"

    def test_tail_preview(self, tmp_path, config):
        result = offload_output(numbered_lines(100), 0, config, tmp_path)
        assert "└─ Last 3 lines:" in result.result
        assert result.result.endswith("line 97\nline 98\nline 99")
        assert "line 96" not in result.result

    def test_same_output_same_file(self, tmp_path, config):
        text = numbered_lines(100)
        first = offload_output(text, 0, config, tmp_path)
        second = offload_output(text, 0, config, tmp_path)
        assert first.result == second.result
        assert len(list((tmp_path / config.scratch_dir).iterdir())) == 1

    def test_exit_code_in_name(self, tmp_path, config):
        text = numbered_lines(100)
        offload_output(text, 0, config, tmp_path)
        offload_output(text, 2, config, tmp_path)
        names = sorted(p.name for p in (tmp_path / config.scratch_dir).iterdir())
        assert [n.rsplit("_", 1)[1] for n in names] == ["exit0.txt", "exit2.txt"]

    def test_absolute_scratch_dir(self, tmp_path):
        scratch = tmp_path / "elsewhere"
        config = Config(max_tokens=1, scratch_dir=str(scratch))
        offload_output("long enough output", 0, config, tmp_path / "cwd")
        assert len(list(scratch.iterdir())) == 1


class TestCleanupScratch:
    def write(self, directory, name, size=10, age_minutes=0.0, now=None):
        path = directory / name
        path.write_bytes(b"x" * size)
        mtime = (now or time.time()) - age_minutes * 60
        os.utime(path, (mtime, mtime))
        return path

    def test_missing_dir(self, tmp_path):
        assert cleanup_scratch(tmp_path / "nope", 60, 50) == []

    def test_expired_removed(self, tmp_path):
        now = time.time()
        old = self.write(tmp_path, "out_old_exit0.txt", age_minutes=120, now=now)
        fresh = self.write(tmp_path, "out_new_exit0.txt", age_minutes=1, now=now)
        assert cleanup_scratch(tmp_path, 60, 50, now=now) == [old]
        assert not old.exists()
        assert fresh.exists()

    def test_other_files_untouched(self, tmp_path):
        now = time.time()
        notes = self.write(tmp_path, "notes.txt", age_minutes=500, now=now)
        assert cleanup_scratch(tmp_path, 60, 0, now=now) == []
        assert notes.exists()

    def test_oldest_removed_until_under_cap(self, tmp_path):
        now = time.time()
        size = 600 * 1024
        oldest = self.write(tmp_path, "out_a_exit0.txt", size, age_minutes=30, now=now)
        middle = self.write(tmp_path, "out_b_exit0.txt", size, age_minutes=20, now=now)
        newest = self.write(tmp_path, "out_c_exit0.txt", size, age_minutes=10, now=now)

        removed = cleanup_scratch(tmp_path, 60, 1, now=now)

        assert removed == [oldest, middle]
        assert newest.exists()

    def test_under_cap_keeps_everything(self, tmp_path):
        now = time.time()
        self.write(tmp_path, "out_a_exit0.txt", age_minutes=5, now=now)
        self.write(tmp_path, "out_b_exit0.txt", age_minutes=5, now=now)
        assert cleanup_scratch(tmp_path, 60, 1, now=now) == []
