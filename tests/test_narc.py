"""Tests for the narctool wrapper."""

import subprocess

import pytest

from dstrans.narc import NarcToolService, ServiceResult


class FakeCompleted:
    def __init__(self, returncode, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class TestNarcToolService:
    """Test outcomes of external tool calls."""

    @pytest.fixture
    def calls(self):
        return []

    def test_success(self, monkeypatch, tmp_path, calls):
        def fake_run(command, **kwargs):
            calls.append((command, kwargs))
            return FakeCompleted(0, stdout="done\n")

        monkeypatch.setattr(subprocess, "run", fake_run)
        service = NarcToolService("narctool", timeout=5)
        result = service.unpack(tmp_path / "a.narc", tmp_path / "a")

        assert result == ServiceResult(True, "done")
        assert (tmp_path / "a").is_dir()
        command, kwargs = calls[0]
        assert command == ["narctool", "u", str(tmp_path / "a.narc"), str(tmp_path / "a")]
        assert kwargs["timeout"] == 5

    def test_pack_arguments(self, monkeypatch, tmp_path, calls):
        def fake_run(command, **kwargs):
            calls.append(command)
            return FakeCompleted(0)

        monkeypatch.setattr(subprocess, "run", fake_run)
        NarcToolService().pack(tmp_path / "a", tmp_path / "a.narc")
        assert calls[0][1:] == ["p", str(tmp_path / "a"), str(tmp_path / "a.narc")]

    def test_timeout(self, monkeypatch, tmp_path):
        def fake_run(command, **kwargs):
            raise subprocess.TimeoutExpired(command, kwargs["timeout"])

        monkeypatch.setattr(subprocess, "run", fake_run)
        result = NarcToolService(timeout=20).pack(tmp_path, tmp_path / "a.narc")

        assert not result.success
        assert "20 seconds" in result.message

    def test_nonzero_exit(self, monkeypatch, tmp_path):
        monkeypatch.setattr(subprocess, "run", lambda command, **kwargs: FakeCompleted(2, stderr="bad header"))
        result = NarcToolService().pack(tmp_path, tmp_path / "a.narc")

        assert not result.success
        assert "code 2" in result.message
        assert "bad header" in result.message

    def test_missing_executable(self, tmp_path):
        service = NarcToolService(str(tmp_path / "no-such-narctool"))
        result = service.unpack(tmp_path / "a.narc", tmp_path / "out")

        assert not result.success
        assert "Could not run" in result.message
