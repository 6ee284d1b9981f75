"""Tests for the s3drive process entry point."""

from unittest.mock import MagicMock

import pytest

from s3drive import cli


@pytest.fixture
def patched(monkeypatch):
    run = MagicMock()
    create_app = MagicMock(return_value="app")
    monkeypatch.setattr(cli.uvicorn, "run", run)
    monkeypatch.setattr(cli, "create_app", create_app)
    monkeypatch.setattr(cli, "configure_logging", MagicMock())
    return run, create_app


def test_main_serves_configured_app(patched, tmp_path, monkeypatch):
    run, create_app = patched
    path = tmp_path / "s3drive.yaml"
    path.write_text("server:\n  host: 127.0.0.1\nstorage:\n  backend: memory\n")
    monkeypatch.setenv("S3DRIVE_CONFIG", str(path))
    monkeypatch.setenv("PORT", "9123")

    cli.main()

    config = create_app.call_args.args[0]
    assert config.storage.backend == "memory"
    run.assert_called_once()
    assert run.call_args.args == ("app",)
    assert run.call_args.kwargs["host"] == "127.0.0.1"
    assert run.call_args.kwargs["port"] == 9123
    assert run.call_args.kwargs["log_config"] is None


def test_main_missing_config_exits(patched, tmp_path, monkeypatch):
    run, _ = patched
    monkeypatch.setenv("S3DRIVE_CONFIG", str(tmp_path / "missing.yaml"))
    with pytest.raises(SystemExit) as exc_info:
        cli.main()
    assert exc_info.value.code == 1
    run.assert_not_called()


def test_main_bad_port_exits(patched, tmp_path, monkeypatch):
    run, _ = patched
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("S3DRIVE_CONFIG", raising=False)
    monkeypatch.setenv("PORT", "eighty")
    with pytest.raises(SystemExit):
        cli.main()
    run.assert_not_called()
