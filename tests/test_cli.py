"""Tests for the command line entry point and stack wiring."""

from __future__ import annotations

import json

import pytest

from presence_sync import Club, SyncConfig, create_sync_stack
from presence_sync.cli import build_parser, main


@pytest.fixture(autouse=True)
def local_only(monkeypatch):
    monkeypatch.delenv("PRESENCE_SUPABASE_URL", raising=False)
    monkeypatch.delenv("PRESENCE_SUPABASE_KEY", raising=False)


class TestCreateSyncStack:
    async def test_local_only(self, tmp_path):
        async with await create_sync_stack(SyncConfig(data_dir=tmp_path)) as stack:
            club = await stack.store.save_club(Club(name="Chess Club"))

            assert stack.engine is None
            assert stack.sessions is None
            assert [c.id for c in await stack.store.get_clubs()] == [club.id]

        assert (tmp_path / "presence.db").exists()

    async def test_remote_enabled(self, tmp_path):
        config = SyncConfig(
            data_dir=tmp_path, supabase_url="https://example.supabase.co", supabase_key="anon"
        )
        stack = await create_sync_stack(config)
        try:
            assert stack.engine is not None
            assert stack.auth.token_path == tmp_path / ".auth-token"
            # Signed out: the cycle is a no-op and nothing goes over the network
            assert await stack.engine.sync_now() is False
            assert (await stack.engine.get_sync_status()).error is None
        finally:
            await stack.close()

        assert stack.http.closed


class TestCommands:
    def test_parser(self):
        args = build_parser().parse_args(["logout", "--global", "--clear-data"])

        assert args.command == "logout"
        assert args.global_scope
        assert args.clear_data

    def test_status_json(self, tmp_path, capsys):
        assert main(["--data-dir", str(tmp_path), "status", "--json"]) == 0

        status = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert status["clubs"] == 0
        assert status["remote_enabled"] is False
        assert status["last_sync"] is None

    def test_sync_without_remote(self, tmp_path, capsys):
        assert main(["--data-dir", str(tmp_path), "sync"]) == 1
        assert "not configured" in capsys.readouterr().out

    def test_migrate(self, tmp_path, capsys):
        assert main(["--data-dir", str(tmp_path), "migrate"]) == 0
        assert "Nothing to migrate" in capsys.readouterr().out

    def test_login_without_remote(self, tmp_path):
        assert main(["--data-dir", str(tmp_path), "login", "--access-token", "a", "--refresh-token", "r"]) == 1

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main([])
