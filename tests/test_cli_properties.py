"""
Tests for the command-line interface.
"""

from pathlib import Path

import pytest

from gateway_sync.cli import cmd_config, cmd_preview, cmd_sync, create_parser, main


class TestParser:
    def test_sync_defaults(self) -> None:
        args = create_parser().parse_args(["sync"])

        assert args.func is cmd_sync
        assert args.sni is None
        assert args.dry_run is False
        assert args.config is None

    @pytest.mark.parametrize("flag,expected", [("--sni", True), ("--no-sni", False)])
    def test_sni_flags(self, flag: str, expected: bool) -> None:
        assert create_parser().parse_args(["sync", flag]).sni is expected

    def test_sni_flags_are_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            create_parser().parse_args(["sync", "--sni", "--no-sni"])

    def test_preview_output(self) -> None:
        args = create_parser().parse_args(["preview", "-o", "final.txt", "-v"])

        assert args.func is cmd_preview
        assert args.output == "final.txt"
        assert args.verbose

    def test_no_command_prints_help(self, capsys) -> None:
        assert main([]) == 0
        assert "gateway-sync" in capsys.readouterr().out


class TestConfigCommand:
    def test_init_validate_show(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "config.json"

        assert main(["config", "init", "--path", str(path)]) == 0
        assert path.exists()

        # Fresh config has no credentials yet
        assert main(["config", "validate", "--path", str(path)]) == 1
        assert "gateway.api_token is not set" in capsys.readouterr().err

        assert main(["config", "show", "--path", str(path)]) == 0
        assert "API token: (not set)" in capsys.readouterr().out

    def test_init_does_not_overwrite(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("{}", encoding="utf-8")

        assert main(["config", "init", "--path", str(path)]) == 1
        assert path.read_text(encoding="utf-8") == "{}"
        assert main(["config", "init", "--path", str(path), "--force"]) == 0

    def test_show_missing(self, tmp_path: Path) -> None:
        args = create_parser().parse_args(["config", "show", "--path", str(tmp_path / "none.json")])

        assert args.func is cmd_config
        assert cmd_config(args) == 1

    def test_sync_without_credentials_fails(self, tmp_path: Path, monkeypatch, capsys) -> None:
        monkeypatch.delenv("CLOUDFLARE_API_TOKEN", raising=False)
        monkeypatch.delenv("CLOUDFLARE_ACCOUNT_ID", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("BLOCKLIST_URLS=https://feeds.example/list.txt\n", encoding="utf-8")

        assert main(["sync", "--env-file", str(env_file)]) == 1
        assert "CLOUDFLARE_API_TOKEN" in capsys.readouterr().err
