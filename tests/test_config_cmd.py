"""Tests for config command functionality."""

import argparse
from unittest import mock

from dionysius.cli.config_cmd import _init_config, _plain, _show_config, execute_config
from dionysius.config.schema import Backend


class TestInitConfig:
    """Tests for _init_config function."""

    def test_outputs_to_stdout(self, capsys):
        args = argparse.Namespace(output=None)
        result = _init_config(args)
        assert result == 0
        captured = capsys.readouterr()
        assert "[global]" in captured.out

    def test_writes_to_file(self, tmp_path):
        output_file = tmp_path / "config.toml"
        args = argparse.Namespace(output=str(output_file))
        result = _init_config(args)
        assert result == 0
        assert "[global]" in output_file.read_text()

    def test_unwritable_output(self, tmp_path, capsys):
        args = argparse.Namespace(output=str(tmp_path / "missing" / "config.toml"))
        assert _init_config(args) == 1
        assert "Error writing file" in capsys.readouterr().out


class TestShowConfig:
    """Tests for _show_config function."""

    def test_show_central_config(self, config_file, capsys):
        result = _show_config(argparse.Namespace(file=str(config_file)))
        assert result == 0
        out = capsys.readouterr().out
        assert "work/parent" in out
        assert "ssh://nas/./documents" in out

    def test_show_local_config(self, tmp_path, capsys):
        """Test that dionysius.toml files are read as a single directory entry."""
        local = tmp_path / "dionysius.toml"
        local.write_text('backend = "borg"\n\n[borg]\ntarget = "/mnt/borg"\n')
        result = _show_config(argparse.Namespace(file=str(local)))
        assert result == 0
        out = capsys.readouterr().out
        assert "'borg'" in out
        assert "/mnt/borg" in out

    def test_show_invalid(self, tmp_path, capsys):
        bad = tmp_path / "config.toml"
        bad.write_text("[global\n")
        assert _show_config(argparse.Namespace(file=str(bad))) == 1
        assert "Configuration error" in capsys.readouterr().out

    def test_plain_drops_unset_values(self):
        value = {"backend": Backend.RSYNC, "require_sub": None, "exclude_list": ["a"]}
        assert _plain(value) == {"backend": "rsync", "exclude_list": ["a"]}


class TestExecuteConfig:
    """Tests for execute_config function."""

    def test_validate_with_no_config(self, capsys):
        args = argparse.Namespace(
            config=None, config_action="validate", verbose=0, quiet=False
        )
        with mock.patch(
            "dionysius.cli.config_cmd.find_config_file",
            return_value=None,
        ):
            result = execute_config(args)
        assert result == 1
        captured = capsys.readouterr()
        assert "No configuration file found" in captured.out

    def test_validate_valid_config(self, config_file, capsys):
        args = argparse.Namespace(
            config=str(config_file), config_action="validate", verbose=0, quiet=False
        )
        result = execute_config(args)
        assert result == 0
        out = capsys.readouterr().out
        assert "Configuration is valid." in out
        assert "Directories: 2" in out

    def test_validate_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "config.toml"
        path.write_text("[global]\nworkers = -1\n")
        args = argparse.Namespace(
            config=str(path), config_action="validate", verbose=0, quiet=False
        )
        assert execute_config(args) == 1
        assert "Configuration error" in capsys.readouterr().out

    def test_init_action(self, capsys):
        args = argparse.Namespace(
            config_action="init",
            output=None,
            verbose=0,
            quiet=False,
        )
        result = execute_config(args)
        assert result == 0
        captured = capsys.readouterr()
        assert "[global]" in captured.out

    def test_unknown_action(self, capsys):
        args = argparse.Namespace(config_action=None, verbose=0, quiet=False)
        result = execute_config(args)
        assert result == 1
        captured = capsys.readouterr()
        assert "Usage:" in captured.out
