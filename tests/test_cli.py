"""Tests for the command line interface."""

import struct

import pytest
import yaml

from dstrans.cli import create_parser, main
from dstrans.nitro_font import (
    Character,
    CharacterMapType,
    CharacterSet,
    FontInfoChunk,
    GlyphChunk,
    NitroFont,
    NitroHeader,
    WidthChunk,
)

GOOD_MSB = struct.pack("<I", 1) + struct.pack("<II", 8, 2) + b"AB"


@pytest.fixture
def profile_path(tmp_path):
    (tmp_path / "game").mkdir()
    (tmp_path / "game" / "good.msb").write_bytes(GOOD_MSB)
    path = tmp_path / "game.yaml"
    path.write_text(yaml.safe_dump({
        "game": {"name": "CLI Test", "transcoder": "saga"},
        "paths": {"game_dir": "game", "text_dir": "text"},
        "files": [{"path": "good.msb", "format": "dmsb"}],
    }), encoding="utf-8")
    return path


class TestParser:
    def test_import_flags(self):
        args = create_parser().parse_args(["import", "-p", "game.yaml", "--force"])
        assert args.command == "import"
        assert args.force
        assert args.root == "."

    def test_profile_is_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["export"])


class TestCommands:
    """Test command handlers end to end."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out

    def test_formats(self, capsys):
        assert main(["formats"]) == 0
        output = capsys.readouterr().out
        assert "nidx" in output
        assert "[NIDX]" in output
        assert "dpk" in output

    def test_formats_with_table_stats(self, tmp_path, capsys):
        (tmp_path / "game.tbl").write_text("41=A\n42=B\n8140=あ\nFF=<END>\n", encoding="utf-8")
        path = tmp_path / "table.yaml"
        path.write_text(yaml.safe_dump({
            "game": {"name": "Table Game", "transcoder": "table", "table": "game.tbl"},
        }), encoding="utf-8")

        assert main(["formats", "-p", str(path), "-r", str(tmp_path)]) == 0
        output = capsys.readouterr().out
        assert "Table game.tbl" in output
        assert "Characters: 3" in output
        assert "Control codes: 1" in output
        assert "Multi-byte keys: 1" in output

    def test_formats_with_missing_table(self, tmp_path, capsys):
        path = tmp_path / "table.yaml"
        path.write_text(yaml.safe_dump({
            "game": {"transcoder": "table", "table": "missing.tbl"},
        }), encoding="utf-8")
        assert main(["formats", "-p", str(path), "-r", str(tmp_path)]) == 1
        assert "Table file not found" in capsys.readouterr().out

    @pytest.mark.parametrize("command", ["export", "formats"])
    def test_malformed_yaml_profile(self, tmp_path, capsys, command):
        path = tmp_path / "broken.yaml"
        path.write_text("game: {name: [unclosed\n", encoding="utf-8")
        assert main([command, "-p", str(path)]) == 1
        assert "Error" in capsys.readouterr().out

    def test_incomplete_profile_entry(self, tmp_path, capsys):
        path = tmp_path / "incomplete.yaml"
        path.write_text(yaml.safe_dump({
            "game": {"transcoder": "saga"},
            "files": [{"path": "a.msb"}],
        }), encoding="utf-8")
        assert main(["export", "-p", str(path)]) == 1
        assert "missing format" in capsys.readouterr().out

    def test_missing_profile(self, tmp_path, capsys):
        assert main(["export", "-p", str(tmp_path / "missing.yaml")]) == 1
        assert "Profile not found" in capsys.readouterr().out

    def test_export_and_import(self, profile_path, tmp_path):
        root = str(tmp_path)
        assert main(["export", "-p", str(profile_path), "-r", root]) == 0
        assert (tmp_path / "text" / "good.msb.txt").exists()
        assert main(["import", "-p", str(profile_path), "-r", root]) == 0

    def test_failed_file_sets_exit_code(self, profile_path, tmp_path, capsys):
        (tmp_path / "game" / "good.msb").write_bytes(struct.pack("<I", 3))
        assert main(["export", "-p", str(profile_path), "-r", str(tmp_path)]) == 1
        assert "1 of 1 files failed" in capsys.readouterr().out


class TestFontCommand:
    @pytest.fixture
    def font_path(self, tmp_path):
        font = NitroFont(NitroHeader(), FontInfoChunk(), GlyphChunk(3, 2, 2), WidthChunk())
        font.add_character_set(CharacterSet(CharacterMapType.MAP, [
            Character(0x41, [[1, 2, 3], [3, 2, 1]], 0, 3, 4),
        ]))
        path = tmp_path / "font.NFTR"
        path.write_bytes(font.save())
        return path

    def test_inspect(self, font_path, capsys):
        assert main(["font", str(font_path)]) == 0
        assert "3x2" in capsys.readouterr().out

    def test_resize(self, font_path, tmp_path):
        output = tmp_path / "resized.NFTR"
        assert main(["font", str(font_path), "--resize", "4x3", "-o", str(output)]) == 0
        font = NitroFont.load(output.read_bytes())
        assert (font.width, font.height) == (4, 3)

    def test_invalid_size(self, font_path):
        assert main(["font", str(font_path), "--resize", "big"]) == 1

    def test_missing_font(self, tmp_path):
        assert main(["font", str(tmp_path / "none.NFTR")]) == 1
