"""Tests for game profiles and the batch pipeline."""

import logging
import struct
import subprocess
from pathlib import Path

import pytest

from dstrans.archive import DpkArchive, NexonArchive
from dstrans.container import ContainerCodec
from dstrans.encoding import MapleTranscoder, SummonTranscoder
from dstrans.formats import get_format
from dstrans.narc import ServiceResult
from dstrans.pipeline import GameProfile, TranslationPipeline
from dstrans.text_files import read_lines, write_lines

CONFIG_DIR = Path(__file__).parent.parent / "configs"

GOOD_MSB = struct.pack("<I", 2) + struct.pack("<IIII", 16, 2, 18, 1) + b"ABC"
BROKEN_MSB = struct.pack("<I", 5)

# DTX with no records: "Hello" (odd, one NUL) and "World!" (even, two NULs)
DTX = struct.pack("<II", 0, 2) + struct.pack("<II", 0, 6) + b"Hello\x00" + b"World!\x00\x00"

GMM = (
    struct.pack("<HH", 40, 2)
    + b"\x01" * 8 + struct.pack("<I", 2)
    + b"\x02" * 8 + struct.pack("<I", 8)
    + struct.pack("<HH", 12, 4) + "Hi".encode("utf-16-le")
    + struct.pack("<H", 2) + "A".encode("utf-16-le")
)


def build_nexon_with_narc():
    """One folder "UI" holding a single eight-byte NARC child."""
    header = bytearray(0x30)
    header[0:4] = b"NxAC"
    struct.pack_into("<HHII", header, 4, 1, 1, 0x28, 0x30)
    struct.pack_into("<H", header, 0x20, 1)
    header[0x24:0x27] = b"UI\x00"
    struct.pack_into("<2I", header, 0x28, 0, 8)
    return bytes(header) + b"NARC" + b"\x00" * 4


class FakeCompleted:
    def __init__(self, returncode, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def fake_narctool(command, **kwargs):
    """Unpack writes one GMM file; pack stores the folder's GMM after a NARC tag."""
    action, source, target = command[1:]
    if action == "u":
        (Path(target) / "0.GMM.KOREAN").write_bytes(GMM)
    else:
        Path(target).write_bytes(b"NARC" + (Path(source) / "0.GMM.KOREAN").read_bytes())
    return FakeCompleted(0)


def make_profile(**overrides):
    data = {
        "game": {"name": "Test Game", "transcoder": "saga"},
        "paths": {"game_dir": "game", "text_dir": "text", "cache_dir": "cache"},
        "files": [],
    }
    data.update(overrides)
    return GameProfile.from_dict(data)


@pytest.fixture
def project(tmp_path):
    game = tmp_path / "game"
    game.mkdir()
    (game / "good.msb").write_bytes(GOOD_MSB)
    (game / "broken.msb").write_bytes(BROKEN_MSB)
    return tmp_path


class TestGameProfile:
    """Test loading and validating profiles."""

    def test_missing_profile(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            GameProfile.load(str(tmp_path / "missing.yaml"))

    def test_defaults(self):
        profile = GameProfile.from_dict({"game": {"transcoder": "saga"}})
        assert profile.name == "Unknown"
        assert profile.text_encoding == "utf-16"
        assert profile.narc_timeout == 20.0
        assert profile.files == []

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Entry 'a.bin'"):
            make_profile(files=[{"path": "a.bin", "format": "zip"}])

    def test_unknown_transcoder(self):
        with pytest.raises(ValueError, match="unknown transcoder 'klingon'"):
            make_profile(files=[{"path": "a.msb", "format": "dmsb", "transcoder": "klingon"}])

    def test_unknown_archive_format(self):
        with pytest.raises(ValueError, match="unknown format 'rar'"):
            make_profile(archives=[{"path": "a.rar", "format": "rar"}])

    @pytest.mark.parametrize("section, item", [
        ("files", {"path": "a.msb"}),
        ("files", {"format": "dmsb"}),
        ("archives", {"path": "a.dpk"}),
        ("archives", "a.dpk"),
    ])
    def test_incomplete_entry(self, section, item):
        with pytest.raises(ValueError, match="entry"):
            make_profile(**{section: [item]})

    def test_profile_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            GameProfile.load(str(path))

    def test_custom_format(self):
        profile = make_profile(
            formats={"MyMsb": {"base": "dmsb", "extension": ".mymsb"}},
            files=[{"path": "a.mymsb", "format": "mymsb"}],
        )
        assert profile.formats["mymsb"].extension == ".mymsb"

    @pytest.mark.parametrize("name", [
        "saga2.yaml", "ash.yaml", "mamoru.yaml", "summon_night_x.yaml", "tingle.yaml", "maple.yaml",
    ])
    def test_shipped_profiles_load(self, name):
        profile = GameProfile.load(str(CONFIG_DIR / name))
        assert profile.files or profile.archives

    def test_summon_profile_lists_every_table(self):
        profile = GameProfile.load(str(CONFIG_DIR / "summon_night_x.yaml"))
        paths = [entry.path for entry in profile.files]
        assert len(paths) == 25
        assert len(set(paths)) == 25
        for name in ("General/GimmickData.dtx", "map/field/teleportData.dtx", "progtext/St_Save.dtx"):
            assert name in paths
        assert len(profile.archives) == 4


class TestExportImport:
    """Test batch export and import over plain files."""

    def test_failure_does_not_stop_batch(self, project, caplog):
        profile = make_profile(files=[
            {"path": "broken.msb", "format": "dmsb"},
            {"path": "good.msb", "format": "dmsb"},
        ])
        pipeline = TranslationPipeline(profile, str(project))
        with caplog.at_level(logging.ERROR, logger="dstrans.pipeline"):
            results = pipeline.export_all()

        assert [r.success for r in results] == [False, True]
        assert results[0].error
        assert results[1].strings == 2
        assert "broken.msb" in caplog.text
        assert read_lines(project / "text" / "good.msb.txt", 2) == ["AB", "C"]

    def test_import_writes_game_file(self, project):
        profile = make_profile(files=[{"path": "good.msb", "format": "dmsb"}])
        pipeline = TranslationPipeline(profile, str(project))
        pipeline.export_all()
        write_lines(project / "text" / "good.msb.txt", ["Hello", "World"])

        results = pipeline.import_all()
        assert results[0].success and results[0].strings == 2

        codec = ContainerCodec(get_format("dmsb"), pipeline.get_transcoder())
        assert codec.load_file(project / "game" / "good.msb").strings == ["Hello", "World"]

    def test_unchanged_text_is_skipped(self, project):
        profile = make_profile(files=[{"path": "good.msb", "format": "dmsb"}])
        pipeline = TranslationPipeline(profile, str(project))
        pipeline.export_all()

        assert not pipeline.import_all()[0].skipped
        assert pipeline.import_all()[0].skipped
        assert (project / ".dstrans_cache.json").exists()

        forced = TranslationPipeline(profile, str(project), use_cache=False)
        assert not forced.import_all()[0].skipped

    def test_missing_text_file(self, project):
        profile = make_profile(files=[{"path": "good.msb", "format": "dmsb"}])
        results = TranslationPipeline(profile, str(project)).import_all()

        assert not results[0].success
        assert "Text file not found" in results[0].error

    def test_bad_text_leaves_game_file(self, project):
        profile = make_profile(files=[{"path": "good.msb", "format": "dmsb"}])
        pipeline = TranslationPipeline(profile, str(project))
        pipeline.export_all()
        write_lines(project / "text" / "good.msb.txt", ["only one line"])

        results = pipeline.import_all()
        assert not results[0].success
        assert (project / "game" / "good.msb").read_bytes() == GOOD_MSB

    def test_custom_format_export(self, project):
        (project / "game" / "good.mymsb").write_bytes(GOOD_MSB)
        profile = make_profile(
            formats={"mymsb": {"base": "dmsb"}},
            files=[{"path": "good.mymsb", "format": "mymsb"}],
        )
        results = TranslationPipeline(profile, str(project)).export_all()
        assert results[0].success


class TestArchives:
    """Test archive unpack, child export/import and repack."""

    @pytest.fixture
    def dpk_project(self, tmp_path):
        game = tmp_path / "game"
        game.mkdir()
        raw = DpkArchive().pack([(1, b"\x00" * 8), (2, DTX)])
        (game / "conf.dpk").write_bytes(raw)
        return tmp_path

    def test_dpk_round_trip(self, dpk_project):
        profile = make_profile(
            game={"name": "Summon", "transcoder": "summon"},
            archives=[{"path": "conf.dpk", "format": "dpk", "child_format": "dtx"}],
        )
        pipeline = TranslationPipeline(profile, str(dpk_project))

        unpacked = pipeline.unpack_archives()
        assert unpacked[0].success and unpacked[0].strings == 1

        exported = pipeline.export_all()
        assert [r.path for r in exported] == ["conf.dpk/conf.dpk.1.dtx"]
        text = dpk_project / "text" / "conf.dpk" / "conf.dpk.1.dtx.txt"
        assert read_lines(text, 2) == ["Hello", "World!"]

        write_lines(text, ["Hi", "There"])
        assert all(r.success for r in pipeline.import_all())
        assert all(r.success for r in pipeline.pack_archives())

        entries = DpkArchive().unpack((dpk_project / "game" / "conf.dpk").read_bytes())
        assert entries[0].data == b"\x00" * 8 + b"\xEE" * 8
        codec = ContainerCodec(get_format("dtx"), SummonTranscoder())
        assert codec.load(entries[1].data).strings == ["Hi", "There"]

    def test_children_skipped_until_unpacked(self, dpk_project, caplog):
        profile = make_profile(archives=[{"path": "conf.dpk", "format": "dpk", "child_format": "dtx"}])
        with caplog.at_level(logging.WARNING, logger="dstrans.pipeline"):
            results = TranslationPipeline(profile, str(dpk_project)).export_all()
        assert results == []
        assert "has not been unpacked" in caplog.text

    def test_narc_failure_is_reported(self, tmp_path):
        class FailingNarc:
            def unpack(self, archive, folder):
                return ServiceResult(False, "narctool did not finish within 20 seconds")

            def pack(self, folder, archive):
                return ServiceResult(False, "narctool exited with code 1")

        profile = make_profile(archives=[{"path": "a.narc", "format": "narc", "child_format": "dmsb"}])
        pipeline = TranslationPipeline(profile, str(tmp_path), narc_service=FailingNarc())

        unpacked = pipeline.unpack_archives()
        assert not unpacked[0].success
        assert "20 seconds" in unpacked[0].error
        assert not pipeline.pack_archives()[0].success

    def test_narc_children_found_by_extension(self, tmp_path):
        folder = tmp_path / "cache" / "a.narc"
        folder.mkdir(parents=True)
        (folder / "msg.msb").write_bytes(GOOD_MSB)
        (folder / "image.bin").write_bytes(b"\x00" * 4)

        profile = make_profile(archives=[{"path": "a.narc", "format": "narc", "child_format": "dmsb"}])
        results = TranslationPipeline(profile, str(tmp_path)).export_all()

        assert [r.path for r in results] == ["a.narc/a.narc/msg.msb"]
        assert results[0].success

    def test_nested_narc_in_nexon_archive(self, tmp_path, monkeypatch):
        game = tmp_path / "game"
        game.mkdir()
        (game / "RES.NXARC").write_bytes(build_nexon_with_narc())
        monkeypatch.setattr(subprocess, "run", fake_narctool)

        profile = make_profile(
            game={"name": "Maple", "transcoder": "maple"},
            archives=[{"path": "RES.NXARC", "format": "nexon", "child_format": "gmm"}],
        )
        pipeline = TranslationPipeline(profile, str(tmp_path))

        assert all(r.success for r in pipeline.unpack_archives())
        assert (tmp_path / "cache" / "RES.NXARC" / "UI" / "0" / "0.GMM.KOREAN").exists()

        exported = pipeline.export_all()
        label = "RES.NXARC/RES.NXARC/UI/0/0.GMM.KOREAN"
        assert [r.path for r in exported] == [label]
        text = pipeline.text_path(label)
        assert read_lines(text, 2) == ["Hi", "A"]

        write_lines(text, ["Hello", "A"])
        assert all(r.success for r in pipeline.import_all())
        assert all(r.success for r in pipeline.pack_archives())

        entries = NexonArchive().unpack((game / "RES.NXARC").read_bytes())
        assert entries[0].file_type == "NARC"
        codec = ContainerCodec(get_format("gmm"), MapleTranscoder())
        assert codec.load(entries[0].data[4:]).strings == ["Hello", "A"]

    def test_nested_narc_failure_is_reported(self, tmp_path, monkeypatch):
        game = tmp_path / "game"
        game.mkdir()
        (game / "RES.NXARC").write_bytes(build_nexon_with_narc())
        monkeypatch.setattr(subprocess, "run", lambda command, **kwargs: FakeCompleted(1, stderr="bad"))

        profile = make_profile(
            game={"name": "Maple", "transcoder": "maple"},
            archives=[{"path": "RES.NXARC", "format": "nexon", "child_format": "gmm"}],
        )
        results = TranslationPipeline(profile, str(tmp_path)).unpack_archives()

        assert not results[0].success
        assert "0.NARC" in results[0].error
