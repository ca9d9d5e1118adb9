"""Tests for container format descriptions."""

import pytest

from dstrans.formats import (
    FORMATS,
    ContainerFormat,
    Layout,
    get_format,
    load_formats,
)


class TestRegistry:
    """Test the built-in format registry."""

    def test_known_formats(self):
        for name in ("dmsb", "dcpb", "dmst", "dngc", "nidx", "musicbox", "dtx", "parm", "gmm", "langdb"):
            assert name in FORMATS

    def test_lookup_is_case_insensitive(self):
        assert get_format("NIDX") is FORMATS["nidx"]

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Unknown container format"):
            get_format("zip")

    def test_extra_formats_searched_first(self):
        custom = ContainerFormat(name="nidx", layout=Layout.LENGTH_TABLE)
        assert get_format("nidx", {"nidx": custom}) is custom

    def test_signature_text(self):
        assert FORMATS["nidx"].signature_text() == "NIDX"
        assert FORMATS["dcpb"].signature_text() == "DCPB"
        assert FORMATS["dmsb"].signature_text() == ""

    def test_nesting(self):
        assert FORMATS["dmst"].is_nested
        assert FORMATS["dngc"].is_nested
        assert not FORMATS["nidx"].is_nested
        assert FORMATS["parm"].is_record_table

    def test_parm_tables_are_consistent(self):
        FORMATS["parm"].validate()
        assert len(FORMATS["parm"].record_lengths) == 26


class TestFromDict:
    """Test formats declared in YAML profiles."""

    def test_new_layout_with_hex_values(self):
        fmt = ContainerFormat.from_dict("mymsb", {
            "layout": "length_table",
            "count_offset": "0x04",
            "signature": "0x42534D44",
        })
        assert fmt.layout == Layout.LENGTH_TABLE
        assert fmt.count_offset == 4
        assert fmt.signature == 0x42534D44

    def test_base_format_overrides(self):
        fmt = ContainerFormat.from_dict("bigbox", {"base": "musicbox", "max_length": 0x40})
        assert fmt.name == "bigbox"
        assert fmt.max_length == 0x40
        assert fmt.record_stride == 0x48

    def test_record_tables(self):
        fmt = ContainerFormat.from_dict("small_parm", {
            "base": "parm",
            "record_lengths": [8, "0x0C"],
            "pointer_offsets": [[4], [0, "0x08"]],
        })
        assert fmt.record_lengths == (8, 12)
        assert fmt.pointer_offsets == ((4,), (0, 8))

    def test_unknown_field(self):
        with pytest.raises(ValueError, match="unknown field"):
            ContainerFormat.from_dict("x", {"base": "dmsb", "colour": "red"})

    def test_unknown_layout(self):
        with pytest.raises(ValueError, match="unknown layout"):
            ContainerFormat.from_dict("x", {"layout": "spiral"})

    def test_missing_layout_and_base(self):
        with pytest.raises(ValueError):
            ContainerFormat.from_dict("x", {"count_offset": 4})

    def test_slot_longer_than_stride(self):
        with pytest.raises(ValueError, match="max_length"):
            ContainerFormat.from_dict("x", {"base": "musicbox", "max_length": 0x50})

    def test_pointer_outside_record(self):
        with pytest.raises(ValueError, match="outside"):
            ContainerFormat.from_dict("x", {
                "base": "parm",
                "record_lengths": [8],
                "pointer_offsets": [[6]],
            })

    def test_mismatched_record_tables(self):
        with pytest.raises(ValueError, match="differ"):
            ContainerFormat.from_dict("x", {
                "base": "parm",
                "record_lengths": [8, 8],
                "pointer_offsets": [[4]],
            })

    def test_language_db_needs_alignment(self):
        with pytest.raises(ValueError, match="alignment"):
            ContainerFormat.from_dict("x", {"base": "langdb", "alignment": 0})

    def test_negative_alignment(self):
        with pytest.raises(ValueError, match="alignment"):
            ContainerFormat.from_dict("x", {"base": "dmsb", "alignment": -4})

    def test_load_formats(self):
        formats = load_formats({"MyMsb": {"base": "dmsb"}})
        assert list(formats) == ["mymsb"]
        assert formats["mymsb"].layout == Layout.LENGTH_TABLE
        assert load_formats(None) == {}
