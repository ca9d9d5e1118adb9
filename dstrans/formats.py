"""
Container format definitions.

Every supported string-table file is described by a ``ContainerFormat``
value: which table layout it uses plus the offsets, record sizes and
alignment that distinguish it from its siblings. The generic codec in
``container.py`` reads these values instead of hard-coding one class per
file type.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Layout(Enum):
    """Structurally distinct table layouts."""
    LENGTH_TABLE = "length_table"
    SECTION_TABLE = "section_table"
    PREFIXED_GROUPS = "prefixed_groups"
    TERMINATED_TABLE = "terminated_table"
    RECORD_TABLE = "record_table"
    FIXED_SLOTS = "fixed_slots"
    GMM_TABLE = "gmm_table"
    LANGUAGE_DB = "language_db"


# Layouts whose string table is a list of lists (sections or groups).
NESTED_LAYOUTS = (Layout.SECTION_TABLE,)


@dataclass(frozen=True)
class ContainerFormat:
    """Static description of one container file format.

    Only the fields a layout reads are meaningful for it; the rest keep their
    defaults.
    """
    name: str
    layout: Layout
    description: str = ""
    extension: str = ""
    # 32-bit little-endian magic value; None when the format has none
    signature: Optional[int] = None
    signature_offset: int = 0
    count_offset: int = 0
    # Offset of a u32 counting fixed-size records kept verbatim before the table
    record_count_offset: int = 0
    # Offset of a u32 giving the size of a data block placed before the count
    size_field_offset: Optional[int] = None
    table_offset: int = 0
    group_size: int = 2
    nested: bool = False
    alignment: int = 0
    record_stride: int = 0
    pointer_field: int = 0
    length_field: int = 0
    max_length: Optional[int] = None
    header_length: int = 0
    # Offset of a u32 locating the first slot, plus a bias added to it
    slot_base_field: int = 0
    slot_base_bias: int = 0
    record_lengths: Tuple[int, ...] = ()
    pointer_offsets: Tuple[Tuple[int, ...], ...] = ()

    @property
    def is_nested(self) -> bool:
        """Whether strings are grouped into a list of lists."""
        return self.layout in NESTED_LAYOUTS or self.nested

    @property
    def is_record_table(self) -> bool:
        return self.layout == Layout.RECORD_TABLE

    def signature_text(self) -> str:
        """Render the signature as the four ASCII characters stored on disk."""
        if self.signature is None:
            return ""
        return self.signature.to_bytes(4, "little").decode("ascii", errors="replace")

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "ContainerFormat":
        """Build a format from a YAML mapping.

        A ``base`` key names a built-in format to start from; every other key
        overrides the matching field. Integers may be given as hex strings.

        Args:
            name: Name to register the format under
            data: Mapping of field names to values

        Returns:
            The new format

        Raises:
            ValueError: If the layout, base or a field name is unknown
        """
        data = dict(data)
        base_name = data.pop("base", None)
        if base_name is not None:
            base = get_format(base_name)
        elif "layout" not in data:
            raise ValueError(f"Format '{name}' needs either a 'layout' or a 'base'")
        else:
            base = None

        values: Dict[str, Any] = {"name": name}
        for key, value in data.items():
            if key not in _FIELD_NAMES or key == "name":
                raise ValueError(f"Format '{name}' has unknown field '{key}'")
            if key == "layout":
                try:
                    value = Layout(value)
                except ValueError:
                    raise ValueError(f"Format '{name}' has unknown layout '{value}'")
            elif key == "record_lengths":
                value = tuple(_parse_int(v) for v in value)
            elif key == "pointer_offsets":
                value = tuple(tuple(_parse_int(v) for v in row) for row in value)
            elif key in _INT_FIELDS and value is not None:
                value = _parse_int(value)
            values[key] = value

        if base is not None:
            fmt = replace(base, **values)
        else:
            fmt = cls(**values)
        fmt.validate()
        return fmt

    def validate(self) -> None:
        """Check internal consistency of a format description.

        Raises:
            ValueError: If the configuration cannot describe a valid file
        """
        if self.layout == Layout.RECORD_TABLE:
            if len(self.record_lengths) != len(self.pointer_offsets):
                raise ValueError(
                    f"Format '{self.name}': record_lengths and pointer_offsets differ in length"
                )
            for index, (length, offsets) in enumerate(zip(self.record_lengths, self.pointer_offsets)):
                for offset in offsets:
                    if offset + 4 > length:
                        raise ValueError(
                            f"Format '{self.name}': pointer 0x{offset:X} lies outside "
                            f"record of section {index}"
                        )
        if self.layout == Layout.FIXED_SLOTS:
            if self.max_length is None or self.record_stride < self.max_length:
                raise ValueError(f"Format '{self.name}': slots need max_length <= record_stride")
        if self.layout == Layout.PREFIXED_GROUPS and self.group_size < 1:
            raise ValueError(f"Format '{self.name}': group_size must be positive")
        if self.alignment < 0 or (self.layout == Layout.LANGUAGE_DB and self.alignment < 1):
            raise ValueError(f"Format '{self.name}': alignment must be positive")


_FIELD_NAMES = set(ContainerFormat.__dataclass_fields__)
_INT_FIELDS = {
    "signature", "signature_offset", "count_offset", "record_count_offset", "size_field_offset",
    "table_offset", "group_size", "alignment", "record_stride", "pointer_field",
    "length_field", "max_length", "header_length", "slot_base_field",
    "slot_base_bias",
}


def _parse_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


PARM_RECORD_LENGTHS = (
    0x0C, 0x4C, 0x10, 0x2C, 0x28, 0x10, 0x18, 0x10, 0x10, 0x10, 0x10, 0x10, 0x1C,
    0x10, 0x10, 0x10, 0x14, 0x18, 0x18, 0x28, 0x5C, 0x30, 0x28, 0x10, 0x18, 0x10,
)

PARM_POINTER_OFFSETS = (
    (0x04,),
    (0x04, 0x48),
    (0x04,),
    (0x04,),
    (),
    (0x04,),
    (0x04, 0x10, 0x14),
    (0x04,),
    (0x04, 0x0C),
    (0x04,),
    (0x04,),
    (0x04,),
    (0x04,),
    (0x04,),
    (0x04,),
    (0x04,),
    (0x04,),
    (0x04, 0x10, 0x14),
    (0x04, 0x14),
    (0x04, 0x24),
    (0x04, 0x08, 0x54, 0x58),
    (0x04, 0x2C),
    (0x04, 0x24),
    (),
    (0x04, 0x14),
    (0x04, 0x0C),
)


FORMATS: Dict[str, ContainerFormat] = {
    fmt.name: fmt
    for fmt in (
        ContainerFormat(
            name="dmsb",
            layout=Layout.LENGTH_TABLE,
            description="SaGa 2 message block",
            extension=".msb",
            count_offset=0x00,
        ),
        ContainerFormat(
            name="dcpb",
            layout=Layout.LENGTH_TABLE,
            description="SaGa 2 compiled script",
            extension=".scripb",
            signature=0x42504344,
            count_offset=0x08,
            size_field_offset=0x04,
        ),
        ContainerFormat(
            name="dmst",
            layout=Layout.SECTION_TABLE,
            description="SaGa 2 sectioned message table",
            extension=".mst",
            signature=0x54534D44,
            count_offset=0x04,
            table_offset=0x08,
        ),
        ContainerFormat(
            name="dngc",
            layout=Layout.PREFIXED_GROUPS,
            description="SaGa 2 name/description pairs",
            extension=".bin",
            signature=0x43474E44,
            count_offset=0x04,
            table_offset=0x08,
            nested=True,
        ),
        ContainerFormat(
            name="nidx",
            layout=Layout.PREFIXED_GROUPS,
            description="Ash name/description index",
            extension=".bin",
            signature=0x5844494E,
            count_offset=0x04,
            table_offset=0x08,
            alignment=4,
        ),
        ContainerFormat(
            name="musicbox",
            layout=Layout.FIXED_SLOTS,
            description="SaGa 2 music box track list",
            extension=".bin",
            count_offset=0x08,
            slot_base_field=0x14,
            slot_base_bias=4,
            record_stride=0x48,
            max_length=0x3E,
        ),
        ContainerFormat(
            name="dtx",
            layout=Layout.TERMINATED_TABLE,
            description="Summon Night X text table",
            extension=".dtx",
            count_offset=0x04,
            record_count_offset=0x00,
            table_offset=0x08,
            record_stride=0x08,
        ),
        ContainerFormat(
            name="parm",
            layout=Layout.RECORD_TABLE,
            description="Mamoru parameter database",
            extension=".dat",
            count_offset=0x08,
            table_offset=0x0C,
            alignment=4,
            record_lengths=PARM_RECORD_LENGTHS,
            pointer_offsets=PARM_POINTER_OFFSETS,
        ),
        ContainerFormat(
            name="gmm",
            layout=Layout.GMM_TABLE,
            description="MapleStory DS message table",
            extension=".GMM.KOREAN",
            count_offset=0x02,
            table_offset=0x04,
            record_stride=0x0C,
            pointer_field=0x08,
        ),
        ContainerFormat(
            name="langdb",
            layout=Layout.LANGUAGE_DB,
            description="Tingle language database",
            extension=".bin",
            count_offset=0x02,
            table_offset=0x10,
            header_length=0x80,
            record_stride=0x08,
            length_field=0x06,
            alignment=0x10,
        ),
    )
}


def get_format(name: str, extra: Optional[Dict[str, ContainerFormat]] = None) -> ContainerFormat:
    """Look up a format by name.

    Args:
        name: Format name, case-insensitive
        extra: Additional formats (e.g. declared in a game profile) searched first

    Raises:
        ValueError: If no format has that name
    """
    key = name.lower()
    if extra and key in extra:
        return extra[key]
    try:
        return FORMATS[key]
    except KeyError:
        raise ValueError(f"Unknown container format: {name}")


def load_formats(mapping: Optional[Dict[str, Dict[str, Any]]]) -> Dict[str, ContainerFormat]:
    """Build formats declared under a profile's ``formats:`` key."""
    formats: Dict[str, ContainerFormat] = {}
    for name, data in (mapping or {}).items():
        formats[name.lower()] = ContainerFormat.from_dict(name.lower(), data or {})
    return formats
