#!/usr/bin/env python3
"""
dstrans Command Line Interface.

Thin front end over ``TranslationPipeline`` for batch export/import of a
game's text, plus a few inspection helpers.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from . import __version__
from .archive import ARCHIVES
from .errors import FormatError, OutOfRangeError
from .formats import FORMATS, get_format
from .nitro_font import NitroFont
from .pipeline import FileResult, GameProfile, TranslationPipeline


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="dstrans",
        description="dstrans - Nintendo DS translation patching tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Unpack archives, then export every string table to text
  dstrans unpack --profile configs/summon_night_x.yaml --root work/
  dstrans export --profile configs/summon_night_x.yaml --root work/

  # Import edited text and rebuild the archives
  dstrans import --profile configs/summon_night_x.yaml --root work/
  dstrans pack --profile configs/summon_night_x.yaml --root work/

  # List container formats known to a profile
  dstrans formats --profile configs/saga2.yaml
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show debug output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    batch_commands = {
        "export": "Export game text to editable text files",
        "import": "Import edited text files back into the game files",
        "unpack": "Unpack the profile's archives into the cache directory",
        "pack": "Rebuild the profile's archives from the cache directory",
    }
    for name, help_text in batch_commands.items():
        command_parser = subparsers.add_parser(name, help=help_text, description=help_text + ".")
        _add_profile_arguments(command_parser)
        if name == "import":
            command_parser.add_argument(
                "--force", "-f",
                action="store_true",
                help="Import every text file, ignoring the timestamp cache",
            )

    formats_parser = subparsers.add_parser(
        "formats",
        help="List supported container and archive formats",
    )
    formats_parser.add_argument(
        "--profile", "-p",
        help="Include formats declared in this game profile",
    )
    formats_parser.add_argument(
        "--root", "-r",
        default=".",
        help="Project directory the profile's table path is relative to (default: .)",
    )

    font_parser = subparsers.add_parser(
        "font",
        help="Inspect or resize a Nitro font (NFTR)",
    )
    font_parser.add_argument("font", help="Path to NFTR file")
    font_parser.add_argument(
        "--resize",
        metavar="WxH",
        help="Resize every glyph canvas, e.g. 12x14",
    )
    font_parser.add_argument(
        "--output", "-o",
        help="Where to write the resized font (default: overwrite)",
    )

    return parser


def _add_profile_arguments(command_parser: argparse.ArgumentParser) -> None:
    command_parser.add_argument(
        "--profile", "-p",
        required=True,
        help="Path to game profile (YAML)",
    )
    command_parser.add_argument(
        "--root", "-r",
        default=".",
        help="Project directory the profile paths are relative to (default: .)",
    )


def _print_results(results: List[FileResult]) -> int:
    failed = [r for r in results if not r.success]
    for result in results:
        if not result.success:
            print(f"   ❌ {result.path}: {result.error}")
        elif result.skipped:
            print(f"   ⏭️  {result.path} (unchanged)")
        else:
            print(f"   ✓ {result.path} ({result.strings} strings)")
    print()
    if failed:
        print(f"❌ {len(failed)} of {len(results)} files failed")
        return 1
    print(f"✅ {len(results)} files processed")
    return 0


def cmd_batch(args) -> int:
    """Execute export, import, unpack or pack over a profile."""
    try:
        profile = GameProfile.load(args.profile)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        print(f"❌ Error: {e}")
        return 1

    pipeline = TranslationPipeline(profile, args.root, use_cache=not getattr(args, "force", False))
    print(f"🎮 {profile.name}: {args.command}")
    print()

    operations = {
        "export": pipeline.export_all,
        "import": pipeline.import_all,
        "unpack": pipeline.unpack_archives,
        "pack": pipeline.pack_archives,
    }
    return _print_results(operations[args.command]())


def cmd_formats(args) -> int:
    """Execute the formats command."""
    extra = {}
    profile = None
    if args.profile:
        try:
            profile = GameProfile.load(args.profile)
        except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
            print(f"❌ Error: {e}")
            return 1
        extra = profile.formats

    print("📄 Container formats:")
    for name in sorted(set(FORMATS) | set(extra)):
        fmt = get_format(name, extra)
        signature = f" [{fmt.signature_text()}]" if fmt.signature is not None else ""
        print(f"   • {name:<10} {fmt.layout.value:<18}{signature} {fmt.description}")
    print()
    print("📦 Archive formats:")
    for name in sorted(ARCHIVES):
        print(f"   • {name}")
    print("   • narc (via narctool)")

    if profile is not None and profile.table:
        try:
            table = TranslationPipeline(profile, args.root).get_transcoder("table")
        except (OSError, FormatError) as e:
            print(f"❌ Error: {e}")
            return 1
        stats = table.get_stats()
        print()
        print(f"🔤 Table {profile.table}:")
        print(f"   Characters: {stats['characters']}")
        print(f"   Control codes: {stats['control_codes']}")
        print(f"   Multi-byte keys: {stats['multi_byte_keys']}")
        print(f"   Total mappings: {stats['total_mappings']}")
    return 0


def cmd_font(args) -> int:
    """Execute the font command."""
    font_path = Path(args.font)
    if not font_path.exists():
        print(f"❌ Font not found: {font_path}")
        return 1

    try:
        with open(font_path, "rb") as f:
            font = NitroFont.load(f.read())
    except (FormatError, OutOfRangeError) as e:
        print(f"❌ Error: {e}")
        return 1

    print(f"🔤 {font_path.name}")
    print(f"   Glyph size: {font.width}x{font.height}, {font.glyph_chunk.bits_per_pixel}bpp")
    print(f"   Characters: {len(font.codes)} in {len(font.character_sets)} maps")

    if args.resize:
        try:
            width, height = (int(v) for v in args.resize.lower().split("x"))
        except ValueError:
            print(f"❌ Invalid size: {args.resize} (expected WxH)")
            return 1
        font.resize(width, height)
        output = Path(args.output or font_path)
        with open(output, "wb") as f:
            f.write(font.save())
        print(f"✅ Resized to {width}x{height}: {output}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    # Dispatch to command handler
    commands = {
        "export": cmd_batch,
        "import": cmd_batch,
        "unpack": cmd_batch,
        "pack": cmd_batch,
        "formats": cmd_formats,
        "font": cmd_font,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
