"""
dstrans - Nintendo DS Translation Patching Tools
Export the text of DS game files to editable text files and rebuild the
game files from the translated text, including the archives and fonts
that carry them.
"""

__version__ = "0.1.0"
__author__ = "dstrans contributors"

from .archive import DpkArchive, NexonArchive
from .byte_codec import ByteCodec
from .container import ContainerCodec, ContainerDocument
from .encoding import TextTranscoder, get_transcoder
from .errors import FormatError, OutOfRangeError
from .formats import ContainerFormat, Layout, get_format
from .nitro_font import NitroFont
from .pipeline import GameProfile, TranslationPipeline

__all__ = [
    "ByteCodec",
    "TextTranscoder",
    "get_transcoder",
    "ContainerFormat",
    "Layout",
    "get_format",
    "ContainerCodec",
    "ContainerDocument",
    "DpkArchive",
    "NexonArchive",
    "NitroFont",
    "GameProfile",
    "TranslationPipeline",
    "FormatError",
    "OutOfRangeError",
]
