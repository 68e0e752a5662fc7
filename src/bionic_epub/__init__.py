from .converter import ConversionResult, WorkArea, convert_epub, output_path_for
from .errors import (
    BionicEpubError,
    ConversionIOError,
    FormatError,
    NotFoundError,
    ValidationError,
)
from .markup import SkipRules, clean_document, process_document, transform_document
from .options import BionicOptions
from .words import Skip, Split, decide

__all__ = [
    "BionicOptions",
    "ConversionResult",
    "WorkArea",
    "convert_epub",
    "output_path_for",
    "SkipRules",
    "process_document",
    "transform_document",
    "clean_document",
    "decide",
    "Skip",
    "Split",
    "BionicEpubError",
    "NotFoundError",
    "FormatError",
    "ConversionIOError",
    "ValidationError",
]
