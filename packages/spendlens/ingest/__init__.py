"""CSV ingestion: bank profiles, format detection and row parsing."""

from .csv_parser import DEFAULT_CHUNK_SIZE, CsvParser, parse_csv_text, parse_row
from .detect import FormatDetector, FormatMatch, detect_format, resolve_columns
from .profiles import (
    GENERIC_PROFILE,
    GENERIC_PROFILE_ID,
    BankProfile,
    default_profiles,
    load_profiles,
    parse_profiles,
)
from .utils import read_csv_file, read_csv_rows

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "CsvParser",
    "parse_csv_text",
    "parse_row",
    "FormatDetector",
    "FormatMatch",
    "detect_format",
    "resolve_columns",
    "GENERIC_PROFILE",
    "GENERIC_PROFILE_ID",
    "BankProfile",
    "default_profiles",
    "load_profiles",
    "parse_profiles",
    "read_csv_file",
    "read_csv_rows",
]
