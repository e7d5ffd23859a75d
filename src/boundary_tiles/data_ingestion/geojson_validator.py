"""
Streaming GeoJSON validation.

Checks large boundary files without loading them whole: the file is read
in 64 KiB chunks, the FeatureCollection and features-array markers are
looked up, and complete Feature objects are counted by brace matching.
Braces inside JSON strings are ignored.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

import structlog


CHUNK_SIZE = 64 * 1024

# Unmatched text kept between chunks so a marker split across reads is found
MARKER_OVERLAP = 256

TYPE_MARKER = re.compile(r'"type"\s*:\s*"FeatureCollection"')
FEATURES_MARKER = re.compile(r'"features"\s*:\s*\[')
FEATURE_START = re.compile(r'\{\s*"type"\s*:\s*"Feature"')


@dataclass
class ValidationResult:
    """Outcome of validating one file."""
    file: str
    valid: bool
    features_count: int = 0
    has_type: bool = False
    has_features: bool = False
    error: Optional[str] = None


def find_object_end(text: str, start: int) -> int:
    """
    Index just past the object opening at ``start``, or -1 if it is incomplete.
    """
    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


class GeoJSONValidator:
    """Validates FeatureCollection files in a single streaming pass."""

    def __init__(self, chunk_size: int = CHUNK_SIZE, report_every: int = 1000):
        self.chunk_size = chunk_size
        self.report_every = report_every
        self.logger = structlog.get_logger(component="GeoJSONValidator")

    def validate_file(self, file_path: Union[str, Path]) -> ValidationResult:
        path = Path(file_path)
        result = ValidationResult(file=path.name, valid=False)
        self.logger.info("Validating file", file=path.name)

        try:
            with open(path, 'r', encoding='utf-8') as f:
                self._scan(f, result)
        except (OSError, UnicodeDecodeError) as e:
            result.error = f"Error reading {path.name}: {e}"
            self.logger.error("Validation failed", file=path.name, error=result.error)
            return result

        result.valid = result.has_type and result.has_features and result.features_count > 0
        if result.valid:
            self.logger.info("File is valid", file=path.name, features_count=result.features_count)
        else:
            result.error = f"Invalid GeoJSON structure in {path.name}"
            self.logger.error(
                "Invalid GeoJSON structure",
                file=path.name,
                has_type=result.has_type,
                has_features=result.has_features,
                features_count=result.features_count
            )
        return result

    def validate_files(self, file_paths: Iterable[Union[str, Path]]) -> List[ValidationResult]:
        return [self.validate_file(path) for path in file_paths]

    def _scan(self, stream, result: ValidationResult) -> None:
        buffer = ''
        while True:
            chunk = stream.read(self.chunk_size)
            if not chunk:
                break
            buffer += chunk

            if not result.has_type and TYPE_MARKER.search(buffer):
                result.has_type = True
                self.logger.debug("Found FeatureCollection type")
            if not result.has_features and FEATURES_MARKER.search(buffer):
                result.has_features = True
                self.logger.debug("Found features array")

            position = 0
            pending = None
            while True:
                match = FEATURE_START.search(buffer, position)
                if match is None:
                    break

                end = find_object_end(buffer, match.start())
                if end == -1:
                    pending = match.start()
                    break

                result.features_count += 1
                if result.features_count % self.report_every == 0:
                    self.logger.info("Counting features", features_count=result.features_count)
                position = end

            if pending is not None:
                buffer = buffer[pending:]
            else:
                buffer = buffer[max(position, len(buffer) - MARKER_OVERLAP):]
