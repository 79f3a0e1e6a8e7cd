"""Reader and writer for .varie model bundles.

Bundle layout (all integers little-endian uint32):

    magic "VARI" | format version | entry count
    entry count times: path length | UTF-8 path | data length | data

Decoding is a pure function of the input bytes. Unreasonable counts and
lengths are rejected before any large slice is taken.
"""

import json
import struct
import time
from types import MappingProxyType
from typing import Iterable, Mapping, Tuple, Union

from avatar_sdk.core.logging import get_logger
from avatar_sdk.exceptions import InvalidBundleError
from avatar_sdk.models import ModelFiles, ModelType, UnpackedModel

logger = get_logger(__name__)

BUNDLE_MAGIC = b"VARI"
BUNDLE_FORMAT_VERSION = 1
MAX_ENTRY_COUNT = 100
MAX_PATH_LENGTH = 1000

_U32 = struct.Struct("<I")
_HEADER = struct.Struct("<4sII")

REQUIRED_SUFFIXES = (".json", ".atlas", ".png")

BytesLike = Union[bytes, bytearray, memoryview]


def is_bundle(data: BytesLike) -> bool:
    """Check whether data starts with the bundle magic."""
    return len(data) >= 4 and bytes(data[:4]) == BUNDLE_MAGIC


def decode_bundle(data: BytesLike) -> Mapping[str, bytes]:
    """Unpack a bundle into a read-only map of path to bytes.

    Later entries with a duplicate path replace earlier ones.

    Args:
        data: Raw bundle bytes

    Returns:
        Read-only mapping preserving entry order

    Raises:
        InvalidBundleError: If the bundle is malformed or truncated
    """
    buf = bytes(data)
    total = len(buf)

    magic = buf[:4]
    if magic != BUNDLE_MAGIC:
        raise InvalidBundleError(
            f"Invalid bundle format: expected {BUNDLE_MAGIC!r} header, got {magic!r}"
        )
    if total < _HEADER.size:
        raise InvalidBundleError("Unexpected end of bundle reading header")

    # Version is reserved; it is read only to advance the cursor.
    _, _version, entry_count = _HEADER.unpack_from(buf, 0)
    offset = _HEADER.size

    if entry_count == 0:
        raise InvalidBundleError("Bundle contains no files")
    if entry_count > MAX_ENTRY_COUNT:
        raise InvalidBundleError(
            f"Bundle claims {entry_count} files, which exceeds the limit of {MAX_ENTRY_COUNT}"
        )

    entries: dict[str, bytes] = {}
    for index in range(entry_count):
        position = f"file {index + 1}/{entry_count}"

        if offset + 4 > total:
            raise InvalidBundleError(f"Unexpected end of bundle reading path length of {position}")
        (path_length,) = _U32.unpack_from(buf, offset)
        offset += 4

        if path_length > MAX_PATH_LENGTH:
            raise InvalidBundleError(
                f"Path length {path_length} of {position} exceeds the limit of {MAX_PATH_LENGTH}"
            )
        if offset + path_length > total:
            raise InvalidBundleError(f"Unexpected end of bundle reading path of {position}")
        try:
            path = buf[offset:offset + path_length].decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidBundleError(f"Path of {position} is not valid UTF-8", e) from e
        offset += path_length

        if offset + 4 > total:
            raise InvalidBundleError(
                f"Unexpected end of bundle reading data length of {position} ('{path}')"
            )
        (data_length,) = _U32.unpack_from(buf, offset)
        offset += 4

        remaining = total - offset
        if data_length > remaining:
            raise InvalidBundleError(
                f"File '{path}' ({position}) claims {data_length} bytes but only {remaining} remain"
            )
        entries[path] = buf[offset:offset + data_length]
        offset += data_length

    return MappingProxyType(entries)


def encode_bundle(
    entries: Union[Mapping[str, BytesLike], Iterable[Tuple[str, BytesLike]]],
    format_version: int = BUNDLE_FORMAT_VERSION,
) -> bytes:
    """Pack path/bytes pairs into a bundle.

    Raises:
        InvalidBundleError: If the entries would produce a bundle that
            decode_bundle() rejects
    """
    items = list(entries.items()) if isinstance(entries, Mapping) else list(entries)
    if not items:
        raise InvalidBundleError("Bundle contains no files")
    if len(items) > MAX_ENTRY_COUNT:
        raise InvalidBundleError(
            f"Bundle of {len(items)} files exceeds the limit of {MAX_ENTRY_COUNT}"
        )

    parts = [_HEADER.pack(BUNDLE_MAGIC, format_version, len(items))]
    for path, payload in items:
        path_bytes = path.encode("utf-8")
        if len(path_bytes) > MAX_PATH_LENGTH:
            raise InvalidBundleError(
                f"Path length {len(path_bytes)} exceeds the limit of {MAX_PATH_LENGTH}"
            )
        payload = bytes(payload)
        parts.append(_U32.pack(len(path_bytes)))
        parts.append(path_bytes)
        parts.append(_U32.pack(len(payload)))
        parts.append(payload)
    return b"".join(parts)


def extract_model_files(entries: Mapping[str, bytes]) -> ModelFiles:
    """Pick the skeleton, atlas and texture out of an unpacked bundle.

    The first path (in bundle order) ending in each required suffix wins.

    Raises:
        InvalidBundleError: If a required file is missing or the skeleton
            is not valid JSON
    """
    paths = list(entries.keys())
    found: dict[str, str] = {}
    for suffix in REQUIRED_SUFFIXES:
        match = next((p for p in paths if p.endswith(suffix)), None)
        if match is None:
            raise InvalidBundleError(
                f"No {suffix} file found in bundle. Files: {', '.join(paths)}"
            )
        found[suffix] = match

    try:
        skeleton = json.loads(entries[found[".json"]].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidBundleError("Failed to parse skeleton JSON", e) from e

    return ModelFiles(
        skeleton=skeleton,
        atlas=entries[found[".atlas"]].decode("utf-8", errors="replace"),
        texture=entries[found[".png"]],
        entries=entries if isinstance(entries, MappingProxyType) else MappingProxyType(dict(entries)),
    )


def decode_model(data: BytesLike, character_id: str, model_type: ModelType | str) -> UnpackedModel:
    """Unpack a bundle and extract its model files in one step."""
    model_type = ModelType(model_type)
    try:
        files = extract_model_files(decode_bundle(data))
    except InvalidBundleError as e:
        logger.warning(
            f"Rejected bundle for {character_id}: {e.message}",
            extra={"character_id": character_id, "model_type": model_type.value},
        )
        raise

    return UnpackedModel(
        character_id=character_id,
        model_type=model_type,
        files=files,
        size=len(data),
        cached_at=int(time.time() * 1000),
    )
