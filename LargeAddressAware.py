#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Get or set the Large Address-Aware (LAA) flag of a Windows PE executable.

The flag lives in the COFF characteristics field of the PE header, which is
found by following the e_lfanew pointer stored in the legacy MZ stub.
"""

import io
import logging
import os
import shutil
import stat
import struct

logger = logging.getLogger(__name__)

# Binary layout
MZ_SIGNATURE = b'MZ'
PE_SIGNATURE = b'PE\x00\x00'
PE_POINTER_OFFSET = 0x3C
CHARACTERISTICS_OFFSET = 0x16  # from the start of the PE signature
IMAGE_FILE_LARGE_ADDRESS_AWARE = 0x0020

# File naming
EXECUTABLE_SUFFIX = '.exe'
TEMP_SUFFIX = '.laa'
BACKUP_SUFFIX = '.original'


class LargeAddressAwareError(Exception):
    """Base class for every failure reported by this module"""


class InvalidInputError(LargeAddressAwareError):
    MESSAGES = {
        'missing': "No stream given.",
        'empty': "Empty stream.",
        'not-readable': "Non-readable stream.",
        'not-seekable': "Non-seekable stream.",
        'not-writable': "Read-only stream.",
        'bad-path': "Invalid file name.",
    }

    def __init__(self, reason, detail=None):
        self.reason = reason
        message = self.MESSAGES.get(reason, reason)
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class NoLegacyHeaderError(LargeAddressAwareError):
    def __init__(self, found):
        self.offset = 0
        self.expected = MZ_SIGNATURE
        self.found = bytes(found)
        super().__init__(
            f"MZ header not found: expected '{self.expected.hex()}', got '{self.found.hex()}'")


class NoExtendedHeaderError(LargeAddressAwareError):
    def __init__(self, offset, found):
        self.offset = offset
        self.expected = PE_SIGNATURE
        self.found = bytes(found)
        super().__init__(
            f"PE header not found at 0x{offset:X}: "
            f"expected '{self.expected.hex()}', got '{self.found.hex()}'")


class CorruptHeaderError(LargeAddressAwareError):
    def __init__(self, offset, message="Invalid field position."):
        self.offset = offset
        super().__init__(f"{message} (offset 0x{offset:X})")


class TruncatedImageError(CorruptHeaderError):
    """A fixed-size read came back short"""

    def __init__(self, offset, size, got):
        self.size = size
        self.got = got
        super().__init__(offset, f"Image truncated: needed {size} bytes, got {got}")


class SetupFailureError(LargeAddressAwareError):
    def __init__(self, path, message="Failed to initialize temp file."):
        self.path = path
        super().__init__(f"{message} ({path})")


def _read_exact(stream, offset, size):
    stream.seek(offset)
    data = stream.read(size)
    if data is None or len(data) != size:
        raise TruncatedImageError(offset, size, len(data or b''))
    return data


def _stream_length(stream):
    position = stream.tell()
    try:
        stream.seek(0, io.SEEK_END)
        return stream.tell()
    finally:
        stream.seek(position)


def _check_stream(stream, writable=False):
    if stream is None:
        raise InvalidInputError('missing')
    try:
        if not stream.readable():
            raise InvalidInputError('not-readable')
        if not stream.seekable():
            raise InvalidInputError('not-seekable')
        if writable and not stream.writable():
            raise InvalidInputError('not-writable')
    except AttributeError as e:
        raise InvalidInputError('not-readable', str(e)) from e
    if _stream_length(stream) == 0:
        raise InvalidInputError('empty')


def locate_pe_header(stream):
    """Return the absolute offset of the 'PE\\0\\0' signature in stream"""
    # Check for MZ signature
    signature = _read_exact(stream, 0, 2)
    if signature != MZ_SIGNATURE:
        raise NoLegacyHeaderError(signature)

    # Follow e_lfanew to the PE header
    pe_offset = struct.unpack('<I', _read_exact(stream, PE_POINTER_OFFSET, 4))[0]

    signature = _read_exact(stream, pe_offset, 4)
    if signature != PE_SIGNATURE:
        raise NoExtendedHeaderError(pe_offset, signature)

    logger.debug("PE header at 0x%X", pe_offset)
    return pe_offset


def _read_characteristics(stream, field_offset):
    try:
        data = _read_exact(stream, field_offset, 2)
    except CorruptHeaderError:
        raise
    except (OSError, ValueError, OverflowError) as e:
        raise CorruptHeaderError(field_offset) from e
    characteristics = struct.unpack('<H', data)[0]
    logger.debug("Characteristics at 0x%X: 0x%04X", field_offset, characteristics)
    return characteristics


def is_large_address_aware(stream):
    """Return True if the LAA flag of the image in stream is set.

    The stream must be readable, seekable and non-empty. It is read from
    offset 0 regardless of its current position.
    """
    _check_stream(stream)
    field_offset = locate_pe_header(stream) + CHARACTERISTICS_OFFSET
    characteristics = _read_characteristics(stream, field_offset)
    return bool(characteristics & IMAGE_FILE_LARGE_ADDRESS_AWARE)


def set_large_address_aware(stream, enable):
    """Set or clear the LAA flag, if not already set or cleared.

    Returns True if the characteristics field has been rewritten. Only the
    two bytes of that field are written, and only the LAA bit changes.
    """
    _check_stream(stream, writable=True)
    field_offset = locate_pe_header(stream) + CHARACTERISTICS_OFFSET
    characteristics = _read_characteristics(stream, field_offset)

    if bool(characteristics & IMAGE_FILE_LARGE_ADDRESS_AWARE) == bool(enable):
        # already set or cleared
        return False

    if enable:
        characteristics |= IMAGE_FILE_LARGE_ADDRESS_AWARE
    else:
        characteristics &= ~IMAGE_FILE_LARGE_ADDRESS_AWARE & 0xFFFF

    stream.seek(field_offset)
    stream.write(struct.pack('<H', characteristics))
    logger.debug("Characteristics at 0x%X rewritten to 0x%04X", field_offset, characteristics)
    return True


def normalize_executable_path(path):
    """Absolute path to the target, with '.exe' appended when there is no extension"""
    if not path:
        raise InvalidInputError('bad-path')
    try:
        path = os.path.abspath(os.path.expanduser(os.fspath(path)))
    except (TypeError, ValueError) as e:
        raise InvalidInputError('bad-path', str(e)) from e
    if not os.path.splitext(path)[1]:
        path += EXECUTABLE_SUFFIX
    return path


def temp_path_for(path):
    # app.exe and app.dll must not share siblings
    return path + TEMP_SUFFIX


def backup_path_for(path):
    return path + BACKUP_SUFFIX


def _make_writable(path):
    mode = os.stat(path).st_mode
    if not mode & stat.S_IWRITE:
        os.chmod(path, mode | stat.S_IWRITE)
    return mode


def _remove_file(path):
    if os.path.lexists(path):
        _make_writable(path)
        os.remove(path)


def _prepare_scratch(path, temp_path):
    try:
        _remove_file(temp_path)
        shutil.copy2(path, temp_path)
        _make_writable(temp_path)
    except OSError as e:
        raise SetupFailureError(temp_path) from e
    logger.debug("Copied %s to %s", path, temp_path)


def _commit(temp_path, path):
    # Windows refuses to replace a read-only file
    mode = _make_writable(path)
    try:
        os.replace(temp_path, path)
    finally:
        os.chmod(path, stat.S_IMODE(mode))
    logger.debug("Replaced %s", path)


def apply_flag(path, enable):
    """Set or clear the LAA flag of the executable at path.

    The flag is flipped in a scratch copy next to the target, which then
    replaces the target. The target is left untouched unless every step up
    to the replace succeeded. Returns True if the file has been modified.
    """
    path = normalize_executable_path(path)
    if not os.path.isfile(path):
        raise InvalidInputError('bad-path', f"file not found: {path}")

    temp_path = temp_path_for(path)
    _prepare_scratch(path, temp_path)
    try:
        try:
            stream = open(temp_path, 'r+b')
        except OSError as e:
            raise SetupFailureError(temp_path, "Failed to open temp file.") from e
        with stream:
            changed = False
            if is_large_address_aware(stream) != bool(enable):
                changed = set_large_address_aware(stream, enable)

        if changed:
            _commit(temp_path, path)
        else:
            logger.debug("%s already in the requested state", path)
        return changed
    finally:
        try:
            _remove_file(temp_path)
        except OSError as e:
            logger.warning("Could not remove temp file %s: %s", temp_path, e)
        else:
            logger.debug("Removed %s", temp_path)
