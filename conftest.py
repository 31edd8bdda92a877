import struct

import pytest


def make_image(pe_offset=0x80, characteristics=0x0000, size=None):
    """Minimal synthetic PE image: MZ stub, e_lfanew, PE signature, COFF header"""
    if size is None:
        size = pe_offset + 0x18 + 0x68
    data = bytearray(max(size, pe_offset + 0x18))
    data[0:2] = b'MZ'
    struct.pack_into('<I', data, 0x3C, pe_offset)
    data[pe_offset:pe_offset + 4] = b'PE\x00\x00'
    struct.pack_into('<H', data, pe_offset + 4, 0x014C)  # i386
    struct.pack_into('<H', data, pe_offset + 0x16, characteristics)
    return bytes(data[:size])


@pytest.fixture
def image():
    return make_image()


@pytest.fixture
def exe_file(tmp_path):
    path = tmp_path / "app.exe"
    path.write_bytes(make_image(characteristics=0x0102))
    return path


@pytest.fixture
def build_image():
    return make_image
