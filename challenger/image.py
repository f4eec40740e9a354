"""Program images — flat files of little-endian 16-bit words.

Word i of the file lands at memory address i.  A short file leaves the rest
of memory zeroed; a long one is cut at MEMORY_SIZE words; an odd trailing
byte is dropped.
"""
from __future__ import annotations

import struct
from pathlib import Path
from typing import Iterable, List, Union

from challenger.isa import MEMORY_SIZE, RAW_MASK
from challenger.vm import Machine

WORD_BYTES = 2


class ImageError(Exception):
    pass


def decode_words(data: bytes) -> List[int]:
    count = min(len(data) // WORD_BYTES, MEMORY_SIZE)
    return list(struct.unpack_from(f"<{count}H", data, 0))


def encode_words(words: Iterable[int]) -> bytes:
    words = [w & RAW_MASK for w in words]
    return struct.pack(f"<{len(words)}H", *words)


def read_image(path: Union[str, Path]) -> List[int]:
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise ImageError(f"cannot read image {path}: {e.strerror or e}") from e
    return decode_words(data)


def load_image(path: Union[str, Path], **machine_kwargs) -> Machine:
    """Read `path` into a fresh Machine.  Keyword arguments go to Machine()."""
    machine = Machine(**machine_kwargs)
    machine.load(read_image(path))
    return machine
