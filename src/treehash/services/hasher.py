"""SHA-1 hashing for file fingerprints.

Computes the 160-bit content digest recorded for every file in a tree.
Files are streamed through a caller-owned buffer so peak memory stays
bounded regardless of file size.
"""

import hashlib
from pathlib import Path
from typing import BinaryIO, Optional, Union

DEFAULT_CHUNK_SIZE = 100 * 1024
DIGEST_SIZE = hashlib.sha1().digest_size


def hash_stream(stream: BinaryIO, buffer: bytearray) -> tuple[bytes, int]:
    """Hash a binary stream until EOF.

    Args:
        stream: Readable binary stream supporting readinto()
        buffer: Reusable scratch buffer; its length sets the chunk size

    Returns:
        Tuple of (raw 20-byte digest, number of bytes hashed)
    """
    sha1 = hashlib.sha1()
    view = memoryview(buffer)
    total = 0
    while True:
        n = stream.readinto(view)
        if not n:
            break
        sha1.update(view[:n])
        total += n
    return sha1.digest(), total


def compute_file_digest(
    file_path: Union[str, Path],
    buffer: Optional[bytearray] = None,
) -> tuple[bytes, int]:
    """Compute the SHA-1 digest of a file.

    The file handle is opened, fully consumed and closed within this call.

    Args:
        file_path: Path to the file to hash
        buffer: Reusable read buffer (allocated per call when omitted)

    Returns:
        Tuple of (raw 20-byte digest, number of bytes hashed)

    Raises:
        OSError: If the file cannot be opened or read
    """
    if buffer is None:
        buffer = bytearray(DEFAULT_CHUNK_SIZE)
    with open(file_path, "rb", buffering=0) as f:
        return hash_stream(f, buffer)

