"""
SingleSign Guest Program Identity

The image id is the SHA256 of the guest program and every canonical module it
executes. Receipts are bound to it, and the host computes it from its own copy
of the source to decide which receipts it accepts.
"""

import hashlib
from pathlib import Path

# Files whose bytes define the program identity (relative to repo root)
GUEST_SOURCE_FILES = [
    "singlesign_tee/enclave/guest.py",
    "singlesign_canonical/constants.py",
    "singlesign_canonical/contract.py",
    "singlesign_canonical/errors.py",
    "singlesign_canonical/ranges.py",
    "singlesign_canonical/signing.py",
    "singlesign_canonical/typed_data.py",
]

_ROOT = Path(__file__).resolve().parent.parent


def compute_image_id() -> str:
    """
    Compute the SHA256 identity of the guest program.

    Files are hashed in sorted order, each followed by its path.

    Returns:
        SHA256 hex digest
    """
    hasher = hashlib.sha256()

    for filepath in sorted(GUEST_SOURCE_FILES):
        hasher.update((_ROOT / filepath).read_bytes())
        hasher.update(filepath.encode())

    return hasher.hexdigest()
