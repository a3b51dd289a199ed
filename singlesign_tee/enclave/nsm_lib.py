"""
AWS Nitro Security Module (NSM) Access
======================================

Requests attestation documents from /dev/nsm inside a Nitro Enclave.

The device takes one CBOR request per ioctl:

    {"Attestation": {"user_data": bytes, "nonce": bytes, "public_key": bytes}}

and answers {"Attestation": {"document": <COSE_Sign1 bytes>}}.

Based on: https://github.com/aws/aws-nitro-enclaves-nsm-api
"""

import ctypes
import fcntl
import os
from typing import Optional

import cbor2

NSM_DEVICE = "/dev/nsm"

# Buffer sizes used by the reference driver
NSM_REQUEST_MAX_SIZE = 0x1000   # 4KB
NSM_RESPONSE_MAX_SIZE = 0x3000  # 12KB

# Per-field NSM limit for user_data / nonce / public_key
NSM_FIELD_MAX_SIZE = 1024

NSM_IOCTL_MAGIC = 0x0A


class NSMError(Exception):
    """NSM device missing or request failed."""
    pass


class _NSMMessage(ctypes.Structure):
    # struct nsm_message { request, request_len, response, response_len }
    _fields_ = [
        ("request", ctypes.POINTER(ctypes.c_ubyte)),
        ("request_len", ctypes.c_uint32),
        ("response", ctypes.POINTER(ctypes.c_ubyte)),
        ("response_len", ctypes.c_uint32),
    ]


def _iowr(magic: int, nr: int, size: int) -> int:
    # _IOWR: dir(read|write)=3 << 30 | size << 16 | magic << 8 | nr
    return (3 << 30) | (size << 16) | (magic << 8) | nr


NSM_IOCTL_REQUEST = _iowr(NSM_IOCTL_MAGIC, 0, ctypes.sizeof(_NSMMessage))


def get_attestation_document(
    user_data: Optional[bytes] = None,
    nonce: Optional[bytes] = None,
    public_key: Optional[bytes] = None,
) -> bytes:
    """
    Request a signed attestation document from the NSM.

    Args:
        user_data: Application data bound into the document
        nonce: Optional freshness value
        public_key: Optional public key bound into the document

    Returns:
        Raw COSE_Sign1 attestation document

    Raises:
        NSMError: Not inside an enclave, oversized field, or device error
    """
    if not os.path.exists(NSM_DEVICE):
        raise NSMError(f"{NSM_DEVICE} not found - not running in Nitro Enclave")

    fields = {"user_data": user_data, "nonce": nonce, "public_key": public_key}
    request = {}
    for name, value in fields.items():
        if value is None:
            continue
        if len(value) > NSM_FIELD_MAX_SIZE:
            raise NSMError(f"{name} exceeds {NSM_FIELD_MAX_SIZE} bytes")
        request[name] = value

    request_cbor = cbor2.dumps({"Attestation": request})
    if len(request_cbor) > NSM_REQUEST_MAX_SIZE:
        raise NSMError("NSM request too large")

    request_buffer = bytearray(NSM_REQUEST_MAX_SIZE)
    request_buffer[:len(request_cbor)] = request_cbor
    response_buffer = bytearray(NSM_RESPONSE_MAX_SIZE)

    msg = _NSMMessage()
    msg.request = (ctypes.c_ubyte * len(request_buffer)).from_buffer(request_buffer)
    msg.request_len = len(request_cbor)
    msg.response = (ctypes.c_ubyte * len(response_buffer)).from_buffer(response_buffer)
    msg.response_len = len(response_buffer)

    try:
        fd = os.open(NSM_DEVICE, os.O_RDWR)
    except OSError as e:
        raise NSMError(f"Cannot open {NSM_DEVICE}: {e}") from e

    try:
        fcntl.ioctl(fd, NSM_IOCTL_REQUEST, msg)
    except OSError as e:
        raise NSMError(f"NSM ioctl failed: {e}") from e
    finally:
        os.close(fd)

    try:
        response = cbor2.loads(bytes(response_buffer[:msg.response_len]))
        return response["Attestation"]["document"]
    except Exception as e:
        raise NSMError(f"Unexpected NSM response: {e}") from e
