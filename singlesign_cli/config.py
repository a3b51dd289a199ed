"""
SingleSign Configuration
========================

Builds one ProverConfig from the environment (and a .env file in the working
directory, if present) plus explicit overrides. The config is created once by
the CLI and passed to everything that needs it; nothing else reads the
environment.

Environment variables:
    RPC_URL            Ethereum JSON-RPC endpoint (Permit2 dispatch)
    PRIVATE_KEY        Key that sends dispatch transactions
    ACCOUNT_ADDRESS    Permit owner passed to permitTransferFrom
    ENCLAVE_CID        vsock CID of the proving enclave (local prover if unset)
    ENCLAVE_PORT       vsock port of the proving enclave
    EXPECTED_IMAGE_ID  Trusted guest identity (computed locally if unset)
    EXPECTED_PCR0      PCR0 of the trusted enclave image (required with ENCLAVE_CID)
    ALLOW_MOCK_ATTESTATION  Accept a mock enclave attestation (development only)
    LOG_LEVEL          Logging level (default INFO)
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

from dotenv import find_dotenv, load_dotenv

from singlesign_canonical.constants import PROVER_RPC_PORT

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class ProverConfig:
    rpc_url: Optional[str] = None
    private_key: Optional[str] = field(default=None, repr=False)
    account_address: Optional[str] = None
    enclave_cid: Optional[int] = None
    enclave_port: int = PROVER_RPC_PORT
    expected_image_id: Optional[str] = None
    expected_pcr0: Optional[str] = None
    allow_mock_attestation: bool = False
    log_level: str = "INFO"

    @property
    def dispatch_enabled(self) -> bool:
        return bool(self.rpc_url and self.private_key and self.account_address)

    @property
    def uses_enclave(self) -> bool:
        return self.enclave_cid is not None

    @classmethod
    def from_env(cls, **overrides: Any) -> "ProverConfig":
        """
        Load configuration. Overrides that are None fall back to the environment.
        """
        if load_dotenv(find_dotenv(usecwd=True)):
            logger.debug("Loaded environment variables from .env")

        def pick(name: str, env: str) -> Optional[str]:
            value = overrides.get(name)
            return value if value is not None else os.getenv(env)

        cid = pick("enclave_cid", "ENCLAVE_CID")
        port = pick("enclave_port", "ENCLAVE_PORT")

        try:
            enclave_cid = int(cid) if cid not in (None, "") else None
            enclave_port = int(port) if port not in (None, "") else PROVER_RPC_PORT
        except ValueError as e:
            raise ValueError(f"Invalid enclave CID/port: {e}") from e

        return cls(
            rpc_url=pick("rpc_url", "RPC_URL") or None,
            private_key=pick("private_key", "PRIVATE_KEY") or None,
            account_address=pick("account_address", "ACCOUNT_ADDRESS") or None,
            enclave_cid=enclave_cid,
            enclave_port=enclave_port,
            expected_image_id=pick("expected_image_id", "EXPECTED_IMAGE_ID") or None,
            expected_pcr0=pick("expected_pcr0", "EXPECTED_PCR0") or None,
            allow_mock_attestation=_truthy(pick("allow_mock_attestation", "ALLOW_MOCK_ATTESTATION")),
            log_level=(pick("log_level", "LOG_LEVEL") or "INFO").upper(),
        )


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
