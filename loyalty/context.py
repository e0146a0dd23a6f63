import logging

from solana.rpc.commitment import Commitment
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .config import Settings
from .errors import LedgerUnavailable
from .gateway import SolanaLedgerGateway

logger = logging.getLogger(__name__)


class LedgerContext:
    """Ledger client, owner credential and program id for one process.

    Built once at startup and read-only afterwards; ``close()`` releases the
    gateway at shutdown.
    """

    def __init__(self, gateway: SolanaLedgerGateway, signer: Keypair, program_id: Pubkey):
        self._gateway = gateway
        self._signer = signer
        self._program_id = program_id

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerContext":
        try:
            program_id = Pubkey.from_string(settings.CONTRACT_PUBKEY)
        except ValueError as exc:
            raise RuntimeError(f"CONTRACT_PUBKEY is not a valid pubkey: {exc}") from exc
        try:
            signer = Keypair.from_base58_string(settings.PRIVATE_KEY)
        except ValueError as exc:
            raise RuntimeError(f"PRIVATE_KEY is not a valid base58 secret key: {exc}") from exc

        gateway = SolanaLedgerGateway.from_url(
            settings.SOLANA_RPC_URL,
            commitment=Commitment(settings.LEDGER_COMMITMENT),
            timeout=settings.LEDGER_RPC_TIMEOUT,
        )
        logger.info("ledger_connection_init rpc=%s program=%s owner=%s", settings.SOLANA_RPC_URL, program_id, signer.pubkey())
        try:
            logger.info("ledger_version version=%s", gateway.get_version())
        except LedgerUnavailable as exc:
            logger.error("ledger_connection_check_failed rpc=%s error=%s", settings.SOLANA_RPC_URL, exc)
        return cls(gateway, signer, program_id)

    @property
    def gateway(self) -> SolanaLedgerGateway:
        return self._gateway

    @property
    def signer(self) -> Keypair:
        return self._signer

    @property
    def owner(self) -> Pubkey:
        return self._signer.pubkey()

    @property
    def program_id(self) -> Pubkey:
        return self._program_id

    def close(self) -> None:
        self._gateway.close()
        logger.info("ledger_context_closed program=%s", self._program_id)

    def __enter__(self) -> "LedgerContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
