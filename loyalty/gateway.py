import json
import logging
from typing import Callable, Optional, Sequence, TypeVar, Union

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.core import RPCException, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.rpc.errors import SendTransactionPreflightFailureMessage
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solders.transaction_status import TransactionErrorFieldless

from .addresses import to_pubkey
from .errors import InvalidArgument, LedgerUnavailable, RejectedByProgram
from .models import LatestBlock, LatestBlockhash, LedgerTransactionRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSPORT_ERRORS = (SolanaRpcException, httpx.HTTPError, OSError)


def _rpc_error_reason(exc: RPCException) -> str:
    err = exc.args[0] if exc.args else exc
    message = getattr(err, "message", None)
    data = getattr(err, "data", None)
    logs = getattr(data, "logs", None)
    if message and logs:
        return f"{message} | logs: {' ; '.join(logs)}"
    return message or str(err)


def _is_program_rejection(exc: RPCException) -> bool:
    """True when the node simulated the transaction and it failed.

    A missing blockhash also fails simulation but only means the node is
    behind or the blockhash expired, so it counts as an outage.
    """
    err = exc.args[0] if exc.args else None
    if not isinstance(err, SendTransactionPreflightFailureMessage):
        return False
    sim_err = err.data.err
    return not (
        isinstance(sim_err, TransactionErrorFieldless) and sim_err == TransactionErrorFieldless.BlockhashNotFound
    )


def parse_signature(ref: str) -> Signature:
    if not ref:
        raise InvalidArgument("Transaction reference is required")
    try:
        return Signature.from_string(ref)
    except ValueError as exc:
        raise InvalidArgument(f"Malformed transaction reference: {ref}") from exc


class SolanaLedgerGateway:
    """Read/write access to the ledger through a JSON-RPC client.

    Absent accounts and transactions come back as ``None``. Transport
    failures raise ``LedgerUnavailable``; refusals of a submitted
    transaction raise ``RejectedByProgram``. Nothing is retried here.
    """

    def __init__(self, client: Client, commitment: Commitment = Confirmed):
        self.client = client
        self.commitment = commitment
        self._closed = False

    @classmethod
    def from_url(cls, rpc_url: str, commitment: Commitment = Confirmed, timeout: float = 30) -> "SolanaLedgerGateway":
        return cls(Client(rpc_url, commitment=commitment, timeout=timeout), commitment=commitment)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # solana-py keeps its httpx session on the provider
        provider = getattr(self.client, "_provider", None)
        session = getattr(provider, "session", None)
        if session is not None:
            session.close()

    def _call(self, method: str, fn: Callable[[], T]) -> T:
        if self._closed:
            raise LedgerUnavailable("Ledger gateway is closed")
        try:
            return fn()
        except RPCException as exc:
            logger.warning("ledger_rpc_error method=%s error=%s", method, exc)
            raise LedgerUnavailable(f"{method} failed: {_rpc_error_reason(exc)}") from exc
        except TRANSPORT_ERRORS as exc:
            logger.warning("ledger_unavailable method=%s error=%s", method, exc)
            raise LedgerUnavailable(f"{method} failed: {exc}") from exc

    def get_version(self) -> str:
        resp = self._call("getVersion", lambda: self.client.get_version())
        return resp.value.solana_core

    def get_latest_blockhash(self) -> LatestBlockhash:
        resp = self._call("getLatestBlockhash", lambda: self.client.get_latest_blockhash(self.commitment))
        return LatestBlockhash(
            blockhash=str(resp.value.blockhash),
            last_valid_block_height=resp.value.last_valid_block_height,
        )

    def get_latest_block(self) -> LatestBlock:
        slot = self._call("getSlot", lambda: self.client.get_slot(self.commitment)).value
        resp = self._call(
            "getBlock",
            lambda: self.client.get_block(slot, max_supported_transaction_version=0),
        )
        block = resp.value
        if block is None:
            raise LedgerUnavailable("Failed to retrieve block information")
        return LatestBlock(
            blockhash=str(block.blockhash),
            block_time=block.block_time,
            parent_slot=block.parent_slot,
            previous_blockhash=str(block.previous_blockhash),
            transactions=[json.loads(tx.to_json()) for tx in (block.transactions or [])],
            slot=slot,
        )

    def get_transaction(self, ref: str) -> Optional[LedgerTransactionRecord]:
        signature = parse_signature(ref)
        resp = self._call(
            "getTransaction",
            lambda: self.client.get_transaction(
                signature, commitment=self.commitment, max_supported_transaction_version=0
            ),
        )
        if resp.value is None:
            return None
        return LedgerTransactionRecord(signature=ref, slot=resp.value.slot, block_time=resp.value.block_time)

    def get_account_state(self, address: Union[str, Pubkey]) -> Optional[bytes]:
        pubkey = to_pubkey(address)
        resp = self._call("getAccountInfo", lambda: self.client.get_account_info(pubkey, commitment=self.commitment))
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    def get_token_balance(self, address: Union[str, Pubkey]) -> Optional[int]:
        pubkey = to_pubkey(address)
        if self.get_account_state(pubkey) is None:
            return None
        resp = self._call(
            "getTokenAccountBalance",
            lambda: self.client.get_token_account_balance(pubkey, commitment=self.commitment),
        )
        return int(resp.value.amount)

    def submit(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        """Compile, sign and send ``instructions``; block until confirmed.

        The first signer pays the fee.
        """
        if not instructions or not signers:
            raise InvalidArgument("At least one instruction and one signer are required")
        latest = self.get_latest_blockhash()
        message = MessageV0.try_compile(
            signers[0].pubkey(), list(instructions), [], Hash.from_string(latest.blockhash)
        )
        tx = VersionedTransaction(message, list(signers))
        return self._send_and_confirm(bytes(tx), latest.last_valid_block_height)

    def send_raw_and_confirm(self, raw: bytes) -> str:
        return self._send_and_confirm(raw, None)

    def _send_and_confirm(self, raw: bytes, last_valid_block_height: Optional[int]) -> str:
        if self._closed:
            raise LedgerUnavailable("Ledger gateway is closed")
        opts = TxOpts(skip_confirmation=True, skip_preflight=False, preflight_commitment=self.commitment)
        try:
            signature = self.client.send_raw_transaction(raw, opts=opts).value
        except RPCException as exc:
            reason = _rpc_error_reason(exc)
            if not _is_program_rejection(exc):
                logger.warning("ledger_unavailable method=sendTransaction error=%s", reason)
                raise LedgerUnavailable(f"sendTransaction failed: {reason}") from exc
            logger.warning("ledger_tx_rejected stage=send reason=%s", reason)
            raise RejectedByProgram(reason) from exc
        except TRANSPORT_ERRORS as exc:
            logger.warning("ledger_unavailable method=sendTransaction error=%s", exc)
            raise LedgerUnavailable(f"sendTransaction failed: {exc}") from exc

        try:
            resp = self.client.confirm_transaction(
                signature, commitment=self.commitment, last_valid_block_height=last_valid_block_height
            )
        except UnconfirmedTxError as exc:
            logger.warning("ledger_tx_unconfirmed signature=%s error=%s", signature, exc)
            raise LedgerUnavailable(f"Transaction {signature} was not confirmed: {exc}") from exc
        except RPCException as exc:
            raise LedgerUnavailable(f"confirmTransaction failed: {_rpc_error_reason(exc)}") from exc
        except TRANSPORT_ERRORS as exc:
            raise LedgerUnavailable(f"confirmTransaction failed: {exc}") from exc

        status = resp.value[0] if resp.value else None
        if status is not None and status.err is not None:
            logger.warning("ledger_tx_rejected stage=confirm signature=%s err=%s", signature, status.err)
            raise RejectedByProgram(str(status.err), signature=str(signature))
        logger.info("ledger_tx_confirmed signature=%s", signature)
        return str(signature)
