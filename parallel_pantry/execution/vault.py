from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, InvalidOperation

from eth_account import Account
from web3 import Web3

from parallel_pantry.domain import ConfigurationError, TransferError
from parallel_pantry.execution.nonce import LaneNonceManager

logger = logging.getLogger(__name__)

VAULT_ABI = [
    {"inputs": [{"name": "recipient", "type": "address"}, {"name": "amount", "type": "uint256"}],
     "name": "withdraw", "outputs": [],
     "stateMutability": "nonpayable", "type": "function"},
    {"inputs": [], "name": "getBalance",
     "outputs": [{"name": "", "type": "uint256"}],
     "stateMutability": "view", "type": "function"},
]

LANE_NONCE_MODES = ("sequential",)


def to_base_units(amount: str, decimals: int) -> int:
    """'50' with 6 decimals -> 50_000_000. Rejects sub-unit precision."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise TransferError(f"invalid amount {amount!r}") from None
    if not value.is_finite() or value <= 0:
        raise TransferError(f"invalid amount {amount!r}")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise TransferError(f"amount {amount} exceeds {decimals} decimals")
    return int(scaled)


def checksum_recipient(address: str) -> str:
    candidate = str(address).strip().lower()
    if not Web3.is_address(candidate):
        raise TransferError(f"invalid recipient address {address!r}")
    return Web3.to_checksum_address(candidate)


class VaultTransferExecutor:
    """Withdraws from the relief vault to a recipient, one transaction per lane.

    Only the ``sequential`` lane nonce mode is supported: every lane signs with
    the next nonce of the one payout account, and nonce assignment plus
    broadcast is serialized through ``LaneNonceManager``. Lanes therefore share
    an ordering. A transaction stuck at nonce k holds back every later lane of
    the round until it is mined or replaced. The lane id is not part of the
    signed transaction; it is logged together with the nonce and hash.
    Confirmation waits run concurrently, so a round takes about as long as its
    slowest receipt.
    """

    def __init__(
        self,
        *,
        rpc_urls: tuple[str, ...],
        private_key: str,
        vault_address: str,
        chain_id: int,
        token_decimals: int = 6,
        gas_limit: int = 200_000,
        priority_fee_gwei: float = 1.0,
        receipt_timeout_sec: float = 60.0,
        nonce_mode: str = "sequential",
    ):
        self.rpc_urls = tuple(rpc_urls)
        self._private_key = private_key
        self.vault_address = vault_address
        self.chain_id = int(chain_id)
        self.token_decimals = int(token_decimals)
        self.gas_limit = int(gas_limit)
        self.priority_fee_gwei = float(priority_fee_gwei)
        self.receipt_timeout_sec = float(receipt_timeout_sec)
        self.nonce_mode = str(nonce_mode).strip().lower()
        self.w3 = None
        self._vault = None
        self._acct = None
        self._nonces: LaneNonceManager | None = None
        self._connect_lock = asyncio.Lock()

    def preflight(self) -> None:
        if not self._private_key:
            raise ConfigurationError("AI_AGENT_PRIVATE_KEY is not set; payout signer unavailable")
        if not self.rpc_urls:
            raise ConfigurationError("no RPC endpoints configured")
        if not Web3.is_address(str(self.vault_address).lower()):
            raise ConfigurationError(f"invalid vault address {self.vault_address!r}")
        if self.nonce_mode not in LANE_NONCE_MODES:
            raise ConfigurationError(
                f"LANE_NONCE_MODE={self.nonce_mode!r} unsupported; supported: {', '.join(LANE_NONCE_MODES)}"
            )

    def _connect_rpc(self):
        last_err = None
        for rpc in self.rpc_urls:
            try:
                w3 = Web3(Web3.HTTPProvider(rpc, request_kwargs={"timeout": 10}))
                w3.eth.block_number
                logger.info("connected rpc %s nonce_mode=%s", rpc, self.nonce_mode)
                return w3
            except Exception as exc:
                logger.warning("rpc %s unavailable: %s", rpc, exc)
                last_err = exc
        raise TransferError(f"no working RPC endpoint (last error: {last_err})")

    async def _ensure_connected(self, loop) -> None:
        async with self._connect_lock:
            if self.w3 is not None:
                return
            self.preflight()
            w3 = await loop.run_in_executor(None, self._connect_rpc)
            self._acct = Account.from_key(self._private_key)
            self._vault = w3.eth.contract(
                address=Web3.to_checksum_address(str(self.vault_address).lower()), abi=VAULT_ABI
            )
            self._nonces = LaneNonceManager(w3, self._acct.address)
            self.w3 = w3

    async def _fees(self, loop) -> dict[str, int]:
        latest = await loop.run_in_executor(None, lambda: self.w3.eth.get_block("latest"))
        pri_fee = self.w3.to_wei(self.priority_fee_gwei, "gwei")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is None:
            gas_price = await loop.run_in_executor(None, lambda: self.w3.eth.gas_price)
            return {"gasPrice": int(gas_price)}
        return {"maxFeePerGas": int(base_fee) * 2 + pri_fee, "maxPriorityFeePerGas": pri_fee}

    async def _broadcast(self, recipient: str, raw_amount: int, lane: int, loop) -> bytes:
        assert self._nonces is not None
        async with self._nonces.lock:
            nonce = await self._nonces.nonce_for_lane(lane, loop)
            sent = False
            try:
                fees = await self._fees(loop)
                tx = self._vault.functions.withdraw(recipient, raw_amount).build_transaction({
                    "from": self._acct.address,
                    "nonce": nonce,
                    "gas": self.gas_limit,
                    "chainId": self.chain_id,
                    **fees,
                })
                signed = self._acct.sign_transaction(tx)
                tx_hash = await loop.run_in_executor(
                    None, lambda: self.w3.eth.send_raw_transaction(signed.raw_transaction)
                )
                sent = True
                logger.info("[lane %s] broadcast nonce=%s tx=%s", lane, nonce, Web3.to_hex(tx_hash))
                return tx_hash
            finally:
                await self._nonces.release_lane(lane, loop, broadcast=sent)

    async def execute(self, recipient_address: str, amount: str, lane: int, memo: str) -> str:
        loop = asyncio.get_running_loop()
        try:
            recipient = checksum_recipient(recipient_address)
            raw_amount = to_base_units(amount, self.token_decimals)
            await self._ensure_connected(loop)
            tx_hash = await self._broadcast(recipient, raw_amount, lane, loop)
            logger.info("[lane %s] sent %s to %s tx=%s memo=%r", lane, amount, recipient, Web3.to_hex(tx_hash), memo[:80])
            receipt = await loop.run_in_executor(
                None,
                lambda h=tx_hash: self.w3.eth.wait_for_transaction_receipt(h, timeout=self.receipt_timeout_sec),
            )
            if receipt.status != 1:
                raise TransferError(f"withdraw reverted tx={Web3.to_hex(tx_hash)}")
            return Web3.to_hex(tx_hash)
        except TransferError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise TransferError(str(exc) or exc.__class__.__name__) from exc
