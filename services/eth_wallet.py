"""
Outbound ETH hot wallet
Signs and broadcasts plain value transfers that fund registrar top-ups
"""

import os
import logging
from decimal import Decimal
from typing import Optional

from web3 import AsyncWeb3

from payment_validation import validate_payment_address
from performance_monitor import OperationTimer
from utils.environment import get_eth_rpc_url, is_test_mode

logger = logging.getLogger(__name__)

PLAIN_TRANSFER_GAS = 21000
RECEIPT_TIMEOUT_SECONDS = 300

class WalletTransferError(Exception):
    """
    The outbound transfer failed

    This does not mean nothing was broadcast: the transaction may have
    reached the network before the failure was observed. In that case
    tx_hash carries the broadcast hash.
    """

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash

class ETHWalletService:
    """Hot wallet backed by EVM_HOT_WALLET_KEY"""

    def __init__(self, private_key: Optional[str] = None, rpc_url: Optional[str] = None):
        self.private_key = private_key if private_key is not None else os.getenv('EVM_HOT_WALLET_KEY', '')
        self.rpc_url = rpc_url or get_eth_rpc_url()
        self._w3: Optional[AsyncWeb3] = None
        self._account = None

    def _ensure_account(self):
        if self._account is None:
            if not self.private_key:
                raise WalletTransferError("EVM_HOT_WALLET_KEY not configured")
            self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.rpc_url))
            self._account = self._w3.eth.account.from_key(self.private_key)
            logger.info(f"🔑 ETH hot wallet loaded: {self._account.address}")
        return self._w3, self._account

    @property
    def address(self) -> str:
        _, account = self._ensure_account()
        return account.address

    async def send_eth(self, to_address: str, amount_eth: str) -> str:
        """
        Send ETH and wait for the receipt

        Args:
            to_address: Destination address
            amount_eth: Plain decimal string, e.g. '0.0101'

        Returns:
            str: 0x-prefixed transaction hash

        Raises:
            WalletTransferError: On any failure, including a reverted receipt
        """
        tx_hash_hex = None
        try:
            to_address = validate_payment_address(to_address)
            value_wei = AsyncWeb3.to_wei(Decimal(amount_eth), 'ether')
            if value_wei <= 0:
                raise ValueError(f"Transfer amount must be positive, got {amount_eth}")
            if is_test_mode():
                raise WalletTransferError("TEST_MODE is set - refusing to broadcast a live transfer")

            w3, account = self._ensure_account()
            logger.info(f"💸 Sending {amount_eth} ETH from {account.address} to {to_address}")

            with OperationTimer("eth_send_transfer"):
                nonce = await w3.eth.get_transaction_count(account.address, 'pending')
                chain_id = await w3.eth.chain_id
                gas_price = await w3.eth.gas_price

                transaction = {
                    'to': AsyncWeb3.to_checksum_address(to_address),
                    'value': value_wei,
                    'gas': PLAIN_TRANSFER_GAS,
                    'gasPrice': gas_price,
                    'nonce': nonce,
                    'chainId': chain_id,
                }
                signed = account.sign_transaction(transaction)
                tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
                tx_hash_hex = w3.to_hex(tx_hash)
                logger.info(f"📡 Transfer broadcast: {tx_hash_hex}")

                receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT_SECONDS)

            if receipt.get('status') != 1:
                raise WalletTransferError(f"Transfer {tx_hash_hex} reverted", tx_hash=tx_hash_hex)

            logger.info(f"✅ Transfer confirmed in block {receipt.get('blockNumber')}: {tx_hash_hex}")
            return tx_hash_hex

        except WalletTransferError:
            raise
        except Exception as e:
            if tx_hash_hex:
                logger.error(f"❌ Transfer {tx_hash_hex} was broadcast but not confirmed: {e}")
            raise WalletTransferError(f"ETH transfer to {to_address} failed: {e}", tx_hash=tx_hash_hex) from e

    async def get_balance(self) -> Decimal:
        """Hot wallet balance in ETH"""
        try:
            w3, account = self._ensure_account()
            balance_wei = await w3.eth.get_balance(account.address)
        except WalletTransferError:
            raise
        except Exception as e:
            raise WalletTransferError(f"Failed to read hot wallet balance: {e}") from e
        return Decimal(balance_wei) / Decimal(10 ** 18)

_eth_wallet_service = None

def get_eth_wallet_service() -> ETHWalletService:
    """Get or create the global hot wallet (the key is only read on first use)"""
    global _eth_wallet_service
    if _eth_wallet_service is None:
        _eth_wallet_service = ETHWalletService()
    return _eth_wallet_service
