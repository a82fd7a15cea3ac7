"""
Tests for the outbound hot wallet guards (no network access)
"""

import pytest
import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from services.eth_wallet import ETHWalletService, WalletTransferError, get_eth_wallet_service

from conftest import NJALLA_ADDRESS, TX_HASH

# Well-known throwaway development key, never funded on mainnet
DEV_PRIVATE_KEY = '0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318'

class TestETHWalletService:

    def test_key_is_not_required_until_first_use(self):
        wallet = ETHWalletService(private_key='', rpc_url='http://127.0.0.1:8545')

        with pytest.raises(WalletTransferError):
            _ = wallet.address

    def test_address_derived_from_key(self):
        wallet = ETHWalletService(private_key=DEV_PRIVATE_KEY, rpc_url='http://127.0.0.1:8545')

        assert wallet.address == '0x2c7536E3605D9C16a7a3D7b1898e529396a65c23'

    async def test_invalid_destination_raises(self):
        wallet = ETHWalletService(private_key=DEV_PRIVATE_KEY, rpc_url='http://127.0.0.1:8545')

        with pytest.raises(WalletTransferError):
            await wallet.send_eth('0x1234', '0.01')

    @pytest.mark.parametrize("amount", ['0', '-0.5', 'abc'])
    async def test_invalid_amount_raises(self, amount):
        wallet = ETHWalletService(private_key=DEV_PRIVATE_KEY, rpc_url='http://127.0.0.1:8545')

        with pytest.raises(WalletTransferError):
            await wallet.send_eth(NJALLA_ADDRESS, amount)

    async def test_test_mode_refuses_broadcast(self):
        wallet = ETHWalletService(private_key=DEV_PRIVATE_KEY, rpc_url='http://127.0.0.1:8545')

        with pytest.raises(WalletTransferError, match="TEST_MODE"):
            await wallet.send_eth(NJALLA_ADDRESS, '0.0101')

    async def test_balance_without_key_raises(self):
        wallet = ETHWalletService(private_key='', rpc_url='http://127.0.0.1:8545')

        with pytest.raises(WalletTransferError):
            await wallet.get_balance()

    def test_global_wallet_is_lazy(self, monkeypatch):
        monkeypatch.delenv('EVM_HOT_WALLET_KEY', raising=False)
        monkeypatch.setattr('services.eth_wallet._eth_wallet_service', None)

        wallet = get_eth_wallet_service()

        assert wallet is get_eth_wallet_service()
        assert wallet.private_key == ''

    async def test_receipt_timeout_keeps_broadcast_hash(self, monkeypatch):
        monkeypatch.setattr('services.eth_wallet.is_test_mode', lambda: False)
        wallet = ETHWalletService(private_key=DEV_PRIVATE_KEY, rpc_url='http://127.0.0.1:8545')
        wallet._ensure_account()

        w3 = MagicMock()
        w3.eth.get_transaction_count = AsyncMock(return_value=7)
        w3.eth.chain_id = asyncio.sleep(0, result=1)
        w3.eth.gas_price = asyncio.sleep(0, result=20_000_000_000)
        w3.eth.send_raw_transaction = AsyncMock(return_value=bytes.fromhex(TX_HASH[2:]))
        w3.eth.wait_for_transaction_receipt = AsyncMock(side_effect=asyncio.TimeoutError("not mined"))
        w3.to_hex = lambda value: '0x' + value.hex()
        wallet._w3 = w3

        with pytest.raises(WalletTransferError) as exc_info:
            await wallet.send_eth(NJALLA_ADDRESS, '0.0101')

        assert exc_info.value.tx_hash == TX_HASH
        w3.eth.send_raw_transaction.assert_awaited_once()

    async def test_failure_before_broadcast_has_no_hash(self):
        wallet = ETHWalletService(private_key=DEV_PRIVATE_KEY, rpc_url='http://127.0.0.1:8545')

        with pytest.raises(WalletTransferError) as exc_info:
            await wallet.send_eth('0x1234', '0.01')

        assert exc_info.value.tx_hash is None
