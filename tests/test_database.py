"""
Tests for the order store patch helpers
Queries are mocked at the execute_* layer; no live database required
"""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import database
from database import DatabaseOperationError, _build_patch

class TestBuildPatch:

    def test_rejects_unknown_columns(self):
        with pytest.raises(ValueError):
            _build_patch(None, {'price_eur': Decimal('1.00')})

    def test_rejects_empty_patch(self):
        with pytest.raises(ValueError):
            _build_patch(None, {})

    def test_payment_status_is_appended(self):
        _, values = _build_patch('failed', {'order_status': 'failed'})

        assert values == ('failed', 'failed')

    def test_patch_sets_updated_at(self):
        assignments, values = _build_patch(None, {'njalla_task_id': 'task_1'})

        assert values == ('task_1',)
        assert 'updated_at = CURRENT_TIMESTAMP' in repr(assignments)

class TestUpdateDomainOrderStatus:

    async def test_sparse_update(self):
        with patch('database.execute_update', new=AsyncMock(return_value=1)) as mock_update:
            await database.update_domain_order_status('ord_1', None, {'order_status': 'processing'})

        query, params = mock_update.await_args.args
        assert params == ('processing', 'ord_1')

    async def test_missing_order_raises(self):
        with patch('database.execute_update', new=AsyncMock(return_value=0)):
            with pytest.raises(DatabaseOperationError):
                await database.update_domain_order_status('ord_missing', None, {'order_status': 'error'})

    async def test_write_failure_propagates(self):
        failing = AsyncMock(side_effect=DatabaseOperationError("Update failed: server closed the connection"))
        with patch('database.execute_update', new=failing):
            with pytest.raises(DatabaseOperationError):
                await database.update_domain_order_status('ord_1', None, {'order_status': 'error'})

class TestClaimNjallaPayment:

    async def test_claim_is_conditional(self):
        with patch('database.execute_update', new=AsyncMock(return_value=1)) as mock_update:
            claimed = await database.claim_njalla_payment('ord_1', 'pay_1', '0x' + 'a1' * 20, Decimal('0.0101'))

        query, params = mock_update.await_args.args
        assert claimed is True
        assert 'njalla_payment_id IS NULL' in repr(query)
        assert params[0] == 'pay_1'
        assert params[-1] == 'ord_1'

    async def test_claim_lost_returns_false(self):
        with patch('database.execute_update', new=AsyncMock(return_value=0)):
            assert await database.claim_njalla_payment('ord_1', 'pay_2', '0x' + 'b2' * 20, Decimal('0.01')) is False

class TestReads:

    async def test_get_domain_order_returns_none_when_missing(self):
        with patch('database.execute_query', new=AsyncMock(return_value=[])):
            assert await database.get_domain_order('ord_missing') is None

    async def test_get_domain_order_returns_row(self):
        row = {'order_id': 'ord_1', 'payment_status': 'paid'}
        with patch('database.execute_query', new=AsyncMock(return_value=[row])):
            assert await database.get_domain_order('ord_1') == row

    def test_pool_requires_database_url(self, monkeypatch):
        monkeypatch.delenv('DATABASE_URL', raising=False)
        monkeypatch.setattr(database, '_connection_pool', None)

        with pytest.raises(DatabaseOperationError):
            database.get_connection_pool()
