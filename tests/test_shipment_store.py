"""
Tests for the shipment repository.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import make_shipment, raw_quote
from parcelhub.models.carrier import CarrierCode
from parcelhub.models.shipment import ShipmentStatus
from parcelhub.services.margin import MarginEngine
from parcelhub.services.rate_normalizer import RateNormalizer
from parcelhub.services.shipment_store import ShipmentStore


class TestShipmentStore:
    """Test reads and result write-back."""

    @pytest.mark.asyncio
    async def test_get_shipment(self, mock_db):
        """Single shipment lookup."""
        shipment = make_shipment(5)
        mock_result = MagicMock()
        mock_result.scalar_one_or_none.return_value = shipment
        mock_db.execute.return_value = mock_result

        assert await ShipmentStore(mock_db).get_shipment(5) is shipment

    @pytest.mark.asyncio
    async def test_get_shipments(self, mock_db):
        """Batch lookup returns a list."""
        shipments = [make_shipment(1), make_shipment(2)]
        mock_result = MagicMock()
        mock_result.scalars.return_value.all.return_value = shipments
        mock_db.execute.return_value = mock_result

        assert await ShipmentStore(mock_db).get_shipments([1, 2]) == shipments

    @pytest.mark.asyncio
    async def test_get_shipments_empty(self, mock_db):
        """No ids, no query."""
        assert await ShipmentStore(mock_db).get_shipments([]) == []
        mock_db.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_commits(self, mock_db):
        """Result fields are written and committed."""
        await ShipmentStore(mock_db).update_shipment(1, {"status": ShipmentStatus.LABEL_FAILED, "label_error": "x"})

        mock_db.execute.assert_awaited_once()
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_rejects_non_result_fields(self, mock_db):
        """Receiver/package columns are never written from here."""
        with pytest.raises(ValueError):
            await ShipmentStore(mock_db).update_shipment(1, {"receiver_country": "US"})
        mock_db.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_empty_noop(self, mock_db):
        """Empty updates do nothing."""
        await ShipmentStore(mock_db).update_shipment(1, {})
        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_bulk_update(self, mock_db):
        """Each shipment gets its own write."""
        await ShipmentStore(mock_db).bulk_update({
            1: {"status": ShipmentStatus.LABEL_PURCHASED},
            2: {"status": ShipmentStatus.LABEL_FAILED},
        })
        assert mock_db.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_save_pricing(self, mock_db):
        """Priced options are persisted with cost and multiplier."""
        raw = raw_quote(CarrierCode.SHIPENTEGRA, "shipentegra-eco", "ECO", 1000)
        rate = RateNormalizer().normalize(CarrierCode.SHIPENTEGRA, raw, "US")
        option = MarginEngine().price_option(rate, 1.25)
        store = ShipmentStore(mock_db)
        store.update_shipment = MagicMock(wraps=store.update_shipment)

        await store.save_pricing(3, option)

        shipment_id, fields = store.update_shipment.call_args.args
        assert shipment_id == 3
        assert fields == {
            "provider_service_code": "shipentegra-eco",
            "total_price": 1250,
            "original_total_price": 1000,
            "applied_multiplier": 1.25,
        }


class TestDbSession:
    """Test the standalone session context manager."""

    @pytest.mark.asyncio
    async def test_commits_on_success(self, mock_db):
        """Session is committed when the block exits cleanly."""
        from parcelhub.core import database

        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=mock_db)
        session_cm.__aexit__ = AsyncMock(return_value=False)

        with patch.object(database, "get_session_factory", return_value=MagicMock(return_value=session_cm)):
            async with database.get_db_session() as db:
                assert db is mock_db

        mock_db.commit.assert_awaited_once()
        mock_db.rollback.assert_not_called()

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, mock_db):
        """Errors roll back and propagate."""
        from parcelhub.core import database

        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=mock_db)
        session_cm.__aexit__ = AsyncMock(return_value=False)

        with patch.object(database, "get_session_factory", return_value=MagicMock(return_value=session_cm)):
            with pytest.raises(RuntimeError):
                async with database.get_db_session():
                    raise RuntimeError("boom")

        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_called()
