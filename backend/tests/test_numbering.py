"""
Document numbering tests.
"""

import pytest

from stockflow.errors import ValidationError
from stockflow.services import catalog_service, settings_service
from stockflow.services.numbering_service import (
    DOCUMENT_INVOICE,
    DOCUMENT_PURCHASE_ORDER,
    format_document_number,
    next_document_number,
    peek_next_number,
)


class TestDocumentNumbers:

    def test_sequences_are_per_type(self, db_session):
        assert next_document_number(document_type=DOCUMENT_INVOICE) == "INV-000001"
        assert next_document_number(document_type=DOCUMENT_INVOICE) == "INV-000002"
        assert next_document_number(document_type=DOCUMENT_PURCHASE_ORDER) == "PO-000001"
        db_session.commit()

        assert peek_next_number(DOCUMENT_INVOICE) == 3

    def test_rollback_returns_the_number(self, db_session):
        next_document_number(document_type=DOCUMENT_INVOICE)
        db_session.commit()

        assert next_document_number(document_type=DOCUMENT_INVOICE) == "INV-000002"
        db_session.rollback()

        assert next_document_number(document_type=DOCUMENT_INVOICE) == "INV-000002"
        db_session.commit()

    def test_unknown_type(self, db_session):
        with pytest.raises(ValidationError):
            next_document_number(document_type="RECEIPT")

    def test_format_padding(self):
        assert format_document_number("PO", 42) == "PO-000042"
        assert format_document_number("INV", 1234567) == "INV-1234567"


class TestGeneratedSkus:

    def test_product_without_sku_gets_one(self, db_session):
        first = catalog_service.create_product(payload={"name": "Loose Bolt"})
        second = catalog_service.create_product(payload={"name": "Loose Nut"})

        assert first.sku == "SKU-000001"
        assert second.sku == "SKU-000002"

    def test_prefix_follows_setting(self, db_session):
        settings_service.update_settings(values={settings_service.KEY_SKU_PREFIX: "HW"}, actor_user_id=None)

        product = catalog_service.create_product(payload={"name": "Hinge"})
        assert product.sku == "HW-000001"

    def test_given_sku_is_upper_cased(self, db_session):
        product = catalog_service.create_product(payload={"name": "Hinge", "sku": "hinge-01"})
        assert product.sku == "HINGE-01"
