import pytest

from stockledger.errors import NotFoundError, ValidationError
from stockledger.services import alert_service, inventory_service, ledger_service


@pytest.fixture
def shelf(db_session, store_a, store_b, product, product_b, user):
    """
    One record per alert band:
    store A / product    0 of min 5   critical
    store A / product_b  4 of min 10  warning
    store B / product    7 of min 5   low
    store B / product_b 20 of min 10  fine
    """
    layout = [
        (store_a, product, 0, 5),
        (store_a, product_b, 4, 10),
        (store_b, product, 7, 5),
        (store_b, product_b, 20, 10),
    ]
    records = {}
    for store, item, quantity, minimum in layout:
        records[(store.code, item.sku)] = inventory_service.create_initial_stock(
            payload={
                "store_id": store.id,
                "product_id": item.id,
                "quantity": quantity,
                "minimum_stock": minimum,
            },
            user_id=user.id,
        )
    return records


class TestAlertLevel:

    @pytest.mark.parametrize("quantity,minimum,expected", [
        (0, 5, "critical"),
        (5, 5, "warning"),
        (7, 5, "low"),
        (8, 5, None),
        (0, 0, None),
    ])
    def test_bands(self, app, quantity, minimum, expected):
        assert alert_service.alert_level_for(quantity, minimum) == expected


class TestAlertFeed:

    def test_default_feed_is_critical_then_warning(self, shelf):
        result = alert_service.list_alerts()

        assert [row["alert_level"] for row in result["items"]] == ["critical", "warning"]
        assert result["items"][0]["shortage"] == 5
        assert result["items"][0]["estimated_value"] == "50.00"
        assert result["items"][1]["alert_label"] == "Below Minimum"

    def test_low_band_only_on_request(self, shelf, store_b):
        result = alert_service.list_alerts(alert_level="low")

        assert len(result["items"]) == 1
        assert result["items"][0]["store_id"] == store_b.id

    def test_store_and_search_filters(self, shelf, store_a):
        assert alert_service.list_alerts(store_id=store_a.id)["pagination"]["total"] == 2
        assert alert_service.list_alerts(search="green")["pagination"]["total"] == 1

    def test_unknown_level(self, db_session):
        with pytest.raises(ValidationError):
            alert_service.list_alerts(alert_level="urgent")

    def test_stats_and_counts(self, shelf):
        stats = alert_service.alert_stats()

        assert stats == {
            "total_alerts": 2,
            "critical_alerts": 1,
            "warning_alerts": 1,
            "stores_affected": 1,
            "total_inventory": 4,
        }
        assert alert_service.alert_counts() == {"total": 2, "critical": 1, "warning": 1}


class TestAlertExport:

    def test_csv_has_bom_header_and_rows(self, shelf):
        filename, body = alert_service.export_alerts_csv()

        assert filename.startswith("minimum_stock_alerts_")
        assert filename.endswith(".csv")
        lines = body.splitlines()
        assert lines[0].startswith("\ufeffStore,Product Name,SKU")
        assert len(lines) == 3
        assert "Out of Stock" in lines[1]

    def test_empty_feed_still_has_header(self, db_session):
        _, body = alert_service.export_alerts_csv()
        assert body.splitlines() == ["\ufeff" + ",".join(alert_service.EXPORT_COLUMNS)]


class TestMinimumStockMaintenance:

    def test_single_update(self, shelf, store_b, product):
        record = shelf[("BR01", "BEV-001")]

        alert_service.update_minimum_stock(record_id=record.id, minimum_stock=10)

        assert ledger_service.get_record(store_b.id, product.id).minimum_stock == 10
        assert alert_service.alert_counts()["warning"] == 2

    def test_negative_minimum(self, shelf):
        record = shelf[("MAIN", "BEV-001")]
        with pytest.raises(ValidationError):
            alert_service.update_minimum_stock(record_id=record.id, minimum_stock=-1)

    def test_minimum_above_maximum(self, shelf, store_b, product):
        record = shelf[("BR01", "BEV-001")]
        inventory_service.update_settings(record_id=record.id, payload={"maximum_stock": 8})

        with pytest.raises(ValidationError):
            alert_service.update_minimum_stock(record_id=record.id, minimum_stock=9)

        assert ledger_service.get_record(store_b.id, product.id).minimum_stock == 5

    def test_bulk_minimum_above_maximum_rolls_back(self, shelf, store_a, store_b, product):
        capped = shelf[("BR01", "BEV-001")]
        inventory_service.update_settings(record_id=capped.id, payload={"maximum_stock": 8})

        with pytest.raises(ValidationError):
            alert_service.bulk_update_minimum_stock(updates=[
                {"inventory_id": shelf[("MAIN", "BEV-001")].id, "minimum_stock": 0},
                {"inventory_id": capped.id, "minimum_stock": 20},
            ])

        assert ledger_service.get_record(store_a.id, product.id).minimum_stock == 5
        assert ledger_service.get_record(store_b.id, product.id).minimum_stock == 5

    def test_bulk_update_is_all_or_nothing(self, shelf, store_a, product):
        record = shelf[("MAIN", "BEV-001")]

        with pytest.raises(NotFoundError):
            alert_service.bulk_update_minimum_stock(updates=[
                {"inventory_id": record.id, "minimum_stock": 0},
                {"inventory_id": 99999, "minimum_stock": 3},
            ])

        assert ledger_service.get_record(store_a.id, product.id).minimum_stock == 5

    def test_bulk_update(self, shelf):
        ids = [shelf[("MAIN", "BEV-001")].id, shelf[("MAIN", "BEV-002")].id]

        changed = alert_service.bulk_update_minimum_stock(
            updates=[{"inventory_id": record_id, "minimum_stock": 0} for record_id in ids]
        )

        assert len(changed) == 2
        assert alert_service.alert_counts()["total"] == 0
