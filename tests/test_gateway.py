"""Tests for the conditional single-item writer."""

import asyncio
from decimal import Decimal

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from aulasync.errors import InvalidRecordError, TableUnavailableError
from aulasync.gateway import ConditionalWriteGateway, WriteOutcome, to_dynamodb_item, validate_table_name


@pytest.fixture
def gateway(resource):
    return ConditionalWriteGateway(resource)


class TestWrite:
    def test_new_item_is_written(self, gateway, resource):
        outcome = asyncio.run(gateway.write("Posts", {"Id": 1, "Title": "Hello"}))
        assert outcome is WriteOutcome.WRITTEN
        assert resource.Table("Posts").items[1]["Title"] == "Hello"

    def test_existing_item_is_not_overwritten(self, gateway, resource):
        asyncio.run(gateway.write("Posts", {"Id": 1, "Title": "First"}))
        outcome = asyncio.run(gateway.write("Posts", {"Id": 1, "Title": "Second"}))
        assert outcome is WriteOutcome.ALREADY_EXISTS
        assert resource.Table("Posts").items[1]["Title"] == "First"

    def test_write_if_absent(self, gateway):
        assert asyncio.run(gateway.write_if_absent("Posts", {"Id": "m-1"})) is True
        assert asyncio.run(gateway.write_if_absent("Posts", {"Id": "m-1"})) is False

    def test_other_client_errors_are_raised(self, gateway, resource):
        resource.Table("Posts").fail_ids = {7}
        with pytest.raises(ClientError) as excinfo:
            asyncio.run(gateway.write("Posts", {"Id": 7}))
        assert excinfo.value.response["Error"]["Code"] == "ProvisionedThroughputExceededException"

    def test_missing_table_is_fatal(self, gateway, resource):
        table = resource.Table("Posts")
        table.fail_put = True
        table.error_code = "ResourceNotFoundException"
        with pytest.raises(TableUnavailableError):
            asyncio.run(gateway.write("Posts", {"Id": 1}))

    def test_unreachable_endpoint_is_fatal(self, gateway, resource):
        def unreachable(**kwargs):
            raise EndpointConnectionError(endpoint_url="https://dynamodb.invalid")

        resource.Table("Posts").put_item = unreachable
        with pytest.raises(TableUnavailableError):
            asyncio.run(gateway.write("Posts", {"Id": 1}))

    def test_record_without_id_is_rejected(self, gateway, resource):
        with pytest.raises(InvalidRecordError):
            asyncio.run(gateway.write("Posts", {"Title": "no id"}))
        assert resource.Table("Posts").put_calls == []

    def test_zero_is_a_valid_id(self, gateway):
        assert asyncio.run(gateway.write("Posts", {"Id": 0})) is WriteOutcome.WRITTEN

    def test_invalid_table_name_is_rejected_before_any_put(self, gateway, resource):
        with pytest.raises(TableUnavailableError):
            asyncio.run(gateway.write("no spaces allowed", {"Id": 1}))
        assert resource.tables == {}

    def test_put_goes_through_the_low_level_client(self, gateway, resource):
        calls = []
        client = resource.meta.client
        original = client.put_item

        def spy(**kwargs):
            calls.append(kwargs)
            return original(**kwargs)

        client.put_item = spy
        asyncio.run(gateway.write("Posts", {"Id": 1, "Score": 0.5}))

        assert calls == [{
            "TableName": "Posts",
            "Item": {"Id": 1, "Score": Decimal("0.5")},
            "ConditionExpression": "attribute_not_exists(Id)",
        }]

    def test_decimal_id_keeps_its_type(self, gateway, resource):
        asyncio.run(gateway.write("Posts", {"Id": Decimal(5)}))
        (stored,) = resource.Table("Posts").put_calls
        assert stored["Id"] == Decimal(5)
        assert isinstance(stored["Id"], Decimal)


class TestHelpers:
    @pytest.mark.parametrize("name", ["Posts", "RAW_thread.Messages-2"])
    def test_valid_table_names(self, name):
        validate_table_name(name)

    @pytest.mark.parametrize("name", ["", "ab", "bad name", "a" * 256, None])
    def test_invalid_table_names(self, name):
        with pytest.raises(TableUnavailableError):
            validate_table_name(name)

    def test_floats_become_decimals(self):
        item = to_dynamodb_item({"Id": 1, "Score": 1.5, "Nested": {"Values": [0.25]}})
        assert item["Score"] == Decimal("1.5")
        assert item["Nested"]["Values"] == [Decimal("0.25")]
        assert item["Id"] == 1

    def test_non_float_values_pass_through_unchanged(self):
        record = {
            "Id": Decimal(5),
            "Score": Decimal("1.5"),
            "Tags": {"a", "b"},
            "Blob": b"\x00\x01",
            "Flags": [True, None, "x"],
        }
        item = to_dynamodb_item(record)
        assert item == record
        assert isinstance(item["Id"], Decimal)
        assert isinstance(item["Tags"], set)
        assert isinstance(item["Blob"], bytes)
