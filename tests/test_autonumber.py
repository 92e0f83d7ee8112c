"""Tests for the AutoNumber column tools."""

import pytest
from pydantic import ValidationError

from dataverse_mcp.errors import DataverseApiError, DataverseError, ToolValidationError
from dataverse_mcp.tools.autonumber import (
    FORMAT_HELP,
    AutoNumberColumnParams,
    ConvertToAutoNumberParams,
    CreateAutoNumberParams,
    ListAutoNumberParams,
    SeedParams,
    UpdateAutoNumberParams,
    convert_to_autonumber,
    create_autonumber_column,
    get_autonumber_column,
    list_autonumber_columns,
    set_autonumber_seed,
    update_autonumber_format,
    validate_autonumber_format,
)

from tests.conftest import run


class TestFormatValidation:
    """AutoNumberFormat placeholder rules."""

    @pytest.mark.parametrize("value", [
        "INV-{SEQNUM:5}",
        "{SEQNUM:4}-{RANDSTRING:6}",
        "CASE-{DATETIMEUTC:yyyyMMdd}-{SEQNUM:3}-{RANDSTRING:1}",
    ])
    def test_valid(self, value):
        assert validate_autonumber_format(value) == value

    @pytest.mark.parametrize("value", [
        "INV-0001",
        "{RANDSTRING:7}",
        "{RANDSTRING:0}",
        "{SEQNUM:0}",
        "{SEQNUM}",
        "{GUID}",
        "INV-{SEQNUM:4",
        "INV-SEQNUM:4}",
    ])
    def test_invalid(self, value):
        with pytest.raises(ValueError) as exc:
            validate_autonumber_format(value)
        assert str(exc.value) == FORMAT_HELP

    def test_params_reject_bad_format(self):
        with pytest.raises(ValidationError, match="Invalid AutoNumber format"):
            CreateAutoNumberParams(entity_logical_name="t", display_name="x", auto_number_format="nope")


class TestCreateAutoNumber:
    """create_autonumber_column."""

    def test_payload(self, mock_service):
        params = CreateAutoNumberParams(
            entity_logical_name="test_order", display_name="Order Number",
            auto_number_format="ORD-{SEQNUM:5}", is_valid_for_advanced_find=True,
        )

        text = run(create_autonumber_column(mock_service, params))

        endpoint, column = mock_service.post_metadata.await_args.args
        assert endpoint == "EntityDefinitions(LogicalName='test_order')/Attributes"
        assert column["SchemaName"] == "test_OrderNumber"
        assert column["AutoNumberFormat"] == "ORD-{SEQNUM:5}"
        assert column["FormatName"] == {"Value": "Text"}
        assert column["IsValidForAdvancedFind"] == {"Value": True}
        assert column["MaxLength"] == 100
        assert "AutoNumber Format: ORD-{SEQNUM:5}" in text

    def test_invalid_argument_adds_tip(self, mock_service):
        mock_service.post_metadata.side_effect = DataverseApiError("Invalid Argument", code="0x80040203")
        params = CreateAutoNumberParams(entity_logical_name="t", display_name="x", auto_number_format="{SEQNUM:3}")

        with pytest.raises(DataverseError, match="Tip: Check AutoNumber format syntax"):
            run(create_autonumber_column(mock_service, params))


class TestChangeAutoNumber:
    """Format updates, seeds and conversion."""

    def test_update_puts_merged_attribute(self, mock_service):
        mock_service.get_metadata.return_value = {
            "LogicalName": "test_ordernumber", "AutoNumberFormat": "ORD-{SEQNUM:5}", "MaxLength": 100,
        }
        params = UpdateAutoNumberParams(
            entity_logical_name="test_order", column_logical_name="test_ordernumber",
            auto_number_format="ORD-{SEQNUM:6}", max_length=200,
        )

        text = run(update_autonumber_format(mock_service, params))

        endpoint, attribute = mock_service.put_metadata.await_args.args
        assert endpoint == "EntityDefinitions(LogicalName='test_order')/Attributes(LogicalName='test_ordernumber')"
        assert attribute["AutoNumberFormat"] == "ORD-{SEQNUM:6}"
        assert attribute["MaxLength"] == 200
        assert attribute["@odata.type"] == "Microsoft.Dynamics.CRM.StringAttributeMetadata"
        assert "DisplayName" not in attribute
        assert mock_service.put_metadata.await_args.kwargs["headers"] == {"MSCRM.MergeLabels": "true"}
        assert "New Max Length: 200" in text

    def test_seed(self, mock_service):
        params = SeedParams(entity_logical_name="test_order", column_logical_name="test_ordernumber", seed_value=10000)

        run(set_autonumber_seed(mock_service, params))

        mock_service.call_action.assert_awaited_once_with("SetAutoNumberSeed", {
            "EntityName": "test_order", "AttributeName": "test_ordernumber", "Value": 10000,
        })

    def test_seed_must_be_positive(self):
        with pytest.raises(ValidationError):
            SeedParams(entity_logical_name="t", column_logical_name="c", seed_value=0)

    @pytest.mark.parametrize("current,message", [
        ({"AttributeType": "Integer"}, "Only String type columns"),
        ({"AttributeType": "String", "Format": "Email"}, "Only Text format columns"),
        ({"AttributeType": "String", "Format": "Text", "AutoNumberFormat": "{SEQNUM:3}"}, "already an AutoNumber"),
    ])
    def test_convert_rejects(self, mock_service, current, message):
        mock_service.get_metadata.return_value = current
        params = ConvertToAutoNumberParams(entity_logical_name="t", column_logical_name="c",
                                           auto_number_format="{SEQNUM:3}")

        with pytest.raises(ToolValidationError, match=message):
            run(convert_to_autonumber(mock_service, params))
        mock_service.put_metadata.assert_not_awaited()

    def test_convert(self, mock_service):
        mock_service.get_metadata.return_value = {"AttributeType": "String", "Format": "Text"}
        params = ConvertToAutoNumberParams(entity_logical_name="t", column_logical_name="c",
                                           auto_number_format="{SEQNUM:3}")

        text = run(convert_to_autonumber(mock_service, params))

        assert mock_service.put_metadata.await_args.args[1]["AutoNumberFormat"] == "{SEQNUM:3}"
        assert "Previous Format: Text" in text
        assert "Existing data in the column will remain unchanged" in text


class TestReadAutoNumber:
    """get and list."""

    def test_get_rejects_plain_column(self, mock_service):
        mock_service.get_metadata.return_value = {"AttributeType": "String"}

        with pytest.raises(DataverseError, match="is not an AutoNumber column"):
            run(get_autonumber_column(mock_service, AutoNumberColumnParams(
                entity_logical_name="t", column_logical_name="c")))

    def test_list_across_tables(self, mock_service):
        mock_service.get_metadata.return_value = {"value": [
            {"LogicalName": "test_order", "Attributes": [
                {"LogicalName": "test_no", "AttributeType": "String", "AutoNumberFormat": "{SEQNUM:3}",
                 "IsCustomAttribute": True, "IsManaged": False, "EntityLogicalName": "test_order"},
                {"LogicalName": "test_name", "AttributeType": "String", "IsCustomAttribute": True},
            ]},
            {"LogicalName": "account", "Attributes": [
                {"LogicalName": "accountnumber", "AttributeType": "String", "AutoNumberFormat": "{SEQNUM:3}",
                 "IsCustomAttribute": False},
            ]},
        ]}

        text = run(list_autonumber_columns(mock_service, ListAutoNumberParams()))

        endpoint, query = mock_service.get_metadata.await_args.args
        assert endpoint == "EntityDefinitions"
        assert query["$expand"].startswith("Attributes($select=")
        assert text.startswith("Found 1 AutoNumber column(s):")
        assert "test_no" in text
        assert "accountnumber" not in text

    def test_list_one_table_including_system(self, mock_service):
        mock_service.get_metadata.return_value = {"value": [
            {"LogicalName": "accountnumber", "AttributeType": "String", "AutoNumberFormat": "{SEQNUM:3}",
             "IsCustomAttribute": False, "IsManaged": {"Value": True}},
        ]}

        text = run(list_autonumber_columns(mock_service, ListAutoNumberParams(
            entity_logical_name="account", custom_only=False, include_managed=True)))

        assert text.startswith("Found 1 AutoNumber column(s) in table 'account':")
