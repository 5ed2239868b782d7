"""Unit tests for Route53ZoneService (boto3 client mocked)."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from route53_update.cli import (
    ChangeInfo,
    ChangeStatus,
    ChangeStatusError,
    ChangeSubmissionError,
    Delete,
    HostedZone,
    RecordReadError,
    RecordState,
    Route53ZoneService,
    Upsert,
    ZoneResolutionError,
)


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def make_client(pages_by_operation=None) -> MagicMock:
    """MagicMock boto3 client whose paginators yield the given pages."""
    pages_by_operation = pages_by_operation or {}
    client = MagicMock()

    def get_paginator(operation):
        paginator = MagicMock()
        paginator.paginate.return_value = iter(pages_by_operation.get(operation, []))
        return paginator

    client.get_paginator.side_effect = get_paginator
    return client


class TestListHostedZones:
    def test_parses_zones_across_pages(self) -> None:
        client = make_client(
            {
                "list_hosted_zones": [
                    {
                        "HostedZones": [
                            {
                                "Id": "/hostedzone/Z1",
                                "Name": "example.com.",
                                "Config": {"PrivateZone": False},
                            }
                        ]
                    },
                    {
                        "HostedZones": [
                            {
                                "Id": "/hostedzone/Z2",
                                "Name": "Internal.Example.com.",
                                "Config": {"PrivateZone": True},
                            }
                        ]
                    },
                ]
            }
        )
        service = Route53ZoneService(client)

        zones = service.list_hosted_zones()

        assert zones == [
            HostedZone("Z1", "example.com.", False),
            HostedZone("Z2", "internal.example.com.", True),
        ]

    def test_client_error_raises_zone_resolution_error(self) -> None:
        client = MagicMock()
        client.get_paginator.return_value.paginate.side_effect = client_error(
            "AccessDenied", "ListHostedZones"
        )
        service = Route53ZoneService(client)

        with pytest.raises(ZoneResolutionError, match="could not list hosted zones"):
            service.list_hosted_zones()


class TestGetRecordSets:
    def test_returns_only_records_at_name(self) -> None:
        cname = {
            "Name": "app.example.com.",
            "Type": "CNAME",
            "TTL": 60,
            "ResourceRecords": [{"Value": "lb.example.com."}],
        }
        client = make_client(
            {
                "list_resource_record_sets": [
                    {
                        "ResourceRecordSets": [
                            cname,
                            {
                                "Name": "app.example.com.",
                                "Type": "TXT",
                                "TTL": 300,
                                "ResourceRecords": [{"Value": '"owner=ops"'}],
                            },
                        ]
                    },
                    {
                        "ResourceRecordSets": [
                            {
                                "Name": "www.app.example.com.",
                                "Type": "A",
                                "TTL": 300,
                                "ResourceRecords": [{"Value": "1.2.3.4"}],
                            }
                        ]
                    },
                ]
            }
        )
        service = Route53ZoneService(client)

        records = service.get_record_sets("Z1", "App.Example.com")

        assert [(r.type, r.values, r.ttl) for r in records] == [
            ("CNAME", frozenset(["lb.example.com."]), 60),
            ("TXT", frozenset(['"owner=ops"']), 300),
        ]
        assert records[0].raw == cname
        client.get_paginator.assert_called_once_with("list_resource_record_sets")

    def test_alias_record_has_no_values_or_ttl(self) -> None:
        alias = {
            "Name": "app.example.com.",
            "Type": "A",
            "AliasTarget": {
                "HostedZoneId": "Z35SXDOTRQ7X7K",
                "DNSName": "lb-123.us-east-1.elb.amazonaws.com.",
                "EvaluateTargetHealth": False,
            },
        }
        client = make_client({"list_resource_record_sets": [{"ResourceRecordSets": [alias]}]})
        service = Route53ZoneService(client)

        records = service.get_record_sets("Z1", "app.example.com.")

        assert records == [RecordState("app.example.com.", "A", frozenset(), None)]

    def test_client_error_raises_record_read_error(self) -> None:
        client = MagicMock()
        client.get_paginator.return_value.paginate.side_effect = EndpointConnectionError(
            endpoint_url="https://route53.amazonaws.com"
        )
        service = Route53ZoneService(client)

        with pytest.raises(RecordReadError):
            service.get_record_sets("Z1", "app.example.com.")


class TestSubmitChangeBatch:
    def test_submits_changes_in_order_with_comment(self) -> None:
        client = MagicMock()
        client.change_resource_record_sets.return_value = {
            "ChangeInfo": {"Id": "/change/C1", "Status": "PENDING"}
        }
        service = Route53ZoneService(client)
        cname = RecordState(
            "app.example.com.",
            "CNAME",
            frozenset(["lb.example.com."]),
            60,
            raw={
                "Name": "app.example.com.",
                "Type": "CNAME",
                "TTL": 60,
                "ResourceRecords": [{"Value": "lb.example.com."}],
            },
        )
        upsert = Upsert("app.example.com.", "A", ("5.6.7.8",), 300)

        info = service.submit_change_batch("Z1", [Delete(cname), upsert], comment="ci")

        assert info == ChangeInfo("/change/C1", ChangeStatus.PENDING)
        client.change_resource_record_sets.assert_called_once_with(
            HostedZoneId="Z1",
            ChangeBatch={
                "Changes": [Delete(cname).to_change(), upsert.to_change()],
                "Comment": "ci",
            },
        )

    def test_omits_empty_comment(self) -> None:
        client = MagicMock()
        client.change_resource_record_sets.return_value = {
            "ChangeInfo": {"Id": "/change/C1", "Status": "INSYNC"}
        }
        service = Route53ZoneService(client)

        service.submit_change_batch("Z1", [Upsert("a.example.com.", "A", ("1.2.3.4",), 300)])

        change_batch = client.change_resource_record_sets.call_args.kwargs["ChangeBatch"]
        assert "Comment" not in change_batch

    def test_rejected_batch_raises_submission_error(self) -> None:
        client = MagicMock()
        client.change_resource_record_sets.side_effect = client_error(
            "InvalidChangeBatch", "ChangeResourceRecordSets"
        )
        service = Route53ZoneService(client)

        with pytest.raises(ChangeSubmissionError, match="InvalidChangeBatch"):
            service.submit_change_batch("Z1", [Upsert("a.example.com.", "A", ("1.2.3.4",), 300)])


class TestGetChange:
    def test_returns_status(self) -> None:
        client = MagicMock()
        client.get_change.return_value = {"ChangeInfo": {"Id": "/change/C1", "Status": "INSYNC"}}
        service = Route53ZoneService(client)

        assert service.get_change("/change/C1") == ChangeInfo("/change/C1", ChangeStatus.INSYNC)
        client.get_change.assert_called_once_with(Id="/change/C1")

    def test_error_raises_status_error(self) -> None:
        client = MagicMock()
        client.get_change.side_effect = client_error("Throttling", "GetChange")
        service = Route53ZoneService(client)

        with pytest.raises(ChangeStatusError):
            service.get_change("/change/C1")

    def test_unknown_status_raises_status_error(self) -> None:
        client = MagicMock()
        client.get_change.return_value = {"ChangeInfo": {"Id": "/change/C1", "Status": "BOGUS"}}
        service = Route53ZoneService(client)

        with pytest.raises(ChangeStatusError, match="malformed"):
            service.get_change("/change/C1")
