#!/usr/bin/env python3
"""route53-update - Point a Route 53 record at this host

Resolves a record value (explicit values, a URL, or EC2/ECS metadata), finds the
hosted zone that owns the record, compares the result with what Route 53
currently serves and submits a single change batch only when something differs.
Each invocation performs one reconciliation pass; run it from a container
entrypoint, an ECS task or an EC2 user-data script.

Example:
    route53-update --record-name app.example.com --value-from auto --wait

Command-line options:

    Hosted zone selection:
        --hosted-zone-id       Use this hosted zone (no lookup)
        --hosted-zone-name     Look the zone up by name instead of by record name
        --hosted-zone-type     prefer-public (default), public or private

    Record:
        --record-name          Record to update (required)
        --record-type          A, AAAA, CNAME, TXT, ... (detected from the value
                               when omitted, TXT is used as fallback)
        --ttl                  TTL (copied from the existing record when omitted,
                               300 is used as fallback)
        --comment              Change batch comment

    Value (exactly one):
        -v/--value             Record value, repeatable
        --value-from           auto, ec2-metadata or ecs-metadata
        --value-from-url       Use the response body of a URL
                               (e.g. https://checkip.amazonaws.com/)
        --ip-address-type      public (default) or private, for EC2 metadata

    Behaviour:
        --wait                 Wait until Route 53 reports the change INSYNC
        --clear                Delete conflicting A, AAAA or CNAME records
        --config               YAML file with defaults for the options above

Environment variables:

    Runtime:
        LOG_LEVEL                   DEBUG, INFO, WARNING, ERROR (default: INFO)
        ROUTE53_UPDATE_CONFIG       Config file path used when --config is omitted

    Timeouts:
        HTTP_TIMEOUT_SECONDS        Timeout for --value-from-url (default: 10)
        METADATA_TIMEOUT_SECONDS    Timeout for EC2/ECS metadata calls (default: 2)
        WAIT_POLL_INTERVAL_SECONDS  Delay between change status checks (default: 5)
        WAIT_TIMEOUT_SECONDS        Give up waiting for INSYNC after this long
                                    (default: 300)

    Metadata endpoints:
        ECS_CONTAINER_METADATA_URI_V4 / ECS_CONTAINER_METADATA_URI
                                    Set by the ECS agent inside tasks
        AWS_EC2_METADATA_SERVICE_ENDPOINT
                                    Override the instance metadata endpoint
                                    (default: http://169.254.169.254)

    AWS credentials and region are picked up by boto3 the usual way. Route 53 is
    a global service, so us-east-1 is used when no region is configured.

Exit status:
    0  record is up to date (changed or already correct)
    1  resolution, configuration, network or Route 53 error
    2  invalid command-line usage
    3  change submitted but it did not reach INSYNC before the wait timed out
"""

from __future__ import annotations

import argparse
import ipaddress
import logging
import math
import os
import re
import sys
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import boto3
import requests
import yaml
from botocore.exceptions import BotoCoreError, ClientError

# =============================================================================
# Configuration
# =============================================================================

# Runtime configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ROUTE53_UPDATE_CONFIG = os.getenv("ROUTE53_UPDATE_CONFIG", "")

# Timeouts
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
METADATA_TIMEOUT_SECONDS = float(os.getenv("METADATA_TIMEOUT_SECONDS", "2"))
WAIT_POLL_INTERVAL_SECONDS = float(os.getenv("WAIT_POLL_INTERVAL_SECONDS", "5"))
WAIT_TIMEOUT_SECONDS = float(os.getenv("WAIT_TIMEOUT_SECONDS", "300"))

# Metadata endpoints
EC2_METADATA_ENDPOINT = os.getenv(
    "AWS_EC2_METADATA_SERVICE_ENDPOINT", "http://169.254.169.254"
).rstrip("/")
EC2_METADATA_TOKEN_TTL_SECONDS = 21600

DEFAULT_TTL = 300
DEFAULT_REGION = "us-east-1"

# Record types that cannot share a name with each other
CONFLICTING_TYPES = ("A", "AAAA", "CNAME")

EXIT_ERROR = 1
EXIT_PROPAGATION_TIMEOUT = 3

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Errors
# =============================================================================


class Route53UpdateError(Exception):
    """Base class for every failure that ends an invocation."""


class ConfigError(Route53UpdateError):
    """Invalid or conflicting options."""


class ValueResolutionError(Route53UpdateError):
    """No value source produced a value."""


class ZoneResolutionError(Route53UpdateError):
    """Zero or more than one hosted zone matched."""


class RecordReadError(Route53UpdateError):
    """The current record sets could not be read."""


class ChangeSubmissionError(Route53UpdateError):
    """Route 53 rejected the change batch, or reported it as failed."""


class ChangeStatusError(Route53UpdateError):
    """A change status check failed. Retried while waiting."""


class PropagationTimeoutError(Route53UpdateError):
    """The change was accepted but did not reach INSYNC in time."""


# =============================================================================
# Enums
# =============================================================================


class HostedZoneType(Enum):
    """Which hosted zones may be selected.

    PREFER_PUBLIC: Search public zones first, then private zones.
    PUBLIC:        Only public zones.
    PRIVATE:       Only private (VPC) zones.
    """

    PREFER_PUBLIC = "prefer-public"
    PUBLIC = "public"
    PRIVATE = "private"


class IPAddressType(Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class ValueFrom(Enum):
    AUTO = "auto"
    EC2_METADATA = "ec2-metadata"
    ECS_METADATA = "ecs-metadata"


class ChangeStatus(Enum):
    PENDING = "PENDING"
    INSYNC = "INSYNC"
    FAILED = "FAILED"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class HostedZone:
    """A Route 53 hosted zone. ``name`` is empty when only the ID is known."""

    id: str
    name: str = ""
    private: Optional[bool] = None


@dataclass(frozen=True)
class RecordState:
    """A record set as it currently exists in the zone."""

    name: str
    type: str
    values: frozenset
    ttl: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_record_set(self) -> Dict[str, Any]:
        """Return the record set exactly as Route 53 reported it."""
        if self.raw:
            return self.raw
        record_set: Dict[str, Any] = {
            "Name": self.name,
            "Type": self.type,
            "ResourceRecords": [{"Value": v} for v in sorted(self.values)],
        }
        if self.ttl is not None:
            record_set["TTL"] = self.ttl
        return record_set


@dataclass(frozen=True)
class Upsert:
    name: str
    type: str
    values: Tuple[str, ...]
    ttl: int

    def to_change(self) -> Dict[str, Any]:
        return {
            "Action": "UPSERT",
            "ResourceRecordSet": {
                "Name": self.name,
                "Type": self.type,
                "TTL": self.ttl,
                "ResourceRecords": [{"Value": v} for v in self.values],
            },
        }


@dataclass(frozen=True)
class Delete:
    # Route 53 only deletes a record set when the request matches it exactly,
    # so the existing state is carried along.
    state: RecordState

    @property
    def name(self) -> str:
        return self.state.name

    @property
    def type(self) -> str:
        return self.state.type

    def to_change(self) -> Dict[str, Any]:
        return {"Action": "DELETE", "ResourceRecordSet": self.state.to_record_set()}


@dataclass(frozen=True)
class NoOp:
    """The record already matches; nothing to submit."""


ChangeRequest = Union[Upsert, Delete, NoOp]


@dataclass(frozen=True)
class ChangeInfo:
    id: str
    status: ChangeStatus


@dataclass(frozen=True)
class UpdateOptions:
    """Everything one invocation needs to know.

    ``wait`` and ``clear`` switch the optional propagation wait and conflict
    clearing steps on; everything else selects sources and targets.
    """

    record_name: str
    record_type: Optional[str] = None
    values: Tuple[str, ...] = ()
    value_from: Optional[ValueFrom] = None
    value_from_url: Optional[str] = None
    ip_address_type: IPAddressType = IPAddressType.PUBLIC
    hosted_zone_id: Optional[str] = None
    hosted_zone_name: Optional[str] = None
    hosted_zone_type: HostedZoneType = HostedZoneType.PREFER_PUBLIC
    ttl: Optional[int] = None
    comment: Optional[str] = None
    wait: bool = False
    clear: bool = False

    def validate(self) -> None:
        if not self.record_name.strip().rstrip("."):
            raise ConfigError("--record-name is required")
        if self.hosted_zone_id and self.hosted_zone_name:
            raise ConfigError("can only use one of --hosted-zone-id or --hosted-zone-name")

        source_count = sum(bool(s) for s in (self.values, self.value_from, self.value_from_url))
        if source_count > 1:
            raise ConfigError("can only use one of --value, --value-from, or --value-from-url")
        if source_count == 0:
            raise ConfigError(
                "value must be supplied with either --value, --value-from, or --value-from-url"
            )

        if self.ttl is not None and self.ttl <= 0:
            raise ConfigError(f"--ttl must be a positive integer, got {self.ttl}")
        if self.value_from and self.record_type not in (None, "A", "AAAA"):
            raise ConfigError("--value-from is only usable with --record-type A or AAAA")
        if self.clear and self.record_type and self.record_type not in CONFLICTING_TYPES:
            raise ConfigError("--clear only works with A, AAAA, or CNAME")


@dataclass(frozen=True)
class UpdateOutcome:
    zone: HostedZone
    record_name: str
    record_type: str
    changes: Tuple[ChangeRequest, ...] = ()
    change: Optional[ChangeInfo] = None

    @property
    def changed(self) -> bool:
        return bool(self.changes)


# =============================================================================
# Name Utilities
# =============================================================================

_OCTAL_ESCAPE_RE = re.compile(r"\\(\d{3})")


def normalize_name(name: str) -> str:
    """Lower-case a DNS name and make it fully qualified.

    Route 53 returns some characters as octal escapes (``\\052`` for ``*``);
    those are decoded so names compare equal to what the user typed.
    """
    name = _OCTAL_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 8)), name.strip()).lower()
    if not name.endswith("."):
        name += "."
    return name


def strip_zone_id_prefix(zone_id: str) -> str:
    """'/hostedzone/Z123' -> 'Z123'"""
    return zone_id.strip().rsplit("/", 1)[-1]


# =============================================================================
# Value Sources
# =============================================================================


class ValueSource(ABC):
    """A place a record value can come from."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the source name for logging."""
        pass

    @abstractmethod
    def get_values(self) -> List[str]:
        """Return the values, or an empty list when the source has none.

        Raises ValueResolutionError when the source was reachable but its
        answer is unusable.
        """
        pass


class StaticValueSource(ValueSource):
    def __init__(self, values: Sequence[str]):
        self._values = [v.strip() for v in values if v.strip()]

    @property
    def name(self) -> str:
        return "--value"

    def get_values(self) -> List[str]:
        return list(self._values)


class UrlValueSource(ValueSource):
    """Uses the trimmed response body of a single GET request."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = HTTP_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self._url = url
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    @property
    def name(self) -> str:
        return self._url

    def get_values(self) -> List[str]:
        try:
            response = self._session.get(self._url, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise ValueResolutionError(f"could not fetch {self._url}: {e}") from e

        if response.status_code != 200:
            raise ValueResolutionError(
                f"response from {self._url} returned non-200 status code: {response.status_code}"
            )

        text = response.text.strip()
        logger.info(f"{self._url} returned {text!r}")
        if not text:
            raise ValueResolutionError(f"response from {self._url} was empty")
        return [text]


class EcsMetadataSource(ValueSource):
    """Reads the task's addresses from the ECS task metadata endpoint.

    The V3 and V4 endpoints expose the network data in the same place, so
    either works. The task metadata only lists the task's own addresses,
    which is why the IP address type is not consulted here.
    """

    def __init__(
        self,
        record_type: Optional[str] = None,
        timeout_seconds: float = METADATA_TIMEOUT_SECONDS,
        environ: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        self._record_type = record_type
        self._timeout = timeout_seconds
        self._environ = os.environ if environ is None else environ
        self._session = session or requests.Session()

    @property
    def name(self) -> str:
        return "ECS task metadata"

    def _metadata_uri(self) -> str:
        return (
            self._environ.get("ECS_CONTAINER_METADATA_URI_V4")
            or self._environ.get("ECS_CONTAINER_METADATA_URI")
            or ""
        )

    def get_values(self) -> List[str]:
        uri = self._metadata_uri()
        if not uri:
            logger.debug("ECS metadata environment variables are not set")
            return []

        url = f"{uri.rstrip('/')}/task"
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise ValueResolutionError(f"could not fetch ECS task metadata from {url}: {e}") from e

        if response.status_code != 200:
            raise ValueResolutionError(
                f"response from {url} returned non-200 status code: {response.status_code}"
            )

        try:
            task = response.json()
        except ValueError as e:
            raise ValueResolutionError(f"malformed ECS task metadata from {url}: {e}") from e

        logger.debug(f"ECS task metadata: {task}")
        return self._extract_addresses(task)

    def _extract_addresses(self, task: Any) -> List[str]:
        key = "IPv6Addresses" if self._record_type == "AAAA" else "IPv4Addresses"
        containers = task.get("Containers") if isinstance(task, dict) else None

        for container in containers or []:
            if not isinstance(container, dict):
                continue
            for network in container.get("Networks") or []:
                if not isinstance(network, dict):
                    continue
                # ECS can report "IPv4Addresses": [""] for some network modes.
                addresses = [a for a in network.get(key) or [] if isinstance(a, str) and a]
                if addresses:
                    return addresses
        return []


class Ec2MetadataSource(ValueSource):
    """Reads the instance address from the EC2 instance metadata service (IMDSv2)."""

    def __init__(
        self,
        record_type: Optional[str] = None,
        ip_address_type: IPAddressType = IPAddressType.PUBLIC,
        endpoint: str = EC2_METADATA_ENDPOINT,
        timeout_seconds: float = METADATA_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self._record_type = record_type
        self._ip_address_type = ip_address_type
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    @property
    def name(self) -> str:
        return "EC2 instance metadata"

    def metadata_path(self) -> str:
        if self._record_type == "AAAA":
            return "ipv6"
        if self._ip_address_type == IPAddressType.PRIVATE:
            return "local-ipv4"
        return "public-ipv4"

    def _get_token(self) -> str:
        response = self._session.put(
            f"{self._endpoint}/latest/api/token",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": str(EC2_METADATA_TOKEN_TTL_SECONDS)},
            timeout=self._timeout,
        )
        response.raise_for_status()
        return response.text

    def get_values(self) -> List[str]:
        path = self.metadata_path()
        url = f"{self._endpoint}/latest/meta-data/{path}"
        try:
            token = self._get_token()
            response = self._session.get(
                url, headers={"X-aws-ec2-metadata-token": token}, timeout=self._timeout
            )
        except requests.exceptions.RequestException as e:
            logger.debug(f"EC2 instance metadata service unavailable: {e}")
            return []

        if response.status_code == 404:
            logger.debug(f"EC2 instance metadata has no {path}")
            return []
        if response.status_code != 200:
            raise ValueResolutionError(
                f"response from {url} returned non-200 status code: {response.status_code}"
            )

        return [line.strip() for line in response.text.splitlines() if line.strip()]


def build_value_sources(
    options: UpdateOptions, session: Optional[requests.Session] = None
) -> List[ValueSource]:
    """Return the value sources to try, in priority order."""
    if options.values:
        return [StaticValueSource(options.values)]
    if options.value_from_url:
        return [UrlValueSource(options.value_from_url, session=session)]

    sources: List[ValueSource] = []
    if options.value_from in (ValueFrom.AUTO, ValueFrom.ECS_METADATA):
        sources.append(EcsMetadataSource(options.record_type, session=session))
    if options.value_from in (ValueFrom.AUTO, ValueFrom.EC2_METADATA):
        sources.append(
            Ec2MetadataSource(options.record_type, options.ip_address_type, session=session)
        )
    return sources


def resolve_values(sources: Sequence[ValueSource]) -> List[str]:
    """Return the values of the first source that has any."""
    for source in sources:
        values = source.get_values()
        if values:
            logger.info(f"Resolved value from {source.name}: {', '.join(values)}")
            return values
        logger.debug(f"{source.name} returned no value")

    tried = ", ".join(s.name for s in sources) or "no sources"
    raise ValueResolutionError(f"unable to determine a value to use (tried {tried})")


# =============================================================================
# Record Types
# =============================================================================


def infer_record_type(values: Sequence[str]) -> str:
    """A for an IPv4 address, AAAA for IPv6, TXT for anything else.

    Only the first value decides the type. CNAME is never inferred.
    """
    try:
        address = ipaddress.ip_address(values[0].strip())
    except (IndexError, ValueError):
        return "TXT"

    record_type = "A" if address.version == 4 else "AAAA"
    if any(_address_version(v) != address.version for v in values[1:]):
        logger.warning(
            f"Values mix address families; using {record_type} from the first value "
            f"({values[0].strip()}), Route 53 will reject the others"
        )
    return record_type


def _address_version(value: str) -> Optional[int]:
    try:
        return ipaddress.ip_address(value.strip()).version
    except ValueError:
        return None


def quote_txt_values(values: Sequence[str]) -> List[str]:
    """TXT record data must be enclosed in double quotes."""
    return [
        v if len(v) >= 2 and v.startswith('"') and v.endswith('"') else f'"{v}"' for v in values
    ]


# =============================================================================
# DNS Service Interface and Implementations
# =============================================================================


class ZoneService(ABC):
    """Abstract base class for the hosted zone service."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the service name for logging."""
        pass

    @abstractmethod
    def list_hosted_zones(self) -> List[HostedZone]:
        """Return every hosted zone visible to the caller."""
        pass

    @abstractmethod
    def get_record_sets(self, zone_id: str, name: str) -> List[RecordState]:
        """Return every record set at ``name`` (any type)."""
        pass

    @abstractmethod
    def submit_change_batch(
        self, zone_id: str, changes: Sequence[ChangeRequest], comment: Optional[str] = None
    ) -> ChangeInfo:
        """Submit changes as one atomic batch."""
        pass

    @abstractmethod
    def get_change(self, change_id: str) -> ChangeInfo:
        """Return the current status of a submitted change."""
        pass


def create_route53_client():
    """Create a boto3 Route 53 client, defaulting the region for the global endpoint."""
    session = boto3.Session()
    return session.client("route53", region_name=session.region_name or DEFAULT_REGION)


def record_state_from_record_set(record_set: Dict[str, Any]) -> RecordState:
    return RecordState(
        name=normalize_name(record_set["Name"]),
        type=record_set["Type"],
        values=frozenset(r["Value"] for r in record_set.get("ResourceRecords") or []),
        ttl=record_set.get("TTL"),
        raw=record_set,
    )


def _parse_change_info(response: Dict[str, Any]) -> ChangeInfo:
    try:
        info = response["ChangeInfo"]
        return ChangeInfo(id=info["Id"], status=ChangeStatus(str(info["Status"]).upper()))
    except (KeyError, TypeError, ValueError) as e:
        raise ChangeStatusError(f"malformed change info in response: {response}") from e


class Route53ZoneService(ZoneService):
    """Amazon Route 53 implementation backed by boto3."""

    def __init__(self, client=None):
        self._client = client if client is not None else create_route53_client()

    @property
    def name(self) -> str:
        return "Route 53"

    def list_hosted_zones(self) -> List[HostedZone]:
        zones: List[HostedZone] = []
        try:
            paginator = self._client.get_paginator("list_hosted_zones")
            for page in paginator.paginate():
                for item in page.get("HostedZones", []):
                    config = item.get("Config") or {}
                    zones.append(
                        HostedZone(
                            id=strip_zone_id_prefix(item["Id"]),
                            name=normalize_name(item["Name"]),
                            private=bool(config.get("PrivateZone")),
                        )
                    )
        except (ClientError, BotoCoreError) as e:
            raise ZoneResolutionError(f"could not list hosted zones: {e}") from e

        logger.debug(f"{self.name}: {len(zones)} hosted zone(s) visible")
        return zones

    def get_record_sets(self, zone_id: str, name: str) -> List[RecordState]:
        name = normalize_name(name)
        record_sets: List[RecordState] = []
        try:
            paginator = self._client.get_paginator("list_resource_record_sets")
            # Record sets are sorted by name, so stop at the first one past ours.
            for page in paginator.paginate(HostedZoneId=zone_id, StartRecordName=name):
                for item in page.get("ResourceRecordSets", []):
                    if normalize_name(item.get("Name", "")) != name:
                        return record_sets
                    record_sets.append(record_state_from_record_set(item))
        except (ClientError, BotoCoreError) as e:
            raise RecordReadError(f"could not list record sets in {zone_id}: {e}") from e
        except KeyError as e:
            raise RecordReadError(f"malformed record set in {zone_id}: missing {e}") from e
        return record_sets

    def submit_change_batch(
        self, zone_id: str, changes: Sequence[ChangeRequest], comment: Optional[str] = None
    ) -> ChangeInfo:
        change_batch: Dict[str, Any] = {"Changes": [c.to_change() for c in changes]}
        if comment:
            change_batch["Comment"] = comment

        logger.debug(f"Change batch for {zone_id}: {change_batch}")
        try:
            response = self._client.change_resource_record_sets(
                HostedZoneId=zone_id, ChangeBatch=change_batch
            )
        except (ClientError, BotoCoreError) as e:
            raise ChangeSubmissionError(f"could not update DNS: {e}") from e

        try:
            return _parse_change_info(response)
        except ChangeStatusError as e:
            raise ChangeSubmissionError(str(e)) from e

    def get_change(self, change_id: str) -> ChangeInfo:
        try:
            response = self._client.get_change(Id=change_id)
        except (ClientError, BotoCoreError) as e:
            raise ChangeStatusError(f"could not poll change status: {e}") from e
        return _parse_change_info(response)


def create_zone_service() -> ZoneService:
    """Factory function for the hosted zone service."""
    return Route53ZoneService()


# =============================================================================
# Hosted Zone Resolution
# =============================================================================


def candidate_zone_names(record_name: str) -> List[str]:
    """The record name followed by each parent domain, most specific first.

    'app.example.com' -> ['app.example.com.', 'example.com.', 'com.']
    """
    name = normalize_name(record_name)
    candidates: List[str] = []
    while name and name != ".":
        candidates.append(name)
        name = name.split(".", 1)[1]
    return candidates


def filter_zones_by_type(
    zones: Sequence[HostedZone], zone_type: HostedZoneType
) -> List[HostedZone]:
    public = [z for z in zones if not z.private]
    private = [z for z in zones if z.private]
    if zone_type == HostedZoneType.PUBLIC:
        return public
    if zone_type == HostedZoneType.PRIVATE:
        return private
    return public or private


def _single_zone(matches: Sequence[HostedZone], name: str) -> HostedZone:
    if len(matches) > 1:
        ids = ", ".join(z.id for z in matches)
        raise ZoneResolutionError(
            f"found {len(matches)} hosted zones named {name} ({ids}); use --hosted-zone-id"
        )
    return matches[0]


def find_zone_by_name(
    zones: Sequence[HostedZone], zone_name: str, zone_type: HostedZoneType
) -> HostedZone:
    zone_name = normalize_name(zone_name)
    matches = filter_zones_by_type([z for z in zones if z.name == zone_name], zone_type)
    if not matches:
        raise ZoneResolutionError(f"could not find a hosted zone with name: {zone_name}")
    return _single_zone(matches, zone_name)


def find_zone_for_record(
    zones: Sequence[HostedZone], record_name: str, zone_type: HostedZoneType
) -> HostedZone:
    """Return the most specific zone enclosing ``record_name``.

    With prefer-public every candidate is tried against public zones before
    any private zone is considered.
    """
    if zone_type == HostedZoneType.PREFER_PUBLIC:
        passes = [HostedZoneType.PUBLIC, HostedZoneType.PRIVATE]
    else:
        passes = [zone_type]

    candidates = candidate_zone_names(record_name)
    for visibility in passes:
        for candidate in candidates:
            matches = filter_zones_by_type([z for z in zones if z.name == candidate], visibility)
            if matches:
                return _single_zone(matches, candidate)

    raise ZoneResolutionError(
        f"could not find the hosted zone for: {normalize_name(record_name)}"
    )


def resolve_hosted_zone(zone_service: ZoneService, options: UpdateOptions) -> HostedZone:
    if options.hosted_zone_id:
        zone = HostedZone(id=strip_zone_id_prefix(options.hosted_zone_id))
        logger.info(f"Using hosted zone: {zone.id}")
        return zone

    zones = zone_service.list_hosted_zones()
    if options.hosted_zone_name:
        zone = find_zone_by_name(zones, options.hosted_zone_name, options.hosted_zone_type)
    else:
        zone = find_zone_for_record(zones, options.record_name, options.hosted_zone_type)

    visibility = "private" if zone.private else "public"
    logger.info(f"Found hosted zone: {zone.id} ({zone.name}, {visibility})")
    return zone


# =============================================================================
# Change Planning
# =============================================================================


def find_record_state(
    record_sets: Sequence[RecordState], record_type: str
) -> Optional[RecordState]:
    for record_set in record_sets:
        if record_set.type == record_type:
            return record_set
    return None


def resolve_ttl(explicit_ttl: Optional[int], current: Optional[RecordState]) -> int:
    """--ttl, else the existing record's TTL, else DEFAULT_TTL."""
    if explicit_ttl is not None:
        return explicit_ttl
    if current is not None and current.ttl is not None:
        return current.ttl
    return DEFAULT_TTL


def plan_change(
    record_name: str,
    record_type: str,
    values: Sequence[str],
    ttl: int,
    current: Optional[RecordState],
) -> ChangeRequest:
    """Decide what to submit for the managed record.

    Identical values (compared as a set) and an identical TTL never produce a
    change. ``values`` is never empty; value resolution fails before that.
    """
    if current is not None and current.type != record_type:
        current = None

    if current is not None and current.values == frozenset(values) and current.ttl == ttl:
        return NoOp()

    return Upsert(name=record_name, type=record_type, values=tuple(values), ttl=ttl)


def plan_conflict_deletes(record_sets: Sequence[RecordState], record_type: str) -> List[Delete]:
    """Delete every A/AAAA/CNAME record set at the name other than the managed type."""
    return [
        Delete(r) for r in record_sets if r.type in CONFLICTING_TYPES and r.type != record_type
    ]


# =============================================================================
# Propagation
# =============================================================================


def wait_for_change(
    zone_service: ZoneService,
    change: ChangeInfo,
    *,
    poll_interval: float = WAIT_POLL_INTERVAL_SECONDS,
    timeout: float = WAIT_TIMEOUT_SECONDS,
) -> ChangeInfo:
    """Poll until the change is INSYNC.

    Raises PropagationTimeoutError when the attempts run out. The change itself
    stays queued in Route 53 either way.
    """
    if change.status == ChangeStatus.INSYNC:
        return change

    max_attempts = max(1, math.ceil(timeout / poll_interval)) if poll_interval > 0 else 1
    for attempt in range(1, max_attempts + 1):
        time.sleep(poll_interval)
        try:
            current = zone_service.get_change(change.id)
        except ChangeStatusError as e:
            logger.warning(f"Status check {attempt}/{max_attempts} for {change.id} failed: {e}")
            continue

        if current.status == ChangeStatus.INSYNC:
            logger.info(f"Change {change.id} is INSYNC")
            return current
        if current.status == ChangeStatus.FAILED:
            raise ChangeSubmissionError(f"change {change.id} was reported as FAILED")
        logger.info(f"Waiting for change {change.id} to propagate ({current.status.value})")

    raise PropagationTimeoutError(
        f"change {change.id} did not reach INSYNC within {timeout:g}s "
        f"(it is still queued in Route 53)"
    )


# =============================================================================
# Core Updater
# =============================================================================


class Route53Updater:
    def __init__(
        self,
        *,
        zone_service: ZoneService,
        session: Optional[requests.Session] = None,
        poll_interval: float = WAIT_POLL_INTERVAL_SECONDS,
        wait_timeout: float = WAIT_TIMEOUT_SECONDS,
    ):
        self.zone_service = zone_service
        self.session = session or requests.Session()
        self.poll_interval = poll_interval
        self.wait_timeout = wait_timeout

    def _resolve_record_type(self, options: UpdateOptions, values: Sequence[str]) -> str:
        if options.record_type:
            return options.record_type

        record_type = infer_record_type(values)
        logger.info(f"Detected record type: {record_type}")
        if options.clear and record_type not in CONFLICTING_TYPES:
            raise ConfigError("--clear only works with A, AAAA, or CNAME")
        return record_type

    def _resolve_ttl(self, options: UpdateOptions, current: Optional[RecordState]) -> int:
        ttl = resolve_ttl(options.ttl, current)
        if options.ttl is not None:
            logger.debug(f"Using TTL from --ttl: {ttl}")
        elif current is not None and current.ttl is not None:
            logger.info(f"Copied TTL from existing record: {ttl}")
        else:
            logger.info(f"Using default TTL: {ttl}")
        return ttl

    def run(self, options: UpdateOptions) -> UpdateOutcome:
        options.validate()
        record_name = normalize_name(options.record_name)

        values = resolve_values(build_value_sources(options, self.session))
        record_type = self._resolve_record_type(options, values)
        if record_type == "TXT":
            values = quote_txt_values(values)

        zone = resolve_hosted_zone(self.zone_service, options)
        record_sets = self.zone_service.get_record_sets(zone.id, record_name)
        current = find_record_state(record_sets, record_type)
        ttl = self._resolve_ttl(options, current)

        changes: List[ChangeRequest] = []
        if options.clear:
            # Deletes precede the upsert within the batch.
            for delete in plan_conflict_deletes(record_sets, record_type):
                logger.info(f"Will delete {delete.type} {delete.name}")
                changes.append(delete)

        main_change = plan_change(record_name, record_type, values, ttl, current)
        if not isinstance(main_change, NoOp):
            changes.append(main_change)

        if not changes:
            logger.info(f"No change needed: {record_name} {record_type} -> {', '.join(values)}")
            return UpdateOutcome(zone=zone, record_name=record_name, record_type=record_type)

        for change in changes:
            if isinstance(change, Upsert):
                logger.info(
                    f"Will upsert {change.type} {change.name} -> {', '.join(change.values)} "
                    f"(TTL {change.ttl})"
                )

        change_info = self.zone_service.submit_change_batch(zone.id, changes, options.comment)
        logger.info(f"Submitted change {change_info.id} ({change_info.status.value})")

        if options.wait:
            change_info = wait_for_change(
                self.zone_service,
                change_info,
                poll_interval=self.poll_interval,
                timeout=self.wait_timeout,
            )

        return UpdateOutcome(
            zone=zone,
            record_name=record_name,
            record_type=record_type,
            changes=tuple(changes),
            change=change_info,
        )


# =============================================================================
# Command Line
# =============================================================================

# Lowest precedence; the config file and the command line override these.
OPTION_DEFAULTS: Dict[str, Any] = {
    "hosted_zone_type": HostedZoneType.PREFER_PUBLIC.value,
    "ip_address_type": IPAddressType.PUBLIC.value,
    "wait": False,
    "clear": False,
}

OPTION_KEYS = {
    "hosted_zone_id",
    "hosted_zone_name",
    "hosted_zone_type",
    "record_name",
    "record_type",
    "value",
    "value_from",
    "value_from_url",
    "ip_address_type",
    "ttl",
    "comment",
    "wait",
    "clear",
}


def _parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _normalize_config_key(key: Any) -> str:
    text = str(key or "").strip()
    if text.startswith("--"):
        text = text[2:]
    return text.replace("-", "_")


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def load_config_file(path: str) -> Dict[str, Any]:
    """Load option defaults from a YAML mapping (``record-name: ...`` style keys)."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"could not read config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping of option names")

    config: Dict[str, Any] = {}
    for key, value in data.items():
        dest = _normalize_config_key(key)
        if dest not in OPTION_KEYS:
            logger.warning(f"Ignoring unknown option '{key}' in {path}")
            continue
        config[dest] = value
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="route53-update",
        description="Update a Route 53 record with a value such as this host's IP address.",
    )
    parser.add_argument(
        "--hosted-zone-id",
        help="The Hosted Zone ID (optional, will be looked up automatically based on "
        "--record-name if omitted)",
    )
    parser.add_argument(
        "--hosted-zone-name",
        help="Look up the Hosted Zone ID based on this name instead of using the record name "
        "(optional, conflicts with --hosted-zone-id)",
    )
    parser.add_argument(
        "--hosted-zone-type",
        choices=[t.value for t in HostedZoneType],
        help="Filter the hosted zones based on the type (default: prefer-public)",
    )
    parser.add_argument(
        "--record-name",
        metavar="NAME",
        help="Record name to update (e.g. service.example.com)",
    )
    parser.add_argument(
        "--record-type",
        metavar="TYPE",
        type=str.upper,
        help="Record type (optional, is auto-detected from the value when possible, "
        "TXT is used as fallback)",
    )
    parser.add_argument(
        "-v",
        "--value",
        action="append",
        metavar="VALUE",
        help="Record value (can be specified multiple times)",
    )
    parser.add_argument(
        "--value-from",
        choices=[s.value for s in ValueFrom],
        metavar="SOURCE",
        help="Get the value from a specific source (supported: 'auto', 'ec2-metadata', "
        "or 'ecs-metadata')",
    )
    parser.add_argument(
        "--value-from-url",
        metavar="URL",
        help="Get the value from a URL (e.g. https://checkip.amazonaws.com/)",
    )
    parser.add_argument(
        "--ip-address-type",
        choices=[t.value for t in IPAddressType],
        metavar="TYPE",
        help="Use a specific IP address type (supported: 'public' or 'private', default: public)",
    )
    parser.add_argument(
        "--ttl",
        type=int,
        help="TTL for the DNS record (optional, if an existing record exists then its TTL "
        "will be copied, 300 is used as fallback)",
    )
    parser.add_argument("--comment", help="Change batch comment")
    parser.add_argument(
        "--wait",
        action="store_true",
        default=None,
        help="Wait for the change to propagate in Route 53",
    )
    parser.add_argument(
        "--clear",
        action="store_true",
        default=None,
        help="Delete potentially conflicting records (A, AAAA, CNAME)",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        default=ROUTE53_UPDATE_CONFIG or None,
        help="YAML file with option defaults (env: ROUTE53_UPDATE_CONFIG)",
    )
    return parser


def load_settings(args: argparse.Namespace) -> Dict[str, Any]:
    """Merge built-in defaults, the config file and the command line (highest wins)."""
    settings = dict(OPTION_DEFAULTS)
    if args.config:
        settings.update(load_config_file(args.config))
        logger.debug(f"Loaded option defaults from {args.config}")

    for key, value in vars(args).items():
        if key in OPTION_KEYS and value is not None:
            settings[key] = value
    return settings


def options_from_settings(settings: Dict[str, Any]) -> UpdateOptions:
    record_type = settings.get("record_type")
    ttl = settings.get("ttl")
    try:
        return UpdateOptions(
            record_name=str(settings.get("record_name") or ""),
            record_type=str(record_type).upper() if record_type else None,
            values=tuple(_as_list(settings.get("value"))),
            value_from=ValueFrom(settings["value_from"]) if settings.get("value_from") else None,
            value_from_url=settings.get("value_from_url") or None,
            ip_address_type=IPAddressType(settings.get("ip_address_type")),
            hosted_zone_id=settings.get("hosted_zone_id") or None,
            hosted_zone_name=settings.get("hosted_zone_name") or None,
            hosted_zone_type=HostedZoneType(settings.get("hosted_zone_type")),
            ttl=int(ttl) if ttl is not None else None,
            comment=settings.get("comment") or None,
            wait=_parse_bool(settings.get("wait"), default=False),
            clear=_parse_bool(settings.get("clear"), default=False),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid option value: {e}") from e


# =============================================================================
# Main
# =============================================================================


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else argv
    if not argv and not ROUTE53_UPDATE_CONFIG:
        parser.print_help(sys.stderr)
        sys.exit(2)

    args = parser.parse_args(argv)

    try:
        options = options_from_settings(load_settings(args))
        options.validate()
        updater = Route53Updater(zone_service=create_zone_service())
        outcome = updater.run(options)
    except PropagationTimeoutError as e:
        logger.error(str(e))
        sys.exit(EXIT_PROPAGATION_TIMEOUT)
    except Route53UpdateError as e:
        logger.error(str(e))
        sys.exit(EXIT_ERROR)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(EXIT_ERROR)

    if outcome.changed and outcome.change:
        logger.info(
            f"Updated {outcome.record_name} {outcome.record_type} ({outcome.change.status.value})"
        )


if __name__ == "__main__":
    main()
