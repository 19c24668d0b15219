from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Any, Iterable, Optional
import logging
import re

from botocore.exceptions import BotoCoreError, ClientError

from .types import HostConfig

logger = logging.getLogger(__name__)

HOSTNAME_FIELDS = {
    "public_ip_address": "PublicIpAddress",
    "public_dns_name": "PublicDnsName",
    "private_ip_address": "PrivateIpAddress",
    "private_dns_name": "PrivateDnsName",
    "instance_id": "InstanceId",
}
ADDRESS_FIELDS = ("public_ip_address", "public_dns_name", "private_ip_address", "private_dns_name")
DEFAULT_HOSTNAMES = ["public_ip_address", "public_dns_name", "private_ip_address"]
DEFAULT_STATE_FILTER = {"instance-state-name": ["running"]}


class InventoryError(RuntimeError):
    """Raised when the cloud provider refuses or fails an inventory query."""


@dataclass
class InventorySource:
    regions: list[str] = field(default_factory=list)
    tags: dict[str, list[str]] = field(default_factory=dict)
    filters: dict[str, list[str]] = field(default_factory=dict)
    hostnames: list[str] = field(default_factory=lambda: list(DEFAULT_HOSTNAMES))
    keyed_groups: bool = True

    def ec2_filters(self) -> list[dict[str, Any]]:
        merged: dict[str, list[str]] = dict(DEFAULT_STATE_FILTER)
        merged.update({f"tag:{key}": list(values) for key, values in self.tags.items()})
        merged.update({key: list(values) for key, values in self.filters.items()})
        return [{"Name": name, "Values": values} for name, values in merged.items()]

    def matches(self, tags: dict[str, str]) -> bool:
        # EC2 tag filter values accept * and ? wildcards.
        for key, accepted in self.tags.items():
            value = tags.get(key)
            if value is None or not any(fnmatchcase(value, pattern) for pattern in accepted):
                return False
        return True


class Ec2InventoryResolver:
    """Discover hosts from EC2 ``describe_instances``."""

    def __init__(self, session, *, connection: str = "ssh"):
        self.session = session
        self.connection = connection

    def resolve(self, source: InventorySource) -> list[HostConfig]:
        regions = source.regions or [self.session.region_name]
        if not all(regions):
            raise InventoryError("No region configured for inventory")
        hosts: list[HostConfig] = []
        seen: set[str] = set()
        for region in regions:
            for instance in self._describe(region, source.ec2_filters()):
                instance_id = instance.get("InstanceId", "")
                if instance_id in seen:
                    continue
                seen.add(instance_id)
                tags = _tag_dict(instance.get("Tags"))
                if not source.matches(tags):
                    logger.debug("Dropping %s: tags %s do not match filter", instance_id, tags)
                    continue
                host = self._host_from_instance(instance, tags, region, source)
                if host is None:
                    logger.warning("Skipping %s: no usable address", instance_id)
                    continue
                hosts.append(host)
        _disambiguate(hosts)
        logger.info("Resolved %d host(s) in %s", len(hosts), ",".join(regions))
        return hosts

    def _describe(self, region: str, filters: list[dict[str, Any]]) -> Iterable[dict[str, Any]]:
        logger.debug("region=%s filters=%s", region, filters)
        try:
            client = self.session.client("ec2", region_name=region)
            paginator = client.get_paginator("describe_instances")
            for page in paginator.paginate(Filters=filters):
                for reservation in page.get("Reservations", []):
                    yield from reservation.get("Instances", [])
        except (ClientError, BotoCoreError) as exc:
            raise InventoryError(f"{region}: {exc}") from exc

    def _host_from_instance(
        self,
        instance: dict[str, Any],
        tags: dict[str, str],
        region: str,
        source: InventorySource,
    ) -> Optional[HostConfig]:
        name = _preferred_value(instance, tags, source.hostnames)
        address_prefs = [pref for pref in source.hostnames if pref in ADDRESS_FIELDS]
        address = _preferred_value(instance, tags, [*address_prefs, *ADDRESS_FIELDS])
        if not name or not address:
            return None
        groups = ["all"]
        if source.keyed_groups:
            groups.extend(f"tag_{_safe(key)}_{_safe(value)}" for key, value in sorted(tags.items()))
        variables = {
            "instance_id": instance.get("InstanceId"),
            "instance_type": instance.get("InstanceType"),
            "region": region,
            "public_ip_address": instance.get("PublicIpAddress"),
            "private_ip_address": instance.get("PrivateIpAddress"),
            "tags": tags,
        }
        return HostConfig(
            name=name,
            connection=self.connection,
            address=address,
            variables=variables,
            groups=groups,
        )


def _disambiguate(hosts: list[HostConfig]) -> None:
    """Suffix repeated host names with the instance id so every host stays addressable."""

    counts = Counter(host.name for host in hosts)
    for host in hosts:
        if counts[host.name] > 1:
            renamed = f"{host.name}-{host.variables['instance_id']}"
            logger.warning("Host name %s is shared by several instances; using %s", host.name, renamed)
            host.name = renamed


def _tag_dict(raw: Optional[list[dict[str, str]]]) -> dict[str, str]:
    return {tag["Key"]: tag.get("Value", "") for tag in raw or [] if "Key" in tag}


def _preferred_value(
    instance: dict[str, Any], tags: dict[str, str], preferences: Iterable[str]
) -> Optional[str]:
    for pref in preferences:
        if pref.startswith("tag:"):
            value = tags.get(pref[4:])
        elif pref in HOSTNAME_FIELDS:
            value = instance.get(HOSTNAME_FIELDS[pref])
        else:
            raise ValueError(f"Unknown hostname preference '{pref}'")
        if value:
            return str(value)
    return None


def _safe(text: str) -> str:
    return re.sub(r"\W", "_", text)
