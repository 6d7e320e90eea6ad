"""AWS resource provider.

Maps AWS resource types to their describe, dependency-discovery and deletion
calls, and classifies botocore failures into the error taxonomy. Retries are
not done here; the recovery coordinator owns backoff.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from cloudguard.aws.client import create_boto_client
from cloudguard.exceptions import (
    ProviderError,
    ProviderPermissionDeniedError,
    ProviderRateLimitedError,
    ProviderRequestError,
    ProviderUnavailableError,
)
from cloudguard.models.resource import ResourceId
from cloudguard.provider.base import ResourceProvider

logger = logging.getLogger(__name__)

INSTANCE = "AWS::EC2::Instance"
VOLUME = "AWS::EC2::Volume"
SUBNET = "AWS::EC2::Subnet"
SECURITY_GROUP = "AWS::EC2::SecurityGroup"
VPC = "AWS::EC2::VPC"
INTERNET_GATEWAY = "AWS::EC2::InternetGateway"
ROUTE_TABLE = "AWS::EC2::RouteTable"
NETWORK_INTERFACE = "AWS::EC2::NetworkInterface"

RATE_LIMIT_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestLimitExceeded",
    "RequestThrottled",
    "RequestThrottledException",
    "TooManyRequestsException",
    "LimitExceededException",
    "ProvisionedThroughputExceededException",
    "SlowDown",
}

PERMISSION_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnauthorizedOperation",
    "AuthFailure",
    "InvalidClientTokenId",
    "UnrecognizedClientException",
    "ExpiredToken",
    "ExpiredTokenException",
}

UNAVAILABLE_CODES = {
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "Unavailable",
    "InternalError",
    "InternalFailure",
    "InternalServerError",
    "RequestTimeout",
    "RequestTimeoutException",
    # Dependents still detaching after their own deletion
    "DependencyViolation",
    "IncorrectState",
}

NOT_FOUND_CODES = {
    "NoSuchEntity",
    "NoSuchBucket",
    "ResourceNotFoundException",
    "AWS.SimpleQueueService.NonExistentQueue",
}


def classify_client_error(error: Exception, resource: Optional[ResourceId] = None) -> ProviderError:
    """Map a botocore exception onto the provider error taxonomy.

    Args:
        error: Exception raised by a boto3 call
        resource: Resource the call was about (optional)

    Returns:
        ProviderError subclass instance describing the failure
    """
    if isinstance(error, ClientError):
        error_code = error.response.get("Error", {}).get("Code", "Unknown")
        error_message = error.response.get("Error", {}).get("Message", str(error))
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = f"{error_code}: {error_message}"
        details = {"error_code": error_code, "http_status": status}

        if error_code in RATE_LIMIT_CODES or status == 429:
            return ProviderRateLimitedError(message, resource=resource, details=details)
        if error_code in PERMISSION_CODES or status == 403:
            return ProviderPermissionDeniedError(message, resource=resource, details=details)
        if error_code in UNAVAILABLE_CODES or (status is not None and status >= 500):
            return ProviderUnavailableError(message, resource=resource, details=details)
        return ProviderRequestError(message, resource=resource, details=details)

    if isinstance(error, NoCredentialsError):
        return ProviderPermissionDeniedError(str(error), resource=resource)
    if isinstance(error, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return ProviderUnavailableError(str(error), resource=resource)
    return ProviderRequestError(f"Unexpected error: {error}", resource=resource)


def is_not_found(error: ClientError) -> bool:
    error_code = error.response.get("Error", {}).get("Code", "")
    return error_code in NOT_FOUND_CODES or "NotFound" in error_code


class AWSResourceProvider(ResourceProvider):
    """Resource provider backed by boto3.

    Attributes:
        aws_profile: AWS profile name (optional)
        region: AWS region (optional, session default if None)
    """

    # Describe method mapping: resource_type -> (service, method, id_param, result_key)
    DESCRIBE_METHODS = {
        INSTANCE: ("ec2", "describe_instances", "InstanceIds", "Reservations"),
        VOLUME: ("ec2", "describe_volumes", "VolumeIds", "Volumes"),
        SUBNET: ("ec2", "describe_subnets", "SubnetIds", "Subnets"),
        SECURITY_GROUP: ("ec2", "describe_security_groups", "GroupIds", "SecurityGroups"),
        VPC: ("ec2", "describe_vpcs", "VpcIds", "Vpcs"),
        INTERNET_GATEWAY: ("ec2", "describe_internet_gateways", "InternetGatewayIds", "InternetGateways"),
        ROUTE_TABLE: ("ec2", "describe_route_tables", "RouteTableIds", "RouteTables"),
        NETWORK_INTERFACE: ("ec2", "describe_network_interfaces", "NetworkInterfaceIds", "NetworkInterfaces"),
    }

    # Deletion method mapping: resource_type -> (service, method, id_field)
    DELETION_METHODS = {
        # EC2 Resources
        INSTANCE: ("ec2", "terminate_instances", "InstanceIds"),
        SECURITY_GROUP: ("ec2", "delete_security_group", "GroupId"),
        VOLUME: ("ec2", "delete_volume", "VolumeId"),
        VPC: ("ec2", "delete_vpc", "VpcId"),
        SUBNET: ("ec2", "delete_subnet", "SubnetId"),
        INTERNET_GATEWAY: ("ec2", "delete_internet_gateway", "InternetGatewayId"),
        ROUTE_TABLE: ("ec2", "delete_route_table", "RouteTableId"),
        NETWORK_INTERFACE: ("ec2", "delete_network_interface", "NetworkInterfaceId"),
        "AWS::EC2::Snapshot": ("ec2", "delete_snapshot", "SnapshotId"),
        # S3
        "AWS::S3::Bucket": ("s3", "delete_bucket", "Bucket"),
        # Lambda
        "AWS::Lambda::Function": ("lambda", "delete_function", "FunctionName"),
        # RDS
        "AWS::RDS::DBInstance": ("rds", "delete_db_instance", "DBInstanceIdentifier"),
        # EFS
        "AWS::EFS::FileSystem": ("efs", "delete_file_system", "FileSystemId"),
        # ELB
        "AWS::ElasticLoadBalancingV2::LoadBalancer": ("elbv2", "delete_load_balancer", "LoadBalancerArn"),
    }

    def __init__(self, aws_profile: Optional[str] = None, region: Optional[str] = None) -> None:
        """Initialize AWS provider.

        Args:
            aws_profile: AWS profile name (optional)
            region: AWS region (optional)
        """
        self.aws_profile = aws_profile
        self.region = region
        self._clients: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return "aws"

    def describe(self, resource: ResourceId) -> Optional[dict[str, Any]]:
        if resource.resource_type not in self.DESCRIBE_METHODS:
            raise ProviderRequestError(f"Unsupported resource type: {resource.resource_type}", resource=resource)

        service, method, id_param, result_key = self.DESCRIBE_METHODS[resource.resource_type]
        try:
            response = getattr(self._client(service), method)(**{id_param: [resource.name]})
        except ClientError as e:
            if is_not_found(e):
                return None
            raise classify_client_error(e, resource) from e
        except BotoCoreError as e:
            raise classify_client_error(e, resource) from e

        items = response.get(result_key, [])
        if resource.resource_type == INSTANCE:
            items = [i for reservation in items for i in reservation.get("Instances", [])]
        return items[0] if items else None

    def dependents_of(self, resource: ResourceId) -> list[ResourceId]:
        """Discover immediate dependents of an EC2 resource.

        Types without known dependents return an empty list.
        """
        handlers = {
            VOLUME: self._volume_dependents,
            SUBNET: self._subnet_dependents,
            SECURITY_GROUP: self._security_group_dependents,
            VPC: self._vpc_dependents,
        }
        handler = handlers.get(resource.resource_type)
        if handler is None:
            return []

        try:
            dependents = handler(resource.name)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"{resource.key} not found while listing dependents")
                return []
            raise classify_client_error(e, resource) from e
        except BotoCoreError as e:
            raise classify_client_error(e, resource) from e

        logger.debug(f"{resource.key} has {len(dependents)} dependent(s)")
        return dependents

    def delete(self, resource: ResourceId) -> None:
        if resource.resource_type not in self.DELETION_METHODS:
            raise ProviderRequestError(f"Unsupported resource type: {resource.resource_type}", resource=resource)

        service, method, id_field = self.DELETION_METHODS[resource.resource_type]
        params = self._build_deletion_params(resource, id_field)

        try:
            getattr(self._client(service), method)(**params)
        except ClientError as e:
            if is_not_found(e):
                logger.info(f"Resource {resource.key} already deleted")
                return
            raise classify_client_error(e, resource) from e
        except BotoCoreError as e:
            raise classify_client_error(e, resource) from e

        logger.info(f"Deleted {resource.key}")

    def _client(self, service: str) -> Any:
        if service not in self._clients:
            self._clients[service] = create_boto_client(
                service_name=service,
                region_name=self.region,
                profile_name=self.aws_profile,
            )
        return self._clients[service]

    def _build_deletion_params(self, resource: ResourceId, id_field: str) -> dict[str, Any]:
        # Handle list parameters (e.g., InstanceIds)
        if id_field.endswith("s"):
            return {id_field: [resource.name]}

        if resource.resource_type == "AWS::RDS::DBInstance":
            # Skip final snapshot for faster deletion
            return {
                id_field: resource.name,
                "SkipFinalSnapshot": True,
                "DeleteAutomatedBackups": True,
            }

        return {id_field: resource.name}

    def _paginate(self, service: str, method: str, result_key: str, **kwargs: Any) -> list[dict[str, Any]]:
        paginator = self._client(service).get_paginator(method)
        items = []
        for page in paginator.paginate(**kwargs):
            items.extend(page.get(result_key, []))
        return items

    def _instances(self, filters: list[dict[str, Any]]) -> list[ResourceId]:
        reservations = self._paginate("ec2", "describe_instances", "Reservations", Filters=filters)
        return [
            ResourceId(INSTANCE, instance["InstanceId"])
            for reservation in reservations
            for instance in reservation.get("Instances", [])
            if instance.get("State", {}).get("Name") != "terminated"
        ]

    def _detached_interfaces(self, filters: list[dict[str, Any]]) -> list[ResourceId]:
        # Interfaces attached to an instance are covered by the instance itself
        interfaces = self._paginate("ec2", "describe_network_interfaces", "NetworkInterfaces", Filters=filters)
        return [
            ResourceId(NETWORK_INTERFACE, eni["NetworkInterfaceId"])
            for eni in interfaces
            if not eni.get("Attachment", {}).get("InstanceId")
        ]

    def _volume_dependents(self, volume_id: str) -> list[ResourceId]:
        response = self._client("ec2").describe_volumes(VolumeIds=[volume_id])
        dependents = []
        for volume in response.get("Volumes", []):
            for attachment in volume.get("Attachments", []):
                if attachment.get("InstanceId") and attachment.get("State") != "detached":
                    dependents.append(ResourceId(INSTANCE, attachment["InstanceId"]))
        return dependents

    def _subnet_dependents(self, subnet_id: str) -> list[ResourceId]:
        filters = [{"Name": "subnet-id", "Values": [subnet_id]}]
        return self._instances(filters) + self._detached_interfaces(filters)

    def _security_group_dependents(self, group_id: str) -> list[ResourceId]:
        instances = self._instances([{"Name": "instance.group-id", "Values": [group_id]}])
        interfaces = self._detached_interfaces([{"Name": "group-id", "Values": [group_id]}])
        return instances + interfaces

    def _vpc_dependents(self, vpc_id: str) -> list[ResourceId]:
        vpc_filter = [{"Name": "vpc-id", "Values": [vpc_id]}]
        dependents = [
            ResourceId(SUBNET, subnet["SubnetId"])
            for subnet in self._paginate("ec2", "describe_subnets", "Subnets", Filters=vpc_filter)
        ]
        dependents.extend(
            ResourceId(SECURITY_GROUP, group["GroupId"])
            for group in self._paginate("ec2", "describe_security_groups", "SecurityGroups", Filters=vpc_filter)
            if group.get("GroupName") != "default"
        )
        dependents.extend(
            ResourceId(INTERNET_GATEWAY, igw["InternetGatewayId"])
            for igw in self._paginate(
                "ec2",
                "describe_internet_gateways",
                "InternetGateways",
                Filters=[{"Name": "attachment.vpc-id", "Values": [vpc_id]}],
            )
        )
        dependents.extend(
            ResourceId(ROUTE_TABLE, table["RouteTableId"])
            for table in self._paginate("ec2", "describe_route_tables", "RouteTables", Filters=vpc_filter)
            if not any(assoc.get("Main") for assoc in table.get("Associations", []))
        )
        return dependents
