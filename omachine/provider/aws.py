"""Amazon EC2 provider"""

from __future__ import annotations

import dataclasses
import uuid
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, NoRegionError, WaiterError

from omachine.context import Context
from omachine.errors import BackendError, Cancelled, ConfigurationError, NotFound
from omachine.provider import registry
from omachine.provider.base import (
    CreateMachineRequest,
    Credentials,
    MachineManager,
    Provider,
    ProviderMachine,
    credential_field,
)
from omachine.utils import ui
from omachine.utils.constants import (
    CREATED_BY_TAG,
    MACHINE_KIND_LITERAL,
    MACHINE_STATE_LITERAL,
    OLLAMA_DEFAULT_PORT,
    SSH_DEFAULT_PORT,
)

DEFAULT_INSTANCE_TYPE = "t3.micro"

TERMINATION_TIMEOUT = 10 * 60
"""Seconds to wait for an instance to be terminated before deleting its groups"""

WAITER_DELAY = 15

NOT_FOUND_CODES = ("InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed")

GROUP_NOT_FOUND_CODES = ("InvalidGroup.NotFound", "InvalidGroupId.Malformed")

STATES: dict[str, MACHINE_STATE_LITERAL] = {
    "pending": "pending",
    "running": "running",
    "shutting-down": "pending",
    "stopping": "pending",
    "stopped": "stopped",
    "terminated": "terminated",
}
"""EC2 instance state names to machine states; others are ``pending``"""


def error_code(exce: ClientError) -> str:
    return exce.response.get("Error", {}).get("Code", "")


@dataclasses.dataclass
class AWSCredentials(Credentials):
    provider = "aws"

    access_key_id: str = credential_field("accessKeyId", "AWS access key ID")
    secret_access_key: str = credential_field(
        "secretAccessKey", "AWS secret access key", secret=True
    )


class AWSMachineManager(MachineManager):
    """Machines are EC2 instances.

    Each instance gets its own security group, named
    ``ollama-machine-<uuid>``, opening SSH and the ollama port.
    """

    def __init__(self, client: Any, region: str) -> None:
        """
        Args:
            client: A boto3 EC2 client.
            region: The region the client is bound to.
        """
        self.client = client
        self.region = region

    def machine_kind(self) -> MACHINE_KIND_LITERAL:
        return "vm"

    def _create_security_group(self) -> str:
        name = f"ollama-machine-{uuid.uuid4()}"
        try:
            group = self.client.create_security_group(
                GroupName=name,
                Description="Security group for SSH and Ollama access",
            )
        except ClientError as exce:
            raise BackendError(f"unable to create security group: {exce}") from exce
        group_id = group["GroupId"]
        ui.instance().debug(f"Created security group {name} ({group_id})")

        # NOTE: The ollama port is open even for private machines; the
        # service itself only listens on loopback in that case.
        permissions = [
            {
                "IpProtocol": "tcp",
                "FromPort": SSH_DEFAULT_PORT,
                "ToPort": SSH_DEFAULT_PORT,
                "IpRanges": [
                    {"CidrIp": "0.0.0.0/0", "Description": "Allow SSH access from anywhere"}
                ],
            },
            {
                "IpProtocol": "tcp",
                "FromPort": OLLAMA_DEFAULT_PORT,
                "ToPort": OLLAMA_DEFAULT_PORT,
                "IpRanges": [{"CidrIp": "0.0.0.0/0", "Description": "Allow Ollama access"}],
            },
        ]
        try:
            self.client.authorize_security_group_ingress(
                GroupId=group_id, IpPermissions=permissions
            )
        except ClientError as exce:
            self._delete_security_group(group_id)
            raise BackendError(
                f"unable to set security group ingress rules: {exce}"
            ) from exce
        return group_id

    def _delete_security_group(self, group_id: str) -> None:
        try:
            self.client.delete_security_group(GroupId=group_id)
        except ClientError as exce:
            if error_code(exce) in GROUP_NOT_FOUND_CODES:
                return
            raise BackendError(f"failed to delete security group {group_id}: {exce}") from exce

    def _image_id(self, image: str) -> str:
        if image == "":
            raise ConfigurationError("an image is required to create an EC2 instance")
        if image.startswith("ami-"):
            return image
        try:
            images = self.client.describe_images(
                Filters=[{"Name": "name", "Values": [image]}]
            )
        except ClientError as exce:
            raise BackendError(f"failed to describe images: {exce}") from exce
        if len(images.get("Images", [])) == 0:
            raise NotFound(f"image {image}")
        return images["Images"][0]["ImageId"]

    def create(self, ctx: Context, request: CreateMachineRequest) -> ProviderMachine:
        ctx.check()
        image_id = self._image_id(request.image)
        instance_type = request.instance_type or DEFAULT_INSTANCE_TYPE
        group_id = self._create_security_group()

        tags = [
            {"Key": "Name", "Value": request.name},
            {"Key": "created_by", "Value": CREATED_BY_TAG},
            *[{"Key": k, "Value": v} for k, v in request.tags.items()],
        ]
        kwargs: dict[str, Any] = {
            "ImageId": image_id,
            "InstanceType": instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            # boto3 base64-encodes the user data
            "UserData": request.user_data.decode("utf8"),
            "NetworkInterfaces": [
                {
                    "DeviceIndex": 0,
                    "AssociatePublicIpAddress": True,
                    "DeleteOnTermination": True,
                    "Groups": [group_id],
                }
            ],
            "TagSpecifications": [{"ResourceType": "instance", "Tags": tags}],
        }
        if request.zone:
            kwargs["Placement"] = {"AvailabilityZone": request.zone}

        try:
            ctx.check()
            result = self.client.run_instances(**kwargs)
        except (ClientError, Cancelled) as exce:
            ui.instance().warning(f"Instance creation failed, removing group {group_id}")
            self._delete_security_group(group_id)
            if isinstance(exce, ClientError):
                raise BackendError(f"failed to create instance: {exce}") from exce
            raise

        machine = self.machine_from_instance(result["Instances"][0])
        machine.name = request.name
        return machine

    def _describe(self, id: str) -> Optional[dict]:
        """Return the instance description, or ``None`` if it does not exist"""
        try:
            ret = self.client.describe_instances(InstanceIds=[id])
        except ClientError as exce:
            if error_code(exce) in NOT_FOUND_CODES:
                return None
            raise BackendError(f"failed to describe instance {id}: {exce}") from exce
        reservations = ret.get("Reservations", [])
        if len(reservations) == 0 or len(reservations[0].get("Instances", [])) == 0:
            return None
        return reservations[0]["Instances"][0]

    def delete(self, ctx: Context, id: str) -> None:
        ctx.check()
        instance = self._describe(id)
        if instance is None:
            ui.instance().info(f"Instance {id} not found, already deleted")
            return

        groups = [g["GroupId"] for g in instance.get("SecurityGroups", [])]

        if instance.get("State", {}).get("Name") != "terminated":
            try:
                self.client.terminate_instances(InstanceIds=[id])
            except ClientError as exce:
                if error_code(exce) in NOT_FOUND_CODES:
                    return
                raise BackendError(f"failed to terminate instance {id}: {exce}") from exce

            timeout = float(TERMINATION_TIMEOUT)
            remaining = ctx.remaining()
            if remaining is not None:
                timeout = min(timeout, remaining)
            attempts = max(1, int(timeout // WAITER_DELAY))
            ui.instance().info(f"Waiting for instance {id} to be terminated")
            try:
                self.client.get_waiter("instance_terminated").wait(
                    InstanceIds=[id],
                    WaiterConfig={"Delay": WAITER_DELAY, "MaxAttempts": attempts},
                )
            except WaiterError as exce:
                raise BackendError(
                    f"failed to wait for instance {id} to be terminated: {exce}"
                ) from exce

        for group_id in groups:
            ctx.check()
            self._delete_security_group(group_id)

    def start(self, ctx: Context, id: str) -> None:
        ctx.check()
        try:
            self.client.start_instances(InstanceIds=[id])
        except ClientError as exce:
            raise BackendError(f"failed to start instance {id}: {exce}") from exce

    def stop(self, ctx: Context, id: str) -> None:
        ctx.check()
        try:
            self.client.stop_instances(InstanceIds=[id])
        except ClientError as exce:
            raise BackendError(f"failed to stop instance {id}: {exce}") from exce

    def get(self, ctx: Context, id: str) -> ProviderMachine:
        ctx.check()
        instance = self._describe(id)
        if instance is None:
            raise NotFound(f"instance {id}")
        return self.machine_from_instance(instance)

    def machine_from_instance(self, instance: dict) -> ProviderMachine:
        """Convert an EC2 instance description"""
        native = instance.get("State", {}).get("Name", "")
        state = STATES.get(native, "pending")

        name = ""
        for tag in instance.get("Tags", []):
            if tag.get("Key") == "Name":
                name = tag.get("Value", "")
                break

        return ProviderMachine(
            id=instance["InstanceId"],
            name=name or instance["InstanceId"],
            ip=instance.get("PublicIpAddress", ""),
            region=self.region,
            state=state,
        )


@registry.register
class AWSProvider(Provider):
    name = "aws"
    credentials_class = AWSCredentials

    def _machine_manager(self, region: Optional[str]) -> MachineManager:
        creds = self.credentials()
        assert isinstance(creds, AWSCredentials)
        try:
            client = boto3.client(
                "ec2",
                region_name=region or None,
                aws_access_key_id=creds.access_key_id,
                aws_secret_access_key=creds.secret_access_key,
                # Throttled requests are retried by botocore
                config=BotoConfig(retries={"mode": "standard", "max_attempts": 10}),
            )
        except NoRegionError as exce:
            raise ConfigurationError("a region is required for aws, use --region") from exce
        return AWSMachineManager(client, client.meta.region_name or "")
