"""Network activities: VPC, subnets and the read-only network lookups."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from eks_provisioner.activities.base import Activity
from eks_provisioner.activities.models import (
    DescribeSubnetsInput,
    DescribeSubnetsOutput,
    NetworkConfigInput,
    NetworkConfigOutput,
    NetworkInput,
    NetworkOutput,
    SubnetDetail,
    SubnetInput,
    SubnetOutput,
    status_for,
)
from eks_provisioner.aws.cloudformation import (
    describe_stack,
    ensure_stack,
    require_outputs,
)
from eks_provisioner.aws.naming import ROLE_NETWORK, ROLE_SUBNET, request_token
from eks_provisioner.config.models import CLUSTER_TAG_KEY, ROLE_TAG_KEY, SubnetSpec
from eks_provisioner.errors import FatalError, StepStatus
from eks_provisioner.runtime.context import ActivityContext
from eks_provisioner.templates.provider import KIND_NETWORK, KIND_SUBNET

logger = logging.getLogger(__name__)


def _tag_filters(cluster_name: str, role: str) -> List[Dict[str, Any]]:
    return [
        {"Name": f"tag:{CLUSTER_TAG_KEY}", "Values": [cluster_name]},
        {"Name": f"tag:{ROLE_TAG_KEY}", "Values": [role]},
    ]


def _first_id(items: List[Dict[str, Any]], key: str) -> str:
    ids = sorted(i[key] for i in items if i.get(key))
    return ids[0] if ids else ""


# ---------------------------------------------------------------------------
# CreateNetwork
# ---------------------------------------------------------------------------


class CreateNetwork(Activity):
    """Ensure the cluster VPC (with gateway, route table, security group)."""

    name = "CreateNetwork"
    input_type = NetworkInput
    output_type = NetworkOutput

    def execute(self, ctx: ActivityContext, arg: NetworkInput) -> NetworkOutput:
        names = self.names(arg)
        aws = self.session_for(arg)
        cfn = aws.client("cloudformation")

        # A network built outside our stack is adopted by its tags.
        if describe_stack(cfn, names.network_stack) is None:
            existing = self.find_tagged_network(aws.client("ec2"), arg.cluster_name)
            if existing is not None:
                logger.info(
                    "Network for %s already exists (%s), reusing it.",
                    arg.cluster_name, existing.vpc_id,
                )
                return existing

        template = self.templates.get(KIND_NETWORK)
        result = ensure_stack(
            cfn,
            ctx,
            stack_name=names.network_stack,
            template_body=template,
            parameters={"ClusterName": arg.cluster_name, "VpcBlock": arg.network_cidr},
            tags=self.tags_for(arg, ROLE_NETWORK),
            token=request_token(ctx.run_id, ctx.step),
            step=ctx.step,
        )
        outputs = require_outputs(
            result, ("VpcId", "SecurityGroupId", "RouteTableId"), step=ctx.step,
        )
        return NetworkOutput(
            status=status_for(result.created),
            vpc_id=outputs["VpcId"],
            security_group_id=outputs["SecurityGroupId"],
            route_table_id=outputs["RouteTableId"],
            stack_name=result.stack_name,
        )

    def find_tagged_network(
        self, ec2: Any, cluster_name: str,
    ) -> Optional[NetworkOutput]:
        """Return the network tagged for *cluster_name*, or ``None``.

        A tagged VPC lacking its tagged security group or route table cannot
        be adopted and raises :class:`FatalError`.
        """
        filters = _tag_filters(cluster_name, ROLE_NETWORK)
        vpcs = ec2.describe_vpcs(Filters=filters).get("Vpcs", [])
        if not vpcs:
            return None
        if len(vpcs) > 1:
            raise FatalError(
                f"{len(vpcs)} VPCs are tagged for cluster {cluster_name}",
                resource=", ".join(sorted(v["VpcId"] for v in vpcs)),
            )
        vpc_id = vpcs[0]["VpcId"]
        scoped = filters + [{"Name": "vpc-id", "Values": [vpc_id]}]

        groups = ec2.describe_security_groups(Filters=scoped).get("SecurityGroups", [])
        tables = ec2.describe_route_tables(Filters=scoped).get("RouteTables", [])
        security_group_id = _first_id(groups, "GroupId")
        route_table_id = _first_id(tables, "RouteTableId")
        if not security_group_id or not route_table_id:
            raise FatalError(
                f"VPC {vpc_id} is tagged for cluster {cluster_name} but has no "
                "tagged security group or route table",
                resource=vpc_id,
            )
        return NetworkOutput(
            status=StepStatus.ALREADY_SATISFIED,
            vpc_id=vpc_id,
            security_group_id=security_group_id,
            route_table_id=route_table_id,
        )


# ---------------------------------------------------------------------------
# CreateSubnet
# ---------------------------------------------------------------------------


class CreateSubnet(Activity):
    """Ensure one subnet stack per availability zone."""

    name = "CreateSubnet"
    input_type = SubnetInput
    output_type = SubnetOutput

    def execute(self, ctx: ActivityContext, arg: SubnetInput) -> SubnetOutput:
        names = self.names(arg)
        aws = self.session_for(arg)
        cfn = aws.client("cloudformation")
        template = self.templates.get(KIND_SUBNET)

        subnet_ids: List[str] = []
        created = False
        for subnet in self.place_subnets(aws.client("ec2"), arg.subnets):
            stack_name = names.subnet_stack(subnet.availability_zone)
            result = ensure_stack(
                cfn,
                ctx,
                stack_name=stack_name,
                template_body=template,
                parameters={
                    "ClusterName": arg.cluster_name,
                    "VpcId": arg.vpc_id,
                    "RouteTableId": arg.route_table_id,
                    "SubnetBlock": subnet.cidr,
                    "AvailabilityZoneName": subnet.availability_zone,
                },
                tags=self.tags_for(arg, ROLE_SUBNET),
                token=request_token(ctx.run_id, f"{ctx.step}/{subnet.availability_zone}"),
                step=ctx.step,
            )
            outputs = require_outputs(result, ("SubnetId",), step=ctx.step)
            subnet_ids.append(outputs["SubnetId"])
            created = created or result.created
            ctx.heartbeat({"subnets_ready": len(subnet_ids)})

        return SubnetOutput(status=status_for(created), subnet_ids=subnet_ids)

    @staticmethod
    def place_subnets(ec2: Any, subnets: List[SubnetSpec]) -> List[SubnetSpec]:
        """Give every zone-less subnet one of the region's available zones.

        Zones are taken in sorted order, skipping zones already named by an
        explicit subnet, so the first two available zones are used for the
        derived pair.
        """
        if all(s.availability_zone for s in subnets):
            return list(subnets)
        response = ec2.describe_availability_zones(
            Filters=[{"Name": "state", "Values": ["available"]}],
        )
        taken = {s.availability_zone for s in subnets if s.availability_zone}
        free = sorted(
            z["ZoneName"] for z in response.get("AvailabilityZones", [])
            if z.get("ZoneName") and z["ZoneName"] not in taken
        )
        needed = sum(1 for s in subnets if not s.availability_zone)
        if len(free) < needed:
            raise FatalError(
                f"{needed} subnet(s) need an availability zone but only "
                f"{len(free)} unused zone(s) are available",
                details={"available": free},
            )
        placed = []
        for subnet in subnets:
            if subnet.availability_zone:
                placed.append(subnet)
            else:
                placed.append(subnet.model_copy(update={"availability_zone": free.pop(0)}))
        return placed


# ---------------------------------------------------------------------------
# Read-only lookups
# ---------------------------------------------------------------------------


class DescribeSubnets(Activity):
    """Describe subnets and the route tables associated with them."""

    name = "DescribeSubnets"
    input_type = DescribeSubnetsInput
    output_type = DescribeSubnetsOutput

    def execute(
        self, ctx: ActivityContext, arg: DescribeSubnetsInput,
    ) -> DescribeSubnetsOutput:
        ec2 = self.session_for(arg).client("ec2")
        subnets = ec2.describe_subnets(SubnetIds=list(arg.subnet_ids)).get("Subnets", [])
        by_id = {s["SubnetId"]: s for s in subnets}
        missing = [sid for sid in arg.subnet_ids if sid not in by_id]
        if missing:
            raise FatalError(
                f"subnet(s) not found: {', '.join(missing)}", resource=arg.cluster_name,
            )

        tables = ec2.describe_route_tables(
            Filters=[{"Name": "association.subnet-id", "Values": list(arg.subnet_ids)}],
        ).get("RouteTables", [])
        route_for: Dict[str, str] = {}
        for table in tables:
            for assoc in table.get("Associations", []):
                if assoc.get("SubnetId"):
                    route_for[assoc["SubnetId"]] = table["RouteTableId"]

        details = [
            SubnetDetail(
                subnet_id=sid,
                vpc_id=by_id[sid].get("VpcId", ""),
                availability_zone=by_id[sid].get("AvailabilityZone", ""),
                cidr_block=by_id[sid].get("CidrBlock", ""),
                route_table_id=route_for.get(sid, ""),
                map_public_ip_on_launch=bool(by_id[sid].get("MapPublicIpOnLaunch")),
            )
            for sid in arg.subnet_ids
        ]
        return DescribeSubnetsOutput(subnets=details)


class DescribeNetworkConfig(Activity):
    """Collect the VPC-level settings the control plane is created with."""

    name = "DescribeNetworkConfig"
    input_type = NetworkConfigInput
    output_type = NetworkConfigOutput

    def execute(
        self, ctx: ActivityContext, arg: NetworkConfigInput,
    ) -> NetworkConfigOutput:
        ec2 = self.session_for(arg).client("ec2")
        vpcs = ec2.describe_vpcs(VpcIds=[arg.vpc_id]).get("Vpcs", [])
        if not vpcs:
            raise FatalError(f"VPC {arg.vpc_id} not found", resource=arg.vpc_id)

        dns_support = ec2.describe_vpc_attribute(
            VpcId=arg.vpc_id, Attribute="enableDnsSupport",
        )
        dns_hostnames = ec2.describe_vpc_attribute(
            VpcId=arg.vpc_id, Attribute="enableDnsHostnames",
        )
        groups = ec2.describe_security_groups(
            Filters=[
                {"Name": "vpc-id", "Values": [arg.vpc_id]},
                {"Name": f"tag:{CLUSTER_TAG_KEY}", "Values": [arg.cluster_name]},
            ],
        ).get("SecurityGroups", [])

        return NetworkConfigOutput(
            vpc_id=arg.vpc_id,
            cidr_block=vpcs[0].get("CidrBlock", ""),
            security_group_ids=sorted(g["GroupId"] for g in groups),
            enable_dns_support=bool(
                dns_support.get("EnableDnsSupport", {}).get("Value"),
            ),
            enable_dns_hostnames=bool(
                dns_hostnames.get("EnableDnsHostnames", {}).get("Value"),
            ),
        )
