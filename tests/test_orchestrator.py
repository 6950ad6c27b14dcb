"""
Tests for the environment lifecycle flows.
"""

import asyncio

import pytest
from unittest.mock import Mock

from clusternator.aws import InstanceConfig
from clusternator.config import Config
from clusternator.errors import ConflictError, NotFoundError, PreconditionError, RemoteError
from clusternator.ids import generate_rid
from clusternator.orchestrator import Orchestrator, Step, StepPolicy, parallel, run_steps
from clusternator.tags import EnvironmentKey


def make_orchestrator():
    """Orchestrator whose managers all hang off one mock, so call order is recorded."""
    aws = Mock()
    aws.subnets.find_available.return_value = "subnet-abc"
    aws.security_groups.create.return_value = "sg-1"
    aws.clusters.create.return_value = {"clusterName": "c", "clusterArn": "arn:cluster"}
    aws.clusters.describe.return_value = {"clusterArn": "arn:cluster", "status": "ACTIVE"}
    aws.instances.create_instance.return_value = [{"InstanceId": "i-1"}]
    aws.instances.get_address.return_value = "54.1.2.3"
    aws.task_services.create.return_value = {"serviceName": "svc"}
    aws.dns.create.return_value = {"Name": "proj1-pr-42.example.com."}

    orchestrator = Orchestrator(
        subnets=aws.subnets,
        security_groups=aws.security_groups,
        instances=aws.instances,
        clusters=aws.clusters,
        task_services=aws.task_services,
        dns=aws.dns,
    )
    return orchestrator, aws


def call_names(aws):
    return [name for name, _, _ in aws.mock_calls]


class TestRunSteps:
    """Test the shared step runner."""

    def test_results_feed_later_steps(self):
        """Test step results are visible to later steps."""
        async def first(ctx):
            return 1

        async def second(ctx):
            return ctx["first"] + 1

        context = asyncio.run(run_steps("test", [Step("first", first), Step("second", second)]))

        assert context == {"first": 1, "second": 2}

    def test_strict_failure_stops_flow(self):
        """Test a strict failure aborts the flow."""
        ran = []

        async def broken(ctx):
            raise RemoteError("nope")

        async def after(ctx):
            ran.append("after")

        with pytest.raises(RemoteError):
            asyncio.run(run_steps("test", [Step("broken", broken), Step("after", after)]))

        assert ran == []

    def test_best_effort_failure_continues(self):
        """Test a best-effort failure is recorded as None."""
        async def broken(ctx):
            raise RuntimeError("nope")

        async def after(ctx):
            return "ok"

        context = asyncio.run(run_steps("test", [
            Step("broken", broken, StepPolicy.BEST_EFFORT),
            Step("after", after, StepPolicy.BEST_EFFORT),
        ]))

        assert context == {"broken": None, "after": "ok"}

    def test_parallel_collects_named_results(self):
        """Test parallel actions return results by name."""
        async def a(ctx):
            return "a"

        async def b(ctx):
            return "b"

        assert asyncio.run(parallel(a=a, b=b)({})) == {"a": "a", "b": "b"}


class TestCreate:
    """Test the strict create flow."""

    def test_end_to_end_order(self):
        """Test create provisions every resource in order."""
        orchestrator, aws = make_orchestrator()
        key = EnvironmentKey.for_pr("proj1", "42")
        cluster_name = generate_rid({"pid": "proj1", "pr": "42"})

        asyncio.run(orchestrator.create_pr("proj1", "42", {"name": "svc"}))

        aws.security_groups.create.assert_called_once_with(key)
        aws.clusters.create.assert_called_once_with(cluster_name)
        aws.instances.create_instance.assert_called_once_with(InstanceConfig(
            cluster_name=cluster_name,
            key=key,
            security_group_id="sg-1",
            subnet_id="subnet-abc",
            auth=None,
        ))
        aws.task_services.create.assert_called_once_with(cluster_name, cluster_name, {"name": "svc"})
        aws.dns.create.assert_called_once_with(key, "54.1.2.3")

        names = call_names(aws)
        assert names[0] == "subnets.find_available"
        assert set(names[1:3]) == {"security_groups.create", "clusters.create"}
        assert names[3:] == [
            "instances.create_instance",
            "task_services.create",
            "instances.get_address",
            "dns.create",
        ]

    def test_security_group_failure_aborts(self):
        """Test a security group conflict aborts create."""
        orchestrator, aws = make_orchestrator()
        aws.security_groups.create.side_effect = ConflictError("exists")

        with pytest.raises(ConflictError):
            asyncio.run(orchestrator.create_pr("proj1", "42", {"name": "svc"}))

        aws.instances.create_instance.assert_not_called()
        aws.task_services.create.assert_not_called()
        aws.dns.create.assert_not_called()

    def test_no_subnet_aborts(self):
        """Test a missing subnet aborts before any create."""
        orchestrator, aws = make_orchestrator()
        aws.subnets.find_available.side_effect = PreconditionError("no subnet")

        with pytest.raises(PreconditionError):
            asyncio.run(orchestrator.create_pr("proj1", "42", {"name": "svc"}))

        aws.security_groups.create.assert_not_called()
        aws.clusters.create.assert_not_called()

    def test_requires_app_definition(self):
        """Test create needs an application definition."""
        orchestrator, aws = make_orchestrator()

        with pytest.raises(PreconditionError):
            asyncio.run(orchestrator.create_pr("proj1", "42", None))

        assert aws.mock_calls == []

    def test_deployment_variant(self):
        """Test create for a deployment key."""
        orchestrator, aws = make_orchestrator()

        asyncio.run(orchestrator.create_deployment("proj1", "master", {"name": "svc"}))

        aws.security_groups.create.assert_called_once_with(EnvironmentKey.for_deployment("proj1", "master"))
        aws.clusters.create.assert_called_once_with("clusternator-pid-proj1--deployment-master")


class TestDestroy:
    """Test the best-effort destroy flow."""

    def test_every_step_runs_in_reverse_order(self):
        """Test destroy runs every step in reverse order."""
        orchestrator, aws = make_orchestrator()

        result = asyncio.run(orchestrator.destroy_pr("proj1", "42"))

        assert result == "clusternator-pid-proj1--pr-42"
        assert call_names(aws) == [
            "dns.destroy",
            "clusters.deregister_all",
            "instances.destroy",
            "clusters.describe",
            "task_services.destroy",
            "clusters.destroy",
            "security_groups.destroy",
        ]

    def test_task_service_failure_does_not_stop_destroy(self):
        """Test a failed step does not stop destroy."""
        orchestrator, aws = make_orchestrator()
        aws.task_services.destroy.side_effect = Exception("stub failure")
        key = EnvironmentKey.for_pr("proj1", "42")

        asyncio.run(orchestrator.destroy(key))

        aws.clusters.destroy.assert_called_once_with(key.cluster_name)
        aws.security_groups.destroy.assert_called_once_with(key)

    def test_every_step_failing_still_succeeds(self):
        """Test destroy returns the cluster name even if every step fails."""
        orchestrator, aws = make_orchestrator()
        for manager in (aws.dns, aws.instances, aws.security_groups):
            manager.destroy.side_effect = NotFoundError("gone")
        aws.clusters.describe.side_effect = NotFoundError("gone")
        aws.clusters.deregister_all.side_effect = RemoteError("throttled")
        aws.clusters.destroy.side_effect = RemoteError("throttled")

        result = asyncio.run(orchestrator.destroy_deployment("proj1", "master"))

        assert result == "clusternator-pid-proj1--deployment-master"
        aws.security_groups.destroy.assert_called_once()


class TestUpdate:
    """Test replacing an environment's services."""

    def test_replaces_services_only(self):
        """Test update only replaces the services."""
        orchestrator, aws = make_orchestrator()
        app_def = {"name": "svc", "containers": []}

        service = asyncio.run(orchestrator.update_pr("proj1", "42", app_def))

        assert service == {"serviceName": "svc"}
        assert call_names(aws) == ["clusters.describe", "task_services.destroy", "task_services.create"]
        aws.task_services.destroy.assert_called_once_with("arn:cluster", wait=True)

    def test_missing_cluster(self):
        """Test update of a missing cluster raises NotFoundError."""
        orchestrator, aws = make_orchestrator()
        aws.clusters.describe.side_effect = NotFoundError("no cluster")

        with pytest.raises(NotFoundError):
            asyncio.run(orchestrator.update_pr("proj1", "42", {"name": "svc"}))

        aws.task_services.destroy.assert_not_called()
        aws.task_services.create.assert_not_called()


class TestDescribe:
    """Test environment snapshots."""

    def test_snapshot(self):
        """Test describe gathers every resource."""
        orchestrator, aws = make_orchestrator()
        aws.security_groups.describe_key.return_value = [{"GroupId": "sg-1"}]
        aws.instances.describe.return_value = [{"InstanceId": "i-1", "State": {"Name": "running"}}]
        aws.task_services.list_services.return_value = ["arn:svc"]
        aws.dns.describe.return_value = None

        snapshot = asyncio.run(orchestrator.describe_pr("proj1", "42"))

        assert snapshot["cluster_name"] == "clusternator-pid-proj1--pr-42"
        assert snapshot["security_groups"] == ["sg-1"]
        assert snapshot["instances"] == [{"InstanceId": "i-1", "State": "running"}]
        assert snapshot["services"] == ["arn:svc"]
        assert snapshot["dns"] is None

    def test_missing_cluster_has_no_services(self):
        """Test describe without a cluster skips services."""
        orchestrator, aws = make_orchestrator()
        aws.security_groups.describe_key.return_value = []
        aws.instances.describe.return_value = []
        aws.clusters.describe.side_effect = NotFoundError("no cluster")

        snapshot = asyncio.run(orchestrator.describe_deployment("proj1", "master"))

        assert snapshot["cluster"] is None
        assert snapshot["services"] == []
        aws.task_services.list_services.assert_not_called()


class TestListEnvironments:
    """Test listing a project's environments from security group tags."""

    def test_keys_from_group_tags(self):
        """Test each tagged group yields its environment key once."""
        orchestrator, aws = make_orchestrator()
        aws.security_groups.describe_project.return_value = [
            {"GroupId": "sg-1", "Tags": [
                {"Key": "clusternator", "Value": "true"},
                {"Key": "project", "Value": "proj1"},
                {"Key": "pr", "Value": "42"},
            ]},
            {"GroupId": "sg-2", "Tags": [
                {"Key": "clusternator", "Value": "true"},
                {"Key": "project", "Value": "proj1"},
                {"Key": "deployment", "Value": "master"},
            ]},
            {"GroupId": "sg-3", "Tags": [
                {"Key": "clusternator", "Value": "true"},
                {"Key": "project", "Value": "proj1"},
                {"Key": "pr", "Value": "42"},
            ]},
            {"GroupId": "sg-4"},
        ]

        keys = asyncio.run(orchestrator.list_environments("proj1"))

        assert keys == [
            EnvironmentKey.for_pr("proj1", "42"),
            EnvironmentKey.for_deployment("proj1", "master"),
        ]
        aws.security_groups.describe_project.assert_called_once_with("proj1")

    def test_requires_project(self):
        """Test listing needs a project id."""
        orchestrator, aws = make_orchestrator()

        with pytest.raises(PreconditionError):
            asyncio.run(orchestrator.list_environments(""))

        aws.security_groups.describe_project.assert_not_called()


class TestFromConfig:
    """Test building an orchestrator from configuration."""

    def test_requires_vpc_and_zone(self):
        """Test VPC and zone ids are required."""
        with pytest.raises(PreconditionError):
            Orchestrator.from_config(Config(vpc_id="vpc-1"), clients=Mock())

    def test_wires_managers(self):
        """Test managers are built from the clients and config."""
        clients = Mock()
        config = Config(vpc_id="vpc-1", zone_id="Z1",
                        registry_auth={"username": "u", "password": "p", "email": "e"})

        orchestrator = Orchestrator.from_config(config, clients=clients)

        assert orchestrator.security_groups.vpc_id == "vpc-1"
        assert orchestrator.security_groups.ec2 is clients.ec2
        assert orchestrator.clusters.ecs is clients.ecs
        assert orchestrator.dns.zone_id == "Z1"
        assert orchestrator.registry_auth.email == "e"
