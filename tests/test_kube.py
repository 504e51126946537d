"""Tests for the cluster client and its error translation."""

from unittest.mock import MagicMock, patch

import pytest
from kube_mock import make_deployment
from kubernetes import config
from kubernetes.client import ApiException
from urllib3.exceptions import MaxRetryError

from lbprovider.kube import (
    ClusterAPIError,
    ClusterClient,
    ConflictError,
    NotFoundError,
    is_not_found,
    load_kube_config,
)


@pytest.fixture
def apps() -> MagicMock:
    return MagicMock()


@pytest.fixture
def custom() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(apps: MagicMock, custom: MagicMock) -> ClusterClient:
    return ClusterClient(apps_api=apps, custom_api=custom)


class TestErrorTranslation:
    """Tests for ApiException translation."""

    def test_not_found(self, client: ClusterClient, custom: MagicMock) -> None:
        custom.get_namespaced_custom_object.side_effect = ApiException(
            status=404, reason="Not Found"
        )

        with pytest.raises(NotFoundError) as exc_info:
            client.get_load_balancer("ns", "lb1")

        assert exc_info.value.status == 404
        assert "ns/lb1" in str(exc_info.value)
        assert is_not_found(exc_info.value)

    def test_conflict(self, client: ClusterClient, apps: MagicMock) -> None:
        apps.replace_namespaced_deployment.side_effect = ApiException(
            status=409, reason="Conflict"
        )

        with pytest.raises(ConflictError):
            client.update_deployment("ns", make_deployment("d1"))

    def test_other_status(self, client: ClusterClient, apps: MagicMock) -> None:
        apps.create_namespaced_deployment.side_effect = ApiException(status=500, reason="Boom")

        with pytest.raises(ClusterAPIError) as exc_info:
            client.create_deployment("ns", make_deployment("d1"))

        assert not is_not_found(exc_info.value)
        assert exc_info.value.status == 500
        assert exc_info.value.reason == "Boom"

    def test_transport_error(self, client: ClusterClient, apps: MagicMock) -> None:
        apps.delete_namespaced_deployment.side_effect = MaxRetryError(None, "/apis", "refused")

        with pytest.raises(ClusterAPIError) as exc_info:
            client.delete_deployment("ns", "d1", grace_period_seconds=30)

        assert exc_info.value.status == 0


class TestClusterClientCalls:
    """Tests for the API calls issued by ClusterClient."""

    def test_get_load_balancer(self, client: ClusterClient, custom: MagicMock) -> None:
        custom.get_namespaced_custom_object.return_value = {"metadata": {"name": "lb1"}}

        assert client.get_load_balancer("ns", "lb1") == {"metadata": {"name": "lb1"}}
        custom.get_namespaced_custom_object.assert_called_once_with(
            "loadbalance.caicloud.io", "v1alpha2", "ns", "loadbalancers", "lb1"
        )

    def test_patch_status(self, client: ClusterClient, custom: MagicMock) -> None:
        body = {"status": {"providersStatuses": {"azure": None}}}

        client.patch_load_balancer_status("ns", "lb1", body)

        custom.patch_namespaced_custom_object_status.assert_called_once_with(
            "loadbalance.caicloud.io", "v1alpha2", "ns", "loadbalancers", "lb1", body
        )

    def test_update_deployment(self, client: ClusterClient, apps: MagicMock) -> None:
        deployment = make_deployment("d1")

        client.update_deployment("ns", deployment)

        apps.replace_namespaced_deployment.assert_called_once_with("d1", "ns", deployment)

    def test_patch_deployment(self, client: ClusterClient, apps: MagicMock) -> None:
        body = {"metadata": {"ownerReferences": []}}

        client.patch_deployment("ns", "d1", body)

        apps.patch_namespaced_deployment.assert_called_once_with("d1", "ns", body)

    def test_delete_deployment_options(self, client: ClusterClient, apps: MagicMock) -> None:
        client.delete_deployment("ns", "d1", grace_period_seconds=30)

        _, kwargs = apps.delete_namespaced_deployment.call_args
        options = kwargs["body"]
        assert options.grace_period_seconds == 30
        assert options.propagation_policy == "Foreground"


class TestLoadKubeConfig:
    """Tests for configuration loading."""

    def test_in_cluster(self) -> None:
        with (
            patch("lbprovider.kube.config.load_incluster_config") as incluster,
            patch("lbprovider.kube.config.load_kube_config") as kubeconfig,
        ):
            load_kube_config()

        incluster.assert_called_once_with()
        kubeconfig.assert_not_called()

    def test_falls_back_to_kubeconfig(self) -> None:
        with (
            patch(
                "lbprovider.kube.config.load_incluster_config",
                side_effect=config.ConfigException("not in cluster"),
            ),
            patch("lbprovider.kube.config.load_kube_config") as kubeconfig,
        ):
            load_kube_config()

        kubeconfig.assert_called_once_with()
