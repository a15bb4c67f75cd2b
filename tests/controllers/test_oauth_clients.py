"""
Tests for the OAuthClientsController which registers the console with the
cluster OAuth server
"""

# Standard
from unittest import mock

# Local
from console_operator import constants
from console_operator.controllers import OAuthClientsController
from console_operator.exceptions import ReasonedError, SyncProgressingError
from console_operator.status import find_condition
from console_operator.sync import resources
from console_operator.test_helpers.helpers import (
    TEST_CLIENT_SECRET,
    TEST_CONSOLE_HOST,
    TEST_CONSOLE_URL,
    FailForKinds,
    MockDeployManager,
    authentication,
    cluster_resources,
)

## Helpers #####################################################################


def without_kind(content, kind):
    return [resource for resource in content if resource["kind"] != kind]


def get_oauth_client(dm):
    return dm.get_obj(
        constants.OAUTH_CLIENT_KIND,
        constants.OPENSHIFT_CONSOLE_NAME,
        api_version=constants.OAUTH_CLIENT_API_VERSION,
    )


def get_client_secret(dm):
    secret = dm.get_obj(
        constants.SECRET_KIND,
        constants.OAUTH_CLIENT_SECRET_NAME,
        constants.TARGET_NAMESPACE,
        constants.CORE_API_VERSION,
    )
    return resources.decode_secret_value(secret, constants.CLIENT_SECRET_KEY)


def condition(dm, condition_type):
    operator_config = dm.get_obj(
        constants.OPERATOR_CONFIG_KIND,
        constants.CONFIG_RESOURCE_NAME,
        api_version=constants.OPERATOR_CONFIG_API_VERSION,
    )
    return find_condition(
        (operator_config.get("status") or {}).get("conditions"), condition_type
    )


## Tests #######################################################################


def test_register_generates_secret():
    """A missing client secret is generated and registered with the client"""
    dm = MockDeployManager(resources=cluster_resources(with_client_secret=False))
    with mock.patch(
        "console_operator.controllers.oauth_clients.random_secret",
        return_value="generated-secret",
    ):
        assert OAuthClientsController(dm).sync() is None

    assert get_client_secret(dm) == "generated-secret"
    oauth_client = get_oauth_client(dm)
    assert oauth_client["redirectURIs"] == [TEST_CONSOLE_URL + "/auth/callback"]
    assert oauth_client["secret"] == "generated-secret"
    assert oauth_client["grantMethod"] == "auto"
    assert condition(dm, "OAuthClientSecretSyncDegraded")["status"] == "False"
    assert condition(dm, "OAuthClientSyncDegraded")["status"] == "False"


def test_existing_secret_kept():
    """An existing secret is reused and a second pass makes no writes"""
    dm = MockDeployManager(resources=cluster_resources())
    controller = OAuthClientsController(dm)
    assert controller.sync() is None
    assert get_client_secret(dm) == TEST_CLIENT_SECRET
    assert get_oauth_client(dm)["secret"] == TEST_CLIENT_SECRET

    writes = dm.write_count
    assert controller.sync() is None
    assert dm.write_count == writes


def test_configured_console_url_registered():
    dm = MockDeployManager(
        resources=cluster_resources(
            operator_spec={"ingress": {"consoleURL": "https://console.example.org/"}}
        )
    )
    assert OAuthClientsController(dm).sync() is None
    assert get_oauth_client(dm)["redirectURIs"] == [
        "https://console.example.org/auth/callback"
    ]


def test_route_not_admitted_is_progressing():
    content = without_kind(cluster_resources(), constants.ROUTE_KIND)
    content.append(resources.console_route(TEST_CONSOLE_HOST))
    dm = MockDeployManager(resources=content)
    err = OAuthClientsController(dm).sync()
    assert isinstance(err, SyncProgressingError)
    progressing = condition(dm, "OAuthClientSyncProgressing")
    assert progressing["status"] == "True"
    assert progressing["reason"] == "FailedRouteGet"
    assert get_oauth_client(dm)["redirectURIs"] == []


def test_missing_oauth_client():
    """The OAuthClient is never created by the operator"""
    dm = MockDeployManager(
        resources=without_kind(cluster_resources(), constants.OAUTH_CLIENT_KIND)
    )
    err = OAuthClientsController(dm).sync()
    assert isinstance(err, ReasonedError)
    assert err.reason == "FailedGet"
    assert condition(dm, "OAuthClientSyncDegraded")["status"] == "True"
    assert get_oauth_client(dm) is None


def test_register_failure():
    dm = MockDeployManager(
        resources=cluster_resources(),
        deploy_fail=FailForKinds([constants.OAUTH_CLIENT_KIND], (False, False)),
    )
    err = OAuthClientsController(dm).sync()
    assert err.reason == "FailedRegister"
    degraded = condition(dm, "OAuthClientSyncDegraded")
    assert degraded["status"] == "True"
    assert degraded["reason"] == "FailedRegister"


def test_secret_failure_stops_registration():
    dm = MockDeployManager(
        resources=cluster_resources(with_client_secret=False),
        deploy_fail=FailForKinds([constants.SECRET_KIND], (False, False)),
    )
    err = OAuthClientsController(dm).sync()
    assert err.reason == "FailedApply"
    assert condition(dm, "OAuthClientSecretSyncDegraded")["status"] == "True"
    assert get_oauth_client(dm)["redirectURIs"] == []


def test_oidc_skips_registration():
    content = without_kind(cluster_resources(), constants.AUTHENTICATION_KIND)
    content.append(authentication(constants.AUTH_TYPE_OIDC))
    dm = MockDeployManager(resources=content)
    assert OAuthClientsController(dm).sync() is None
    assert dm.write_count == 0


def test_not_managed_skips_registration():
    dm = MockDeployManager(resources=cluster_resources(management_state="Unmanaged"))
    assert OAuthClientsController(dm).sync() is None
    assert dm.write_count == 0
