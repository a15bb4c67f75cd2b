"""
Tests for the OIDCSetupController which wires the console to an external OIDC
provider and reports back on the Authentication status
"""

# Third Party
import pytest

# Local
from console_operator import constants
from console_operator.controllers import OIDCSetupController
from console_operator.status import find_condition
from console_operator.sync import ConsoleOperator, resources
from console_operator.test_helpers.helpers import (
    TEST_CLIENT_SECRET,
    TEST_OIDC_CLIENT_ID,
    MockDeployManager,
    authentication,
    cluster_resources,
    mark_deployment_available,
    oidc_client_secret,
    oidc_provider,
)

## Helpers #####################################################################


def oidc_resources(provider=None, with_source_secret=True):
    content = [
        resource
        for resource in cluster_resources(with_client_secret=False)
        if resource["kind"] != constants.AUTHENTICATION_KIND
        and resource["metadata"]["name"] != constants.OAUTH_SERVING_CERT_CONFIG_MAP_NAME
    ]
    content.append(
        authentication(
            constants.AUTH_TYPE_OIDC,
            oidc_providers=[provider if provider is not None else oidc_provider()],
        )
    )
    if with_source_secret:
        content.append(oidc_client_secret())
    return content


def console_entry(dm):
    authn = dm.get_obj(
        constants.AUTHENTICATION_KIND,
        constants.CONFIG_RESOURCE_NAME,
        api_version=constants.AUTHENTICATION_API_VERSION,
    )
    for client in (authn.get("status") or {}).get("oidcClients") or []:
        if client["componentName"] == constants.OPENSHIFT_CONSOLE_NAME:
            return client
    return None


def auth_condition(dm, condition_type):
    return find_condition(console_entry(dm).get("conditions"), condition_type)


def operator_condition(dm, condition_type):
    operator_config = dm.get_obj(
        constants.OPERATOR_CONFIG_KIND,
        constants.CONFIG_RESOURCE_NAME,
        api_version=constants.OPERATOR_CONFIG_API_VERSION,
    )
    return find_condition(
        (operator_config.get("status") or {}).get("conditions"), condition_type
    )


def copied_secret_value(dm):
    secret = dm.get_obj(
        constants.SECRET_KIND,
        constants.OAUTH_CLIENT_SECRET_NAME,
        constants.TARGET_NAMESPACE,
        constants.CORE_API_VERSION,
    )
    return resources.decode_secret_value(secret, constants.CLIENT_SECRET_KEY)


## Tests #######################################################################


def test_oidc_rollout_progression():
    """The client secret is copied and the Authentication status moves from
    Progressing to Available once the deployment runs with it
    """
    dm = MockDeployManager(resources=oidc_resources())
    controller = OIDCSetupController(dm)

    assert controller.sync() is None
    assert copied_secret_value(dm) == TEST_CLIENT_SECRET
    entry = console_entry(dm)
    assert entry["currentOIDCClients"][0]["clientID"] == TEST_OIDC_CLIENT_ID
    progressing = auth_condition(dm, "Progressing")
    assert progressing["status"] == "True"
    assert progressing["reason"] == "DeploymentOIDCConfig"
    assert operator_condition(dm, "OIDCClientConfigDegraded")["status"] == "False"
    assert operator_condition(dm, "OIDCClientSecretSyncDegraded")["status"] == "False"
    assert operator_condition(dm, "AuthStatusHandlerDegraded")["status"] == "False"

    assert ConsoleOperator(dm).sync() is None
    mark_deployment_available(dm)
    assert controller.sync() is None
    available = auth_condition(dm, "Available")
    assert available["status"] == "True"
    assert available["reason"] == "OIDCConfigAvailable"
    assert auth_condition(dm, "Progressing")["status"] == "False"


def test_rotated_secret_waits_for_rollout():
    """A new client secret is not reported available until the deployment
    picked it up
    """
    dm = MockDeployManager(resources=oidc_resources())
    controller = OIDCSetupController(dm)
    controller.sync()
    ConsoleOperator(dm).sync()
    mark_deployment_available(dm)
    controller.sync()
    assert auth_condition(dm, "Available")["status"] == "True"

    dm.deploy([oidc_client_secret("rotated-value")])
    assert controller.sync() is None
    assert copied_secret_value(dm) == "rotated-value"
    assert auth_condition(dm, "Progressing")["status"] == "True"


def test_missing_client_id():
    dm = MockDeployManager(resources=oidc_resources(oidc_provider(client_id=None)))
    err = OIDCSetupController(dm).sync()
    assert err.reason == "MissingID"
    assert operator_condition(dm, "OIDCClientConfigDegraded")["status"] == "True"
    degraded = auth_condition(dm, "Degraded")
    assert degraded["status"] == "True"
    assert degraded["reason"] == "OIDCClientMissingID"
    assert "currentOIDCClients" not in console_entry(dm)


def test_missing_secret_name():
    dm = MockDeployManager(resources=oidc_resources(oidc_provider(secret_name=None)))
    assert OIDCSetupController(dm).sync() is None
    assert auth_condition(dm, "Degraded")["reason"] == "OIDCClientMissingSecret"
    assert copied_secret_value(dm) == ""


def test_missing_source_secret():
    dm = MockDeployManager(resources=oidc_resources(with_source_secret=False))
    err = OIDCSetupController(dm).sync()
    assert err.reason == "FailedGet"
    degraded = auth_condition(dm, "Degraded")
    assert degraded["status"] == "True"
    assert degraded["reason"] == "OIDCClientSecretGet"


def test_no_console_client():
    """A provider without an entry for the console reports unavailable"""
    provider = oidc_provider()
    provider["oidcClients"] = []
    dm = MockDeployManager(resources=oidc_resources(provider))
    assert OIDCSetupController(dm).sync() is None
    available = auth_condition(dm, "Available")
    assert available["status"] == "False"
    assert available["reason"] == "OIDCClientConfig"
    assert "currentOIDCClients" not in console_entry(dm)


def test_integrated_oauth_releases_client():
    dm = MockDeployManager(resources=cluster_resources())
    assert OIDCSetupController(dm).sync() is None
    entry = console_entry(dm)
    assert "currentOIDCClients" not in entry
    assert "conditions" not in entry


def test_auth_status_apply_failure():
    dm = MockDeployManager(resources=cluster_resources(), apply_status_fail=True)
    err = OIDCSetupController(dm).sync()
    assert err.reason == "FailedApply"
    degraded = operator_condition(dm, "AuthStatusHandlerDegraded")
    assert degraded["status"] == "True"
    assert degraded["reason"] == "FailedApply"


@pytest.mark.parametrize("management_state", ["Unmanaged", "Removed"])
def test_not_managed(management_state):
    dm = MockDeployManager(
        resources=oidc_resources()[1:]
        + [cluster_resources(management_state=management_state)[0]]
    )
    assert OIDCSetupController(dm).sync() is None
    assert dm.write_count == 0
