"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import Callable, Iterable, List, Optional
from unittest import mock
import copy
import inspect
import os
import time

# First Party
import alog

# Local
from console_operator import constants
from console_operator.config import library_config as config_detail_dict
from console_operator.deploy_manager import DryRunDeployManager
from console_operator.sync import resources

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INGRESS_DOMAIN = "apps.example.com"
TEST_CONSOLE_HOST = resources.default_route_host(TEST_INGRESS_DOMAIN)
TEST_CONSOLE_URL = f"https://{TEST_CONSOLE_HOST}"
TEST_CA_BUNDLE = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"
TEST_CLIENT_SECRET = "s3cr3t-client-value"
TEST_OIDC_CLIENT_ID = "console-oidc-client"
TEST_OIDC_SECRET_NAME = "console-oidc-secret"


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion. A dict value for a nested section only overrides the
    keys it holds.
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    old_nested = {}
    for key, val in config_overrides.items():
        section = config_detail_dict.get(key)
        if isinstance(val, dict) and isinstance(section, dict):
            old_nested[key] = {sub: section[sub] for sub in val if sub in section}
            for sub_key, sub_val in val.items():
                section[sub_key] = sub_val
            continue
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key, val in config_overrides.items():
            if key in old_nested:
                section = config_detail_dict[key]
                for sub_key in val:
                    if sub_key in old_nested[key]:
                        section[sub_key] = old_nested[key][sub_key]
                    else:
                        del section[sub_key]
            elif key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


## Failure injection ###########################################################


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            res = fail_flag(*args, **kwargs)
            if res is not None:
                return res
        elif fail_flag == "assert":
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        return method(*args, **kwargs)

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        return None


class FailForKinds:
    """Fail flag that only fails calls about objects of the given kinds"""

    def __init__(self, kinds: Iterable[str], fail_val=(False, None)):
        self.kinds = set(kinds)
        self.fail_val = fail_val

    def __call__(self, *args, **kwargs):
        kind = kwargs.get("kind", args[0] if args else None)
        if isinstance(kind, list):
            kind = (kind[0] if kind else {}).get("kind")
        if kind in self.kinds:
            log.debug("Failing call for kind %s", kind)
            return self.fail_val
        return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        deploy_fail=False,
        disable_fail=False,
        get_state_fail=False,
        set_status_fail=False,
        apply_status_fail=False,
        watch_fail=False,
        auto_enable=True,
        resources=None,
        **kwargs,
    ):
        super().__init__(resources, **kwargs)
        self.deploy_fail = deploy_fail
        self.disable_fail = disable_fail
        self.get_state_fail = get_state_fail
        self.set_status_fail = set_status_fail
        self.apply_status_fail = apply_status_fail
        self.watch_fail = watch_fail
        if auto_enable:
            self.enable_mocks()

    ## Helpers for Tests #######################################################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.deploy = mock.Mock(
            side_effect=get_failable_method(
                self.deploy_fail, super().deploy, (False, False)
            )
        )
        self.disable = mock.Mock(
            side_effect=get_failable_method(
                self.disable_fail, super().disable, (False, False)
            )
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )
        self.apply_status = mock.Mock(
            side_effect=get_failable_method(
                self.apply_status_fail, super().apply_status, (False, False)
            )
        )
        self.watch_objects = mock.Mock(
            side_effect=get_failable_method(self.watch_fail, super().watch_objects, [])
        )

    def written_kinds(self) -> List[str]:
        """Kinds of every object passed to deploy or disable so far"""
        kinds = []
        for call in self.deploy.call_args_list + self.disable.call_args_list:
            kinds.extend(resource.get("kind") for resource in call[0][0])
        return kinds

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return self.get_object_current_state(kind, name, namespace, api_version)[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None


## Resource factories ##########################################################


def operator_config(
    management_state: str = "Managed",
    spec: Optional[dict] = None,
    generation: int = 1,
    conditions: Optional[List[dict]] = None,
) -> dict:
    content = {
        "apiVersion": constants.OPERATOR_CONFIG_API_VERSION,
        "kind": constants.OPERATOR_CONFIG_KIND,
        "metadata": {"name": constants.CONFIG_RESOURCE_NAME, "generation": generation},
        "spec": dict(spec or {}, managementState=management_state),
    }
    if conditions is not None:
        content["status"] = {"conditions": conditions}
    return content


def console_config(console_url: Optional[str] = None) -> dict:
    content = {
        "apiVersion": constants.CONSOLE_CONFIG_API_VERSION,
        "kind": constants.CONSOLE_CONFIG_KIND,
        "metadata": {"name": constants.CONFIG_RESOURCE_NAME},
        "spec": {},
    }
    if console_url is not None:
        content["status"] = {"consoleURL": console_url}
    return content


def authentication(
    auth_type: str = constants.AUTH_TYPE_INTEGRATED_OAUTH,
    oidc_providers: Optional[List[dict]] = None,
) -> dict:
    spec = {"type": auth_type}
    if oidc_providers is not None:
        spec["oidcProviders"] = oidc_providers
    return {
        "apiVersion": constants.AUTHENTICATION_API_VERSION,
        "kind": constants.AUTHENTICATION_KIND,
        "metadata": {"name": constants.CONFIG_RESOURCE_NAME},
        "spec": spec,
    }


def oidc_provider(
    client_id: Optional[str] = TEST_OIDC_CLIENT_ID,
    secret_name: Optional[str] = TEST_OIDC_SECRET_NAME,
    ca_name: Optional[str] = None,
) -> dict:
    client = {
        "componentName": constants.OPENSHIFT_CONSOLE_NAME,
        "componentNamespace": constants.TARGET_NAMESPACE,
    }
    if client_id:
        client["clientID"] = client_id
    if secret_name:
        client["clientSecret"] = {"name": secret_name}
    issuer = {"issuerURL": "https://issuer.example.com", "audiences": ["console"]}
    if ca_name:
        issuer["certificateAuthority"] = {"name": ca_name}
    return {"name": "example-idp", "issuer": issuer, "oidcClients": [client]}


def ingress_config(domain: str = TEST_INGRESS_DOMAIN) -> dict:
    return {
        "apiVersion": constants.INGRESS_API_VERSION,
        "kind": constants.INGRESS_KIND,
        "metadata": {"name": constants.CONFIG_RESOURCE_NAME},
        "spec": {"domain": domain},
    }


def route_status(host: str = TEST_CONSOLE_HOST, admitted: bool = True) -> dict:
    return {
        "ingress": [
            {
                "host": host,
                "routerName": "default",
                "conditions": [
                    {"type": "Admitted", "status": "True" if admitted else "False"}
                ],
            }
        ]
    }


def admitted_route(host: str = TEST_CONSOLE_HOST, admitted: bool = True) -> dict:
    route = resources.console_route(host)
    route["status"] = route_status(host, admitted)
    return route


def config_map(name: str, namespace: str, data: Optional[dict] = None, **kwargs) -> dict:
    content = {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.CONFIG_MAP_KIND,
        "metadata": {"name": name, "namespace": namespace},
    }
    if data is not None:
        content["data"] = data
    content.update(kwargs)
    return content


def oauth_serving_cert_config_map(bundle: Optional[str] = TEST_CA_BUNDLE) -> dict:
    return config_map(
        constants.OAUTH_SERVING_CERT_CONFIG_MAP_NAME,
        constants.OPENSHIFT_CONFIG_MANAGED_NAMESPACE,
        {constants.CA_BUNDLE_KEY: bundle} if bundle else {},
    )


def default_ingress_cert_config_map(bundle: str = TEST_CA_BUNDLE) -> dict:
    return config_map(
        constants.DEFAULT_INGRESS_CERT_CONFIG_MAP_NAME,
        constants.OPENSHIFT_CONFIG_MANAGED_NAMESPACE,
        {constants.CA_BUNDLE_KEY: bundle},
    )


def injected_trusted_ca_config_map(bundle: str = TEST_CA_BUNDLE) -> dict:
    """The trusted CA config map as it looks once the bundle was injected"""
    content = resources.trusted_ca_config_map()
    content["data"] = {constants.CA_BUNDLE_KEY: bundle}
    return content


def client_secret(value: str = TEST_CLIENT_SECRET) -> dict:
    return resources.oauth_client_secret(value)


def oidc_client_secret(
    value: str = TEST_CLIENT_SECRET, name: str = TEST_OIDC_SECRET_NAME
) -> dict:
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.SECRET_KIND,
        "metadata": {"name": name, "namespace": constants.OPENSHIFT_CONFIG_NAMESPACE},
        "data": resources.encode_secret_data({constants.CLIENT_SECRET_KEY: value}),
    }


def oauth_client(redirect_uris: Optional[List[str]] = None) -> dict:
    return {
        "apiVersion": constants.OAUTH_CLIENT_API_VERSION,
        "kind": constants.OAUTH_CLIENT_KIND,
        "metadata": {"name": constants.OPENSHIFT_CONSOLE_NAME},
        "grantMethod": "auto",
        "redirectURIs": list(redirect_uris or []),
    }


def cluster_resources(
    management_state: str = "Managed",
    auth_type: str = constants.AUTH_TYPE_INTEGRATED_OAUTH,
    with_client_secret: bool = True,
    operator_spec: Optional[dict] = None,
) -> List[dict]:
    """Everything a managed console needs to exist before a pass"""
    content = [
        operator_config(management_state, spec=operator_spec),
        console_config(),
        authentication(auth_type),
        ingress_config(),
        admitted_route(),
        oauth_serving_cert_config_map(),
        default_ingress_cert_config_map(),
        oauth_client(),
    ]
    if with_client_secret:
        content.append(client_secret())
    return content


## Cluster helpers #############################################################


def mark_deployment_available(deploy_manager: DryRunDeployManager):
    """Pretend the console deployment fully rolled out"""
    deployment = deploy_manager.get_object_current_state(
        kind=constants.DEPLOYMENT_KIND,
        name=constants.OPENSHIFT_CONSOLE_NAME,
        namespace=constants.TARGET_NAMESPACE,
        api_version=constants.DEPLOYMENT_API_VERSION,
    )[1]
    assert deployment is not None, "No console deployment to mark available"
    replicas = deployment["spec"]["replicas"]
    deploy_manager.set_status(
        kind=constants.DEPLOYMENT_KIND,
        name=constants.OPENSHIFT_CONSOLE_NAME,
        namespace=constants.TARGET_NAMESPACE,
        api_version=constants.DEPLOYMENT_API_VERSION,
        status={
            "replicas": replicas,
            "readyReplicas": replicas,
            "availableReplicas": replicas,
            "updatedReplicas": replicas,
            "observedGeneration": deployment["metadata"]["generation"],
        },
    )


def admit_route(deploy_manager: DryRunDeployManager, host: str = TEST_CONSOLE_HOST):
    """Pretend the router admitted the console route"""
    deploy_manager.set_status(
        kind=constants.ROUTE_KIND,
        name=constants.OPENSHIFT_CONSOLE_NAME,
        namespace=constants.TARGET_NAMESPACE,
        api_version=constants.ROUTE_API_VERSION,
        status=route_status(host),
    )


def inject_trusted_ca(deploy_manager: DryRunDeployManager, bundle: str = TEST_CA_BUNDLE):
    """Pretend the network operator injected the trusted CA bundle"""
    deploy_manager.deploy([injected_trusted_ca_config_map(bundle)])


# Server owned fields that differ between two otherwise identical objects
_SERVER_METADATA = ["resourceVersion", "uid", "creationTimestamp", "generation", "managedFields"]


def strip_server_state(resource: Optional[dict]) -> Optional[dict]:
    """Copy of the object without server owned metadata or version
    annotations, for comparing objects written in different passes
    """
    if resource is None:
        return None
    stripped = copy.deepcopy(resource)
    for field in _SERVER_METADATA:
        stripped.get("metadata", {}).pop(field, None)
    annotations = (
        stripped.get("spec", {}).get("template", {}).get("metadata", {}).get("annotations")
    )
    if annotations:
        for name in list(annotations):
            if name.endswith("-version"):
                annotations[name] = "<version>"
    return stripped


def wait_for(condition: Callable[[], bool], timeout: float = 3.0, poll: float = 0.01) -> bool:
    """Poll until the condition holds or the timeout passes"""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition():
            return True
        time.sleep(poll)
    return condition()
