"""
Desired state builders for the resources that make up a running console. Every
builder is a pure function of its inputs so that a pass given the same inputs
always produces the same manifests.
"""

# Standard
from typing import Dict, List, Optional
import base64
import copy

# Third Party
import yaml

# Local
from .. import config, constants
from ..utils import nested_get, random_secret

# Key lengths of the session secret (AES-256 and HMAC SHA256 block size)
SESSION_ENCRYPTION_KEY_LEN = 32
SESSION_AUTHENTICATION_KEY_LEN = 64

CONSOLE_LABELS = {"app": constants.OPENSHIFT_CONSOLE_NAME}
CONSOLE_SELECTOR = {"app": constants.OPENSHIFT_CONSOLE_NAME, "component": "ui"}

## Shared ######################################################################


def shared_meta(
    name: str,
    namespace: Optional[str] = constants.TARGET_NAMESPACE,
    labels: Optional[dict] = None,
    annotations: Optional[dict] = None,
) -> dict:
    metadata = {"name": name, "labels": dict(labels or CONSOLE_LABELS)}
    if namespace:
        metadata["namespace"] = namespace
    if annotations:
        metadata["annotations"] = annotations
    return metadata


def stub(kind: str, api_version: str, name: str, namespace: Optional[str]) -> dict:
    """Minimal manifest identifying an object, used for reads and deletes"""
    metadata = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    return {"apiVersion": api_version, "kind": kind, "metadata": metadata}


def encode_secret_data(data: Dict[str, str]) -> Dict[str, str]:
    return {
        key: base64.b64encode(value.encode("utf-8")).decode("utf-8")
        for key, value in data.items()
    }


def decode_secret_value(secret: Optional[dict], key: str) -> str:
    """Get a decoded value from a secret, empty if the secret or key is
    missing
    """
    value = ((secret or {}).get("data") or {}).get(key)
    if not value:
        return ""
    return base64.b64decode(value).decode("utf-8")


def resource_version(resource: Optional[dict]) -> str:
    return nested_get(resource or {}, "metadata.resourceVersion", "") or ""


## Route and Service ###########################################################


def default_route_host(ingress_domain: str) -> str:
    return f"{constants.OPENSHIFT_CONSOLE_NAME}-{constants.TARGET_NAMESPACE}.{ingress_domain}"


def console_route(host: str) -> dict:
    return {
        "apiVersion": constants.ROUTE_API_VERSION,
        "kind": constants.ROUTE_KIND,
        "metadata": shared_meta(constants.OPENSHIFT_CONSOLE_NAME),
        "spec": {
            "host": host,
            "to": {
                "kind": constants.SERVICE_KIND,
                "name": constants.OPENSHIFT_CONSOLE_NAME,
                "weight": 100,
            },
            "port": {"targetPort": "https"},
            "tls": {
                "termination": "reencrypt",
                "insecureEdgeTerminationPolicy": "Redirect",
            },
            "wildcardPolicy": "None",
        },
    }


def console_service() -> dict:
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.SERVICE_KIND,
        "metadata": shared_meta(
            constants.OPENSHIFT_CONSOLE_NAME,
            annotations={
                "service.alpha.openshift.io/serving-cert-secret-name": constants.CONSOLE_SERVING_CERT_NAME
            },
        ),
        "spec": {
            "ports": [
                {"name": "https", "port": 443, "protocol": "TCP", "targetPort": 8443}
            ],
            "selector": dict(CONSOLE_SELECTOR),
            "type": "ClusterIP",
            "sessionAffinity": "None",
        },
    }


def admitted_ingress_url(route: dict) -> Optional[str]:
    """The https URL of the route if the router has admitted its host"""
    host = nested_get(route, "spec.host")
    for ingress in nested_get(route, "status.ingress") or []:
        if ingress.get("host") != host:
            continue
        for condition in ingress.get("conditions") or []:
            if condition.get("type") == "Admitted" and condition.get("status") == "True":
                return f"https://{host}"
    return None


## ConfigMaps ##################################################################


def console_server_config(
    operator_config: dict,
    authentication: dict,
    console_host: str,
    custom_logo_key: Optional[str] = None,
) -> str:
    """Render the console-config.yaml served to the console"""
    auth_type = nested_get(authentication, "spec.type") or ""
    if auth_type == constants.AUTH_TYPE_OIDC:
        auth = {
            "authType": "oidc",
            "clientID": _oidc_client_id(authentication),
            "clientSecretFile": "/var/oauth-config/clientSecret",
            "oidcIssuer": nested_get(
                (nested_get(authentication, "spec.oidcProviders") or [{}])[0],
                "issuer.issuerURL",
            ),
        }
    elif auth_type == constants.AUTH_TYPE_NONE:
        auth = {"authType": "disabled"}
    else:
        auth = {
            "authType": "openshift",
            "clientID": constants.OPENSHIFT_CONSOLE_NAME,
            "clientSecretFile": "/var/oauth-config/clientSecret",
            "oauthEndpointCAFile": f"/var/oauth-serving-cert/{constants.CA_BUNDLE_KEY}",
        }

    customization = {}
    brand = nested_get(operator_config, "spec.customization.brand")
    if brand:
        customization["branding"] = brand
    documentation_url = nested_get(operator_config, "spec.customization.documentationBaseURL")
    if documentation_url:
        customization["documentationBaseURL"] = documentation_url
    if custom_logo_key:
        customization["customLogoFile"] = f"/var/logo/{custom_logo_key}"

    server_config = {
        "apiVersion": "console.openshift.io/v1",
        "kind": "ConsoleConfig",
        "auth": auth,
        "clusterInfo": {"consoleBaseAddress": f"https://{console_host}"},
        "customization": customization,
        "servingInfo": {
            "bindAddress": "https://[::]:8443",
            "certFile": "/var/serving-cert/tls.crt",
            "keyFile": "/var/serving-cert/tls.key",
        },
        "providers": {},
    }
    return yaml.safe_dump(server_config, default_flow_style=False, sort_keys=True)


def console_config_map(
    operator_config: dict,
    authentication: dict,
    console_host: str,
    custom_logo_key: Optional[str] = None,
) -> dict:
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.CONFIG_MAP_KIND,
        "metadata": shared_meta(constants.CONSOLE_CONFIG_MAP_NAME),
        "data": {
            constants.CONSOLE_CONFIG_KEY: console_server_config(
                operator_config, authentication, console_host, custom_logo_key
            )
        },
    }


def service_ca_config_map() -> dict:
    """The bundle is injected by the service CA operator"""
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.CONFIG_MAP_KIND,
        "metadata": shared_meta(
            constants.SERVICE_CA_CONFIG_MAP_NAME,
            annotations={"service.beta.openshift.io/inject-cabundle": "true"},
        ),
    }


def trusted_ca_config_map() -> dict:
    """The bundle is injected by the network operator"""
    labels = dict(CONSOLE_LABELS)
    labels["config.openshift.io/inject-trusted-cabundle"] = "true"
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.CONFIG_MAP_KIND,
        "metadata": shared_meta(constants.TRUSTED_CA_CONFIG_MAP_NAME, labels=labels),
    }


def custom_logo_config_map(source: dict) -> dict:
    """Copy of the user's logo config map in the console namespace"""
    config_map = {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.CONFIG_MAP_KIND,
        "metadata": shared_meta(constants.CUSTOM_LOGO_CONFIG_MAP_NAME),
    }
    for field in ("data", "binaryData"):
        if source.get(field):
            config_map[field] = dict(source[field])
    return config_map


def public_config_map(console_url: str) -> dict:
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.CONFIG_MAP_KIND,
        "metadata": shared_meta(
            constants.CONSOLE_PUBLIC_CONFIG_MAP_NAME,
            namespace=constants.OPENSHIFT_CONFIG_MANAGED_NAMESPACE,
        ),
        "data": {constants.CONSOLE_URL_KEY: console_url},
    }


def empty_public_config_map() -> dict:
    return public_config_map("")


## Secrets #####################################################################


def oauth_client_secret(client_secret: str) -> dict:
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.SECRET_KIND,
        "metadata": shared_meta(constants.OAUTH_CLIENT_SECRET_NAME),
        "type": "Opaque",
        "data": encode_secret_data({constants.CLIENT_SECRET_KEY: client_secret}),
    }


def session_secret(existing: Optional[dict] = None) -> dict:
    """Build the session secret, keeping the existing keys when they are
    well formed
    """
    keys = {
        constants.SESSION_ENCRYPTION_KEY: SESSION_ENCRYPTION_KEY_LEN,
        constants.SESSION_AUTHENTICATION_KEY: SESSION_AUTHENTICATION_KEY_LEN,
    }
    data = {}
    for key, length in keys.items():
        value = decode_secret_value(existing, key)
        if len(value) != length:
            value = random_secret(length)[:length]
        data[key] = value
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.SECRET_KIND,
        "metadata": shared_meta(constants.SESSION_SECRET_NAME),
        "type": "Opaque",
        "data": encode_secret_data(data),
    }


## OAuthClient #################################################################


def register_oauth_client(oauth_client: dict, console_url: str, secret: str) -> dict:
    """Point the existing OAuthClient at the console"""
    registered = _applyable_copy(oauth_client)
    registered["redirectURIs"] = [console_url.rstrip("/") + constants.OAUTH_CALLBACK_PATH]
    registered["secret"] = secret
    registered["grantMethod"] = "auto"
    return registered


def deregister_oauth_client(oauth_client: dict) -> dict:
    deregistered = _applyable_copy(oauth_client)
    deregistered["redirectURIs"] = []
    return deregistered


def _applyable_copy(resource: dict) -> dict:
    """Copy of an object read from the cluster without the server owned
    metadata, ready to be applied
    """
    applyable = copy.deepcopy(resource)
    metadata = applyable.get("metadata", {})
    applyable["metadata"] = {
        key: metadata[key]
        for key in ("name", "namespace", "labels", "annotations")
        if key in metadata
    }
    applyable.pop("status", None)
    return applyable


def oidc_client_config(authentication: dict) -> Optional[dict]:
    """Find the console's entry in the first OIDC provider's client list"""
    providers = nested_get(authentication, "spec.oidcProviders") or []
    if not providers:
        return None
    for client in providers[0].get("oidcClients") or []:
        if (
            client.get("componentName") == constants.OPENSHIFT_CONSOLE_NAME
            and client.get("componentNamespace") == constants.TARGET_NAMESPACE
        ):
            return client
    return None


def _oidc_client_id(authentication: dict) -> str:
    return (oidc_client_config(authentication) or {}).get("clientID", "")


## Deployment ##################################################################


def console_deployment(
    operator_config: dict,
    versions: Dict[str, str],
    mount_custom_logo: bool = False,
    replicas: int = 2,
) -> dict:
    """Build the console deployment

    Args:
        operator_config:  dict
            The operator config the deployment is built for
        versions:  Dict[str, str]
            Version annotation name to the resourceVersion of the object it
            tracks. A changed version rolls the pods.
        mount_custom_logo:  bool
            Whether the custom logo config map is mounted
        replicas:  int
            Number of console replicas
    """
    volumes = [
        _volume(constants.CONSOLE_SERVING_CERT_NAME, secret=True),
        _volume(constants.OAUTH_CLIENT_SECRET_NAME, secret=True),
        _volume(constants.CONSOLE_CONFIG_MAP_NAME),
        _volume(constants.SERVICE_CA_CONFIG_MAP_NAME),
        _volume(constants.TRUSTED_CA_CONFIG_MAP_NAME),
    ]
    mounts = [
        {"name": constants.CONSOLE_SERVING_CERT_NAME, "mountPath": "/var/serving-cert", "readOnly": True},
        {"name": constants.OAUTH_CLIENT_SECRET_NAME, "mountPath": "/var/oauth-config", "readOnly": True},
        {"name": constants.CONSOLE_CONFIG_MAP_NAME, "mountPath": "/var/console-config", "readOnly": True},
        {"name": constants.SERVICE_CA_CONFIG_MAP_NAME, "mountPath": "/var/service-ca", "readOnly": True},
        {"name": constants.TRUSTED_CA_CONFIG_MAP_NAME, "mountPath": "/etc/pki/ca-trust/extracted/pem", "readOnly": True},
    ]
    if mount_custom_logo:
        volumes.append(_volume(constants.CUSTOM_LOGO_CONFIG_MAP_NAME))
        mounts.append(
            {"name": constants.CUSTOM_LOGO_CONFIG_MAP_NAME, "mountPath": "/var/logo/", "readOnly": True}
        )

    args = [
        "/opt/bridge/bin/bridge",
        "--public-dir=/opt/bridge/static",
        f"--config=/var/console-config/{constants.CONSOLE_CONFIG_KEY}",
        f"--service-ca-file=/var/service-ca/{constants.SERVICE_CA_BUNDLE_KEY}",
    ]
    log_level = nested_get(operator_config, "spec.logLevel")
    if log_level:
        args.append(f"--v={_log_level_flag(log_level)}")

    return {
        "apiVersion": constants.DEPLOYMENT_API_VERSION,
        "kind": constants.DEPLOYMENT_KIND,
        "metadata": shared_meta(constants.OPENSHIFT_CONSOLE_NAME),
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": dict(CONSOLE_SELECTOR)},
            "strategy": {
                "type": "RollingUpdate",
                "rollingUpdate": {"maxSurge": 3, "maxUnavailable": 1},
            },
            "template": {
                "metadata": {
                    "name": constants.OPENSHIFT_CONSOLE_NAME,
                    "labels": dict(CONSOLE_SELECTOR),
                    "annotations": {
                        name: version for name, version in sorted(versions.items())
                    },
                },
                "spec": {
                    "containers": [
                        {
                            "name": constants.CONSOLE_CONTAINER_NAME,
                            "image": config.console_image,
                            "command": args,
                            "ports": [{"name": "https", "containerPort": 8443}],
                            "volumeMounts": mounts,
                        }
                    ],
                    "volumes": volumes,
                },
            },
        },
    }


def is_available(deployment: dict) -> bool:
    """At least one replica is ready"""
    return (nested_get(deployment, "status.readyReplicas") or 0) >= 1


def is_available_and_updated(deployment: dict) -> bool:
    """Replicas are available and every one runs the current generation"""
    status = deployment.get("status") or {}
    available = (status.get("availableReplicas") or 0) > 0
    current_gen = (status.get("observedGeneration") or 0) >= nested_get(
        deployment, "metadata.generation", 0
    )
    updated = (status.get("updatedReplicas") or 0) == (status.get("replicas") or 0)
    return available and current_gen and updated


def _volume(name: str, secret: bool = False) -> dict:
    if secret:
        return {"name": name, "secret": {"secretName": name}}
    return {"name": name, "configMap": {"name": name}}


def _log_level_flag(log_level: str) -> int:
    return {"Normal": 2, "Debug": 4, "Trace": 6, "TraceAll": 10}.get(log_level, 2)


def owned_resource_stubs() -> List[dict]:
    """Stubs of every object deleted when the console is removed"""
    namespace = constants.TARGET_NAMESPACE
    return [
        stub(constants.CONFIG_MAP_KIND, constants.CORE_API_VERSION, constants.CONSOLE_CONFIG_MAP_NAME, namespace),
        stub(constants.CONFIG_MAP_KIND, constants.CORE_API_VERSION, constants.SERVICE_CA_CONFIG_MAP_NAME, namespace),
        stub(constants.SECRET_KIND, constants.CORE_API_VERSION, constants.OAUTH_CLIENT_SECRET_NAME, namespace),
        stub(constants.DEPLOYMENT_KIND, constants.DEPLOYMENT_API_VERSION, constants.OPENSHIFT_CONSOLE_NAME, namespace),
    ]
