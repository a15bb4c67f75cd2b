"""
Shared module to hold constant values for the operator
"""

# Namespaces
TARGET_NAMESPACE = "openshift-console"
OPERATOR_NAMESPACE = "openshift-console-operator"
OPENSHIFT_CONFIG_NAMESPACE = "openshift-config"
OPENSHIFT_CONFIG_MANAGED_NAMESPACE = "openshift-config-managed"

# Name of every cluster-scoped singleton config resource
CONFIG_RESOURCE_NAME = "cluster"

# Names of the resources owned by the operator
OPENSHIFT_CONSOLE_NAME = "console"
CONSOLE_CONTAINER_NAME = "console"
CONSOLE_CONFIG_MAP_NAME = "console-config"
SERVICE_CA_CONFIG_MAP_NAME = "service-ca"
TRUSTED_CA_CONFIG_MAP_NAME = "trusted-ca-bundle"
SESSION_SECRET_NAME = "console-session-secret"
OAUTH_CLIENT_SECRET_NAME = "console-oauth-config"
OAUTH_SERVING_CERT_CONFIG_MAP_NAME = "oauth-serving-cert"
DEFAULT_INGRESS_CERT_CONFIG_MAP_NAME = "default-ingress-cert"
CONSOLE_PUBLIC_CONFIG_MAP_NAME = "console-public"
CUSTOM_LOGO_CONFIG_MAP_NAME = "custom-logo"
CONSOLE_SERVING_CERT_NAME = "console-serving-cert"

# Well known keys
CA_BUNDLE_KEY = "ca-bundle.crt"
SERVICE_CA_BUNDLE_KEY = "service-ca.crt"
CONSOLE_CONFIG_KEY = "console-config.yaml"
CONSOLE_URL_KEY = "consoleURL"
CLIENT_SECRET_KEY = "clientSecret"
SESSION_ENCRYPTION_KEY = "sessionEncryptionKey"
SESSION_AUTHENTICATION_KEY = "sessionAuthenticationKey"

# Path the console serves its OAuth callback on
OAUTH_CALLBACK_PATH = "/auth/callback"

# Field selector for watches on resources named like the console
CONSOLE_NAME_FIELD_SELECTOR = f"metadata.name={OPENSHIFT_CONSOLE_NAME}"

# Kinds and api versions
OPERATOR_CONFIG_KIND = "Console"
OPERATOR_CONFIG_API_VERSION = "operator.openshift.io/v1"
CONSOLE_CONFIG_KIND = "Console"
CONSOLE_CONFIG_API_VERSION = "config.openshift.io/v1"
AUTHENTICATION_KIND = "Authentication"
AUTHENTICATION_API_VERSION = "config.openshift.io/v1"
OAUTH_CLIENT_KIND = "OAuthClient"
OAUTH_CLIENT_API_VERSION = "oauth.openshift.io/v1"
ROUTE_KIND = "Route"
ROUTE_API_VERSION = "route.openshift.io/v1"
DEPLOYMENT_KIND = "Deployment"
DEPLOYMENT_API_VERSION = "apps/v1"
INGRESS_KIND = "Ingress"
INGRESS_API_VERSION = "config.openshift.io/v1"
CONFIG_MAP_KIND = "ConfigMap"
SECRET_KIND = "Secret"
SERVICE_KIND = "Service"
CORE_API_VERSION = "v1"

# Authentication types
AUTH_TYPE_INTEGRATED_OAUTH = "IntegratedOAuth"
AUTH_TYPE_OIDC = "OIDC"
AUTH_TYPE_NONE = "None"

# Annotations carried on the console deployment pod template
CONFIG_MAP_VERSION_ANNOTATION = "console.openshift.io/console-config-version"
SERVICE_CA_VERSION_ANNOTATION = "console.openshift.io/service-ca-config-version"
TRUSTED_CA_VERSION_ANNOTATION = "console.openshift.io/trusted-ca-config-version"
OAUTH_SECRET_VERSION_ANNOTATION = "console.openshift.io/oauth-secret-version"
SESSION_SECRET_VERSION_ANNOTATION = "console.openshift.io/session-secret-version"
OAUTH_SERVING_CERT_VERSION_ANNOTATION = (
    "console.openshift.io/oauth-serving-cert-config-version"
)
CUSTOM_LOGO_VERSION_ANNOTATION = "console.openshift.io/custom-logo-config-version"
AUTHN_CA_TRUST_VERSION_ANNOTATION = "console.openshift.io/authn-ca-trust-config-version"

# Queue key used by controllers that reconcile a single logical object
DEFAULT_QUEUE_KEY = "key"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
