"""
The controllers that run alongside the main console sync
"""

# Local
from .health_check import HealthCheckController
from .oauth_clients import OAuthClientsController
from .oidc_setup import OIDCSetupController
from .route import RouteController
from .service import ServiceController
