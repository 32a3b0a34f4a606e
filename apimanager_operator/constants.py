"""
Shared module to hold constant values for the library
"""

# Group used for all APIManager annotations
ANNOTATION_PREFIX = "apps.3scale.net"

# Replica ownership annotations. The presence of one of these on the APIManager
# hands ownership of the replica count for the matching workload to an external
# actor (e.g. a HorizontalPodAutoscaler).
CRON_REPLICAS_OVERRIDE_ANNOTATION = (
    f"{ANNOTATION_PREFIX}/disable-cron-replica-reconciler"
)
LISTENER_REPLICAS_OVERRIDE_ANNOTATION = (
    f"{ANNOTATION_PREFIX}/disable-backend-listener-replica-reconciler"
)
WORKER_REPLICAS_OVERRIDE_ANNOTATION = (
    f"{ANNOTATION_PREFIX}/disable-backend-worker-replica-reconciler"
)

# Log config annotations
LOG_DEFAULT_LEVEL_NAME = f"{ANNOTATION_PREFIX}/log-default-level"
LOG_FILTERS_NAME = f"{ANNOTATION_PREFIX}/log-filters"
LOG_JSON_NAME = f"{ANNOTATION_PREFIX}/log-json"

# Owning resource
APIMANAGER_API_VERSION = "apps.3scale.net/v1alpha1"
APIMANAGER_KIND = "APIManager"

# Api versions of the managed kinds
DEPLOYMENT_CONFIG_API_VERSION = "apps.openshift.io/v1"
ROUTE_API_VERSION = "route.openshift.io/v1"
PDB_API_VERSION = "policy/v1"
MONITORING_API_VERSION = "monitoring.coreos.com/v1"
GRAFANA_API_VERSION = "integreatly.org/v1alpha1"

# Secrets consumed or produced by the backend
BACKEND_REDIS_SECRET_NAME = "backend-redis"
BACKEND_INTERNAL_API_SECRET_NAME = "backend-internal-api"
BACKEND_LISTENER_SECRET_NAME = "backend-listener"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."

# Path segment suffix that pairs list items by name in field paths
LIST_BY_NAME_SUFFIX = "[]"
