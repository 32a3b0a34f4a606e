"""
The backend subsystem: the desired objects for the listener, worker and cron
workloads and the reconciler that converges them
"""

# Standard
from typing import Any, Dict, List, Optional
import base64
import copy
import json

# First Party
import alog

# Local
from .. import config, constants
from ..annotations import select_mutators
from ..exceptions import OperatorError
from ..mutators import (
    ArgsMutator,
    CreateOnlyMutator,
    EnvVarMutator,
    defaults_only_secret_mutator,
    generic_backend_mutators,
    generic_grafana_dashboard_mutator,
    generic_pdb_mutator,
)
from .backend_options import BackendOptions, BackendOptionsProvider
from .base import BaseComponentReconciler, PassResult

log = alog.use_channel("BKND")

CRON_NAME = "backend-cron"
LISTENER_NAME = "backend-listener"
WORKER_NAME = "backend-worker"
ENVIRONMENT_CONFIGMAP_NAME = "backend-environment"

# Env vars that only matter when redis runs in async mode
LISTENER_ASYNC_ENV = ["CONFIG_REDIS_ASYNC", "LISTENER_WORKERS"]
WORKER_ASYNC_ENV = ["CONFIG_REDIS_ASYNC"]
ASYNC_LISTENER_WORKERS = "16"

IMAGE_STREAM_TAG = "amp-backend:latest"

# Dashboard query function for each dashboard_sum_rate setting
RATE_FUNCTIONS = {"sum_rate": "rate", "sum_irate": "irate"}

METRICS_PORT_NAME = "metrics"
WORKER_METRICS_PORT = 9421
LISTENER_METRICS_PORT = 9394


## Desired State ###############################################################


class Backend:
    """Builds the desired manifest of every backend object from a fixed set of
    options. Each call returns a new dict.
    """

    def __init__(self, options: BackendOptions):
        self.options = options

    ## Workloads ###############################################################

    def cron_deployment_config(self) -> dict:
        return self._deployment_config(
            CRON_NAME,
            self.options.cron,
            args=["backend-cron"],
            env=self._common_env(),
        )

    def listener_deployment_config(self) -> dict:
        env = self._common_env() + [
            _env("CONFIG_LOG_PATH", "/dev/stdout"),
            _env("CONFIG_LISTENER_PROMETHEUS_METRICS_ENABLED", "true"),
            _env(
                "CONFIG_LISTENER_PROMETHEUS_METRICS_PORT", str(LISTENER_METRICS_PORT)
            ),
        ]
        if self.options.redis_async:
            env += [
                _env("CONFIG_REDIS_ASYNC", "1"),
                _env("LISTENER_WORKERS", ASYNC_LISTENER_WORKERS),
            ]
        dc = self._deployment_config(
            LISTENER_NAME,
            self.options.listener,
            args=self._listener_args(),
            env=env,
            ports=[
                {"name": "http", "containerPort": self.options.listener_port},
                {"name": METRICS_PORT_NAME, "containerPort": LISTENER_METRICS_PORT},
            ],
        )
        container = dc["spec"]["template"]["spec"]["containers"][0]
        container["readinessProbe"] = {
            "httpGet": {"path": "/status", "port": self.options.listener_port},
            "initialDelaySeconds": 30,
            "timeoutSeconds": 5,
        }
        container["livenessProbe"] = {
            "tcpSocket": {"port": self.options.listener_port},
            "initialDelaySeconds": 30,
            "periodSeconds": 10,
        }
        return dc

    def worker_deployment_config(self) -> dict:
        env = self._common_env() + [
            _env("CONFIG_WORKER_PROMETHEUS_METRICS_ENABLED", "true"),
            _env("CONFIG_WORKER_PROMETHEUS_METRICS_PORT", str(WORKER_METRICS_PORT)),
        ]
        if self.options.redis_async:
            env.append(_env("CONFIG_REDIS_ASYNC", "1"))
        return self._deployment_config(
            WORKER_NAME,
            self.options.worker,
            args=["bin/3scale_backend_worker", "run"],
            env=env,
            ports=[{"name": METRICS_PORT_NAME, "containerPort": WORKER_METRICS_PORT}],
        )

    ## Networking ##############################################################

    def listener_service(self) -> dict:
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": self._metadata(LISTENER_NAME, "listener"),
            "spec": {
                "ports": [
                    {
                        "name": "http",
                        "protocol": "TCP",
                        "port": self.options.listener_port,
                        "targetPort": self.options.listener_port,
                    }
                ],
                "selector": {"deploymentConfig": LISTENER_NAME},
            },
        }

    def listener_route(self) -> dict:
        return {
            "apiVersion": constants.ROUTE_API_VERSION,
            "kind": "Route",
            "metadata": self._metadata("backend", "listener"),
            "spec": {
                "host": self.options.route_endpoint.removeprefix("https://"),
                "to": {"kind": "Service", "name": LISTENER_NAME},
                "port": {"targetPort": "http"},
                "tls": {
                    "termination": "edge",
                    "insecureEdgeTerminationPolicy": "Allow",
                },
            },
        }

    ## Configuration ###########################################################

    def environment_config_map(self) -> dict:
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": self._metadata(ENVIRONMENT_CONFIGMAP_NAME),
            "data": {"RACK_ENV": "production"},
        }

    def internal_api_secret(self) -> dict:
        return self._secret(
            constants.BACKEND_INTERNAL_API_SECRET_NAME,
            {
                "username": self.options.internal_api_username,
                "password": self.options.internal_api_password,
            },
        )

    def listener_secret(self) -> dict:
        return self._secret(
            constants.BACKEND_LISTENER_SECRET_NAME,
            {
                "service_endpoint": self.options.service_endpoint,
                "route_endpoint": self.options.route_endpoint,
            },
        )

    ## Availability ############################################################

    def worker_pod_disruption_budget(self) -> dict:
        return self._pod_disruption_budget(WORKER_NAME, "worker")

    def cron_pod_disruption_budget(self) -> dict:
        return self._pod_disruption_budget(CRON_NAME, "cron")

    def listener_pod_disruption_budget(self) -> dict:
        return self._pod_disruption_budget(LISTENER_NAME, "listener")

    ## Monitoring ##############################################################

    def worker_pod_monitor(self) -> dict:
        return self._pod_monitor(WORKER_NAME, "worker")

    def listener_pod_monitor(self) -> dict:
        return self._pod_monitor(LISTENER_NAME, "listener")

    def grafana_dashboard(self, sum_rate: str) -> dict:
        """The backend dashboard. sum_rate is the function used to aggregate
        request counters (sum_rate or sum_irate).
        """
        namespace = self.options.namespace
        rate = RATE_FUNCTIONS[sum_rate]
        panels = [
            _dashboard_panel(
                1,
                "Listener requests per second",
                f'sum({rate}(apisonator_listener_response_codes{{namespace="{namespace}"}}[1m])) by (resp_code)',
            ),
            _dashboard_panel(
                2,
                "Worker jobs per second",
                f'sum({rate}(apisonator_worker_job_count{{namespace="{namespace}"}}[1m])) by (type)',
            ),
            _dashboard_panel(
                3,
                "Worker job runtime",
                f'histogram_quantile(0.99, sum(rate(apisonator_worker_job_runtime_seconds_bucket{{namespace="{namespace}"}}[5m])) by (le))',
            ),
        ]
        dashboard = {
            "title": "3scale / Backend",
            "uid": f"backend-{namespace}",
            "tags": ["3scale", "backend"],
            "timezone": "browser",
            "panels": panels,
        }
        return {
            "apiVersion": constants.GRAFANA_API_VERSION,
            "kind": "GrafanaDashboard",
            "metadata": self._metadata(
                "backend", extra_labels={"monitoring-key": "middleware"}
            ),
            "spec": {
                "name": f"{namespace}/backend-grafana-dashboard-1.json",
                "json": json.dumps(dashboard, indent=2, sort_keys=True),
            },
        }

    def worker_prometheus_rules(self) -> dict:
        namespace = self.options.namespace
        return self._prometheus_rules(
            WORKER_NAME,
            "worker",
            [
                {
                    "alert": "ThreescaleBackendWorkerJobsCountRunningHigh",
                    "annotations": {
                        "summary": "{{$labels.container_name}} replica controller on {{$labels.namespace}}: Has more than 1000 jobs processed in the last 5 minutes",
                    },
                    "expr": f'sum(avg_over_time(apisonator_worker_job_count{{job=~".*/backend-worker",namespace="{namespace}"}} [5m])) by (namespace,job) > 1000',
                    "for": "5m",
                    "labels": {"severity": "critical"},
                },
                {
                    "alert": "ThreescaleBackendWorkerJobsAborted",
                    "annotations": {
                        "summary": "{{$labels.container_name}} replica controller on {{$labels.namespace}}: Has aborted jobs",
                    },
                    "expr": f'sum(increase(apisonator_worker_job_count{{namespace="{namespace}",type!="ok"}}[5m])) by (namespace) > 0',
                    "for": "5m",
                    "labels": {"severity": "warning"},
                },
            ],
        )

    def listener_prometheus_rules(self) -> dict:
        namespace = self.options.namespace
        return self._prometheus_rules(
            LISTENER_NAME,
            "listener",
            [
                {
                    "alert": "ThreescaleBackendListener5XXRequestsHigh",
                    "annotations": {
                        "summary": "Job {{$labels.job}} on {{$labels.namespace}} has more than 5000 HTTP 5xx requests in the last 5 minutes",
                    },
                    "expr": f'sum(rate(apisonator_listener_response_codes{{job=~"backend.*",namespace="{namespace}",resp_code="5xx"}}[5m])) by (namespace,job,resp_code) > 5000',
                    "for": "5m",
                    "labels": {"severity": "warning"},
                },
            ],
        )

    ## Implementation Details ##################################################

    def _metadata(
        self,
        name: str,
        element: Optional[str] = None,
        extra_labels: Optional[Dict[str, str]] = None,
    ) -> dict:
        labels = dict(self.options.common_labels)
        if element is not None:
            labels["threescale_component_element"] = element
        labels.update(extra_labels or {})
        return {"name": name, "namespace": self.options.namespace, "labels": labels}

    def _deployment_config(
        self,
        name: str,
        workload,
        args: List[str],
        env: List[dict],
        ports: Optional[List[dict]] = None,
    ) -> dict:
        element = name.removeprefix("backend-")
        pod_labels = {
            **self.options.common_labels,
            "threescale_component_element": element,
            "deploymentConfig": name,
            **workload.labels,
        }
        container = {
            "name": name,
            "image": self.options.image,
            "imagePullPolicy": "IfNotPresent",
            "args": list(args),
            "env": env,
            "resources": copy.deepcopy(workload.resources),
        }
        if ports:
            container["ports"] = ports

        pod_spec = {
            "serviceAccountName": "amp",
            "containers": [container],
        }
        for key, val in [
            ("affinity", workload.affinity),
            ("tolerations", workload.tolerations),
            ("priorityClassName", workload.priority_class_name),
            ("topologySpreadConstraints", workload.topology_spread_constraints),
        ]:
            if val is not None:
                pod_spec[key] = copy.deepcopy(val)

        template_metadata = {"labels": pod_labels}
        if workload.annotations:
            template_metadata["annotations"] = dict(workload.annotations)

        return {
            "apiVersion": constants.DEPLOYMENT_CONFIG_API_VERSION,
            "kind": "DeploymentConfig",
            "metadata": self._metadata(name, element),
            "spec": {
                "replicas": workload.replicas,
                "selector": {"deploymentConfig": name},
                "strategy": {
                    "type": "Rolling",
                    "rollingParams": {
                        "intervalSeconds": 1,
                        "maxSurge": "25%",
                        "maxUnavailable": "25%",
                        "timeoutSeconds": 1200,
                        "updatePeriodSeconds": 1,
                    },
                },
                "triggers": [
                    {"type": "ConfigChange"},
                    {
                        "type": "ImageChange",
                        "imageChangeParams": {
                            "automatic": True,
                            "containerNames": [name],
                            "from": {
                                "kind": "ImageStreamTag",
                                "name": IMAGE_STREAM_TAG,
                            },
                        },
                    },
                ],
                "template": {"metadata": template_metadata, "spec": pod_spec},
            },
        }

    def _listener_args(self) -> List[str]:
        if self.options.redis_async:
            return [
                "bin/3scale_backend",
                "-s",
                "falcon",
                "start",
                "-e",
                "production",
                "-p",
                str(self.options.listener_port),
                "-x",
                "/dev/stdout",
            ]
        return [
            "bin/3scale_backend",
            "start",
            "-e",
            "production",
            "-p",
            str(self.options.listener_port),
            "-x",
            "/dev/stdout",
        ]

    @staticmethod
    def _common_env() -> List[dict]:
        return [
            _env_from(
                "CONFIG_REDIS_PROXY",
                constants.BACKEND_REDIS_SECRET_NAME,
                "REDIS_STORAGE_URL",
            ),
            _env_from(
                "CONFIG_QUEUES_MASTER_NAME",
                constants.BACKEND_REDIS_SECRET_NAME,
                "REDIS_QUEUES_URL",
            ),
            _env_from(
                "CONFIG_INTERNAL_API_USER",
                constants.BACKEND_INTERNAL_API_SECRET_NAME,
                "username",
            ),
            _env_from(
                "CONFIG_INTERNAL_API_PASSWORD",
                constants.BACKEND_INTERNAL_API_SECRET_NAME,
                "password",
            ),
            {
                "name": "RACK_ENV",
                "valueFrom": {
                    "configMapKeyRef": {
                        "name": ENVIRONMENT_CONFIGMAP_NAME,
                        "key": "RACK_ENV",
                    }
                },
            },
        ]

    def _secret(self, name: str, string_data: Dict[str, str]) -> dict:
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": self._metadata(name),
            "data": {
                key: base64.b64encode(val.encode("utf-8")).decode("utf-8")
                for key, val in string_data.items()
            },
        }

    def _pod_disruption_budget(self, name: str, element: str) -> dict:
        return {
            "apiVersion": constants.PDB_API_VERSION,
            "kind": "PodDisruptionBudget",
            "metadata": self._metadata(name, element),
            "spec": {
                "maxUnavailable": self.options.pdb_max_unavailable,
                "selector": {"matchLabels": {"deploymentConfig": name}},
            },
        }

    def _pod_monitor(self, name: str, element: str) -> dict:
        return {
            "apiVersion": constants.MONITORING_API_VERSION,
            "kind": "PodMonitor",
            "metadata": self._metadata(name, element),
            "spec": {
                "podMetricsEndpoints": [
                    {"port": METRICS_PORT_NAME, "path": "/metrics", "scheme": "http"}
                ],
                "selector": {"matchLabels": {"deploymentConfig": name}},
            },
        }

    def _prometheus_rules(
        self, name: str, element: str, rules: List[Dict[str, Any]]
    ) -> dict:
        return {
            "apiVersion": constants.MONITORING_API_VERSION,
            "kind": "PrometheusRule",
            "metadata": self._metadata(
                name,
                element,
                extra_labels={
                    "prometheus": "application-monitoring",
                    "role": "alert-rules",
                },
            ),
            "spec": {
                "groups": [
                    {"name": f"{self.options.namespace}/{name}.rules", "rules": rules}
                ]
            },
        }


def _env(name: str, value: str) -> dict:
    return {"name": name, "value": value}


def _env_from(name: str, secret_name: str, key: str) -> dict:
    return {
        "name": name,
        "valueFrom": {"secretKeyRef": {"name": secret_name, "key": key}},
    }


def _dashboard_panel(panel_id: int, title: str, expr: str) -> dict:
    return {
        "id": panel_id,
        "title": title,
        "type": "graph",
        "datasource": "$datasource",
        "targets": [{"expr": expr, "legendFormat": "{{type}}", "refId": "A"}],
    }


## Reconciler ##################################################################


class BackendReconciler(BaseComponentReconciler):
    """Converges every backend object in a fixed order. Workloads come first
    so that the endpoints in front of them only appear once they exist.
    """

    @alog.logged_function(log.debug)
    @alog.timed_function(log.debug)
    def reconcile(self) -> PassResult:
        # Options are built once up front so an invalid spec aborts the pass
        # before anything is written
        try:
            options = BackendOptionsProvider(
                self.apimanager, self.store, self.cancel_event
            ).get_backend_options()
        except OperatorError as err:
            log.warning("Failed to build backend options: %s", err)
            return PassResult(error=err, requeue=True)
        backend = Backend(options)

        listener_base = generic_backend_mutators()
        worker_base = generic_backend_mutators()
        if options.redis_async:
            log.debug2("Redis async mode enabled")
            listener_base += [
                EnvVarMutator(*LISTENER_ASYNC_ENV, container=LISTENER_NAME),
                ArgsMutator(container=LISTENER_NAME),
            ]
            worker_base.append(EnvVarMutator(*WORKER_ASYNC_ENV, container=WORKER_NAME))

        cron_mutators = select_mutators(
            self.annotations, constants.CRON_REPLICAS_OVERRIDE_ANNOTATION
        )
        listener_mutators = select_mutators(
            self.annotations,
            constants.LISTENER_REPLICAS_OVERRIDE_ANNOTATION,
            base=listener_base,
        )
        worker_mutators = select_mutators(
            self.annotations,
            constants.WORKER_REPLICAS_OVERRIDE_ANNOTATION,
            base=worker_base,
        )

        return self.run_steps(
            [
                (
                    "cron-deployment-config",
                    backend.cron_deployment_config,
                    cron_mutators,
                ),
                (
                    "listener-deployment-config",
                    backend.listener_deployment_config,
                    listener_mutators,
                ),
                ("listener-service", backend.listener_service, CreateOnlyMutator()),
                ("listener-route", backend.listener_route, CreateOnlyMutator()),
                (
                    "worker-deployment-config",
                    backend.worker_deployment_config,
                    worker_mutators,
                ),
                (
                    "environment-config-map",
                    backend.environment_config_map,
                    CreateOnlyMutator(),
                ),
                (
                    "internal-api-secret",
                    backend.internal_api_secret,
                    defaults_only_secret_mutator(),
                ),
                (
                    "listener-secret",
                    backend.listener_secret,
                    defaults_only_secret_mutator(),
                ),
                (
                    "worker-pdb",
                    backend.worker_pod_disruption_budget,
                    generic_pdb_mutator(),
                ),
                (
                    "cron-pdb",
                    backend.cron_pod_disruption_budget,
                    generic_pdb_mutator(),
                ),
                (
                    "listener-pdb",
                    backend.listener_pod_disruption_budget,
                    generic_pdb_mutator(),
                ),
                (
                    "worker-pod-monitor",
                    backend.worker_pod_monitor,
                    CreateOnlyMutator(),
                ),
                (
                    "listener-pod-monitor",
                    backend.listener_pod_monitor,
                    CreateOnlyMutator(),
                ),
                (
                    "grafana-dashboard",
                    lambda: backend.grafana_dashboard(config.dashboard_sum_rate),
                    generic_grafana_dashboard_mutator(),
                ),
                (
                    "worker-prometheus-rules",
                    backend.worker_prometheus_rules,
                    CreateOnlyMutator(),
                ),
                (
                    "listener-prometheus-rules",
                    backend.listener_prometheus_rules,
                    CreateOnlyMutator(),
                ),
            ]
        )
