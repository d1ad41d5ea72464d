from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter("app_request_count", "Total number of requests")
REQUEST_ERROR_COUNT = Counter("app_request_error_count", "Total number of failed requests")
REQUEST_LATENCY = Histogram("app_request_latency_seconds", "Request latency in seconds",
                            buckets=[0.1, 0.5, 1, 2, 5, 10, float("inf")])

DEPLOYMENTS = Counter("naisd_deployments_total", "Deploy requests processed", ["result"])

REGISTRY_REQUESTS = Counter("naisd_registry_http_requests_total",
                            "HTTP requests to the resource registry, partitioned by status code and method",
                            ["code", "method"])
REGISTRY_ERRORS = Counter("naisd_registry_errors_total", "Errors talking to the resource registry", ["type"])

CLUSTER_WRITES = Counter("naisd_cluster_writes_total", "Objects written to the cluster", ["kind", "action"])
