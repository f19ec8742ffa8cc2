"""Prometheus metrics for the Machine Provision Operator."""

from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "machine_provision_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "machine_provision_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
)

error_total = Counter(
    "machine_provision_operator_error_total",
    "Total number of reconcile errors",
    ["kind", "error_type"],
)

# Status and condition writes
status_write_total = Counter(
    "machine_provision_operator_status_write_total",
    "Status and condition writes, including skipped no-op writes",
    ["target", "result"],
)

# Job status translation
job_status_total = Counter(
    "machine_provision_operator_job_status_total",
    "Job status summaries derived from provisioning jobs",
    ["action", "outcome"],
)

# Teardown gating
teardown_wait_total = Counter(
    "machine_provision_operator_teardown_wait_total",
    "Number of times teardown was deferred by a gate",
    ["gate"],
)

# Owned object apply
apply_operations_total = Counter(
    "machine_provision_operator_apply_operations_total",
    "Owned child object operations",
    ["kind", "operation"],
)

# API call metrics
api_call_total = Counter(
    "machine_provision_operator_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "machine_provision_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

rate_limit_hits_total = Counter(
    "machine_provision_operator_rate_limit_hits_total",
    "Total number of rate limit hits",
    ["api_type"],
)
