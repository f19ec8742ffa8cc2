"""Constants for the Machine Provision Operator."""

import os

# API Group
API_GROUP = "rke-machine.cattle.io"
API_VERSION = "v1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

# Infrastructure machine kinds
KIND_SUFFIX = "Machine"
KIND_RESERVED = "CustomMachine"

# Cluster API
CAPI_GROUP = "cluster.x-k8s.io"
CAPI_VERSION = os.getenv("CAPI_VERSION", "v1beta1")
KIND_CAPI_MACHINE = "Machine"

# Provisioning clusters
PROVISIONING_GROUP = "provisioning.cattle.io"
PROVISIONING_VERSION = "v1"

# Labels
LABEL_INFRA_MACHINE_NAME = "rke.cattle.io/infra-machine-name"
LABEL_INFRA_MACHINE_GROUP = "rke.cattle.io/infra-machine-group"
LABEL_INFRA_MACHINE_VERSION = "rke.cattle.io/infra-machine-version"
LABEL_INFRA_MACHINE_KIND = "rke.cattle.io/infra-machine-kind"
LABEL_ETCD_ROLE = "rke.cattle.io/etcd-role"
LABEL_CAPI_CLUSTER_NAME = "cluster.x-k8s.io/cluster-name"
LABEL_MANAGED_BY = f"{API_GROUP}/managed-by"
LABEL_OWNER_ID = f"{API_GROUP}/owner-id"

# Annotations
ANNOTATION_APPLIED_HASH = f"{API_GROUP}/applied-hash"
ANNOTATION_RECONCILE_AT = f"{API_GROUP}/reconcile-at"

# Finalizers
FINALIZER = "wrangler.cattle.io/machine-provision-remove"

# Field Manager
FIELD_MANAGER = "machine-provision-operator"
CONTROLLER_NAME = "machine-provision-operator"

# Condition Types
COND_CREATE_JOB = "CreateJob"
COND_DRAINING_SUCCEEDED = "DrainingSucceeded"
REASON_DRAINING_FAILED = "DrainingFailed"
REASON_ERROR = "Error"

# Machine failure reasons
CREATE_MACHINE_ERROR = "CreateError"
DELETE_MACHINE_ERROR = "DeleteError"

# Driver job layout
PATH_TO_MACHINE_FILES = "/path/to/machine/files"
PATH_TO_BOOTSTRAP = "/run/secrets/machine"
SSH_KEY_FILE_NAME = "id_rsa"
CREATE_JOB_BACKOFF_LIMIT = 0
DELETE_JOB_BACKOFF_LIMIT = 3
MACHINE_PROVISION_IMAGE = os.getenv("MACHINE_PROVISION_IMAGE", "rancher/machine:v0.15.0-rancher106")
MACHINE_PROVISION_IMAGE_PULL_POLICY = os.getenv("MACHINE_PROVISION_IMAGE_PULL_POLICY", "IfNotPresent")

# Requeue delays (seconds)
BOOTSTRAP_POLL_SECONDS = float(os.getenv("BOOTSTRAP_POLL_SECONDS", "2"))
TEARDOWN_POLL_SECONDS = float(os.getenv("TEARDOWN_POLL_SECONDS", "5"))
ERROR_RETRY_SECONDS = float(os.getenv("ERROR_RETRY_SECONDS", "30"))

# Event Reasons
EVENT_REASON_RECONCILE_STARTED = "ReconcileStarted"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_JOB_APPLIED = "JobApplied"
EVENT_REASON_TEARDOWN_COMPLETE = "TeardownComplete"
