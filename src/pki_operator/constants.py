"""
Constants used throughout the PKI operator.

This module defines all constant values used by the operator including:
- Field keys of the persisted PKI secret
- Resource labels and annotations
- Default certificate policy values
- Status phase and condition names
"""

# Persisted blob layout. These keys are part of the on-disk format and must
# never change.
CA_PRIVATE_KEY_FIELD = "ca.key"
CA_PUBLIC_KEY_FIELD = "ca.pub"
CA_CERTIFICATE_FIELD = "ca.crt"
CA_REVOCATION_LIST_FIELD = "ca.crl"
CA_FIELDS = (
    CA_PRIVATE_KEY_FIELD,
    CA_PUBLIC_KEY_FIELD,
    CA_CERTIFICATE_FIELD,
    CA_REVOCATION_LIST_FIELD,
)
CERTIFICATE_SUFFIX = ".crt"
PRIVATE_KEY_SUFFIX = ".key"

# Leaf name that collides with the CA fields
RESERVED_CERTIFICATE_NAME = "ca"

# Default renewal policy
DEFAULT_VALIDITY_DAYS = 397
DEFAULT_RENEWAL_WINDOW_DAYS = 30
DEFAULT_KEY_BIT_SIZE = 2048
MINIMUM_KEY_BIT_SIZE = 1024
MAXIMUM_VALIDITY_DAYS = 36500

# Default identity fields baked into every certificate subject
DEFAULT_ORGANIZATIONAL_UNIT = "pki-operator"
DEFAULT_LOCALITY = "internal"
DEFAULT_PROVINCE = "internal"

# Label constants for resource identification and management
OPERATOR_LABEL_KEY = "pki.operator.dev/managed-by"
OPERATOR_LABEL_VALUE = "pki-operator"
CLUSTER_LABEL_KEY = "pki.operator.dev/cluster"
COMPONENT_LABEL_KEY = "pki.operator.dev/component"
COMPONENT_PKI = "pki"

# Marker annotation on every object the operator manages
MANAGED_ANNOTATION_KEY = "pki.operator.dev/managed"

# Resource naming patterns
PKI_SECRET_SUFFIX = "-pki"

# Status phase constants
PHASE_READY = "Ready"
PHASE_FAILED = "Failed"
PHASE_DISABLED = "Disabled"

# Condition constants (following Kubernetes conventions)
CONDITION_TLS_READY = "TlsReady"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

# Change reasons reported in the audit trail
REASON_GENERATE = "Generate new certificates"
REASON_RENEW = "Renew all certificates"
