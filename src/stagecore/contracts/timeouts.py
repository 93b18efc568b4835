"""
Timeout and retry constants for StageCore.

Centralizes timeout values for the external collaborators (Terraform,
MySQL) so stage bodies never block forever.
"""

from __future__ import annotations

# =============================================================================
# Terraform Timeouts
# =============================================================================

# terraform init downloads providers and modules
TERRAFORM_INIT_TIMEOUT_S = 600

# Cloud SQL instances routinely take 10-15 minutes to create or delete
TERRAFORM_APPLY_TIMEOUT_S = 3600
TERRAFORM_DESTROY_TIMEOUT_S = 3600

# terraform output only reads local state
TERRAFORM_OUTPUT_TIMEOUT_S = 120

# =============================================================================
# Retry Configuration
# =============================================================================

# Default number of retries for transient provisioning failures
DEFAULT_MAX_RETRIES = 3

# Delay between provisioning retries
DEFAULT_RETRY_DELAY_S = 5.0

# stderr fragments that mark a terraform failure as transient
TERRAFORM_RETRYABLE_ERRORS = {
    ".*unable to verify checksum.*": "Provider download was interrupted.",
    ".*The requested URL returned error: 5\\d\\d.*": "Registry returned a server error.",
    ".*Error installing provider.*": "Provider installation failed.",
    ".*connection reset by peer.*": "Connection to the provider API was reset.",
    ".*TLS handshake timeout.*": "TLS handshake with the provider API timed out.",
    ".*Error 409.*operation in progress.*": "Another operation is in progress on the instance.",
}

# =============================================================================
# MySQL Timeouts
# =============================================================================

# Connect timeout when opening a connection to the provisioned instance
MYSQL_CONNECT_TIMEOUT_S = 30

# Read/write timeout for individual statements
MYSQL_STATEMENT_TIMEOUT_S = 60
