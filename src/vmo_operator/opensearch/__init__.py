"""OpenSearch HTTP client, cluster-health gate and ISM policy provisioning."""
