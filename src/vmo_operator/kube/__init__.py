"""Kubernetes API access and the watched-object cache."""
