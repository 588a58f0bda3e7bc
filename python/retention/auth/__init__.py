"""
Credential providers for Docker registries.

This module resolves registry credentials from:
- Explicit configuration (command line, config file, environment)
- An interactive password prompt
- Kubernetes secrets holding a .dockerconfigjson
"""

from retention.auth.providers import get_credentials_from_k8s_secret, prompt_for_password, resolve_credentials

__all__ = [
    "get_credentials_from_k8s_secret",
    "prompt_for_password",
    "resolve_credentials",
]
