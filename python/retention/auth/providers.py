"""
Credential providers for Docker registries.

Credentials are resolved in this order:
1. Explicit username and password (command line, config file or environment)
2. A username without a password prompts for the password interactively
3. A Kubernetes secret holding a .dockerconfigjson (registry.auth_secret)
Without any of these the registry is accessed anonymously.
"""

import base64
import getpass
import json
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from retention.error_utils import ConfigurationError

Credentials = Tuple[Optional[str], Optional[str]]

DOCKERCONFIG_KEY = ".dockerconfigjson"


def _load_kubernetes_config():
    """In-cluster service account first, local kubeconfig otherwise."""
    from kubernetes import config as k8s_config

    try:
        k8s_config.load_incluster_config()
    except Exception:
        k8s_config.load_kube_config()


def _get_kubernetes_core_client():
    from kubernetes import client as k8s_client

    _load_kubernetes_config()
    return k8s_client.CoreV1Api()


def registry_host(registry_url: str) -> str:
    """Host name of a registry URL, with or without scheme and port"""
    if "://" not in registry_url:
        registry_url = f"//{registry_url}"
    return (urlparse(registry_url).hostname or "").lower()


def credentials_for_registry(dockerconfig: Dict[str, Any], registry_url: str) -> Credentials:
    """Pick the entry of a docker config ``auths`` map whose host matches the registry.

    An entry may carry ``username``/``password`` or a base64 ``auth`` of
    ``username:password``; explicit fields win over the decoded ones.
    """
    wanted = registry_host(registry_url)
    for server, entry in (dockerconfig.get("auths") or {}).items():
        if registry_host(server) != wanted:
            continue
        username, password = entry.get("username"), entry.get("password")
        if entry.get("auth") and not (username and password):
            decoded_user, _, decoded_password = base64.b64decode(entry["auth"]).decode("utf-8").partition(":")
            username = username or decoded_user or None
            password = password or decoded_password or None
        if username or password:
            return username, password
    return None, None


def read_dockerconfig_secret(secret_name: str, namespace: str) -> Optional[Dict[str, Any]]:
    """Decode the .dockerconfigjson of a secret; None if it is missing or unreadable."""
    from kubernetes.client.rest import ApiException

    core_v1 = _get_kubernetes_core_client()
    logging.debug(f"Reading secret {namespace}/{secret_name}")
    try:
        secret = core_v1.read_namespaced_secret(name=secret_name, namespace=namespace)
    except ApiException as e:
        logging.debug(f"Secret {namespace}/{secret_name} not readable (status {e.status})")
        return None

    encoded = (secret.data or {}).get(DOCKERCONFIG_KEY)
    if not encoded:
        logging.debug(f"Secret {namespace}/{secret_name} has no {DOCKERCONFIG_KEY}")
        return None
    return json.loads(base64.b64decode(encoded).decode("utf-8"))


def get_credentials_from_k8s_secret(secret_name: str, namespace: str, registry_url: str) -> Credentials:
    """Look up registry credentials in a Kubernetes docker-registry secret.

    Any failure (no cluster access, missing secret, no matching entry) falls
    back to anonymous access.

    Returns:
        Tuple of (username, password); (None, None) if nothing matched
    """
    try:
        dockerconfig = read_dockerconfig_secret(secret_name, namespace)
    except Exception as e:
        logging.debug(f"Could not read credentials from Kubernetes secret: {e}")
        return None, None

    if dockerconfig is None:
        return None, None
    try:
        username, password = credentials_for_registry(dockerconfig, registry_url)
    except (ValueError, AttributeError) as e:
        logging.debug(f"Malformed {DOCKERCONFIG_KEY} in secret {secret_name}: {e}")
        return None, None

    if username or password:
        logging.info(f"Using registry credentials from secret {namespace}/{secret_name}")
    else:
        logging.debug(f"No credentials for {registry_host(registry_url)} in secret {namespace}/{secret_name}")
    return username, password


def prompt_for_password(username: str) -> str:
    """Ask for the registry password on the terminal.

    Raises:
        ConfigurationError: If no password can be read
    """
    try:
        return getpass.getpass(f"Password for {username}: ")
    except (EOFError, OSError) as e:
        raise ConfigurationError(
            "Could not read password. Quitting!",
            hints=["Pass --password or set REGISTRY_PASSWORD when running non-interactively"],
            context={"username": username, "cause": str(e) or type(e).__name__},
        )


def resolve_credentials(config_manager) -> Credentials:
    """Resolve registry credentials from configuration, prompt or Kubernetes secret.

    Returns:
        Tuple of (username, password); (None, None) means anonymous access
    """
    username = config_manager.get_registry_username()
    password = config_manager.get_registry_password()

    if username and not password:
        return username, prompt_for_password(username)
    if username or password:
        return username, password

    secret_name = config_manager.get_auth_secret()
    if secret_name:
        return get_credentials_from_k8s_secret(
            secret_name, config_manager.get_auth_namespace(), config_manager.get_registry_url()
        )
    return None, None
