"""Secret references for the SCIM bearer token.

A token value of ``aws-secret://NAME[#FIELD]`` is read from AWS Secrets
Manager and ``gcp-secret://NAME`` (or a full ``projects/...`` resource name)
from GCP Secret Manager. Anything else is used as the literal token.
"""

from __future__ import annotations

import json
import logging
import os

logger = logging.getLogger("directory_sync.secrets")

AWS_SECRET_SCHEME = "aws-secret://"
GCP_SECRET_SCHEME = "gcp-secret://"


class SecretResolutionError(RuntimeError):
    """Raised when a secret reference cannot be read."""


def resolve_secret(value: str) -> str:
    """Return the plaintext for a secret reference, or ``value`` itself."""
    if value.startswith(AWS_SECRET_SCHEME):
        ref, fetch = value[len(AWS_SECRET_SCHEME):], _aws_secret
    elif value.startswith(GCP_SECRET_SCHEME):
        ref, fetch = value[len(GCP_SECRET_SCHEME):], _gcp_secret
    else:
        return value

    try:
        return fetch(ref)
    except SecretResolutionError:
        raise
    except Exception as exc:
        raise SecretResolutionError(f"could not read secret {value!r}: {exc}") from exc


def _aws_secret(ref: str) -> str:
    import boto3

    secret_id, _, field_name = ref.partition("#")
    client = boto3.client("secretsmanager", region_name=os.environ.get("AWS_REGION", "us-east-1"))
    secret_string = client.get_secret_value(SecretId=secret_id)["SecretString"]
    logger.debug("Read secret %s from AWS Secrets Manager", secret_id)
    if not field_name:
        return secret_string
    return str(json.loads(secret_string)[field_name])


def gcp_secret_name(ref: str) -> str:
    """Full resource name for a short secret id, latest version."""
    if ref.startswith("projects/"):
        return ref
    project = os.environ.get("GCP_PROJECT_ID") or os.environ.get("BQ_PROJECT_ID")
    if not project:
        raise SecretResolutionError(
            f"secret {ref!r} has no project; set GCP_PROJECT_ID or BQ_PROJECT_ID"
        )
    return f"projects/{project}/secrets/{ref}/versions/latest"


def _gcp_secret(ref: str) -> str:
    from google.cloud import secretmanager

    name = gcp_secret_name(ref)
    client = secretmanager.SecretManagerServiceClient()
    response = client.access_secret_version(request={"name": name})
    logger.debug("Read secret %s from GCP Secret Manager", name)
    return response.payload.data.decode("utf-8")
