"""Secret reference resolution for connector credentials.

Credential values may be given literally or as references:
  - aws-secret://name          AWS Secrets Manager, whole secret string
  - aws-secret://name#key      AWS Secrets Manager, one key of a JSON secret
  - gcp-secret://name          GCP Secret Manager, latest version
  - gcp-secret://projects/...  GCP Secret Manager, full version path
"""

from __future__ import annotations

import json
import logging
import os

import requests

logger = logging.getLogger("baton_databricks.secrets")

AWS_PREFIX = "aws-secret://"
GCP_PREFIX = "gcp-secret://"

_METADATA_PROJECT_URL = "http://metadata.google.internal/computeMetadata/v1/project/project-id"


def is_secret_ref(value: str) -> bool:
    return value.startswith(AWS_PREFIX) or value.startswith(GCP_PREFIX)


def resolve_secret(value: str) -> str:
    """Return the plaintext for ``value``; literals pass through untouched."""
    if value.startswith(AWS_PREFIX):
        logger.debug("Resolving secret from AWS Secrets Manager")
        return _resolve_aws_secret(value[len(AWS_PREFIX):])
    if value.startswith(GCP_PREFIX):
        logger.debug("Resolving secret from GCP Secret Manager")
        return _resolve_gcp_secret(value[len(GCP_PREFIX):])
    return value


def resolve_secret_list(raw: str) -> list[str]:
    """Comma-separated values, or one reference whose plaintext is comma-separated.

    Workspace tokens are usually stored together, so a single reference
    expanding to ``tok1,tok2`` is accepted as well as ``ref1,ref2``.
    """
    items = [s.strip() for s in raw.split(",") if s.strip()]
    if len(items) == 1 and is_secret_ref(items[0]):
        resolved = resolve_secret(items[0])
        return [s.strip() for s in resolved.split(",") if s.strip()]
    return [resolve_secret(s) for s in items]


def _resolve_aws_secret(ref: str) -> str:
    import boto3

    secret_name, _, json_key = ref.partition("#")
    client = boto3.client("secretsmanager", region_name=os.environ.get("AWS_REGION", "us-east-1"))
    secret_string = client.get_secret_value(SecretId=secret_name)["SecretString"]

    if json_key:
        return str(json.loads(secret_string)[json_key])
    return secret_string


def _resolve_gcp_secret(ref: str) -> str:
    from google.cloud import secretmanager

    if ref.startswith("projects/"):
        name = ref
    else:
        project = os.environ.get("GCP_PROJECT_ID", "") or _gcp_project_from_metadata()
        name = f"projects/{project}/secrets/{ref}/versions/latest"

    client = secretmanager.SecretManagerServiceClient()
    response = client.access_secret_version(request={"name": name})
    return response.payload.data.decode("UTF-8")


def _gcp_project_from_metadata() -> str:
    """Project id from the metadata server (Cloud Run / GCE only)."""
    try:
        resp = requests.get(_METADATA_PROJECT_URL, headers={"Metadata-Flavor": "Google"}, timeout=2)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise RuntimeError("Cannot determine GCP project ID. Set GCP_PROJECT_ID env var.") from exc
    return resp.text


def resolve_database_url() -> str:
    url = os.environ.get("DATABASE_URL", "")
    if url:
        return resolve_secret(url)

    host = os.environ.get("PG_HOST", "localhost")
    port = os.environ.get("PG_PORT", "5432")
    user = os.environ.get("PG_USER", "baton")
    password = resolve_secret(os.environ.get("PG_PASSWORD", "localdev-change-me"))
    database = os.environ.get("PG_DATABASE", "baton_databricks")
    return f"postgresql://{user}:{password}@{host}:{port}/{database}"
