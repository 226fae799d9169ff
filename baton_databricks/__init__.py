"""Databricks identity-governance connector: sync and grant/revoke against account and workspace APIs."""
