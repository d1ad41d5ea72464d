"""Deterministic names for environment variables, secret keys and DNS labels.

Names are recomputed on every deploy and must match the objects created by
earlier deploys, so these functions must never change output for a given input.
"""
import re

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")
_NON_DNS = re.compile(r"[^a-z0-9]+")

DNS_LABEL_MAX_LENGTH = 63


def sanitize(raw: str) -> str:
    return _NON_ALNUM.sub("_", raw).strip("_").upper()


def sanitize_dns_label(raw: str) -> str:
    label = _NON_DNS.sub("-", raw.lower()).strip("-")
    return label[:DNS_LABEL_MAX_LENGTH].rstrip("-")


def env_var_name(alias: str, key: str) -> str:
    return sanitize(f"{alias}_{key}")


def secret_key_name(alias: str, key: str) -> str:
    # Key inside the application Secret; also the file name when mounted
    return sanitize(f"{alias}_{key}").lower()
