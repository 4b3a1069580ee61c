"""Merging of operator defaults into config maps that users may edit."""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..constants import RESERVED_RULES_PREFIX
from ..exceptions import ConfigArtifactError

SCRAPE_CONFIGS = "scrape_configs"


def merge_custom_keys(
    existing: Optional[Dict[str, str]],
    defaults: Dict[str, str],
    reserved_prefix: str = RESERVED_RULES_PREFIX,
) -> Dict[str, str]:
    """
    Merge rendered defaults with keys added by users.

    Keys of ``existing`` without the reserved prefix are user owned and kept
    verbatim. Reserved keys are owned by the operator and come only from
    ``defaults``, so a stale reserved key disappears.
    """
    merged = dict(defaults)
    for key, value in (existing or {}).items():
        if not key.startswith(reserved_prefix):
            merged[key] = value
    return merged


@dataclass
class JobSection:
    """One scrape job, keyed by its job name.

    ``fields`` is the whole job mapping, job_name included, so jobs
    round-trip without the merge knowing their schema.
    """

    name: Optional[str]
    fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, value: Any) -> "JobSection":
        if not isinstance(value, dict):
            raise ConfigArtifactError(f"scrape config entry is not a mapping: {value!r}")
        name = value.get("job_name")
        return cls(name=str(name) if name is not None else None, fields=value)


def parse_prometheus_config(text: str) -> Tuple[Dict[str, Any], List[JobSection]]:
    """
    Parse a prometheus.yml document.

    Returns:
        The document and its scrape jobs in order

    Raises:
        ConfigArtifactError: If the document or its scrape_configs are malformed
    """
    try:
        document = yaml.safe_load(text) if text else {}
    except yaml.YAMLError as e:
        raise ConfigArtifactError(f"cannot parse Prometheus configuration: {e}") from e

    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ConfigArtifactError("Prometheus configuration is not a YAML mapping")

    jobs = document.get(SCRAPE_CONFIGS) or []
    if not isinstance(jobs, list):
        raise ConfigArtifactError("scrape_configs is not a list")

    return document, [JobSection.from_mapping(job) for job in jobs]


def merge_job_sections(
    existing: List[JobSection], defaults: List[JobSection]
) -> Tuple[List[JobSection], bool]:
    """
    Merge default scrape jobs into the existing ones.

    For every existing job, in order: a default job with the same name that
    differs replaces it, an identical one keeps the existing instance, and a
    job with no default counterpart is preserved. Default jobs that do not
    exist yet are appended.

    Returns:
        The merged jobs and whether any job was replaced or added
    """
    defaults_by_name = {job.name: job for job in defaults if job.name is not None}
    merged: List[JobSection] = []
    changed = False

    for job in existing:
        default = defaults_by_name.get(job.name) if job.name is not None else None
        if default is None:
            merged.append(job)
        elif default.fields != job.fields:
            merged.append(default)
            changed = True
        else:
            merged.append(job)

    present = {job.name for job in merged}
    for default in defaults:
        if default.name not in present:
            merged.append(default)
            present.add(default.name)
            changed = True

    return merged, changed


def reconcile_scrape_config(existing_text: Optional[str], default_text: str) -> Optional[str]:
    """
    Reconcile an existing prometheus.yml against the rendered default.

    Everything outside scrape_configs follows the default document.

    Returns:
        The text to write, or None if the existing content can stay

    Raises:
        ConfigArtifactError: If either document cannot be parsed
    """
    default_document, default_jobs = parse_prometheus_config(default_text)
    if existing_text is None:
        return default_text

    _, existing_jobs = parse_prometheus_config(existing_text)
    merged, changed = merge_job_sections(existing_jobs, default_jobs)

    if not changed and len(merged) == len(existing_jobs):
        return None

    document = copy.deepcopy(default_document)
    document[SCRAPE_CONFIGS] = [job.fields for job in merged]
    return yaml.safe_dump(document, sort_keys=False)
