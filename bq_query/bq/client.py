from __future__ import annotations

from typing import Optional

from google.cloud import bigquery

from ..models import JobRequest


def get_client(project: Optional[str]) -> bigquery.Client:
    return bigquery.Client(project=project)


def _normalize_id(value: str) -> str:
    # Legacy SQL writes project-qualified ids as "project:dataset.table".
    return value.replace(":", ".", 1) if ":" in value else value


def parse_table_ref(table: str, project: str) -> bigquery.TableReference:
    return bigquery.TableReference.from_string(_normalize_id(table), default_project=project)


def parse_dataset_ref(dataset: str, project: str) -> bigquery.DatasetReference:
    return bigquery.DatasetReference.from_string(_normalize_id(dataset), default_project=project)


def build_job_config(request: JobRequest, dry_run: bool) -> bigquery.QueryJobConfig:
    options = request.options
    config = bigquery.QueryJobConfig()
    config.dry_run = dry_run
    config.use_query_cache = options.use_query_cache
    config.use_legacy_sql = options.use_legacy_sql
    config.create_disposition = options.create_disposition.value
    config.write_disposition = options.write_disposition.value
    if options.labels:
        config.labels = dict(options.labels)
    if request.destination_table:
        config.destination = parse_table_ref(request.destination_table, request.project)
        if options.use_legacy_sql:
            config.allow_large_results = True
    if request.default_dataset:
        config.default_dataset = parse_dataset_ref(request.default_dataset, request.project)
    return config
