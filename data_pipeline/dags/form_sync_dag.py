"""
dags/form_sync_dag.py

Airflow DAG — form_sync_dag
Scheduled: every day at 05:00 UTC

Pipeline flow:
  sync_forms → validate_index → log_summary
"""

import logging
from datetime import datetime, timedelta

from airflow import DAG
from airflow.providers.standard.operators.python import PythonOperator

from formsync.config import SyncConfig
from formsync.sync_forms import run_sync
from formsync.validate_index import validate_index

logger = logging.getLogger(__name__)

# ── DAG default args ──────────────────────────────────────────────────────────
DEFAULT_ARGS = {
    "owner":            "formsync",
    "depends_on_past":  False,
    "retries":          1,           # A failed listing fetch is retried once.
    "retry_delay":      timedelta(minutes=5),
    "email_on_failure": False,
    "email_on_retry":   False,
}

# ══════════════════════════════════════════════════════════════════════════════
# Task functions
# ══════════════════════════════════════════════════════════════════════════════

def task_sync_forms(**context) -> dict:
    """
    Task 1 — Fetch the listing, download every form, update the index.
    A listing fetch failure fails the task (and triggers the Airflow retry);
    per-form failures only show up in the pushed summary.
    """
    config = SyncConfig.from_env()
    logger.info("Starting form sync from %s", config.server_url)
    result = run_sync(config)
    logger.info("Sync finished. Summary: %s", result["counts"])

    context["ti"].xcom_push(key="sync_result", value=result)
    return result


def task_validate_index(**context) -> dict:
    """Task 2 — Check the index for duplicates, orphans and schema problems."""
    config = SyncConfig.from_env()
    metrics_path = config.index_path.parent / "index_metrics.json"
    metrics = validate_index(config.index_path, config.forms_dir, metrics_path)

    context["ti"].xcom_push(key="validation_metrics", value=metrics)
    return metrics


def task_log_summary(**context) -> None:
    """Task 3 — Human-readable summary of the run."""
    ti = context["ti"]
    result = ti.xcom_pull(task_ids="sync_forms", key="sync_result")
    metrics = ti.xcom_pull(task_ids="validate_index", key="validation_metrics")

    if result is None:
        logger.warning("No sync result available for summary.")
        return

    c = result["counts"]
    logger.info(
        "══ Form Sync Summary ══\n"
        "  Descriptors listed : %d\n"
        "  Listing parse fail : %s\n"
        "  Indexed            : %d\n"
        "  Already indexed    : %d\n"
        "  Download failed    : %d\n"
        "  Write failed       : %d\n"
        "  Metadata failed    : %d",
        result["descriptors_listed"], result["listing_parse_failed"],
        c["indexed"], c["already_indexed"], c["download_failed"],
        c["write_failed"], c["metadata_failed"],
    )

    for form in result.get("forms", []):
        if form["error"]:
            logger.info("    [%s] %s: %s", form["state"], form["name"], form["error"])

    if metrics:
        logger.info(
            "══ Index Validation ══\n"
            "  Records          : %d\n"
            "  Orphaned records : %d\n"
            "  Duplicate paths  : %d\n"
            "  Unindexed files  : %d\n"
            "  Errors           : %d\n"
            "  Valid            : %s",
            metrics.get("total_records", 0),
            metrics.get("orphaned_records", 0),
            metrics.get("duplicate_paths", 0),
            metrics.get("unindexed_files", 0),
            metrics.get("errors", 0),
            metrics.get("valid", False),
        )
    else:
        logger.info("══ Index Validation ══\n  No validation data available.")


# ══════════════════════════════════════════════════════════════════════════════
# DAG definition
# ══════════════════════════════════════════════════════════════════════════════

with DAG(
    dag_id="form_sync_dag",
    description="Daily sync of XForms from the server into the local forms dir and index",
    schedule="0 5 * * *",
    start_date=datetime(2024, 1, 1),
    default_args=DEFAULT_ARGS,
    catchup=False,
    tags=["formsync", "forms", "xforms"],
) as dag:

    t1_sync = PythonOperator(
        task_id="sync_forms",
        python_callable=task_sync_forms,
    )

    t2_validate = PythonOperator(
        task_id="validate_index",
        python_callable=task_validate_index,
    )

    t3_summary = PythonOperator(
        task_id="log_summary",
        python_callable=task_log_summary,
    )

    t1_sync >> t2_validate >> t3_summary
