"""Domain data import and validation trigger endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ... import crud, pipeline, schemas
from ...database import get_db
from ...directory import UserDirectory
from ..dependencies import get_directory

logger = logging.getLogger("trialrisk-core.domain_data")

router = APIRouter(tags=["domain-data"])


def _summary_response(summary: pipeline.PipelineSummary) -> schemas.PipelineSummaryResponse:
    return schemas.PipelineSummaryResponse(
        records_validated=summary.records_validated,
        findings=summary.findings,
        tasks_created=summary.tasks_created,
        duplicates_skipped=summary.duplicates_skipped,
        notifications_created=summary.notifications_created,
        errors=[schemas.BatchErrorResponse(**vars(e)) for e in summary.errors],
    )


@router.post("/", response_model=schemas.PipelineSummaryResponse)
def import_domain_data(
    data: schemas.DomainDataImport,
    db: Session = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
):
    """
    Store imported records and run validation, task generation and dispatch.

    Records that cannot be parsed are reported in ``errors``; the rest of the
    batch is still processed.
    """
    if not crud.get_trial(db, data.trial_id):
        raise HTTPException(status_code=404, detail=f"Trial not found: {data.trial_id}")

    record_ids = crud.store_domain_records(db, data.trial_id, data.domain, data.source, data.records)
    summary = pipeline.process_records(
        db, data.trial_id, data.domain, data.source, record_ids, directory=directory
    )
    return _summary_response(summary)


@router.post("/validate", response_model=schemas.PipelineSummaryResponse)
def validate_domain_data(
    request: schemas.DomainDataValidate,
    db: Session = Depends(get_db),
    directory: UserDirectory = Depends(get_directory),
):
    """
    Re-run the pipeline over stored records.

    Omit ``record_ids`` to process every record of the (trial, domain, source).
    Findings that already have an open task are skipped.
    """
    if not crud.get_trial(db, request.trial_id):
        raise HTTPException(status_code=404, detail=f"Trial not found: {request.trial_id}")

    summary = pipeline.process_records(
        db, request.trial_id, request.domain, request.source, request.record_ids, directory=directory
    )
    return _summary_response(summary)
