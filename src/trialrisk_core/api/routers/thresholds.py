"""Threshold rule endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import crud, schemas, thresholds
from ...database import get_db

logger = logging.getLogger("trialrisk-core.thresholds")

router = APIRouter(tags=["thresholds"])


@router.get("/", response_model=list[schemas.ThresholdRuleResponse])
def list_threshold_rules(
    trial_id: int = Query(..., description="Trial whose rules to list"),
    db: Session = Depends(get_db),
):
    return thresholds.list_rules(db, trial_id)


@router.post("/", response_model=schemas.ThresholdRuleResponse, status_code=201)
def create_threshold_rule(
    rule_data: schemas.ThresholdRuleCreate,
    db: Session = Depends(get_db),
):
    """
    Create a threshold rule.

    Bands must be strictly increasing: low < medium < high < critical.
    """
    if not crud.get_trial(db, rule_data.trial_id):
        raise HTTPException(status_code=404, detail=f"Trial not found: {rule_data.trial_id}")

    try:
        return thresholds.create_rule(db, rule_data)
    except thresholds.ThresholdRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=409,
            detail=f"A rule for '{rule_data.metric_name}' already exists in trial {rule_data.trial_id}",
        )


@router.patch("/{rule_id}", response_model=schemas.ThresholdRuleResponse)
def update_threshold_rule(
    rule_id: int,
    rule_update: schemas.ThresholdRuleUpdate,
    db: Session = Depends(get_db),
):
    try:
        rule = thresholds.update_rule(db, rule_id, rule_update)
    except thresholds.ThresholdRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not rule:
        raise HTTPException(status_code=404, detail=f"Threshold rule not found: {rule_id}")
    return rule
