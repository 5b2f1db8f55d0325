from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from sqlalchemy.orm import Session

from database import SessionLocal
from detection import DetectionCriteria
from models import OccurrenceStatus
from recurrence import DEFAULT_HORIZON_MONTHS
from scheduler import SchedulerManager
from schemas import (
    BalanceOut,
    CustomHolidayIn,
    DefinitionIn,
    DefinitionOut,
    OccurrenceCompletionIn,
    OccurrenceOut,
    OccurrenceUpdateIn,
    SuggestionOut,
    SynchronizationSummary,
)
from services import (
    CustomHolidayService,
    NotFound,
    ObligationError,
    ObligationService,
    SavingsService,
    SuggestionService,
    ValidationFailed,
)


app = FastAPI(title="Obligation Planner")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _http_error(exc: ObligationError) -> HTTPException:
    status = 404 if isinstance(exc, NotFound) else 400
    if isinstance(exc, ValidationFailed):
        return HTTPException(status_code=status, detail=exc.messages)
    return HTTPException(status_code=status, detail=str(exc))


@app.get("/definitions", response_model=list[DefinitionOut])
def list_definitions(
    q: Optional[str] = None,
    category_id: Optional[List[int]] = Query(default=None),
    db: Session = Depends(get_db),
):
    return ObligationService(db).list_definitions(search=q, category_ids=category_id)


@app.post("/definitions", response_model=DefinitionOut, status_code=201)
def create_definition(
    data: DefinitionIn,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    db: Session = Depends(get_db),
):
    service = ObligationService(db)
    try:
        definition_id = service.create_definition(data, horizon_months)
        return service.get(definition_id)
    except ObligationError as exc:
        raise _http_error(exc) from exc


@app.get("/definitions/{definition_id}", response_model=DefinitionOut)
def get_definition(definition_id: int, db: Session = Depends(get_db)):
    try:
        return ObligationService(db).get(definition_id)
    except ObligationError as exc:
        raise _http_error(exc) from exc


@app.put("/definitions/{definition_id}", response_model=DefinitionOut)
def update_definition(
    definition_id: int,
    data: DefinitionIn,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    db: Session = Depends(get_db),
):
    try:
        return ObligationService(db).update_definition(
            definition_id, data, horizon_months
        )
    except ObligationError as exc:
        raise _http_error(exc) from exc


@app.delete("/definitions/{definition_id}")
def delete_definition(definition_id: int, db: Session = Depends(get_db)):
    try:
        ObligationService(db).delete_definition(definition_id)
    except ObligationError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post(
    "/definitions/{definition_id}/synchronize", response_model=SynchronizationSummary
)
def synchronize_definition(
    definition_id: int,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    reference_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    try:
        return ObligationService(db).synchronize(
            definition_id, horizon_months, reference_date
        )
    except ObligationError as exc:
        raise _http_error(exc) from exc


@app.get("/occurrences", response_model=list[OccurrenceOut])
def list_occurrences(
    start: Optional[date] = None,
    end: Optional[date] = None,
    status: Optional[List[OccurrenceStatus]] = Query(default=None),
    definition_id: Optional[List[int]] = Query(default=None),
    db: Session = Depends(get_db),
):
    return ObligationService(db).list_occurrences(
        start=start, end=end, statuses=status, definition_ids=definition_id
    )


@app.post(
    "/occurrences/{occurrence_id}/complete", response_model=SynchronizationSummary
)
def complete_occurrence(
    occurrence_id: int,
    data: OccurrenceCompletionIn,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    db: Session = Depends(get_db),
):
    try:
        return ObligationService(db).mark_completed(occurrence_id, data, horizon_months)
    except ObligationError as exc:
        raise _http_error(exc) from exc


@app.patch("/occurrences/{occurrence_id}")
def update_occurrence(
    occurrence_id: int,
    data: OccurrenceUpdateIn,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    db: Session = Depends(get_db),
):
    try:
        summary = ObligationService(db).update_occurrence(
            occurrence_id, data, horizon_months
        )
    except ObligationError as exc:
        raise _http_error(exc) from exc
    return {"synchronization": summary.model_dump(mode="json") if summary else None}


@app.get("/suggestions", response_model=list[SuggestionOut])
def list_suggestions(
    lookback_years: int = 3,
    minimum_occurrences: int = 2,
    db: Session = Depends(get_db),
):
    criteria = DetectionCriteria.from_settings(
        lookback_years=lookback_years, minimum_occurrences=minimum_occurrences
    )
    suggestions = SuggestionService(db).detect_suggestions(criteria)
    return [SuggestionOut.from_suggestion(s) for s in suggestions]


@app.get("/balances/{definition_id}", response_model=BalanceOut)
def get_balance(definition_id: int, db: Session = Depends(get_db)):
    try:
        balance = SavingsService(db).get_balance(definition_id)
    except ObligationError as exc:
        raise _http_error(exc) from exc
    if balance is None:
        raise HTTPException(status_code=404, detail="Balance not recorded yet")
    return balance


@app.get("/holidays")
def list_holidays(db: Session = Depends(get_db)):
    return [
        {
            "id": holiday.id,
            "date": holiday.date.isoformat(),
            "name": holiday.name,
            "is_recurring": holiday.is_recurring,
        }
        for holiday in CustomHolidayService(db).list_all()
    ]


@app.post("/holidays", status_code=201)
def create_holiday(data: CustomHolidayIn, db: Session = Depends(get_db)):
    try:
        holiday = CustomHolidayService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"id": holiday.id}
