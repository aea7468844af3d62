import logging
from datetime import date, datetime
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response, Security
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from .config import settings
from .database import SqliteCatalog, SqliteLendingDirectory
from .directory import Page, SearchFilter
from .errors import ConcurrencyError, FormatError, LendingError, NotFoundError, StateError, ValidationError
from .lending import Lending
from .lending_service import LendingService

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version=settings.app_version)


@lru_cache(maxsize=1)
def get_lending_service() -> LendingService:
    """Service dependency; tests swap it through ``app.dependency_overrides``."""
    return LendingService(SqliteLendingDirectory(), SqliteCatalog())


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")

def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency validating the API key."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Error mapping ---
STATUS_CODES = {
    ValidationError: 400,
    NotFoundError: 404,
    StateError: 409,
    ConcurrencyError: 409,
}

@app.exception_handler(LendingError)
async def lending_error_handler(request: Request, exc: LendingError):
    status_code = next((s for kind, s in STATUS_CODES.items() if isinstance(exc, kind)), 500)
    if status_code == 409:
        logger.info("Conflict on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": exc.code})


# --- Models ---
class LendingModel(BaseModel):
    lending_number: str
    isbn: str
    title: str
    reader_number: str
    reader_name: str
    start_date: date
    limit_date: date
    returned_date: date | None = None
    commentary: str | None = None
    lending_duration_in_days: int
    fine_value_per_day_in_cents: int
    version: int
    days_until_return: int | None = None
    days_overdue: int | None = None
    fine_value_in_cents: int | None = None

class CreateLendingRequest(BaseModel):
    isbn: str = Field(..., min_length=1)
    reader_number: str = Field(..., min_length=1)

class SetLendingReturnedRequest(BaseModel):
    commentary: str | None = Field(default=None, max_length=1024)

class PageModel(BaseModel):
    number: int = Field(default=1, ge=1)
    limit: int = Field(default=settings.default_page_size, ge=1)

class SearchQueryModel(BaseModel):
    reader_number: str | None = None
    isbn: str | None = None
    returned: bool | None = None
    start_date: date | None = None
    end_date: date | None = None

class SearchRequest(BaseModel):
    page: PageModel = Field(default_factory=PageModel)
    query: SearchQueryModel = Field(default_factory=SearchQueryModel)

class FineModel(BaseModel):
    lending_number: str
    fine_value_per_day_in_cents: int
    cents_value: int

class AverageDurationModel(BaseModel):
    average_duration: float


# --- Helpers ---
def _to_model(lending: Lending, response: Optional[Response] = None) -> LendingModel:
    if response is not None:
        response.headers["ETag"] = f'"{lending.version}"'
    return LendingModel(**lending.to_dict())

def _find(service: LendingService, year: str, sequence: str) -> Lending:
    # A number that can never exist is reported as missing
    try:
        return service.find_by_lending_number(f"{year}/{sequence}")
    except FormatError as e:
        raise NotFoundError(f"Lending {year}/{sequence} not found.") from e

def _parse_if_match(if_match: Optional[str]) -> int:
    if if_match is None or not if_match.strip():
        raise HTTPException(status_code=400, detail="If-Match header with the lending version is required")
    raw = if_match.strip()
    if raw.startswith("W/"):
        raw = raw[2:]
    raw = raw.strip('"')
    if not raw.isdigit():
        raise HTTPException(status_code=400, detail=f"Invalid If-Match version: {if_match}")
    return int(raw)


# --- Health check ---
@app.get("/health")
def health():
    """Lightweight health endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "version": settings.app_version,
    }


# --- Lendings ---
@app.post("/api/lendings", response_model=LendingModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_lending(payload: CreateLendingRequest, response: Response,
                   service: LendingService = Depends(get_lending_service)):
    """Lend a book to a reader."""
    lending = service.create_lending(payload.isbn, payload.reader_number)
    response.headers["Location"] = f"/api/lendings/{lending.lending_number}"
    return _to_model(lending, response)

@app.get("/api/lendings/avgDuration", response_model=AverageDurationModel, dependencies=[Depends(get_api_key)])
def get_average_duration(service: LendingService = Depends(get_lending_service)):
    """Average days between start and return over returned lendings."""
    return AverageDurationModel(average_duration=service.average_duration())

@app.get("/api/lendings/overdue", response_model=List[LendingModel], dependencies=[Depends(get_api_key)])
def get_overdue(number: int = Query(1, ge=1, description="Page number"),
                limit: int = Query(settings.default_page_size, ge=1, description="Items per page"),
                service: LendingService = Depends(get_lending_service)):
    """Open lendings past their limit date, oldest first."""
    return [_to_model(l) for l in service.overdue(Page(number, limit))]

@app.post("/api/lendings/search", response_model=List[LendingModel], dependencies=[Depends(get_api_key)])
def search_lendings(payload: SearchRequest, service: LendingService = Depends(get_lending_service)):
    """Search lendings by reader, ISBN, return state and start date range."""
    query = payload.query
    search_filter = SearchFilter(
        reader_number=query.reader_number,
        isbn=query.isbn,
        returned=query.returned,
        start_date_from=query.start_date,
        start_date_to=query.end_date,
    )
    page = Page(payload.page.number, payload.page.limit)
    return [_to_model(l) for l in service.search(search_filter, page)]

@app.get("/api/lendings/{year}/{sequence}", response_model=LendingModel, dependencies=[Depends(get_api_key)])
def get_lending(year: str, sequence: str, response: Response,
                service: LendingService = Depends(get_lending_service)):
    """Get a single lending by its lending number."""
    return _to_model(_find(service, year, sequence), response)

@app.patch("/api/lendings/{year}/{sequence}", response_model=LendingModel, dependencies=[Depends(get_api_key)])
def set_lending_returned(year: str, sequence: str, response: Response,
                         payload: SetLendingReturnedRequest | None = None,
                         if_match: str | None = Header(default=None),
                         service: LendingService = Depends(get_lending_service)):
    """Mark a lending returned; ``If-Match`` must carry the current version."""
    expected_version = _parse_if_match(if_match)
    lending = _find(service, year, sequence)
    commentary = payload.commentary if payload else None
    lending = service.mark_returned(str(lending.lending_number), expected_version, commentary)
    return _to_model(lending, response)

@app.get("/api/lendings/{year}/{sequence}/fine", response_model=FineModel, dependencies=[Depends(get_api_key)])
def get_fine(year: str, sequence: str, service: LendingService = Depends(get_lending_service)):
    """Fine owed for an overdue lending."""
    lending = _find(service, year, sequence)
    return FineModel(**service.compute_fine(str(lending.lending_number)).to_dict())

@app.delete("/api/lendings/{year}/{sequence}", dependencies=[Depends(get_api_key)])
def delete_lending(year: str, sequence: str, service: LendingService = Depends(get_lending_service)):
    """Delete a lending record."""
    lending = _find(service, year, sequence)
    service.delete(str(lending.lending_number))
    return {"message": "Lending deleted."}
