import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Security
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from circulation.catalog import CatalogService
from circulation.config import Settings, configure_logging, settings as default_settings
from circulation.database import get_db_connection
from circulation.errors import LoanDeskError, PersistenceError
from circulation.loans import LoanService
from circulation.members import MemberService

logger = logging.getLogger(__name__)


# --- Models ---
class LoanCreateModel(BaseModel):
    member_id: int
    isbn: str = Field(min_length=1, max_length=155)


class LoanModel(BaseModel):
    id: int
    member_id: int
    member_name: Optional[str] = None
    isbn: str
    book_title: Optional[str] = None
    borrow_date: str
    due_date: str
    return_date: Optional[str] = None
    status: str
    fine_amount: float
    created_at: Optional[str] = None


class BookCreateModel(BaseModel):
    isbn: str = Field(min_length=1, max_length=155)
    title: str
    author: str
    category: str = "UNKNOWN"
    quantity: int = Field(default=1, ge=0)
    price: float = Field(default=0.0, ge=0)


class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    available: Optional[int] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class BookModel(BaseModel):
    isbn: str
    title: str
    author: str
    category: str
    quantity: int
    available: int
    price: float
    is_active: bool
    created_at: str


class MemberCreateModel(BaseModel):
    name: str = Field(min_length=1)
    email: str = ""
    phone: str = ""


class MemberModel(BaseModel):
    id: int
    name: str
    email: str
    phone: str
    is_active: bool
    created_at: str


def create_app(cfg: Optional[Settings] = None) -> FastAPI:
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(cfg)
        app.state.loans = LoanService(settings=cfg)
        app.state.catalog = CatalogService(settings=cfg)
        app.state.members = MemberService(settings=cfg)
        yield

    app = FastAPI(title=cfg.app_name, version=cfg.app_version, lifespan=lifespan)
    app.state.settings = cfg

    # --- Security ---
    api_key_header = APIKeyHeader(name="X-API-Key")

    def get_api_key(api_key: str = Security(api_key_header)):
        """Dependency that checks the API key."""
        if api_key == cfg.api_key:
            return api_key
        raise HTTPException(status_code=403, detail="Could not validate credentials")

    def actor_role(x_actor_role: Optional[str] = Header(default=None)) -> Optional[str]:
        """The acting staff role travels with each request."""
        return x_actor_role

    def loan_service(request: Request) -> LoanService:
        return request.app.state.loans

    def catalog_service(request: Request) -> CatalogService:
        return request.app.state.catalog

    def member_service(request: Request) -> MemberService:
        return request.app.state.members

    # --- Errors ---
    @app.exception_handler(LoanDeskError)
    async def loan_desk_error_handler(request: Request, exc: LoanDeskError):
        if isinstance(exc, PersistenceError):
            logger.error(f"[{exc.status_code}] {request.method} {request.url.path}: {exc!r}")
            return JSONResponse(status_code=exc.status_code,
                                content={"detail": "Internal server error. Please try again later"})
        logger.warning(f"[{exc.status_code}] {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    # --- Health ---
    @app.get("/health")
    def health():
        db_ok = True
        try:
            conn = get_db_connection(cfg.database_file)
            conn.execute("SELECT 1")
            conn.close()
        except Exception:
            db_ok = False
        return {"status": "healthy" if db_ok else "degraded", "db": db_ok,
                "timestamp": datetime.utcnow().isoformat() + "Z"}

    # --- Loans ---
    @app.post("/loans", response_model=LoanModel, status_code=201, dependencies=[Depends(get_api_key)])
    def register_loan(payload: LoanCreateModel, role=Depends(actor_role), service=Depends(loan_service)):
        return LoanModel(**service.register_loan(payload.member_id, payload.isbn, role).to_dict())

    @app.get("/loans", response_model=List[LoanModel], dependencies=[Depends(get_api_key)])
    def list_loans(member_id: Optional[int] = None, isbn: Optional[str] = None, status: Optional[str] = None,
                   role=Depends(actor_role), service=Depends(loan_service)):
        if member_id is not None:
            loans = service.find_loans_by_member_id(member_id, role)
        elif isbn:
            loans = service.find_loans_by_isbn(isbn, role)
        elif status:
            loans = service.find_loans_by_status(status, role)
        else:
            loans = service.get_all_loans(role)
        return [LoanModel(**loan.to_dict()) for loan in loans]

    @app.get("/loans/{loan_id}", response_model=LoanModel, dependencies=[Depends(get_api_key)])
    def get_loan(loan_id: int, role=Depends(actor_role), service=Depends(loan_service)):
        return LoanModel(**service.find_loan_by_id(loan_id, role).to_dict())

    @app.post("/loans/{loan_id}/return", response_model=LoanModel, dependencies=[Depends(get_api_key)])
    def return_loan(loan_id: int, role=Depends(actor_role), service=Depends(loan_service)):
        return LoanModel(**service.mark_return(loan_id, role).to_dict())

    @app.delete("/loans/{loan_id}", status_code=204, dependencies=[Depends(get_api_key)])
    def delete_loan(loan_id: int, role=Depends(actor_role), service=Depends(loan_service)):
        service.delete_loan(loan_id, role)
        return Response(status_code=204)

    # --- Books ---
    @app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
    def create_book(payload: BookCreateModel, role=Depends(actor_role), service=Depends(catalog_service)):
        book = service.create_book(payload.isbn, payload.title, payload.author, payload.category,
                                   payload.quantity, payload.price, role)
        return BookModel(**book.to_dict())

    @app.get("/books", response_model=List[BookModel], dependencies=[Depends(get_api_key)])
    def list_books(category: Optional[str] = None, author: Optional[str] = None,
                   role=Depends(actor_role), service=Depends(catalog_service)):
        return [BookModel(**b.to_dict()) for b in service.find_books(role, category=category, author=author)]

    @app.get("/books/{isbn}", response_model=BookModel, dependencies=[Depends(get_api_key)])
    def get_book(isbn: str, role=Depends(actor_role), service=Depends(catalog_service)):
        return BookModel(**service.find_book_by_isbn(isbn, role).to_dict())

    @app.patch("/books/{isbn}", response_model=BookModel, dependencies=[Depends(get_api_key)])
    def update_book(isbn: str, payload: BookUpdateModel, role=Depends(actor_role),
                    service=Depends(catalog_service)):
        changes = payload.model_dump(exclude_none=True)
        return BookModel(**service.update_book(isbn, role, **changes).to_dict())

    @app.delete("/books/{isbn}", status_code=204, dependencies=[Depends(get_api_key)])
    def delete_book(isbn: str, role=Depends(actor_role), service=Depends(catalog_service)):
        service.delete_book(isbn, role)
        return Response(status_code=204)

    # --- Members ---
    @app.post("/members", response_model=MemberModel, status_code=201, dependencies=[Depends(get_api_key)])
    def create_member(payload: MemberCreateModel, service=Depends(member_service)):
        return MemberModel(**service.add_member(payload.name, payload.email, payload.phone).to_dict())

    @app.get("/members/{member_id}", response_model=MemberModel, dependencies=[Depends(get_api_key)])
    def get_member(member_id: int, service=Depends(member_service)):
        return MemberModel(**service.find_member(member_id).to_dict())

    return app


app = create_app()
