import logging
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from typing import List, Optional

import jwt
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from . import config, crud, models, password_reset, premium, schemas
from .auth import create_access_token, decode_access_token, hash_password, verify_password
from .db import Database
from .errors import InvalidStateError, NotFoundError, PermissionDeniedError, UpstreamError
from .logging import configure_logging
from .notifications import EmailNotifier
from .payments import StripeGateway
from .utils import expenses_to_csv

FORGOT_PASSWORD_MESSAGE = "If the address belongs to an account, a reset link has been sent to it"
INVALID_RESET_MESSAGE = "Invalid or expired password reset request"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = config.get_settings()
    configure_logging(settings.log_level)
    database = Database(settings.database_url, settings.db_pool_size, settings.db_pool_timeout)
    database.create_all()
    app.state.database = database
    app.state.notifier = EmailNotifier.from_settings(settings)
    app.state.payment_gateway = StripeGateway.from_settings(settings)
    try:
        yield
    finally:
        database.dispose()


app = FastAPI(title="Expense Tracker", lifespan=lifespan)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


# -------------------- Error mapping --------------------

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidStateError)
async def invalid_state_handler(request: Request, exc: InvalidStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(UpstreamError)
async def upstream_handler(request: Request, exc: UpstreamError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# -------------------- Dependencies --------------------

def get_db(request: Request):
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def get_notifier(request: Request):
    return request.app.state.notifier


def get_payment_gateway(request: Request):
    return request.app.state.payment_gateway


def get_current_user(request: Request, db: Session = Depends(get_db)) -> models.User:
    # accept "Bearer <jwt>" as well as the bare token
    auth = request.headers.get("authorization")
    if not auth:
        raise HTTPException(status_code=401, detail="missing token")
    scheme, _, credentials = auth.partition(" ")
    token = credentials.strip() if scheme.lower() == "bearer" else auth
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub"))
    except (jwt.PyJWTError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="invalid token")
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="invalid token")
    return user


# -------------------- Accounts --------------------
# Handlers that touch the database or block on hashing, SMTP or the gateway
# are plain functions so FastAPI runs them in its threadpool.

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/user/signup", response_model=schemas.UserRead, status_code=201)
def signup(user: schemas.UserCreate, db: Session = Depends(get_db)):
    password_hash = hash_password(user.password)
    try:
        created = crud.create_user(db, user, password_hash)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return created


@app.post("/user/login", response_model=schemas.TokenResponse)
def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = crud.get_user_by_email(db, payload.email)
    if not user:
        raise HTTPException(status_code=404, detail="user does not exist")
    if not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="password is wrong")
    return {"message": "successfully logged in", "token": create_access_token(user.id, user.is_premium)}


@app.get("/user/me", response_model=schemas.UserRead)
def me(user: models.User = Depends(get_current_user)):
    return user


@app.put("/user/password", response_model=schemas.MessageResponse)
def change_password(
    payload: schemas.PasswordChange,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    if not payload.current_password or not payload.new_password:
        raise HTTPException(status_code=400, detail="Current password and new password are required")
    if len(payload.new_password) < 6:
        raise HTTPException(status_code=400, detail="New password must be at least 6 characters long")
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    crud.set_password_hash(db, user, hash_password(payload.new_password))
    logger.info("Password changed for user %s", user.id)
    return {"message": "Password changed successfully"}


# -------------------- Password reset --------------------

@app.post("/password/forgetpassword", response_model=schemas.MessageResponse, status_code=201)
def forget_password(
    payload: schemas.ForgotPasswordRequest,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
):
    # same answer for known and unknown addresses
    password_reset.issue_reset(db, payload.email, notifier, config.get_settings())
    return {"message": FORGOT_PASSWORD_MESSAGE}


@app.get("/resetpassword/{token_id}", response_class=HTMLResponse)
def reset_password_form(request: Request, token_id: str, db: Session = Depends(get_db)):
    try:
        password_reset.consume_reset(db, token_id)
    except (NotFoundError, InvalidStateError):
        return templates.TemplateResponse(
            request, "reset_password.html", {"error": INVALID_RESET_MESSAGE}, status_code=404
        )
    return templates.TemplateResponse(request, "reset_password.html", {"token_id": token_id, "error": None})


@app.post("/password/updatepassword/{token_id}", response_model=schemas.MessageResponse, status_code=201)
async def update_password(request: Request, token_id: str, db: Session = Depends(get_db)):
    """Apply a new password; accepts the field from the HTML form or a JSON body."""
    value = None
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="malformed JSON body")
        if isinstance(body, dict):
            value = body.get("newpassword")
    else:
        form = await request.form()
        value = form.get("newpassword")

    if not isinstance(value, str) or len(value) < 6:
        raise HTTPException(status_code=400, detail="newpassword must be at least 6 characters")
    # body parsing needs the event loop; the rest does not
    await run_in_threadpool(password_reset.update_password, db, token_id, value)
    return {"message": "Password updated successfully"}


# -------------------- Expenses --------------------

@app.post("/expense/addexpense", response_model=schemas.ExpenseRead, status_code=201)
def add_expense(
    expense: schemas.ExpenseCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return crud.create_expense(db, user.id, expense)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/expense/getexpenses", response_model=schemas.ExpensePage)
def get_expenses(
    page: int = Query(1, ge=1),
    pagesize: int = Query(5, ge=1, le=100),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    items, total = crud.list_expenses(db, user.id, page=page, page_size=pagesize)
    last_page = max(1, -(-total // pagesize))
    return {
        "expenses": items,
        "total": total,
        "current_page": page,
        "has_next_page": page * pagesize < total,
        "next_page": page + 1,
        "has_previous_page": page > 1,
        "previous_page": page - 1,
        "last_page": last_page,
    }


@app.put("/expense/{expense_id}", response_model=schemas.ExpenseRead)
def update_expense(
    expense_id: int,
    changes: schemas.ExpenseUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return crud.update_expense(db, user.id, expense_id, changes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/expense/deleteexpense/{expense_id}")
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    crud.delete_expense(db, user.id, expense_id)
    return {"deleted": expense_id}


@app.get("/expense/breakdown", response_model=List[schemas.CategoryShare])
def expense_breakdown(
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    return crud.category_breakdown(db, user.id, start, end)


@app.get("/expense/summary", response_model=schemas.MonthlySummary)
def expense_summary(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return crud.monthly_totals(db, user.id)


@app.get("/user/download")
def download_expenses(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    premium.require_premium(user, "downloads")
    body = expenses_to_csv(crud.all_expenses(db, user.id))
    filename = f"expenses_{date.today().isoformat()}.csv"
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -------------------- Premium --------------------

@app.get("/buypremium", response_model=schemas.PurchaseResponse, status_code=201)
def buy_premium(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    gateway=Depends(get_payment_gateway),
):
    try:
        return premium.start_purchase(db, user, gateway, config.get_settings())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/updatetransaction", response_model=schemas.TokenResponse)
def update_transaction(
    payload: schemas.TransactionUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    gateway=Depends(get_payment_gateway),
):
    premium.complete_purchase(db, user, payload.order_id, payload.payment_id, gateway)
    return {"message": "Transaction successful", "token": create_access_token(user.id, True)}


@app.post("/updatefailure", response_model=schemas.OrderRead)
def update_failure(
    payload: schemas.TransactionFailure,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return premium.fail_purchase(db, user, payload.order_id)


@app.get("/premium/leaderboard", response_model=List[schemas.LeaderboardEntry])
def get_leaderboard(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    premium.require_premium(user, "leaderboard")
    return [
        {"rank": i, "name": u.name, "total_expenses": u.total_amount or 0}
        for i, u in enumerate(crud.leaderboard(db), start=1)
    ]
