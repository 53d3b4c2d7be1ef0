import asyncio
import logging
import os
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, Dict, List, Optional

import uvicorn
from fastapi import (
    Body,
    Cookie,
    Depends,
    FastAPI,
    Form,
    Request,
    Response,
)
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from .catalog import QuestionCatalog
from .config import settings
from .database import LocalStore, init_db
from .engine import QuizEngine
from .errors import PersistenceUnavailable, QuizError
from .log_handler import SQLiteHandler
from .models import Mode, UserAggregate
from .redis_session import RemoteUserStore
from .storage import PersistenceGateway, RemoteFirstPolicy, TieredStore

# --- Logging Setup ---
logger = logging.getLogger("shuati")
logger.setLevel(logging.INFO)

if settings.LOG_TO_DB:
    init_db()
    logger.addHandler(SQLiteHandler())
else:
    if not os.path.exists(settings.LOG_DIR):
        os.makedirs(settings.LOG_DIR)
    log_path = os.path.join(settings.LOG_DIR, settings.LOG_FILE)
    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    )
    logger.addHandler(file_handler)


# --- Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    catalog.load_all()
    # One worker keeps saves in the order they were made.
    app.state.writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="shuati-save")
    yield
    for engine, _ in engines.values():
        engine.close()
    engines.clear()
    app.state.writer.shutdown(wait=True)


app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

if os.path.isdir("static"):
    app.mount("/static", StaticFiles(directory="static"), name="static")
templates = Jinja2Templates(directory="templates")

catalog = QuestionCatalog(settings.BANK_DIR)
remote_store = RemoteUserStore()

# Key is the device ID from the cookie, value is (engine, last activity).
engines: Dict[str, Any] = {}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    client = request.client.host if request.client else "-"
    logger.info(f"{request.method} {request.url.path} - {response.status_code} - IP: {client}")
    return response


@app.exception_handler(QuizError)
async def quiz_error_handler(request: Request, exc: QuizError):
    return JSONResponse({"error": str(exc)}, status_code=exc.status_code)


# --- Dependencies ---
GatewayFactory = Callable[[str], PersistenceGateway]


def get_gateway_factory(request: Request) -> GatewayFactory:
    """Gateways whose local tier is scoped to one device."""
    writer = request.app.state.writer

    def for_device(device: str) -> PersistenceGateway:
        local = LocalStore(settings.db_path, device=device)
        policy = RemoteFirstPolicy(remote_store, local)
        return PersistenceGateway(TieredStore(policy), executor=writer)

    return for_device


def get_session_id(
    session_id: Optional[str] = Cookie(None, alias=settings.SESSION_COOKIE_NAME),
) -> Optional[str]:
    return session_id


async def get_engine(
    response: Response,
    session_id: Optional[str] = Depends(get_session_id),
    gateway_for: GatewayFactory = Depends(get_gateway_factory),
) -> QuizEngine:
    now = datetime.now()
    timeout = timedelta(minutes=settings.SESSION_TIMEOUT_MINUTES)
    for sid, (engine, seen) in list(engines.items()):
        if now - seen > timeout:
            engine.close()
            del engines[sid]
            logger.info(f"Expired session: {sid}")

    if session_id and session_id in engines:
        engine = engines[session_id][0]
    else:
        if not session_id:
            session_id = str(uuid.uuid4())
            response.set_cookie(
                key=settings.SESSION_COOKIE_NAME,
                value=session_id,
                max_age=settings.DEVICE_COOKIE_DAYS * 24 * 3600,
                httponly=True,
                samesite="Lax",
            )
        engine = QuizEngine(
            catalog, gateway_for(session_id), scheduler=asyncio.get_running_loop().call_later
        )
        logger.info(f"New session: {session_id}")
    engines[session_id] = (engine, now)
    return engine


# --- Catalog Routes ---
@app.get("/", response_class=HTMLResponse)
async def home(request: Request):
    return templates.TemplateResponse(
        request, "index.html", {"topics": catalog.get_topics()}
    )


@app.get("/api/subjects")
async def get_subjects():
    return {"subjects": catalog.get_subjects()}


@app.get("/api/subjects/{subject}/types")
async def get_types(subject: str):
    return {"subject": subject, "types": catalog.get_types(subject)}


@app.get("/api/subjects/{subject}/questions")
async def get_subject_questions(subject: str):
    bank = catalog.get_questions(subject)
    return {
        "subject": subject,
        "questions": {
            type_name: {text: q.model_dump(exclude={"text"}) for text, q in questions.items()}
            for type_name, questions in bank.items()
        },
    }


@app.get("/api/subjects/{subject}/questions/{type_name}")
async def get_type_questions(subject: str, type_name: str):
    entry = catalog.get_entry(subject, type_name)
    return {
        "subject": subject,
        "type": type_name,
        "questions": {q.text: q.model_dump(exclude={"text"}) for q in entry},
    }


# --- User Data Service Routes ---
def _remote_call(fn, *args):
    try:
        return fn(*args)
    except PersistenceUnavailable as e:
        logger.error(f"Data service unavailable: {e}")
        return JSONResponse({"success": False, "error": "Data service unavailable"}, status_code=503)


@app.get("/api/users/{username}/data")
def get_user_data(username: str):
    result = _remote_call(remote_store.get_user_aggregate, username)
    if isinstance(result, UserAggregate):
        return {"success": True, "data": result.model_dump(mode="json")}
    return result


@app.post("/api/users/{username}/answers/{mode}")
def put_user_answers(username: str, mode: Mode, answers: Dict[int, str] = Body(...)):
    return _remote_call(remote_store.put_answers, username, mode.value, answers) or {
        "success": True
    }


@app.post("/api/users/{username}/wrongQuestions")
def put_user_wrong_questions(username: str, questions: List[Dict[str, Any]] = Body(...)):
    return _remote_call(remote_store.put_wrong_ledger, username, questions) or {"success": True}


@app.post("/api/users/{username}/stats")
def put_user_stats(username: str, stats: Dict[str, Any] = Body(...)):
    return _remote_call(remote_store.put_stats, username, stats) or {"success": True}


@app.post("/api/users/{username}/typeStates")
def put_user_type_states(username: str, type_states: Dict[str, Any] = Body(...)):
    return _remote_call(remote_store.put_type_states, username, type_states) or {
        "success": True
    }


# --- Play Routes ---
@app.post("/api/play/select")
async def select(
    subject: str = Form(...),
    type_name: Optional[str] = Form(None),
    engine: QuizEngine = Depends(get_engine),
):
    types = engine.select_subject(subject)
    if type_name is None:
        return {"subject": subject, "types": types}
    engine.select_type(type_name)
    return engine.view()


@app.post("/api/play/mode")
async def select_mode(mode: Mode = Form(...), engine: QuizEngine = Depends(get_engine)):
    if engine.select_mode(mode) is None:
        return {"mode": mode}
    return engine.view()


@app.post("/api/play/submit")
async def submit_answer(
    selection: List[str] = Form([]),
    engine: QuizEngine = Depends(get_engine),
):
    record = engine.submit(selection)
    return {"record": record, "state": engine.view()}


@app.post("/api/play/reveal")
async def reveal_answer(engine: QuizEngine = Depends(get_engine)):
    return {"answer": engine.reveal(), "state": engine.view()}


@app.post("/api/play/goto/{index}")
async def go_to_question(index: int, engine: QuizEngine = Depends(get_engine)):
    if not engine.go_to(index):
        return JSONResponse({"error": "Index error"}, status_code=404)
    return engine.view()


@app.post("/api/play/reset")
async def reset_session(engine: QuizEngine = Depends(get_engine)):
    engine.reset()
    return engine.view()


@app.post("/api/play/wrong/clear")
async def clear_wrong_questions(engine: QuizEngine = Depends(get_engine)):
    engine.clear_wrong_questions()
    return {"status": "success", "wrong_questions": 0}


@app.post("/api/play/sync")
async def sync(engine: QuizEngine = Depends(get_engine)):
    applied = await engine.refresh()
    return {"applied": applied, "state": engine.view() if engine.session else None}


@app.post("/api/play/login")
async def login(username: str = Form(...), engine: QuizEngine = Depends(get_engine)):
    engine.login(username)
    return {"status": "success", "username": username}


@app.post("/api/play/logout")
async def logout(engine: QuizEngine = Depends(get_engine)):
    engine.logout()
    return {"status": "success"}


@app.get("/api/play/state")
async def get_state(engine: QuizEngine = Depends(get_engine)):
    return engine.view()


@app.get("/api/play/stats")
async def get_stats(engine: QuizEngine = Depends(get_engine)):
    stats = engine.stats.stats
    return {
        "total_answered": stats.total_answered,
        "correct_count": stats.correct_count,
        "wrong_count": stats.wrong_count,
        "correct_rate": engine.stats.correct_rate(),
        "wrong_questions": len(engine.ledger),
        "type_accuracy": engine.type_accuracy(),
        "history": stats.history,
    }


def run():
    uvicorn.run("shuati.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)


if __name__ == "__main__":
    run()
