import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import learnhub.crud as crud
import learnhub.database as database
import learnhub.models as models
import learnhub.schemas as schemas
from learnhub import config
from learnhub.access import get_current_user, require_admin
from learnhub.auth import AuthService
from learnhub.chat import ChatClient, ChatService
from learnhub.database import get_db, utcnow
from learnhub.errors import AppError
from learnhub.grading import QuizGradingEngine
from learnhub.leaderboard import LeaderboardService
from learnhub.mailer import Mailer, SmtpMailer
from learnhub.security import hash_password
from learnhub.storage import FileStore, LocalFileStore

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


# --- Collaborators (overridden in tests) ---
def get_mailer() -> Mailer:
    return SmtpMailer()


def get_file_store() -> FileStore:
    return LocalFileStore()


def get_chat_client() -> ChatClient:
    return ChatClient()


def seed_admin(db: Session) -> None:
    if not (config.ADMIN_EMAIL and config.ADMIN_PASSWORD):
        return
    email = config.ADMIN_EMAIL.lower()
    if db.query(models.User).filter(models.User.email == email).first():
        return
    db.add(
        models.User(
            name=config.ADMIN_NAME,
            email=email,
            hashed_password=hash_password(config.ADMIN_PASSWORD),
            photo=config.DEFAULT_PHOTO,
            role=models.Role.admin,
            email_verified_at=utcnow(),
        )
    )
    db.commit()
    logger.info("[startup] Seeded admin account %s", email)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("[startup] Creating database tables...")
    models.Base.metadata.create_all(bind=database.engine)
    db = database.SessionLocal()
    try:
        seed_admin(db)
    finally:
        db.close()
    yield
    logger.info("Shutting down...")


app = FastAPI(title="LearnHub API", version="1.0.0", lifespan=lifespan)

# --- CORS setup ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error translation ---
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"error": True, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ())[1:])
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": True, "message": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": True, "message": "Internal server error"})


def get_auth_service(db: Session = Depends(get_db), mailer: Mailer = Depends(get_mailer)) -> AuthService:
    return AuthService(db, mailer)


@app.get("/health")
def health():
    return {"status": "ok"}


# --- Registration and Login ---
@app.post("/register", response_model=schemas.UserOut, status_code=201)
def register_user(user_data: schemas.UserCreate, auth: AuthService = Depends(get_auth_service)):
    return auth.register(user_data.name, user_data.email, user_data.password, user_data.phone)


@app.post("/verify-otp", response_model=schemas.UserOut)
def verify_otp(payload: schemas.VerifyEmailOtp, auth: AuthService = Depends(get_auth_service)):
    return auth.verify_registration(payload.email, payload.otp)


@app.post("/resend-register-otp", response_model=schemas.MessageOut)
def resend_register_otp(payload: schemas.EmailSchema, auth: AuthService = Depends(get_auth_service)):
    auth.resend_registration_otp(payload.email)
    return {"message": f"OTP sent to {payload.email}"}


@app.post("/login", response_model=schemas.TokenOut)
def login_user(payload: schemas.UserLogin, auth: AuthService = Depends(get_auth_service)):
    token, expires_at, user = auth.login(payload.email, payload.password)
    return {"token": token, "expires_at": expires_at, "user": user}


@app.post("/logout", response_model=schemas.MessageOut)
def logout_user(user: models.User = Depends(get_current_user), auth: AuthService = Depends(get_auth_service)):
    auth.logout(user)
    return {"message": "Logged out"}


@app.get("/profile", response_model=schemas.UserOut)
def profile(user: models.User = Depends(get_current_user)):
    return user


@app.put("/profile", response_model=schemas.UserOut)
def update_profile(
    name: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    photo: Optional[UploadFile] = File(None),
    user: models.User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
    files: FileStore = Depends(get_file_store),
):
    return auth.update_profile(user, files, name=name, phone=phone, photo=photo)


# --- Password reset ---
@app.post("/forgot-password", response_model=schemas.MessageOut)
def forgot_password(payload: schemas.EmailSchema, auth: AuthService = Depends(get_auth_service)):
    auth.forgot_password(payload.email)
    return {"message": "OTP sent to email"}


@app.post("/verify-forgot-otp", response_model=schemas.MessageOut)
def verify_forgot_otp(payload: schemas.VerifyEmailOtp, auth: AuthService = Depends(get_auth_service)):
    auth.verify_forgot_otp(payload.email, payload.otp)
    return {"message": "OTP verified"}


@app.post("/reset-password", response_model=schemas.MessageOut)
def reset_password(payload: schemas.ResetPassword, auth: AuthService = Depends(get_auth_service)):
    auth.reset_password(payload.email, payload.password, payload.password_confirmation)
    return {"message": "Password reset successful"}


# --- Categories ---
@app.get("/categories", response_model=List[schemas.CategoryOut])
def list_categories(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return crud.get_categories(db)


@app.get("/categories/{category_id}", response_model=schemas.CategoryOut)
def show_category(category_id: int, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return crud.get_or_404(db, models.Category, category_id, "Category")


@app.post("/categories", response_model=schemas.CategoryOut, status_code=201)
def create_category(
    payload: schemas.CategoryIn, db: Session = Depends(get_db), admin: models.User = Depends(require_admin)
):
    return crud.create_category(db, payload.name)


@app.put("/categories/{category_id}", response_model=schemas.CategoryOut)
def update_category(
    category_id: int,
    payload: schemas.CategoryIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    return crud.update_category(db, category_id, payload.name)


@app.delete("/categories/{category_id}", response_model=schemas.MessageOut)
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    files: FileStore = Depends(get_file_store),
    admin: models.User = Depends(require_admin),
):
    crud.delete_category(db, files, category_id)
    return {"message": "Category and related modules deleted"}


# --- Modules ---
@app.get("/modules", response_model=List[schemas.ModuleOut])
def list_modules(
    category_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return crud.get_modules(db, category_id=category_id)


@app.get("/modules/{module_id}", response_model=schemas.ModuleOut)
def show_module(module_id: int, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return crud.get_or_404(db, models.Module, module_id, "Module")


@app.post("/modules", response_model=schemas.ModuleOut, status_code=201)
def create_module(
    title: str = Form(..., min_length=1, max_length=255),
    category_id: int = Form(...),
    video_link: str = Form(..., min_length=1, max_length=2048),
    description: str = Form(..., min_length=1),
    pdf: Optional[UploadFile] = File(None),
    photo: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    files: FileStore = Depends(get_file_store),
    admin: models.User = Depends(require_admin),
):
    return crud.create_module(db, files, title, category_id, video_link, description, pdf=pdf, photo=photo)


@app.put("/modules/{module_id}", response_model=schemas.ModuleOut)
def update_module(
    module_id: int,
    title: Optional[str] = Form(None, min_length=1, max_length=255),
    category_id: Optional[int] = Form(None),
    video_link: Optional[str] = Form(None, min_length=1, max_length=2048),
    description: Optional[str] = Form(None, min_length=1),
    pdf: Optional[UploadFile] = File(None),
    photo: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    files: FileStore = Depends(get_file_store),
    admin: models.User = Depends(require_admin),
):
    fields = {"title": title, "category_id": category_id, "video_link": video_link, "description": description}
    return crud.update_module(db, files, module_id, fields, pdf=pdf, photo=photo)


@app.delete("/modules/{module_id}", response_model=schemas.MessageOut)
def delete_module(
    module_id: int,
    db: Session = Depends(get_db),
    files: FileStore = Depends(get_file_store),
    admin: models.User = Depends(require_admin),
):
    crud.delete_module(db, files, module_id)
    return {"message": "Module deleted"}


# --- Quizzes ---
@app.get("/quizzes", response_model=List[schemas.QuizOut])
def list_quizzes(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return crud.get_quizzes(db)


@app.get("/quizzes/{quiz_id}", response_model=schemas.QuizDetailOut)
def show_quiz(quiz_id: int, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    quiz = crud.get_or_404(db, models.Quiz, quiz_id, "Quiz")
    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "thumbnail": quiz.thumbnail,
        "total_questions": crud.count_questions(db, quiz.id),
    }


@app.post("/quizzes", response_model=schemas.QuizOut, status_code=201)
def create_quiz(
    title: str = Form(..., min_length=1),
    description: Optional[str] = Form(None),
    thumbnail: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    files: FileStore = Depends(get_file_store),
    admin: models.User = Depends(require_admin),
):
    return crud.create_quiz(db, files, admin, title, description=description, thumbnail=thumbnail)


@app.put("/quizzes/{quiz_id}", response_model=schemas.QuizOut)
def update_quiz(
    quiz_id: int,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    thumbnail: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    files: FileStore = Depends(get_file_store),
    admin: models.User = Depends(require_admin),
):
    return crud.update_quiz(db, files, quiz_id, title=title, description=description, thumbnail=thumbnail)


@app.delete("/quizzes/{quiz_id}", response_model=schemas.MessageOut)
def delete_quiz(
    quiz_id: int,
    db: Session = Depends(get_db),
    files: FileStore = Depends(get_file_store),
    admin: models.User = Depends(require_admin),
):
    crud.delete_quiz(db, files, quiz_id)
    return {"message": "Quiz deleted with all related data"}


@app.get("/quizzes/{quiz_id}/questions", response_model=List[schemas.QuestionOut])
def list_questions(quiz_id: int, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    questions = crud.get_questions(db, quiz_id)
    reveal = user.role == models.Role.admin
    return [
        {
            "id": q.id,
            "quiz_id": q.quiz_id,
            "question_text": q.question_text,
            "options": [
                {
                    "id": o.id,
                    "question_id": o.question_id,
                    "label": o.label,
                    "text": o.text,
                    "is_correct": o.is_correct if reveal else None,
                }
                for o in q.options
            ],
        }
        for q in questions
    ]


@app.post("/quizzes/{quiz_id}/questions", response_model=schemas.QuestionOut, status_code=201)
def add_question(
    quiz_id: int,
    payload: schemas.QuestionIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    return crud.add_question(db, quiz_id, payload.question_text)


@app.put("/questions/{question_id}", response_model=schemas.QuestionOut)
def update_question(
    question_id: int,
    payload: schemas.QuestionIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    return crud.update_question(db, question_id, payload.question_text)


@app.delete("/questions/{question_id}", response_model=schemas.MessageOut)
def delete_question(question_id: int, db: Session = Depends(get_db), admin: models.User = Depends(require_admin)):
    crud.delete_question(db, question_id)
    return {"message": "Question deleted with its options"}


@app.post("/questions/{question_id}/options", response_model=schemas.OptionOut, status_code=201)
def add_option(
    question_id: int,
    payload: schemas.OptionIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    return QuizGradingEngine(db).add_option(question_id, payload.label, payload.text, payload.is_correct)


@app.put("/options/{option_id}", response_model=schemas.OptionOut)
def update_option(
    option_id: int,
    payload: schemas.OptionIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    return QuizGradingEngine(db).update_option(option_id, payload.label, payload.text, payload.is_correct)


@app.delete("/options/{option_id}", response_model=schemas.MessageOut)
def delete_option(option_id: int, db: Session = Depends(get_db), admin: models.User = Depends(require_admin)):
    crud.delete_option(db, option_id)
    return {"message": "Option deleted"}


# --- Submissions and scores ---
@app.post("/quizzes/{quiz_id}/submit", response_model=schemas.ScoreOut)
def submit_quiz(
    quiz_id: int,
    payload: schemas.QuizSubmission,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    answers = [(a.question_id, a.selected_option) for a in payload.answers]
    result = QuizGradingEngine(db).submit(user.id, quiz_id, answers)
    return {"score": result.score, "total": result.total, "percentage": result.percentage}


@app.get("/quizzes/{quiz_id}/leaderboard", response_model=schemas.LeaderboardOut)
def quiz_leaderboard(quiz_id: int, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    entries = LeaderboardService(db).rank(quiz_id)
    quiz = db.get(models.Quiz, quiz_id)
    return {
        "quiz": quiz,
        "leaderboard": [{"rank": i, **vars(entry)} for i, entry in enumerate(entries, start=1)],
    }


@app.get("/my-quiz-scores", response_model=List[schemas.UserScoreOut])
def my_quiz_scores(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return [
        {
            "quiz_id": s.quiz_id,
            "quiz_title": s.quiz.title,
            "quiz_description": s.quiz.description,
            "quiz_thumbnail": s.quiz.thumbnail,
            "score": s.score,
            "total_questions": s.total_questions,
            "percentage": s.percentage,
            "submitted_at": s.submitted_at,
        }
        for s in LeaderboardService(db).user_scores(user.id)
    ]


# --- Accounts ---
@app.get("/accounts/users", response_model=List[schemas.UserOut])
def list_users(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return crud.get_members(db)


@app.delete("/accounts/users/{user_id}", response_model=schemas.MessageOut)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    files: FileStore = Depends(get_file_store),
    admin: models.User = Depends(require_admin),
):
    crud.delete_user(db, files, admin, user_id)
    return {"message": "User and related data deleted"}


# --- Chat ---
def get_chat_service(db: Session = Depends(get_db), client: ChatClient = Depends(get_chat_client)) -> ChatService:
    return ChatService(db, client)


@app.post("/chat/start")
def chat_start(user: models.User = Depends(get_current_user), chat: ChatService = Depends(get_chat_service)):
    return {"session_id": chat.start(user).id}


@app.post("/chat/send")
def chat_send(
    payload: schemas.ChatPrompt,
    user: models.User = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
):
    return {"reply": chat.send(user, payload.session_id, payload.prompt)}


@app.get("/chat/history/{session_id}", response_model=List[schemas.ChatLogOut])
def chat_history(
    session_id: int, user: models.User = Depends(get_current_user), chat: ChatService = Depends(get_chat_service)
):
    return chat.history(user, session_id)


@app.post("/chat/end/{session_id}", response_model=schemas.MessageOut)
def chat_end(
    session_id: int, user: models.User = Depends(get_current_user), chat: ChatService = Depends(get_chat_service)
):
    chat.end(user, session_id)
    return {"message": "Chat session ended"}


@app.get("/chat/sessions", response_model=List[schemas.ChatSessionOut])
def chat_sessions(user: models.User = Depends(get_current_user), chat: ChatService = Depends(get_chat_service)):
    return [
        {"id": s.id, "started_at": s.started_at, "ended_at": s.ended_at, "latest_prompt": latest}
        for s, latest in chat.sessions(user)
    ]


# --- Run app ---
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("learnhub.main:app", host="0.0.0.0", port=8000, reload=True)
