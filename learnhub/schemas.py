from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, constr, field_validator

from learnhub.models import OPTION_LABELS, Role


def _normalize_label(v):
    if v is None:
        return v
    val = str(v).strip().upper()
    if val not in OPTION_LABELS:
        raise ValueError("label must be one of A, B, C, or D")
    return val


# --- Accounts ---
class UserCreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=150)
    email: EmailStr
    password: str
    phone: constr(strip_whitespace=True, min_length=1, max_length=30)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserOut(BaseModel):
    id: int
    name: str
    email: EmailStr
    phone: Optional[str] = None
    photo: Optional[str] = None
    role: Role
    email_verified_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EmailSchema(BaseModel):
    email: EmailStr


class VerifyEmailOtp(BaseModel):
    email: EmailStr
    otp: constr(pattern=r"^\d{4}$")


class ResetPassword(BaseModel):
    email: EmailStr
    password: str
    password_confirmation: str


class TokenOut(BaseModel):
    message: str = "Login successful"
    token: str
    token_type: str = "Bearer"
    expires_at: datetime
    user: UserOut


class MessageOut(BaseModel):
    message: str


# --- Catalogue ---
class CategoryIn(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=255)


class CategoryOut(CategoryIn):
    id: int

    class Config:
        from_attributes = True


class ModuleOut(BaseModel):
    id: int
    title: str
    category_id: int
    video_link: str
    pdf_path: Optional[str] = None
    photo: Optional[str] = None
    description: str
    category: Optional[CategoryOut] = None

    class Config:
        from_attributes = True


# --- Quizzes ---
class QuizOut(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    thumbnail: Optional[str] = None

    class Config:
        from_attributes = True


class QuizDetailOut(QuizOut):
    total_questions: int


class QuestionIn(BaseModel):
    question_text: constr(strip_whitespace=True, min_length=1)


class OptionIn(BaseModel):
    label: str
    text: constr(strip_whitespace=True, min_length=1, max_length=255)
    is_correct: bool

    @field_validator("label", mode="before")
    def normalize_label(cls, v):
        return _normalize_label(v)


class OptionOut(BaseModel):
    id: int
    question_id: int
    label: str
    text: str
    is_correct: Optional[bool] = None

    class Config:
        from_attributes = True


class QuestionOut(BaseModel):
    id: int
    quiz_id: int
    question_text: str
    options: List[OptionOut] = []

    class Config:
        from_attributes = True


class Answer(BaseModel):
    question_id: int
    selected_option: str

    @field_validator("selected_option", mode="before")
    def normalize_selected_option(cls, v):
        return _normalize_label(v)


class QuizSubmission(BaseModel):
    answers: List[Answer]

    @field_validator("answers")
    def not_empty(cls, v):
        if not v:
            raise ValueError("answers must not be empty")
        return v


class ScoreOut(BaseModel):
    message: str = "Answers submitted"
    score: int
    total: int
    percentage: float


class LeaderboardRow(BaseModel):
    rank: int
    user_id: int
    user_name: str
    user_photo: Optional[str] = None
    score: int
    total_questions: int
    percentage: float
    submitted_at: datetime


class LeaderboardOut(BaseModel):
    quiz: QuizOut
    leaderboard: List[LeaderboardRow]


class UserScoreOut(BaseModel):
    quiz_id: int
    quiz_title: str
    quiz_description: Optional[str] = None
    quiz_thumbnail: Optional[str] = None
    score: int
    total_questions: int
    percentage: float
    submitted_at: datetime


# --- Chat ---
class ChatPrompt(BaseModel):
    session_id: int
    prompt: constr(strip_whitespace=True, min_length=1)


class ChatLogOut(BaseModel):
    prompt: str
    response: str
    created_at: datetime

    class Config:
        from_attributes = True


class ChatSessionOut(BaseModel):
    id: int
    started_at: datetime
    ended_at: Optional[datetime] = None
    latest_prompt: Optional[str] = None
