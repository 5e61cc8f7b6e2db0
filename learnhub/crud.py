# learnhub/crud.py
import logging

from fastapi import UploadFile
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

import learnhub.models as models
from learnhub.errors import NotFoundError, ValidationError
from learnhub.storage import (
    IMAGE_EXTENSIONS,
    IMAGE_MAX_BYTES,
    PDF_EXTENSIONS,
    PDF_MAX_BYTES,
    FileStore,
    read_upload,
)

logger = logging.getLogger(__name__)


def get_or_404(db: Session, model, obj_id: int, label: str):
    obj = db.get(model, obj_id)
    if obj is None:
        raise NotFoundError(f"{label} not found")
    return obj


def save_with_uploads(db: Session, files: FileStore, obj, uploads: dict):
    """Attach uploads to ``obj`` and commit.

    ``uploads`` maps an attribute name to ``(upload, folder, allowed_extensions, max_bytes)``;
    ``None`` uploads are skipped. Every upload is validated before any is stored.
    Replaced files are deleted only once the commit succeeds; on failure the
    session is rolled back and the newly stored files are removed.
    """
    old, new = [], []
    try:
        staged = [
            (attr, folder, read_upload(upload, allowed, max_bytes))
            for attr, (upload, folder, allowed, max_bytes) in uploads.items()
            if upload is not None
        ]
        for attr, folder, (data, ext) in staged:
            path = files.store(data, folder, ext)
            new.append(path)
            old.append(getattr(obj, attr))
            setattr(obj, attr, path)
        db.commit()
    except Exception:
        db.rollback()
        for path in new:
            files.delete(path)
        raise
    for path in old:
        files.delete(path)
    db.refresh(obj)
    return obj


# --- Categories ---
def get_categories(db: Session):
    return db.query(models.Category).order_by(models.Category.id).all()


def create_category(db: Session, name: str) -> models.Category:
    category = models.Category(name=name)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def update_category(db: Session, category_id: int, name: str) -> models.Category:
    category = get_or_404(db, models.Category, category_id, "Category")
    category.name = name
    db.commit()
    db.refresh(category)
    return category


def delete_category(db: Session, files: FileStore, category_id: int) -> None:
    category = get_or_404(db, models.Category, category_id, "Category")
    count = len(category.modules)
    paths = [p for m in category.modules for p in (m.pdf_path, m.photo)]
    db.delete(category)
    db.commit()
    for path in paths:
        files.delete(path)
    logger.info("Deleted category %s and %s modules", category_id, count)


# --- Modules ---
def _module_uploads(pdf: UploadFile | None, photo: UploadFile | None) -> dict:
    return {
        "pdf_path": (pdf, "module_pdfs", PDF_EXTENSIONS, PDF_MAX_BYTES),
        "photo": (photo, "module_photos", IMAGE_EXTENSIONS, IMAGE_MAX_BYTES),
    }


def get_modules(db: Session, category_id: int | None = None):
    q = db.query(models.Module).options(joinedload(models.Module.category))
    if category_id is not None:
        q = q.filter(models.Module.category_id == category_id)
    return q.order_by(models.Module.id).all()


def create_module(
    db: Session,
    files: FileStore,
    title: str,
    category_id: int,
    video_link: str,
    description: str,
    pdf: UploadFile | None = None,
    photo: UploadFile | None = None,
) -> models.Module:
    get_or_404(db, models.Category, category_id, "Category")
    module = models.Module(title=title, category_id=category_id, video_link=video_link, description=description)
    db.add(module)
    return save_with_uploads(db, files, module, _module_uploads(pdf, photo))


def update_module(
    db: Session,
    files: FileStore,
    module_id: int,
    fields: dict,
    pdf: UploadFile | None = None,
    photo: UploadFile | None = None,
) -> models.Module:
    module = get_or_404(db, models.Module, module_id, "Module")
    if fields.get("category_id") is not None:
        get_or_404(db, models.Category, fields["category_id"], "Category")
    for key, value in fields.items():
        if value is not None:
            setattr(module, key, value)
    return save_with_uploads(db, files, module, _module_uploads(pdf, photo))


def delete_module(db: Session, files: FileStore, module_id: int) -> None:
    module = get_or_404(db, models.Module, module_id, "Module")
    paths = (module.pdf_path, module.photo)
    db.delete(module)
    db.commit()
    for path in paths:
        files.delete(path)


# --- Quizzes ---
def _thumbnail_upload(thumbnail: UploadFile | None) -> dict:
    return {"thumbnail": (thumbnail, "quiz_thumbnails", IMAGE_EXTENSIONS, IMAGE_MAX_BYTES)}


def get_quizzes(db: Session):
    return db.query(models.Quiz).order_by(models.Quiz.id).all()


def count_questions(db: Session, quiz_id: int) -> int:
    return db.query(func.count(models.Question.id)).filter(models.Question.quiz_id == quiz_id).scalar()


def create_quiz(
    db: Session,
    files: FileStore,
    creator: models.User,
    title: str,
    description: str | None = None,
    thumbnail: UploadFile | None = None,
) -> models.Quiz:
    quiz = models.Quiz(title=title, description=description, created_by=creator.id)
    db.add(quiz)
    return save_with_uploads(db, files, quiz, _thumbnail_upload(thumbnail))


def update_quiz(
    db: Session,
    files: FileStore,
    quiz_id: int,
    title: str | None = None,
    description: str | None = None,
    thumbnail: UploadFile | None = None,
) -> models.Quiz:
    quiz = get_or_404(db, models.Quiz, quiz_id, "Quiz")
    if title is not None:
        if not title.strip():
            raise ValidationError("Title must not be empty")
        quiz.title = title
    if description is not None:
        quiz.description = description
    return save_with_uploads(db, files, quiz, _thumbnail_upload(thumbnail))


def delete_quiz(db: Session, files: FileStore, quiz_id: int) -> None:
    """Delete a quiz with its questions, options and scores, then its thumbnail."""
    quiz = get_or_404(db, models.Quiz, quiz_id, "Quiz")
    thumbnail = quiz.thumbnail
    db.delete(quiz)
    db.commit()
    files.delete(thumbnail)
    logger.info("Deleted quiz %s", quiz_id)


# --- Questions ---
def get_questions(db: Session, quiz_id: int):
    get_or_404(db, models.Quiz, quiz_id, "Quiz")
    return (
        db.query(models.Question)
        .options(joinedload(models.Question.options))
        .filter(models.Question.quiz_id == quiz_id)
        .order_by(models.Question.id)
        .all()
    )


def add_question(db: Session, quiz_id: int, question_text: str) -> models.Question:
    get_or_404(db, models.Quiz, quiz_id, "Quiz")
    question = models.Question(quiz_id=quiz_id, question_text=question_text)
    db.add(question)
    db.commit()
    db.refresh(question)
    return question


def update_question(db: Session, question_id: int, question_text: str) -> models.Question:
    question = get_or_404(db, models.Question, question_id, "Question")
    question.question_text = question_text
    db.commit()
    db.refresh(question)
    return question


def delete_question(db: Session, question_id: int) -> None:
    question = get_or_404(db, models.Question, question_id, "Question")
    db.delete(question)
    db.commit()


def delete_option(db: Session, option_id: int) -> None:
    option = get_or_404(db, models.Option, option_id, "Option")
    db.delete(option)
    db.commit()


# --- Accounts ---
def get_members(db: Session):
    return db.query(models.User).filter(models.User.role == models.Role.member).order_by(models.User.id).all()


def delete_user(db: Session, files: FileStore, admin: models.User, user_id: int) -> None:
    """Remove an account together with its OTPs, tokens, scores and chats."""
    if admin.id == user_id:
        raise ValidationError("You cannot delete your own account")
    user = get_or_404(db, models.User, user_id, "User")
    photo = user.photo
    db.delete(user)
    db.commit()
    files.delete(photo)
    logger.info("Admin %s deleted user %s", admin.id, user_id)
