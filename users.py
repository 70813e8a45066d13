"""
Account flows: registration, confirmation, login and password reset.

The `token` slot on a user holds a single one-time token, used either for the
confirmation link or for the reset link, and is cleared once consumed.
"""
import logging

from fastapi import BackgroundTasks
from pymongo.errors import DuplicateKeyError

import mailer
from database import create_document, now
from errors import Conflict, Invalid, NotAuthorized, NotFound
from schemas import LoginRequest, RegisterRequest, User
from security import hash_password, issue_token, one_time_token, verify_password

logger = logging.getLogger(__name__)


def register(db, data: RegisterRequest, background_tasks: BackgroundTasks) -> None:
    if db["user"].find_one({"email": data.email}):
        raise Conflict("Email already registered")

    user = User(
        name=data.name,
        email=data.email,
        password_hash=hash_password(data.password),
        token=one_time_token(),
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise Conflict("Email already registered")

    logger.info("User %s registered", user_id)
    background_tasks.add_task(
        mailer.send,
        mailer.MailKind.REGISTER_CONFIRMATION,
        user.email,
        {"name": user.name, "token": user.token},
    )


def login(db, data: LoginRequest) -> dict:
    user = db["user"].find_one({"email": data.email})
    if not user or not verify_password(data.password, user.get("password_hash", "")):
        raise Invalid("Invalid credentials")
    if not user.get("confirmed"):
        raise NotAuthorized("Your account has not been confirmed")

    return {
        "_id": str(user["_id"]),
        "name": user["name"],
        "email": user["email"],
        "token": issue_token(user["_id"]),
    }


def _consume_token(db, token: str, changes: dict) -> dict:
    if not token:
        raise Invalid("Token is not valid")
    user = db["user"].find_one_and_update(
        {"token": token},
        {"$set": dict(changes, token=None, updated_at=now())},
    )
    if not user:
        raise Invalid("Token is not valid")
    return user


def confirm(db, token: str) -> None:
    user = _consume_token(db, token, {"confirmed": True})
    logger.info("User %s confirmed", user["_id"])


def forgot_password(db, email: str, background_tasks: BackgroundTasks) -> None:
    user = db["user"].find_one({"email": email})
    if not user:
        raise NotFound("User does not exist")

    token = one_time_token()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"token": token, "updated_at": now()}})
    logger.info("Password reset requested for user %s", user["_id"])
    background_tasks.add_task(
        mailer.send,
        mailer.MailKind.PASSWORD_RESET,
        user["email"],
        {"name": user["name"], "token": token},
    )


def check_token(db, token: str) -> None:
    if not token or not db["user"].find_one({"token": token}, {"_id": 1}):
        raise Invalid("Token is not valid")


def new_password(db, token: str, password: str) -> None:
    user = _consume_token(db, token, {"password_hash": hash_password(password)})
    logger.info("Password changed for user %s", user["_id"])
