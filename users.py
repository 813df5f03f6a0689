"""
Registration, login and the current user.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pymongo.database import Database

from database import create_document, get_db, sanitize, to_obj_id
from errors import AuthenticationError, ConflictError, NotFoundError
from responses import envelope
from schemas import LoginRequest, User as UserSchema
from security import PasswordHasher, Principal, create_access_token, get_current_principal, get_hasher

logger = logging.getLogger(__name__)

router = APIRouter()


def assign_role(db: Database) -> str:
    # The very first account administers the shop
    return "ADMIN" if db["user"].count_documents({}) == 0 else "USER"


def register_user(db: Database, user: UserSchema, hasher: PasswordHasher) -> dict:
    if db["user"].find_one({"email": user.email}):
        raise ConflictError("Email already registered")
    data = user.to_document()
    data["password"] = hasher.hash(user.password)
    data["role"] = assign_role(db)
    doc = create_document(db, "user", data)
    logger.info("Registered user %s with role %s", doc["_id"], doc["role"])
    return doc


def authenticate(db: Database, email: str, password: str, hasher: PasswordHasher) -> dict:
    user = db["user"].find_one({"email": email})
    if not user or not hasher.verify(password, user.get("password", "")):
        logger.warning("Failed login for %s", email)
        raise AuthenticationError("Incorrect email or password")
    return user


@router.post("/auth/register")
def register(payload: UserSchema, db: Database = Depends(get_db), hasher: PasswordHasher = Depends(get_hasher)):
    doc = register_user(db, payload, hasher)
    return JSONResponse(status_code=201, content=envelope("Registered successfully", sanitize(doc)))


@router.post("/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db), hasher: PasswordHasher = Depends(get_hasher)):
    user = authenticate(db, payload.email, payload.password, hasher)
    token = create_access_token(str(user["_id"]), user["email"], user.get("role", "USER"))
    return envelope("Logged in successfully", {"accessToken": token, "user": sanitize(user)})


@router.get("/users/me")
def me(principal: Principal = Depends(get_current_principal), db: Database = Depends(get_db)):
    user = db["user"].find_one({"_id": to_obj_id(principal.user_id)})
    if not user:
        raise NotFoundError("User not found")
    return envelope("Fetched current user", sanitize(user))
