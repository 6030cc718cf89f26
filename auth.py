import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from actors import Actor, actor_for_user
from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from database import get_db, object_id
from errors import ConflictError, ForbiddenError, NotFoundError, Unauthenticated
from schemas import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def token_for_user(user: dict) -> str:
    return create_access_token({"sub": str(user["_id"]), "role": user["role"]})


def public_user(user: dict) -> dict:
    out = {
        "id": str(user["_id"]),
        "username": user["username"],
        "email": user["email"],
        "role": user["role"],
    }
    for field in ("name", "address", "business_name", "business_address", "hub_id"):
        if user.get(field) is not None:
            out[field] = user[field]
    return out


def _taken(db, query: dict, exclude_id=None) -> bool:
    if exclude_id is not None:
        query = {**query, "_id": {"$ne": exclude_id}}
    return db["user"].find_one(query, {"_id": 1}) is not None


def check_username_free(db, username: str, exclude_id=None):
    if _taken(db, {"username": username}, exclude_id):
        raise ConflictError("Username already exists")


def check_business_free(db, business_name=None, business_address=None, exclude_id=None):
    if business_name is not None and _taken(db, {"role": "VENDOR", "business_name": business_name}, exclude_id):
        raise ConflictError("Business name already exists")
    if business_address is not None and _taken(
        db, {"role": "VENDOR", "business_address": business_address}, exclude_id
    ):
        raise ConflictError("Business address already exists")


def check_hub_exists(db, hub_id):
    hub_oid = object_id(hub_id)
    if hub_oid is None or not db["distributionhub"].find_one({"_id": hub_oid}, {"_id": 1}):
        raise NotFoundError("Distribution hub", hub_id)


def register_user(db, username: str, email: str, password: str, role: str, **profile) -> dict:
    """Create a user of any role. Usernames and emails are unique across roles."""
    if _taken(db, {"$or": [{"username": username}, {"email": email.lower()}]}):
        raise ConflictError("Username or email already exists")

    if role == "VENDOR":
        check_business_free(db, profile.get("business_name"), profile.get("business_address"))
    elif role == "SHIPPER":
        check_hub_exists(db, profile.get("hub_id"))

    now = datetime.now(timezone.utc)
    user = User(
        username=username,
        email=email.lower(),
        password_hash=get_password_hash(password),
        role=role,
        **profile,
    )
    doc = {**user.model_dump(exclude_none=True), "created_at": now, "updated_at": now}
    try:
        result = db["user"].insert_one(doc)
    except DuplicateKeyError:
        # lost a race with a concurrent registration of the same name or email
        raise ConflictError("Username or email already exists")
    doc["_id"] = result.inserted_id
    logger.info("Registered %s %s", role.lower(), username)
    return doc


def authenticate(db, username: str, password: str) -> Optional[dict]:
    user = db["user"].find_one({"username": username})
    if not user or not verify_password(password, user.get("password_hash", "")):
        return None
    return user


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db=Depends(get_db)):
    if not token:
        raise Unauthenticated("Access denied. No token provided.")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise Unauthenticated()
    except JWTError:
        raise Unauthenticated("Invalid token.")

    oid = object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise Unauthenticated("User no longer exists.")
    return user


def get_current_actor(user=Depends(get_current_user)) -> Actor:
    actor = actor_for_user(user)
    if actor is None:
        raise Unauthenticated("Invalid user role.")
    return actor


def require(*actor_types):
    """Dependency factory admitting only the given actor classes."""

    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not isinstance(actor, actor_types):
            raise ForbiddenError()
        return actor

    return dependency
