from datetime import timedelta
from functools import wraps
from typing import Dict, Tuple, Union

import bcrypt
from flask import jsonify, request
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt,
    verify_jwt_in_request,
)

from .errors import Forbidden, NotFound, Unauthorized, ValidationError

SESSION_LIFETIME = timedelta(days=1)


def hash_password(password: str, rounds: int = 12) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def check_password(password: str, password_hash: Union[str, bytes, None]) -> bool:
    if not password_hash:
        return False
    if isinstance(password_hash, str):
        password_hash = password_hash.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash)
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


def serialize_account(account_document) -> Dict[str, object]:
    return {
        "id": str(account_document.get("_id")),
        "email": account_document.get("email", ""),
        "isAdmin": bool(account_document.get("isAdmin", True)),
    }


def issue_session_token(account_document) -> str:
    return create_access_token(
        identity=str(account_document["_id"]),
        additional_claims={"isAdmin": True},
        expires_delta=SESSION_LIFETIME,
    )


def authenticate_admin(users_collection, email, password) -> Tuple[str, Dict[str, object]]:
    """Check an email/password pair and issue a session token.

    Returns ``(token, account)`` where ``account`` is the serialized account
    without its password hash. Raises ``ValidationError`` when either value
    is blank, ``NotFound`` when no account has this email and
    ``Unauthorized`` when the password does not match.
    """
    email = str(email or "").strip()
    password = str(password or "")

    missing = [name for name, value in (("email", email), ("password", password)) if not value]
    if missing:
        raise ValidationError("Email and password are required.", missing_fields=missing)

    account = users_collection.find_one({"email": email})
    if not account:
        raise NotFound("Admin not found.", code="AccountNotFound", status_code=400)

    if not check_password(password, account.get("passwordHash")):
        raise Unauthorized("Incorrect password.", code="BadPassword", status_code=400)

    return issue_session_token(account), serialize_account(account)


def admin_required(view):
    """Require a valid bearer token carrying the admin claim."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        if get_jwt().get("isAdmin") is not True:
            raise Forbidden("Unauthorized. Admin access required.")
        return view(*args, **kwargs)

    return wrapper


def create_admin_account(users_collection, email: str, password: str, rounds: int = 12):
    email = str(email or "").strip()
    if not email or not password:
        raise ValidationError("Email and password are required.")

    if users_collection.find_one({"email": email}):
        raise ValidationError(f"An account for {email} already exists.", code="AccountExists")

    document = {
        "email": email,
        "passwordHash": hash_password(password, rounds=rounds),
        "isAdmin": True,
    }
    result = users_collection.insert_one(document)
    document["_id"] = result.inserted_id
    return document


def init_jwt(app) -> JWTManager:
    jwt = JWTManager(app)

    def unauthorized_response(error: Unauthorized):
        return jsonify(error.to_dict()), error.status_code

    @jwt.unauthorized_loader
    def missing_token_callback(reason: str):
        if request.headers.get(app.config.get("JWT_HEADER_NAME", "Authorization")):
            return unauthorized_response(
                Unauthorized("Authorization header must be 'Bearer <token>'.")
            )
        return unauthorized_response(
            Unauthorized("Access denied. No token provided.", code="NoCredential")
        )

    @jwt.invalid_token_loader
    def invalid_token_callback(reason: str):
        return unauthorized_response(Unauthorized())

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return unauthorized_response(Unauthorized())

    return jwt
