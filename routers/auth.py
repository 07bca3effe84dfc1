import copy
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from pymongo.errors import DuplicateKeyError

from auth import create_token, get_current_user, hash_password, password_problem, public_user, verify_password
from database import db, now_utc, oid, serialize_doc
from errors import AccountDeactivated, DuplicateEmail, InvalidCredentials, NotFound, ValidationError, validate_model
from forms import json_field
from media import MediaHost, get_media_host, release_images, upload_profile_image
from ratelimit import rate_limit
from schemas import Address, BusinessInfo, Role, User as UserSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

FIFTEEN_MINUTES_MS = 15 * 60 * 1000


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str
    role: Role
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{0,15}$")
    address: Optional[Address] = None
    business_info: Optional[BusinessInfo] = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_names(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("password")
    @classmethod
    def strong_password(cls, v):
        problem = password_problem(v)
        if problem:
            raise ValueError(problem)
        return v

    @model_validator(mode="after")
    def seller_business(self):
        if self.role == "seller":
            info = self.business_info
            if info is None or not (info.business_name or "").strip():
                raise ValueError("Business name is required for sellers")
            if not info.business_type:
                raise ValueError("Please select a valid business type")
        return self


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ChangePasswordBody(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, v):
        problem = password_problem(v)
        if problem:
            raise ValueError(problem)
        return v


class DeactivateBody(BaseModel):
    password: str = Field(..., min_length=1)


def _load_user(user_id: str) -> dict:
    user = db["user"].find_one({"_id": oid(user_id)})
    if not user:
        raise NotFound("User not found")
    return user


# ----------------------- Routes -----------------------
@router.post("/register", status_code=201, dependencies=[Depends(rate_limit(5, FIFTEEN_MINUTES_MS, scope="register"))])
def register(body: RegisterBody):
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        raise DuplicateEmail()
    user = UserSchema(
        first_name=body.first_name,
        last_name=body.last_name,
        email=email,
        password_hash=hash_password(body.password),
        role=body.role,
        phone=body.phone,
        address=body.address or Address(),
        business_info=body.business_info if body.role == "seller" else None,
        last_login=now_utc(),
    )
    doc = user.model_dump()
    doc["created_at"] = doc["updated_at"] = now_utc()
    try:
        doc["_id"] = db["user"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise DuplicateEmail()
    logger.info("Registered %s %s", body.role, doc["_id"])
    return {
        "success": True,
        "message": "User registered successfully",
        "data": {"token": create_token(doc), "user": public_user(doc)},
    }


@router.post("/login", dependencies=[Depends(rate_limit(10, FIFTEEN_MINUTES_MS, scope="login"))])
def login(body: LoginBody):
    user = db["user"].find_one({"email": body.email.lower()})
    if not user:
        raise InvalidCredentials()
    if not user.get("is_active", True):
        raise AccountDeactivated("Account has been deactivated. Please contact support.")
    if not verify_password(user.get("password_hash"), body.password):
        raise InvalidCredentials()
    stamp = now_utc()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": stamp}})
    user["last_login"] = stamp
    logger.info("User %s logged in", user["_id"])
    return {
        "success": True,
        "message": "Login successful",
        "data": {"token": create_token(user), "user": public_user(user)},
    }


@router.post("/logout")
def logout(response: Response, user=Depends(get_current_user)):
    response.delete_cookie("token")
    return {"success": True, "message": "Logout successful. Please remove the token from client storage."}


@router.get("/me")
def me(user=Depends(get_current_user)):
    profile = dict(user)
    if user.get("role") == "seller":
        products = db["product"].find(
            {"seller": oid(user["id"])},
            {"name": 1, "price": 1, "images": 1, "status": 1},
        )
        profile["products"] = serialize_doc(list(products))
    return {"success": True, "data": {"user": profile}}


@router.put("/profile")
async def update_profile(
    first_name: Optional[str] = Form(None, min_length=2, max_length=50),
    last_name: Optional[str] = Form(None, min_length=2, max_length=50),
    phone: Optional[str] = Form(None, pattern=r"^\+?[1-9]\d{0,15}$"),
    address: Optional[str] = Form(None),
    business_info: Optional[str] = Form(None),
    profile_image: Optional[UploadFile] = File(None),
    user=Depends(get_current_user),
    host: MediaHost = Depends(get_media_host),
):
    doc = _load_user(user["id"])
    stored = copy.deepcopy(doc)
    if first_name:
        doc["first_name"] = first_name.strip()
    if last_name:
        doc["last_name"] = last_name.strip()
    if phone:
        doc["phone"] = phone
    address_patch = json_field(address, "address")
    if address_patch:
        doc["address"] = {**(doc.get("address") or {}), **address_patch}
    business_patch = json_field(business_info, "business_info")
    if business_patch and doc.get("role") == "seller":
        doc["business_info"] = {**(doc.get("business_info") or {}), **business_patch}

    fields = {k: v for k, v in doc.items() if k not in ("_id", "created_at", "updated_at")}
    validated = validate_model(UserSchema, fields).model_dump()

    previous_image = (doc.get("profile_image") or {}).get("public_id")
    if profile_image is not None and profile_image.filename:
        validated["profile_image"] = await upload_profile_image(host, profile_image)
        if previous_image:
            release_images(host, [previous_image])

    changed = {k: v for k, v in validated.items() if stored.get(k) != v}
    changed["updated_at"] = now_utc()
    db["user"].update_one({"_id": doc["_id"]}, {"$set": changed})
    doc.update(validated)
    return {"success": True, "message": "Profile updated successfully", "data": {"user": public_user(doc)}}


@router.put("/change-password")
def change_password(body: ChangePasswordBody, user=Depends(get_current_user)):
    doc = _load_user(user["id"])
    if not verify_password(doc.get("password_hash"), body.current_password):
        raise ValidationError("Current password is incorrect", [{"field": "current_password", "message": "Current password is incorrect"}])
    db["user"].update_one(
        {"_id": doc["_id"]},
        {"$set": {"password_hash": hash_password(body.new_password), "updated_at": now_utc()}},
    )
    logger.info("Password changed for %s", doc["_id"])
    return {"success": True, "message": "Password changed successfully"}


@router.delete("/account")
def deactivate_account(body: DeactivateBody, user=Depends(get_current_user)):
    doc = _load_user(user["id"])
    if not verify_password(doc.get("password_hash"), body.password):
        raise ValidationError("Password is incorrect", [{"field": "password", "message": "Password is incorrect"}])
    db["user"].update_one({"_id": doc["_id"]}, {"$set": {"is_active": False, "updated_at": now_utc()}})
    logger.info("Account %s deactivated", doc["_id"])
    return {"success": True, "message": "Account deactivated successfully"}
