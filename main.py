import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

from bson.errors import InvalidId
from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from slugify import slugify
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from aggregates import delete_bootcamp_cascade, update_average_cost, update_average_rating
from auth import (
    ensure_owner,
    generate_reset_token,
    get_current_user,
    hash_password,
    hash_reset_token,
    require_role,
    token_response,
    verify_password,
)
from config import Settings, get_settings
from database import create_document, ensure_indexes, find_by_id, get_db, sanitize, to_obj_id, utcnow
from errors import ErrorResponse, duplicate
from geocoder import Geocoder, geocode_or_fail, get_geocoder
from logging_config import configure_logging
from mailer import Mailer, get_mailer
from query import Populate, advanced_results, flatten_query, populate
from schemas import (
    AccountEmail,
    Bootcamp as BootcampSchema,
    Career,
    Course as CourseSchema,
    LookupEmail,
    Review as ReviewSchema,
    Role,
    Skill,
    User as UserSchema,
    URL_PATTERN,
)
from uploads import save_image

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3963

BOOTCAMP_SUMMARY = Populate(path="bootcamp", collection="bootcamp", select=["name", "description"])
BOOTCAMP_COURSES = Populate(path="courses", collection="course", foreign_field="bootcamp")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(get_settings())
    if database.db is not None:
        ensure_indexes(database.db)
        logger.info("MongoDB connected: %s", database.db.name)
    yield


# App and CORS
app = FastAPI(title="Bootcamp Directory API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling

def error_envelope(status_code: int, message: str, errors: Optional[Dict[str, str]] = None) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "message": message}
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=content)


def field_errors(errors: List[Dict[str, Any]]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        out.setdefault(".".join(loc) or "body", err.get("msg", "Invalid value"))
    return out


@app.exception_handler(ErrorResponse)
async def handle_error_response(request: Request, exc: ErrorResponse):
    return error_envelope(exc.status_code, exc.message, exc.errors)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    return error_envelope(400, "The given data was invalid.", field_errors(exc.errors()))


@app.exception_handler(ValidationError)
async def handle_model_validation(request: Request, exc: ValidationError):
    return error_envelope(400, "The given data was invalid.", field_errors(exc.errors()))


@app.exception_handler(DuplicateKeyError)
async def handle_duplicate_key(request: Request, exc: DuplicateKeyError):
    key_value = (exc.details or {}).get("keyValue") or {}
    field = next(iter(key_value), "field")
    return error_envelope(400, "Duplicate field value entered", {field: f"The {field} has already been taken"})


@app.exception_handler(InvalidId)
async def handle_invalid_id(request: Request, exc: InvalidId):
    return error_envelope(404, "Resource not found")


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException):
    return error_envelope(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_envelope(500, "Server Error")


# Request Models
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: AccountEmail
    password: str = Field(..., min_length=8)
    role: Literal["user", "publisher"] = "user"

class LoginRequest(BaseModel):
    email: Optional[LookupEmail] = None
    password: Optional[str] = None

class UpdateDetailsRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[AccountEmail] = None

class UpdatePasswordRequest(BaseModel):
    currentPassword: str
    newPassword: str = Field(..., min_length=8)

class ForgotPasswordRequest(BaseModel):
    email: LookupEmail

class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=8)

class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: AccountEmail
    password: str = Field(..., min_length=8)
    role: Role = "user"

class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[AccountEmail] = None
    password: Optional[str] = Field(None, min_length=8)
    role: Optional[Role] = None

class CreateBootcampRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: str = Field(..., min_length=1, max_length=500)
    website: Optional[str] = Field(None, pattern=URL_PATTERN)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    address: str = Field(..., min_length=1)
    careers: List[Career] = Field(..., min_length=1)
    housing: bool = False
    jobAssistance: bool = False
    jobGuarantee: bool = False
    acceptGi: bool = False

class UpdateBootcampRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    website: Optional[str] = Field(None, pattern=URL_PATTERN)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(None, min_length=1)
    careers: Optional[List[Career]] = Field(None, min_length=1)
    housing: Optional[bool] = None
    jobAssistance: Optional[bool] = None
    jobGuarantee: Optional[bool] = None
    acceptGi: Optional[bool] = None

class CreateCourseRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    weeks: float = Field(..., ge=0)
    tuition: float = Field(..., ge=0)
    minimumSkill: Skill
    scholarshipAvailable: bool = False

class UpdateCourseRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    weeks: Optional[float] = Field(None, ge=0)
    tuition: Optional[float] = Field(None, ge=0)
    minimumSkill: Optional[Skill] = None
    scholarshipAvailable: Optional[bool] = None

class CreateReviewRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    text: str = Field(..., min_length=1)
    rating: float = Field(..., ge=1, le=10)

class UpdateReviewRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    text: Optional[str] = Field(None, min_length=1)
    rating: Optional[float] = Field(None, ge=1, le=10)


def changes(payload: BaseModel) -> Dict[str, Any]:
    return payload.model_dump(exclude_unset=True, exclude_none=True)


def ensure_unique(db: Database, collection_name: str, field: str, value: Any, exclude_id: Optional[str] = None) -> None:
    query: Dict[str, Any] = {field: value}
    if exclude_id:
        query["_id"] = {"$ne": to_obj_id(exclude_id)}
    if db[collection_name].find_one(query):
        raise duplicate(field)


# Auth Routes
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    ensure_unique(db, "user", "email", payload.email)
    user = UserSchema(
        name=payload.name,
        email=payload.email,
        role=payload.role,
        password_hash=hash_password(payload.password),
    )
    doc = create_document(db, "user", user)
    return token_response(doc, settings, 201)

@app.post("/api/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    if not payload.email or not payload.password:
        raise ErrorResponse("Please provide an email and password", 400)
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise ErrorResponse("Invalid email or password", 401)
    return token_response(user, settings)

@app.get("/api/auth/logout")
def logout():
    response = JSONResponse(content={"success": True, "data": {}})
    response.set_cookie("token", "none", max_age=10, httponly=True)
    return response

@app.get("/api/auth/me")
def me(current_user=Depends(get_current_user)):
    return {"success": True, "data": current_user}

@app.put("/api/auth/updatedetails")
def update_details(payload: UpdateDetailsRequest, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    data = changes(payload)
    if "email" in data:
        ensure_unique(db, "user", "email", data["email"], exclude_id=current_user["id"])
    if data:
        db["user"].update_one({"_id": to_obj_id(current_user["id"])}, {"$set": data})
    user = find_by_id(db, "user", current_user["id"], "User")
    return {"success": True, "data": sanitize(user)}

@app.put("/api/auth/updatepassword")
def update_password(
    payload: UpdatePasswordRequest,
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = find_by_id(db, "user", current_user["id"], "User")
    if not verify_password(payload.currentPassword, user.get("password_hash", "")):
        raise ErrorResponse("Password is incorrect", 401)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"password_hash": hash_password(payload.newPassword)}})
    return token_response(user, settings)

@app.post("/api/auth/forgotpassword")
def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    db: Database = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    user = db["user"].find_one({"email": payload.email})
    if not user:
        raise ErrorResponse("There is no user with that email", 404)

    token, hashed, expire = generate_reset_token()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"resetPasswordToken": hashed, "resetPasswordExpire": expire}},
    )

    reset_url = f"{request.base_url}api/auth/resetpassword/{token}"
    message = (
        "You are receiving this email because you (or someone else) has requested "
        f"the reset of a password. Please make a PUT request to: \n\n{reset_url}"
    )
    try:
        mailer.send(user["email"], "Password reset token", message)
    except Exception as e:
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$unset": {"resetPasswordToken": "", "resetPasswordExpire": ""}},
        )
        if isinstance(e, ErrorResponse):
            raise
        logger.exception("Password reset mail to %s failed", user["email"])
        raise ErrorResponse("Email could not be sent", 500)
    return {"success": True, "data": "Email sent"}

@app.put("/api/auth/resetpassword/{resettoken}")
def reset_password(
    resettoken: str,
    payload: ResetPasswordRequest,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = db["user"].find_one({
        "resetPasswordToken": hash_reset_token(resettoken),
        "resetPasswordExpire": {"$gt": utcnow()},
    })
    if not user:
        raise ErrorResponse("Invalid token", 400)
    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password_hash": hash_password(payload.password)},
            "$unset": {"resetPasswordToken": "", "resetPasswordExpire": ""},
        },
    )
    return token_response(user, settings)


# Bootcamp Routes
@app.get("/api/bootcamps")
def list_bootcamps(request: Request, db: Database = Depends(get_db)):
    return advanced_results(db, "bootcamp", BootcampSchema, flatten_query(request.query_params), BOOTCAMP_COURSES)

@app.get("/api/bootcamps/radius/{zipcode}/{distance}")
def bootcamps_in_radius(
    zipcode: str,
    distance: float,
    db: Database = Depends(get_db),
    geocoder: Geocoder = Depends(get_geocoder),
):
    lng, lat = geocode_or_fail(geocoder, zipcode, "zipcode")["coordinates"]
    radius = distance / EARTH_RADIUS_MILES
    bootcamps = list(db["bootcamp"].find({
        "location.coordinates": {"$geoWithin": {"$centerSphere": [[lng, lat], radius]}},
    }))
    return {"success": True, "count": len(bootcamps), "data": [sanitize(b) for b in bootcamps]}

@app.post("/api/bootcamps", status_code=201)
def create_bootcamp(
    payload: CreateBootcampRequest,
    current_user=Depends(require_role("publisher", "admin")),
    db: Database = Depends(get_db),
    geocoder: Geocoder = Depends(get_geocoder),
):
    if current_user["role"] != "admin" and db["bootcamp"].find_one({"user": current_user["id"]}):
        raise ErrorResponse(f"The user with ID {current_user['id']} has already published a bootcamp", 400)
    ensure_unique(db, "bootcamp", "name", payload.name)

    location = geocode_or_fail(geocoder, payload.address)
    bootcamp = BootcampSchema(
        **payload.model_dump(exclude={"address"}, exclude_none=True),
        slug=slugify(payload.name),
        location=location,
        user=current_user["id"],
    )
    doc = create_document(db, "bootcamp", bootcamp)
    return {"success": True, "data": sanitize(doc)}

@app.get("/api/bootcamps/{id}")
def get_bootcamp(id: str, db: Database = Depends(get_db)):
    bootcamp = find_by_id(db, "bootcamp", id, "Bootcamp")
    populate(db, [bootcamp], BOOTCAMP_COURSES)
    return {"success": True, "data": sanitize(bootcamp)}

@app.put("/api/bootcamps/{id}")
def update_bootcamp(
    id: str,
    payload: UpdateBootcampRequest,
    current_user=Depends(require_role("publisher", "admin")),
    db: Database = Depends(get_db),
    geocoder: Geocoder = Depends(get_geocoder),
):
    bootcamp = find_by_id(db, "bootcamp", id, "Bootcamp")
    ensure_owner(bootcamp, current_user)

    data = changes(payload)
    if "name" in data:
        ensure_unique(db, "bootcamp", "name", data["name"], exclude_id=id)
        data["slug"] = slugify(data["name"])
    if "address" in data:
        data["location"] = geocode_or_fail(geocoder, data.pop("address"))
    if data:
        db["bootcamp"].update_one({"_id": bootcamp["_id"]}, {"$set": data})
    return {"success": True, "data": sanitize(find_by_id(db, "bootcamp", id, "Bootcamp"))}

@app.delete("/api/bootcamps/{id}")
def delete_bootcamp(id: str, current_user=Depends(require_role("publisher", "admin")), db: Database = Depends(get_db)):
    bootcamp = find_by_id(db, "bootcamp", id, "Bootcamp")
    ensure_owner(bootcamp, current_user)
    delete_bootcamp_cascade(db, id)
    return {"success": True, "data": {}}

@app.put("/api/bootcamps/{id}/photo")
def upload_bootcamp_photo(
    id: str,
    file: UploadFile = File(...),
    current_user=Depends(require_role("publisher", "admin")),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    bootcamp = find_by_id(db, "bootcamp", id, "Bootcamp")
    ensure_owner(bootcamp, current_user)
    filename = save_image(file, f"photo_{id}", settings)
    db["bootcamp"].update_one({"_id": bootcamp["_id"]}, {"$set": {"photo": filename}})
    return {"success": True, "data": filename}


# Course Routes
@app.get("/api/bootcamps/{bootcamp_id}/courses")
def list_bootcamp_courses(bootcamp_id: str, db: Database = Depends(get_db)):
    courses = [sanitize(c) for c in db["course"].find({"bootcamp": bootcamp_id})]
    return {"success": True, "count": len(courses), "data": courses}

@app.post("/api/bootcamps/{bootcamp_id}/courses", status_code=201)
def create_course(
    bootcamp_id: str,
    payload: CreateCourseRequest,
    current_user=Depends(require_role("publisher", "admin")),
    db: Database = Depends(get_db),
):
    bootcamp = find_by_id(db, "bootcamp", bootcamp_id, "Bootcamp")
    ensure_owner(bootcamp, current_user)
    course = CourseSchema(**payload.model_dump(), bootcamp=bootcamp_id, user=current_user["id"])
    doc = create_document(db, "course", course)
    update_average_cost(db, bootcamp_id)
    return {"success": True, "data": sanitize(doc)}

@app.get("/api/courses")
def list_courses(request: Request, db: Database = Depends(get_db)):
    return advanced_results(db, "course", CourseSchema, flatten_query(request.query_params), BOOTCAMP_SUMMARY)

@app.get("/api/courses/{id}")
def get_course(id: str, db: Database = Depends(get_db)):
    course = find_by_id(db, "course", id, "Course")
    populate(db, [course], BOOTCAMP_SUMMARY)
    return {"success": True, "data": sanitize(course)}

@app.put("/api/courses/{id}")
def update_course(
    id: str,
    payload: UpdateCourseRequest,
    current_user=Depends(require_role("publisher", "admin")),
    db: Database = Depends(get_db),
):
    course = find_by_id(db, "course", id, "Course")
    ensure_owner(course, current_user)
    data = changes(payload)
    if data:
        db["course"].update_one({"_id": course["_id"]}, {"$set": data})
    if "tuition" in data:
        update_average_cost(db, course["bootcamp"])
    return {"success": True, "data": sanitize(find_by_id(db, "course", id, "Course"))}

@app.delete("/api/courses/{id}")
def delete_course(id: str, current_user=Depends(require_role("publisher", "admin")), db: Database = Depends(get_db)):
    course = find_by_id(db, "course", id, "Course")
    ensure_owner(course, current_user)
    db["course"].delete_one({"_id": course["_id"]})
    update_average_cost(db, course["bootcamp"])
    return {"success": True, "data": {}}


# Review Routes
@app.get("/api/bootcamps/{bootcamp_id}/reviews")
def list_bootcamp_reviews(bootcamp_id: str, db: Database = Depends(get_db)):
    reviews = [sanitize(r) for r in db["review"].find({"bootcamp": bootcamp_id})]
    return {"success": True, "count": len(reviews), "data": reviews}

@app.post("/api/bootcamps/{bootcamp_id}/reviews", status_code=201)
def create_review(
    bootcamp_id: str,
    payload: CreateReviewRequest,
    current_user=Depends(require_role("user", "admin")),
    db: Database = Depends(get_db),
):
    find_by_id(db, "bootcamp", bootcamp_id, "Bootcamp")
    if db["review"].find_one({"bootcamp": bootcamp_id, "user": current_user["id"]}):
        raise ErrorResponse(
            "Duplicate field value entered",
            400,
            {"bootcamp": "You have already reviewed this bootcamp"},
        )
    review = ReviewSchema(**payload.model_dump(), bootcamp=bootcamp_id, user=current_user["id"])
    doc = create_document(db, "review", review)
    update_average_rating(db, bootcamp_id)
    return {"success": True, "data": sanitize(doc)}

@app.get("/api/reviews")
def list_reviews(request: Request, db: Database = Depends(get_db)):
    return advanced_results(db, "review", ReviewSchema, flatten_query(request.query_params), BOOTCAMP_SUMMARY)

@app.get("/api/reviews/{id}")
def get_review(id: str, db: Database = Depends(get_db)):
    review = find_by_id(db, "review", id, "Review")
    populate(db, [review], BOOTCAMP_SUMMARY)
    return {"success": True, "data": sanitize(review)}

@app.put("/api/reviews/{id}")
def update_review(
    id: str,
    payload: UpdateReviewRequest,
    current_user=Depends(require_role("user", "admin")),
    db: Database = Depends(get_db),
):
    review = find_by_id(db, "review", id, "Review")
    ensure_owner(review, current_user)
    data = changes(payload)
    if data:
        db["review"].update_one({"_id": review["_id"]}, {"$set": data})
    if "rating" in data:
        update_average_rating(db, review["bootcamp"])
    return {"success": True, "data": sanitize(find_by_id(db, "review", id, "Review"))}

@app.delete("/api/reviews/{id}")
def delete_review(id: str, current_user=Depends(require_role("user", "admin")), db: Database = Depends(get_db)):
    review = find_by_id(db, "review", id, "Review")
    ensure_owner(review, current_user)
    db["review"].delete_one({"_id": review["_id"]})
    update_average_rating(db, review["bootcamp"])
    return {"success": True, "data": {}}


# Admin User Routes
@app.get("/api/users")
def list_users(request: Request, admin=Depends(require_role("admin")), db: Database = Depends(get_db)):
    return advanced_results(db, "user", UserSchema, flatten_query(request.query_params))

@app.post("/api/users", status_code=201)
def create_user(payload: CreateUserRequest, admin=Depends(require_role("admin")), db: Database = Depends(get_db)):
    ensure_unique(db, "user", "email", payload.email)
    user = UserSchema(
        name=payload.name,
        email=payload.email,
        role=payload.role,
        password_hash=hash_password(payload.password),
    )
    doc = create_document(db, "user", user)
    return {"success": True, "data": sanitize(doc)}

@app.get("/api/users/{id}")
def get_user(id: str, admin=Depends(require_role("admin")), db: Database = Depends(get_db)):
    return {"success": True, "data": sanitize(find_by_id(db, "user", id, "User"))}

@app.put("/api/users/{id}")
def update_user(id: str, payload: UpdateUserRequest, admin=Depends(require_role("admin")), db: Database = Depends(get_db)):
    user = find_by_id(db, "user", id, "User")
    data = changes(payload)
    if "email" in data:
        ensure_unique(db, "user", "email", data["email"], exclude_id=id)
    if "password" in data:
        data["password_hash"] = hash_password(data.pop("password"))
    if data:
        db["user"].update_one({"_id": user["_id"]}, {"$set": data})
    return {"success": True, "data": sanitize(find_by_id(db, "user", id, "User"))}

@app.delete("/api/users/{id}")
def delete_user(id: str, admin=Depends(require_role("admin")), db: Database = Depends(get_db)):
    user = find_by_id(db, "user", id, "User")
    db["user"].delete_one({"_id": user["_id"]})
    return {"success": True, "data": {}}


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Bootcamp Directory API running"}

@app.get("/test")
def test_database():
    db = database.db
    try:
        collections = db.list_collection_names() if db is not None else []
        return {"backend": "ok", "database": "ok" if db is not None else "missing", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {e}"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
