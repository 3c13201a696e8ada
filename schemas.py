"""
Database Schemas for the Bootcamp Directory

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (Bootcamp -> "bootcamp").

We will use these collections:
- user: accounts (user, publisher, admin)
- bootcamp: published training programs, one per publisher
- course: courses offered by a bootcamp
- review: one review per user per bootcamp

References to other documents (user, bootcamp) are stored as hex id strings.
"""

from datetime import datetime
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

from database import utcnow

Role = Literal["user", "publisher", "admin"]
Skill = Literal["beginner", "intermediate", "advanced"]
Career = Literal[
    "Web Development",
    "Mobile Development",
    "UI/UX",
    "Data Science",
    "Business",
    "Other",
]

URL_PATTERN = (
    r"^https?://(www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"([-a-zA-Z0-9()@:%_+.~#?&/=]*)$"
)


def normalize_email(value: str) -> str:
    return value.strip().lower()


# Account emails are stored and looked up lowercased.
AccountEmail = Annotated[EmailStr, AfterValidator(normalize_email)]
LookupEmail = Annotated[str, AfterValidator(normalize_email)]


class User(BaseModel):
    name: str = Field(..., min_length=1)
    email: AccountEmail
    role: Role = Field("user")
    password_hash: str = Field(..., description="BCrypt hash of password")
    resetPasswordToken: Optional[str] = Field(None, description="SHA-256 of the emailed reset token")
    resetPasswordExpire: Optional[datetime] = None
    createdAt: datetime = Field(default_factory=utcnow)


class Location(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., description="[longitude, latitude]")
    formattedAddress: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None
    country: Optional[str] = None


class Bootcamp(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    slug: Optional[str] = None
    description: str = Field(..., min_length=1, max_length=500)
    website: Optional[str] = Field(None, pattern=URL_PATTERN)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    location: Optional[Location] = None
    careers: List[Career] = Field(..., min_length=1)
    averageRating: Optional[float] = Field(None, ge=1, le=10)
    averageCost: Optional[float] = Field(None, ge=0)
    photo: str = Field("no-photo.jpg")
    housing: bool = False
    jobAssistance: bool = False
    jobGuarantee: bool = False
    acceptGi: bool = False
    createdAt: datetime = Field(default_factory=utcnow)
    user: str = Field(..., description="Reference to user _id (owner)")


class Course(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    weeks: float = Field(..., ge=0)
    tuition: float = Field(..., ge=0)
    minimumSkill: Skill
    scholarshipAvailable: bool = False
    createdAt: datetime = Field(default_factory=utcnow)
    bootcamp: str = Field(..., description="Reference to bootcamp _id")
    user: str = Field(..., description="Reference to user _id (creator)")


class Review(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    text: str = Field(..., min_length=1)
    rating: float = Field(..., ge=1, le=10)
    createdAt: datetime = Field(default_factory=utcnow)
    bootcamp: str = Field(..., description="Reference to bootcamp _id")
    user: str = Field(..., description="Reference to user _id (author)")
