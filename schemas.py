"""
Database Schemas for SafeTails

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name: PetPost -> "petpost". References to other documents
(owner, creator, reviewer) are added by the route handlers as ObjectIds and are
not accepted from clients.

Payload models (``*Update``, ``*Request``) describe request bodies only.
"""
import re
from datetime import datetime
from typing import Annotated, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import AfterValidator, BaseModel, EmailStr, Field, field_validator, model_validator

Role = Literal["user", "vet", "admin"]
PetGender = Literal["male", "female", "unknown"]

PASSWORD_RULE = re.compile(r"(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def _strong_password(value: str) -> str:
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters")
    if not PASSWORD_RULE.search(value):
        raise ValueError("Password must contain uppercase, lowercase, and number")
    return value


StrongPassword = Annotated[str, AfterValidator(_strong_password)]


class PartialUpdate(BaseModel):
    """Update body where omitted fields are left alone.

    Fields listed in ``not_null`` are required on the stored document, so an
    explicit ``null`` for them is rejected instead of being written.
    """
    not_null: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _no_null_required(self):
        nulled = [name for name in self.not_null if name in self.model_fields_set and getattr(self, name) is None]
        if nulled:
            raise ValueError(f"{', '.join(nulled)} cannot be null")
        return self


# --- Shared embedded documents ---

class Location(BaseModel):
    """GeoJSON point plus a postal address. ``type`` is always "Point"."""
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(default_factory=lambda: [0.0, 0.0], description="[longitude, latitude]")
    address: Optional[str] = None
    description: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipCode: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _point(cls, data):
        if isinstance(data, dict):
            data = {**data, "type": "Point"}
            if not data.get("coordinates"):
                # geolocation unavailable or denied
                data["coordinates"] = [0.0, 0.0]
        return data

    @field_validator("coordinates")
    @classmethod
    def _valid_coordinates(cls, value: List[float]) -> List[float]:
        if len(value) != 2:
            raise ValueError("coordinates must be [longitude, latitude]")
        lng, lat = value
        if lng < -180 or lng > 180 or lat < -90 or lat > 90:
            raise ValueError("Invalid coordinates")
        return value


class AddressedLocation(Location):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)


class AlertLocation(AddressedLocation):
    radius: float = Field(10, ge=1, le=100, description="Alert radius in kilometers")


class GoodWith(BaseModel):
    children: bool = False
    otherDogs: bool = False
    otherCats: bool = False
    otherPets: bool = False


class OpeningHours(BaseModel):
    open: Optional[str] = None
    close: Optional[str] = None


# --- Users ---

class Permissions(BaseModel):
    userManagement: bool = True
    contentModeration: bool = True
    systemSettings: bool = True
    analytics: bool = True


class User(BaseModel):
    """Users collection schema. ``password`` holds the passlib hash."""
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    role: Role = "user"
    phone: Optional[str] = None
    address: Optional[str] = None
    bio: Optional[str] = None
    profileImage: Optional[str] = None
    permissions: Permissions = Field(default_factory=Permissions)
    isActive: bool = True
    isBlocked: bool = False
    blockReason: Optional[str] = None
    isEmailVerified: bool = False
    emailVerificationToken: Optional[str] = None
    emailVerificationExpires: Optional[datetime] = None


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)
    role: Literal["user", "vet"] = "user"
    phone: Optional[str] = None
    address: Optional[str] = None
    bio: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AdminUserCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: StrongPassword
    role: Role = "user"
    phone: Optional[str] = None
    address: Optional[str] = None
    bio: Optional[str] = None


class AdminUserUpdate(PartialUpdate):
    not_null = ("name", "email", "role", "isActive", "permissions")

    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[StrongPassword] = None
    role: Optional[Role] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    bio: Optional[str] = None
    isActive: Optional[bool] = None
    permissions: Optional[Permissions] = None


class BlockRequest(BaseModel):
    isBlocked: bool
    blockReason: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    bio: Optional[str] = None
    profileImage: Optional[str] = None


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    otp: str


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: StrongPassword


# --- Pet posts ---

class PetPost(BaseModel):
    """Missing / emergency / wounded pet report."""
    title: str = Field(..., min_length=1)
    postType: Literal["missing", "emergency", "wounded"]
    petName: str = Field(..., min_length=1)
    petType: str = Field(..., min_length=1)
    petBreed: Optional[str] = None
    petAge: Optional[str] = None
    petGender: PetGender = "unknown"
    petColor: Optional[str] = None
    description: str = Field(..., min_length=1)
    images: List[str] = Field(default_factory=list)
    location: Location
    city: Optional[str] = None
    state: Optional[str] = None
    lastSeenDate: Optional[datetime] = None
    isEmergency: Optional[bool] = None
    contactPhone: Optional[str] = None
    contactEmail: Optional[str] = None

    @model_validator(mode="after")
    def _type_rules(self):
        if self.postType == "missing" and self.lastSeenDate is None:
            raise ValueError("lastSeenDate is required for missing pet posts")
        if self.isEmergency is None:
            self.isEmergency = self.postType == "emergency"
        return self


class PetPostUpdate(PartialUpdate):
    not_null = ("title", "petName", "petType", "petGender", "description", "images", "location")

    title: Optional[str] = Field(None, min_length=1)
    petName: Optional[str] = Field(None, min_length=1)
    petType: Optional[str] = Field(None, min_length=1)
    petBreed: Optional[str] = None
    petAge: Optional[str] = None
    petGender: Optional[PetGender] = None
    petColor: Optional[str] = None
    description: Optional[str] = Field(None, min_length=1)
    images: Optional[List[str]] = None
    location: Optional[Location] = None
    city: Optional[str] = None
    state: Optional[str] = None
    lastSeenDate: Optional[datetime] = None
    contactPhone: Optional[str] = None
    contactEmail: Optional[str] = None


class PostAction(BaseModel):
    action: str
    text: Optional[str] = None


# --- Testimonial comments ---

class Comment(BaseModel):
    """Site testimonial, one per user."""
    content: str = Field(..., min_length=1, max_length=500)
    rating: int = Field(..., ge=1, le=5)


class CommentApproval(BaseModel):
    isApproved: bool


# --- Alerts ---

AlertType = Literal["lost_pet", "found_pet", "foster_request", "emergency", "adoption", "general"]
Urgency = Literal["low", "medium", "high", "critical"]


class PetDetails(BaseModel):
    petType: Optional[str] = None
    petBreed: Optional[str] = None
    petColor: Optional[str] = None
    petAge: Optional[str] = None
    petGender: Optional[str] = None


class Alert(BaseModel):
    type: AlertType = "general"
    title: str
    description: str
    location: AlertLocation
    petDetails: Optional[PetDetails] = None
    urgency: Urgency = "medium"
    targetAudience: Literal["all", "nearby", "specific_area"] = "nearby"
    expiresAt: Optional[datetime] = None


class AlertUpdate(PartialUpdate):
    not_null = ("type", "title", "description", "location", "urgency", "status", "targetAudience")

    type: Optional[AlertType] = None
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    location: Optional[AlertLocation] = None
    petDetails: Optional[PetDetails] = None
    urgency: Optional[Urgency] = None
    status: Optional[Literal["active", "resolved", "expired"]] = None
    targetAudience: Optional[Literal["all", "nearby", "specific_area"]] = None
    expiresAt: Optional[datetime] = None


# --- Adoption & foster listings ---

class Adoption(BaseModel):
    petName: Optional[str] = None
    petType: str = Field(..., min_length=1)
    petBreed: Optional[str] = None
    petAge: Optional[str] = None
    petGender: PetGender = "unknown"
    petColor: Optional[str] = None
    petCategory: Optional[str] = None
    description: str = Field(..., min_length=1)
    images: List[str] = Field(default_factory=list)
    location: Optional[AddressedLocation] = None
    adoptionType: Literal["permanent", "trial", "senior", "special-needs"]
    adoptionFee: float = Field(0, ge=0)
    isSpayedNeutered: bool = False
    isVaccinated: bool = False
    isMicrochipped: bool = False
    specialNeeds: Optional[str] = None
    medicalHistory: Optional[str] = None
    temperament: List[str] = Field(default_factory=list)
    goodWith: GoodWith = Field(default_factory=GoodWith)
    requirements: List[str] = Field(default_factory=list)


class Foster(BaseModel):
    petName: str = Field(..., min_length=1)
    petType: str = Field(..., min_length=1)
    petBreed: Optional[str] = None
    petAge: Optional[str] = None
    petGender: PetGender = "unknown"
    petColor: Optional[str] = None
    petCategory: Optional[str] = None
    description: str = Field(..., min_length=1)
    images: List[str] = Field(default_factory=list)
    location: Optional[AddressedLocation] = None
    fosterType: Literal["temporary", "long-term", "emergency"]
    duration: str = Field(..., min_length=1)
    startDate: datetime
    endDate: Optional[datetime] = None
    requirements: List[str] = Field(default_factory=list)
    specialNeeds: Optional[str] = None
    medicalHistory: Optional[str] = None
    isUrgent: bool = False
    goodWith: GoodWith = Field(default_factory=GoodWith)

    @model_validator(mode="after")
    def _dates(self):
        if self.endDate is not None and self.endDate < self.startDate:
            raise ValueError("endDate must not be before startDate")
        return self


# --- Vet directory ---

Specialization = Literal["emergency", "surgery", "vaccination", "checkup", "dental", "orthopedic", "dermatology", "cardiology", "other"]
DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class ContactInfo(BaseModel):
    phone: str = Field(..., min_length=1)
    email: Optional[str] = None
    website: Optional[str] = None
    emergencyPhone: Optional[str] = None


class VetDirectory(BaseModel):
    clinicName: str = Field(..., min_length=1)
    specialization: List[Specialization] = Field(default_factory=list)
    services: List[str] = Field(default_factory=list)
    location: AddressedLocation
    contactInfo: ContactInfo
    operatingHours: Dict[str, OpeningHours] = Field(default_factory=dict)
    isEmergencyAvailable: bool = False
    is24Hours: bool = False

    @field_validator("operatingHours")
    @classmethod
    def _known_days(cls, value: Dict[str, OpeningHours]) -> Dict[str, OpeningHours]:
        unknown = [day for day in value if day not in DAYS]
        if unknown:
            raise ValueError(f"Unknown day(s): {', '.join(unknown)}")
        return value


class VetVerification(BaseModel):
    isVerified: bool


# --- Reports ---

class Report(BaseModel):
    postId: str
    reason: Literal["inappropriate_content", "spam", "fake_information", "harassment", "other"]
    description: str = Field(..., min_length=1)


class ReportReview(BaseModel):
    status: Literal["pending", "reviewed", "resolved", "dismissed"]
    adminNotes: Optional[str] = None


# --- Uploads ---

class ImageUpload(BaseModel):
    image: str
