import re
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Union

from app_errors import ValidationError


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[\d\+\-\(\)\s]+$")


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Trim and lowercase an email; blank values become None."""
    if email is None:
        return None
    email = email.strip().lower()
    if not email:
        return None
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Please enter a valid email address")
    return email


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Trim a phone number; blank values become None."""
    if phone is None:
        return None
    phone = phone.strip()
    if not phone:
        return None
    if not PHONE_PATTERN.match(phone):
        raise ValidationError("Phone number contains invalid characters")
    return phone


def check_link(precedence: LinkPrecedence, linked_id: Optional[int], contact_id: Optional[int] = None):
    if precedence == LinkPrecedence.SECONDARY and linked_id is None:
        raise ValidationError("Secondary contacts must have a linkedId")
    if precedence == LinkPrecedence.PRIMARY and linked_id is not None:
        raise ValidationError("Primary contacts cannot have a linkedId")
    if contact_id is not None and linked_id == contact_id:
        raise ValidationError("LinkedId cannot reference itself")


class Contact(BaseModel):
    id: int = Field(gt=0)
    phoneNumber: Optional[str] = None
    email: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence
    createdAt: int
    updatedAt: int
    deletedAt: Optional[int] = None

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return normalize_email(v)

    @field_validator("phoneNumber")
    @classmethod
    def _phone(cls, v):
        return normalize_phone(v)

    @model_validator(mode="after")
    def _invariants(self):
        if not self.email and not self.phoneNumber:
            raise ValidationError("Either phoneNumber or email must be provided")
        check_link(self.linkPrecedence, self.linkedId, self.id)
        if self.deletedAt is not None and self.deletedAt < self.createdAt:
            raise ValidationError("Deleted date cannot be before creation date")
        return self

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence == LinkPrecedence.PRIMARY

    @property
    def is_deleted(self) -> bool:
        return self.deletedAt is not None

    @property
    def sort_key(self):
        return (self.createdAt, self.id)


class ContactHierarchy(BaseModel):
    primary: Contact
    secondary: List[Contact]

    @property
    def all(self) -> List[Contact]:
        return [self.primary] + self.secondary


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[Union[str, int]] = None

    @field_validator("phoneNumber")
    @classmethod
    def _phone_as_text(cls, v):
        # clients often send phone numbers as JSON numbers
        return str(v) if isinstance(v, int) else v


class ContactResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # the published wire name carries this spelling
    primaryContactId: int = Field(alias="primaryContatctId")
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]


class FinalResponse(BaseModel):
    contact: ContactResponse


class HierarchyBody(BaseModel):
    primary: Contact
    secondary: List[Contact]
    totalContacts: int


class HierarchyResponse(BaseModel):
    success: bool = True
    hierarchy: HierarchyBody
