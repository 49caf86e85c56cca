from beanie import Document, PydanticObjectId
from bson import ObjectId
from pydantic import Field
from typing import Optional, Union
from datetime import datetime


def crm_ref(contact_id: str):
    """The CRM keys contacts by ObjectId; ids that are not ObjectIds are matched as plain strings."""
    return ObjectId(contact_id) if ObjectId.is_valid(contact_id) else contact_id


class ContactModel(Document):
    """
    Read-only view of the CRM contacts collection.
    The CRUD screens own this data; the engine only looks contacts up.
    """
    id: Optional[Union[PydanticObjectId, str]] = None
    organization_id: Optional[Union[PydanticObjectId, str]] = Field(None, alias="organization")
    title: Optional[str] = None
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    email: Optional[str] = None
    mobile: Optional[str] = None
    preferred_language: Optional[str] = Field(None, alias="preferredLanguage")

    class Settings:
        name = "contacts"


class DonationModel(Document):
    """Read-only view of the CRM donations collection."""
    donor: Union[PydanticObjectId, str] = Field(..., description="_id of the donating contact")
    display_id: Optional[str] = Field(None, alias="donorId", description="Human readable donation number")
    organization_id: Optional[Union[PydanticObjectId, str]] = Field(None, alias="organization")
    amount: float
    currency: str = "INR"
    donation_date: datetime = Field(..., alias="donationDate")
    status: str = "pending"

    class Settings:
        name = "donations"
