"""
Read-side collaborators backed by the CRM collections.

The donor CRM owns contacts and donations. The engine needs two things from
it: whether a contact exists (and its fields, for templates) and a donor's
donation aggregates for condition nodes.
"""
import logging
from typing import Optional

from journey_engine.models.crm import ContactModel, DonationModel, crm_ref
from journey_engine.services.condition_evaluator import DonationAggregates

logger = logging.getLogger(__name__)


class ContactDirectory:
    async def exists(self, contact_id: str) -> bool:
        return await ContactModel.find_one({"_id": crm_ref(contact_id)}) is not None

    async def get_contact(self, contact_id: str) -> Optional[dict]:
        contact = await ContactModel.find_one({"_id": crm_ref(contact_id)})
        if not contact:
            return None
        data = contact.model_dump(exclude={"id", "revision_id"})
        data["contact_id"] = contact_id
        data["name"] = " ".join(p for p in (data.get("first_name"), data.get("last_name")) if p) or None
        return data


class DonationRepository:
    async def get_donation_aggregates(self, contact_id: str) -> DonationAggregates:
        # Only settled donations count towards journey conditions.
        donations = await DonationModel.find({"donor": crm_ref(contact_id), "status": "completed"}).to_list()
        if not donations:
            return DonationAggregates()

        total = sum(d.amount for d in donations)
        last_date = max(d.donation_date for d in donations)
        logger.debug(f"[DONATIONS] {contact_id}: {len(donations)} donations, total {total}, last {last_date}")
        return DonationAggregates(
            has_donated=True,
            last_donation_date=last_date,
            total_amount=total,
            donation_count=len(donations),
        )
