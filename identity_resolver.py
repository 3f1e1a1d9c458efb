"""
Identity resolution: match an (email, phone) pair against stored contacts,
merge every transitively linked contact under the oldest one and project
the resulting group.
"""

from typing import List, Optional

import contact_store
from app_errors import NotFound, ResolutionCancelled, ValidationError
from app_logging import get_logger
from db_models import (
    Contact,
    ContactHierarchy,
    ContactResponse,
    LinkPrecedence,
    normalize_email,
    normalize_phone,
)
from db_setup import read_only, run_in_transaction

logger = get_logger(__name__)


def _check_cancelled(cancel_event):
    if cancel_event is not None and cancel_event.is_set():
        raise ResolutionCancelled("Identity resolution cancelled")


def project(contacts: List[Contact]) -> ContactResponse:
    """
    Build the group view. contacts[0] must be the primary; the rest are
    expected oldest first.
    """
    primary = contacts[0]
    emails = []
    phone_numbers = []
    secondary_ids = []

    for contact in contacts:
        if contact.email and contact.email not in emails:
            emails.append(contact.email)
        if contact.phoneNumber and contact.phoneNumber not in phone_numbers:
            phone_numbers.append(contact.phoneNumber)
        if contact.id != primary.id:
            secondary_ids.append(contact.id)

    return ContactResponse(
        primaryContactId=primary.id,
        emails=emails,
        phoneNumbers=phone_numbers,
        secondaryContactIds=secondary_ids,
    )


def discover_family(conn, direct: List[Contact], cancel_event=None) -> set:
    """Ids of every live contact reachable from direct through direct or shared-primary links."""
    seen = {c.id for c in direct}
    frontier = list(direct)

    while frontier:
        _check_cancelled(cancel_event)
        frontier = [c for c in contact_store.find_linked(conn, frontier) if c.id not in seen]
        seen.update(c.id for c in frontier)

    return seen


def _resolve(conn, email, phone, cancel_event):
    direct = contact_store.find_by_contact_method(conn, email, phone)
    _check_cancelled(cancel_event)

    if not direct:
        contact = contact_store.create(conn, email, phone, LinkPrecedence.PRIMARY)
        logger.info("No match for request; created primary contact %d", contact.id)
        return project([contact])

    family_ids = discover_family(conn, direct, cancel_event)
    family = contact_store.find_by_ids(conn, family_ids)
    _check_cancelled(cancel_event)

    primary = min(family, key=lambda c: c.sort_key)

    gap_fill = None
    if (email and email not in {c.email for c in family}) or \
       (phone and phone not in {c.phoneNumber for c in family}):
        gap_fill = (email, phone)

    demoted = [c.id for c in family if c.id != primary.id and c.is_primary]
    family = contact_store.consolidate(conn, family, primary, gap_fill)
    _check_cancelled(cancel_event)

    if demoted:
        logger.info("Merged primaries %s under contact %d", demoted, primary.id)
    logger.info(
        "Resolved request to primary %d (%d contacts%s)",
        primary.id, len(family), ", new secondary created" if gap_fill else "",
    )

    ordered = [c for c in family if c.id == primary.id] + [c for c in family if c.id != primary.id]
    return project(ordered)


def resolve_identity(email: Optional[str] = None, phone: Optional[str] = None,
                     cancel_event=None) -> ContactResponse:
    """
    Resolve an (email, phone) pair to its identity group, creating or merging
    contacts as needed.

    The whole resolution runs in one write-locked transaction. cancel_event,
    if given, is any object with is_set() (e.g. threading.Event); it is
    checked between store calls and aborts the resolution with nothing
    written.
    """
    email = normalize_email(email)
    phone = normalize_phone(phone)
    if not email and not phone:
        raise ValidationError("At least one of email or phoneNumber is required")

    return run_in_transaction(_resolve, email, phone, cancel_event)


def get_contact_hierarchy(primary_id: int) -> ContactHierarchy:
    hierarchy = read_only(contact_store.get_hierarchy, primary_id)
    if hierarchy is None:
        raise NotFound("Contact not found")
    return hierarchy


def get_group(primary_id: int) -> ContactResponse:
    return project(get_contact_hierarchy(primary_id).all)
