"""
Contact store: durable Contact records on SQLite.

Every function takes an open connection so callers can group several
operations into one transaction (see db_setup.run_in_transaction).
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from app_errors import NotFound, ValidationError
from app_logging import get_logger
from db_models import (
    Contact,
    ContactHierarchy,
    LinkPrecedence,
    check_link,
    normalize_email,
    normalize_phone,
)

logger = get_logger(__name__)


def now() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def _placeholders(values) -> str:
    return ", ".join("?" for _ in values)


def _to_contacts(rows) -> List[Contact]:
    return [Contact(**dict(row)) for row in rows]


def get(conn, contact_id: int) -> Optional[Contact]:
    """Fetch one contact by id, soft-deleted or not."""
    row = conn.execute("SELECT * FROM Contact WHERE id = ?", (contact_id,)).fetchone()
    return Contact(**dict(row)) if row else None


def create(conn, email: str = None, phone: str = None,
           precedence: LinkPrecedence = LinkPrecedence.PRIMARY, linked_id: int = None) -> Contact:
    """Create a new contact; the id comes from the table's autoincrement."""
    email = normalize_email(email)
    phone = normalize_phone(phone)
    precedence = LinkPrecedence(precedence)

    if not email and not phone:
        raise ValidationError("Either phoneNumber or email must be provided")
    check_link(precedence, linked_id)
    if linked_id is not None and get(conn, linked_id) is None:
        raise ValidationError(f"LinkedId {linked_id} does not reference an existing contact")

    ts = now()
    cursor = conn.execute("""
        INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (phone, email, linked_id, precedence.value, ts, ts))

    contact = get(conn, cursor.lastrowid)
    logger.debug("Created %s contact %d", precedence.value, contact.id)
    return contact


def find_by_contact_method(conn, email: str = None, phone: str = None) -> List[Contact]:
    """Live contacts sharing the email OR the phone number, oldest first."""
    if not email and not phone:
        return []

    rows = conn.execute("""
        SELECT * FROM Contact
        WHERE deletedAt IS NULL
        AND (email = ? OR phoneNumber = ?)
        ORDER BY createdAt ASC, id ASC
    """, (email, phone)).fetchall()
    return _to_contacts(rows)


def find_by_ids(conn, ids: Iterable[int]) -> List[Contact]:
    ids = list(ids)
    if not ids:
        return []

    rows = conn.execute(f"""
        SELECT * FROM Contact
        WHERE deletedAt IS NULL AND id IN ({_placeholders(ids)})
        ORDER BY createdAt ASC, id ASC
    """, ids).fetchall()
    return _to_contacts(rows)


def find_linked(conn, contacts: Iterable[Contact]) -> List[Contact]:
    """
    One step of family discovery.

    Returns live contacts X such that, for some given contact C,
    X.linkedId == C.id, X.id == C.linkedId or X.linkedId == C.linkedId.
    """
    contacts = list(contacts)
    if not contacts:
        return []
    ids = [c.id for c in contacts]
    linked_ids = sorted({c.linkedId for c in contacts if c.linkedId is not None})

    clauses = [f"linkedId IN ({_placeholders(ids)})"]
    params = list(ids)
    if linked_ids:
        clauses.append(f"id IN ({_placeholders(linked_ids)})")
        clauses.append(f"linkedId IN ({_placeholders(linked_ids)})")
        params += linked_ids + linked_ids

    rows = conn.execute(f"""
        SELECT * FROM Contact
        WHERE deletedAt IS NULL AND ({" OR ".join(clauses)})
        ORDER BY createdAt ASC, id ASC
    """, params).fetchall()
    return _to_contacts(rows)


def demote_to_secondary(conn, contact_id: int, new_linked_id: int):
    if contact_id == new_linked_id:
        raise ValidationError("LinkedId cannot reference itself")

    conn.execute("""
        UPDATE Contact
        SET linkedId = ?, linkPrecedence = 'secondary', updatedAt = ?
        WHERE id = ?
    """, (new_linked_id, now(), contact_id))
    logger.debug("Linked contact %d under primary %d", contact_id, new_linked_id)


def promote_to_primary(conn, contact_id: int):
    conn.execute("""
        UPDATE Contact
        SET linkedId = NULL, linkPrecedence = 'primary', updatedAt = ?
        WHERE id = ?
    """, (now(), contact_id))
    logger.debug("Promoted contact %d to primary", contact_id)


def consolidate(conn, family: List[Contact], primary: Contact, gap_fill: tuple = None) -> List[Contact]:
    """
    Fold a family under one primary as a single unit of work.

    Every other member ends up a secondary linked directly to the primary,
    so chains left by earlier merges are flattened. When gap_fill is an
    (email, phone) pair a new secondary carrying it is created as well.
    Returns the updated family, oldest first.
    """
    if not primary.is_primary:
        promote_to_primary(conn, primary.id)

    for contact in family:
        if contact.id == primary.id:
            continue
        if contact.linkPrecedence == LinkPrecedence.SECONDARY and contact.linkedId == primary.id:
            continue
        demote_to_secondary(conn, contact.id, primary.id)

    ids = [c.id for c in family]
    if gap_fill is not None:
        email, phone = gap_fill
        created = create(conn, email, phone, LinkPrecedence.SECONDARY, primary.id)
        ids.append(created.id)

    return find_by_ids(conn, ids)


def get_hierarchy(conn, primary_id: int) -> Optional[ContactHierarchy]:
    """The live primary with its live secondaries, or None if primary_id is not a live primary."""
    row = conn.execute("""
        SELECT * FROM Contact
        WHERE id = ? AND linkPrecedence = 'primary' AND deletedAt IS NULL
    """, (primary_id,)).fetchone()
    if not row:
        return None

    secondaries = conn.execute("""
        SELECT * FROM Contact
        WHERE linkedId = ? AND linkPrecedence = 'secondary' AND deletedAt IS NULL
        ORDER BY createdAt ASC, id ASC
    """, (primary_id,)).fetchall()

    return ContactHierarchy(primary=Contact(**dict(row)), secondary=_to_contacts(secondaries))


def soft_delete(conn, contact_id: int) -> Contact:
    ts = now()
    cursor = conn.execute("""
        UPDATE Contact SET deletedAt = ?, updatedAt = ?
        WHERE id = ? AND deletedAt IS NULL
    """, (ts, ts, contact_id))
    contact = get(conn, contact_id)
    if contact is None:
        raise NotFound("Contact not found")
    if cursor.rowcount:
        logger.info("Soft-deleted contact %d", contact_id)
    return contact


def restore(conn, contact_id: int) -> Contact:
    cursor = conn.execute("""
        UPDATE Contact SET deletedAt = NULL, updatedAt = ?
        WHERE id = ? AND deletedAt IS NOT NULL
    """, (now(), contact_id))
    contact = get(conn, contact_id)
    if contact is None:
        raise NotFound("Contact not found")
    if cursor.rowcount:
        logger.info("Restored contact %d", contact_id)
    return contact
