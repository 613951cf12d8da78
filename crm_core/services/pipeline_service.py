"""
Pipeline stage transitions and contact tags
"""
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from crm_core.core.database import transaction
from crm_core.core.exceptions import NotFoundError, ValidationError
from crm_core.models.contact import Contact, ContactStage, ContactTag, PipelineHistory

logger = logging.getLogger(__name__)


def coerce_stage(stage) -> ContactStage:
    """Turn a stage name into a ContactStage or raise ValidationError"""
    try:
        return ContactStage(stage)
    except ValueError:
        allowed = ", ".join(s.value for s in ContactStage)
        raise ValidationError(f"Invalid stage {stage!r}; expected one of: {allowed}")


def get_contact(db: Session, business_id: int, contact_id: int) -> Optional[Contact]:
    """Tenant-scoped contact lookup"""
    return db.query(Contact).filter(
        Contact.id == contact_id,
        Contact.business_id == business_id
    ).first()


def add_contact_tag(db: Session, business_id: int, contact_id: int, tag: str) -> bool:
    """
    Insert a tag if the contact does not already carry it.

    Uses ON CONFLICT DO NOTHING on PostgreSQL and SQLite so two writers racing
    on the same tag both succeed with a single row. Does not commit.

    Returns True when a row was inserted.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        insert = None

    if insert is not None:
        stmt = insert(ContactTag).values(
            business_id=business_id,
            contact_id=contact_id,
            tag=tag
        ).on_conflict_do_nothing(index_elements=["contact_id", "tag"])
        inserted = db.execute(stmt).rowcount > 0
    else:
        existing = db.query(ContactTag).filter(
            ContactTag.contact_id == contact_id,
            ContactTag.tag == tag
        ).first()
        inserted = existing is None
        if inserted:
            db.add(ContactTag(business_id=business_id, contact_id=contact_id, tag=tag))
            db.flush()

    if inserted:
        logger.info(f"Added tag '{tag}' to contact {contact_id}")
    return inserted


def contact_has_tag(db: Session, contact_id: int, tag: str) -> bool:
    return db.query(ContactTag.id).filter(
        ContactTag.contact_id == contact_id,
        ContactTag.tag == tag
    ).first() is not None


def change_contact_stage(db: Session, contact: Contact, to_stage) -> Optional[PipelineHistory]:
    """
    Move a contact to a new stage and append the history row.

    Every stage change in the system goes through here. No-op (and no history
    row) when the contact is already in that stage. Does not commit.
    """
    to_stage = coerce_stage(to_stage)
    from_stage = ContactStage(contact.stage) if contact.stage is not None else None
    if from_stage == to_stage:
        return None

    contact.stage = to_stage
    history = PipelineHistory(
        business_id=contact.business_id,
        contact_id=contact.id,
        from_stage=from_stage.value if from_stage else None,
        to_stage=to_stage.value
    )
    db.add(history)
    db.flush()

    logger.info(
        f"Contact {contact.id} moved from {from_stage.value if from_stage else None} to {to_stage.value}"
    )
    return history


def move_contact(
    db: Session,
    business_id: int,
    contact_id: int,
    stage
) -> Tuple[Optional[ContactStage], ContactStage]:
    """Explicit pipeline move (stage update + history) as one transaction"""
    to_stage = coerce_stage(stage)
    with transaction(db):
        contact = get_contact(db, business_id, contact_id)
        if not contact:
            raise NotFoundError("Contact not found")
        from_stage = contact.stage
        change_contact_stage(db, contact, to_stage)
    return from_stage, to_stage


def get_pipeline_history(db: Session, business_id: int, contact_id: int) -> List[PipelineHistory]:
    return db.query(PipelineHistory).filter(
        PipelineHistory.contact_id == contact_id,
        PipelineHistory.business_id == business_id
    ).order_by(PipelineHistory.changed_at.desc(), PipelineHistory.id.desc()).all()


def get_pipeline(db: Session, business_id: int) -> Dict[str, List[Contact]]:
    """Contacts grouped by stage; every stage is present even when empty"""
    pipeline: Dict[str, List[Contact]] = {stage.value: [] for stage in ContactStage}
    contacts = db.query(Contact).filter(
        Contact.business_id == business_id
    ).order_by(Contact.last_active.desc().nulls_last(), Contact.created_at.desc()).all()

    for contact in contacts:
        pipeline[ContactStage(contact.stage).value].append(contact)
    return pipeline
