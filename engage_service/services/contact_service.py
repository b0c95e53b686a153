"""
Contact Service - Contacts, contact groups and CSV import

Handles:
- Contact CRUD and search
- Contact groups (campaign audiences) and membership
- Bulk CSV import
"""

import csv
import io
import logging
from typing import Optional, List
from datetime import datetime
from sqlalchemy import or_, func, desc
from sqlalchemy.orm import Session

from database.database import SessionLocal
from database.models import Contact, ContactGroup
from ..models import (
    ContactCreate,
    ContactUpdate,
    ContactResponse,
    ContactListResponse,
    ContactImportResponse,
    ContactGroupCreate,
    ContactGroupUpdate,
    ContactGroupResponse,
)

logger = logging.getLogger(__name__)

# CSV columns mapped onto contact fields; anything else lands in custom_fields
CSV_FIELDS = ("name", "phone_number", "email")
CSV_PHONE_ALIASES = ("phone_number", "phone", "whatsapp", "mobile")


def normalize_phone(phone_number: str) -> str:
    """Strip spaces, dashes and brackets; ensure a leading +."""
    cleaned = "".join(ch for ch in phone_number if ch.isdigit() or ch == "+")
    if cleaned and not cleaned.startswith("+"):
        cleaned = f"+{cleaned}"
    return cleaned


class ContactService:
    """
    Service for contacts and contact groups.
    """

    def __init__(self, db: Optional[Session] = None):
        """
        Initialize contact service.

        Args:
            db: Optional database session. If not provided, will create new sessions.
        """
        self._db = db

    def _get_db(self) -> Session:
        """Get or create database session."""
        if self._db:
            return self._db
        return SessionLocal()

    def _close_db(self, db: Session):
        """Close database session if we created it."""
        if not self._db:
            db.close()

    # =========================================================================
    # Contact CRUD
    # =========================================================================

    def list_contacts(
        self,
        search: Optional[str] = None,
        group_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> ContactListResponse:
        """List contacts, newest first."""
        db = self._get_db()
        try:
            query = db.query(Contact)

            if group_id:
                query = query.filter(Contact.group_id == group_id)

            if search:
                pattern = f"%{search}%"
                query = query.filter(
                    or_(
                        Contact.name.ilike(pattern),
                        Contact.phone_number.ilike(pattern),
                        Contact.email.ilike(pattern),
                    )
                )

            total = query.count()
            contacts = (
                query.order_by(desc(Contact.created_at))
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )

            return ContactListResponse(
                contacts=[self._to_response(c) for c in contacts],
                total=total,
                page=page,
                page_size=page_size,
            )

        finally:
            self._close_db(db)

    def get_contact(self, contact_id: str) -> Optional[ContactResponse]:
        """Get a contact by ID."""
        db = self._get_db()
        try:
            contact = db.query(Contact).filter(Contact.id == contact_id).first()
            if not contact:
                return None
            return self._to_response(contact)

        finally:
            self._close_db(db)

    def create_contact(self, user_id: str, data: ContactCreate) -> ContactResponse:
        """
        Create a contact.

        Raises:
            ValueError: phone number already used, or unknown group
        """
        db = self._get_db()
        try:
            phone_number = normalize_phone(data.phone_number)
            if db.query(Contact).filter(Contact.phone_number == phone_number).first():
                raise ValueError("A contact with this phone number already exists")

            if data.group_id:
                self._require_group(db, data.group_id)

            contact = Contact(
                name=data.name,
                phone_number=phone_number,
                email=data.email,
                group_id=data.group_id,
                custom_fields=data.custom_fields or {},
                tags=data.tags or [],
                created_by=user_id,
            )
            db.add(contact)
            db.flush()

            self._refresh_group_count(db, data.group_id)
            db.commit()
            db.refresh(contact)

            logger.info(f"Created contact {contact.id} by {user_id}")
            return self._to_response(contact)

        finally:
            self._close_db(db)

    def update_contact(self, contact_id: str, data: ContactUpdate) -> Optional[ContactResponse]:
        """Update a contact."""
        db = self._get_db()
        try:
            contact = db.query(Contact).filter(Contact.id == contact_id).first()
            if not contact:
                return None

            old_group_id = contact.group_id
            fields = data.model_dump(exclude_unset=True)

            if fields.get("phone_number"):
                phone_number = normalize_phone(fields["phone_number"])
                clash = (
                    db.query(Contact)
                    .filter(Contact.phone_number == phone_number, Contact.id != contact_id)
                    .first()
                )
                if clash:
                    raise ValueError("A contact with this phone number already exists")
                contact.phone_number = phone_number

            if "group_id" in fields:
                if fields["group_id"]:
                    self._require_group(db, fields["group_id"])
                contact.group_id = fields["group_id"] or None

            for field in ("name", "email", "custom_fields", "tags", "notes"):
                if field in fields and fields[field] is not None:
                    setattr(contact, field, fields[field])

            contact.updated_at = datetime.utcnow()
            db.flush()

            if old_group_id != contact.group_id:
                self._refresh_group_count(db, old_group_id)
                self._refresh_group_count(db, contact.group_id)

            db.commit()
            db.refresh(contact)
            return self._to_response(contact)

        finally:
            self._close_db(db)

    def delete_contact(self, contact_id: str) -> bool:
        """Delete a contact and its conversations."""
        db = self._get_db()
        try:
            contact = db.query(Contact).filter(Contact.id == contact_id).first()
            if not contact:
                return False

            group_id = contact.group_id
            db.delete(contact)
            db.flush()
            self._refresh_group_count(db, group_id)
            db.commit()
            return True

        finally:
            self._close_db(db)

    def import_csv(self, user_id: str, content: bytes, group_id: Optional[str] = None) -> ContactImportResponse:
        """
        Import contacts from CSV.

        Expects a header row with at least a phone column (`phone_number`,
        `phone`, `whatsapp` or `mobile`). `name` and `email` map onto the
        contact; any other column is stored in custom_fields. Rows whose phone
        number already exists are skipped.
        """
        db = self._get_db()
        try:
            if group_id:
                self._require_group(db, group_id)

            text = content.decode("utf-8-sig")
            reader = csv.DictReader(io.StringIO(text))
            if not reader.fieldnames:
                raise ValueError("CSV file is empty")

            headers = {h: h.strip().lower() for h in reader.fieldnames if h}
            phone_column = next((h for h, norm in headers.items() if norm in CSV_PHONE_ALIASES), None)
            if not phone_column:
                raise ValueError("CSV must have a phone_number column")

            existing = {p for (p,) in db.query(Contact.phone_number).all()}
            imported = 0
            skipped = 0
            errors: List[str] = []

            for line, row in enumerate(reader, start=2):
                raw_phone = (row.get(phone_column) or "").strip()
                if not raw_phone:
                    errors.append(f"Row {line}: missing phone number")
                    skipped += 1
                    continue

                phone_number = normalize_phone(raw_phone)
                if len(phone_number) < 6:
                    errors.append(f"Row {line}: invalid phone number '{raw_phone}'")
                    skipped += 1
                    continue

                if phone_number in existing:
                    errors.append(f"Row {line}: duplicate phone number {phone_number}")
                    skipped += 1
                    continue

                custom_fields = {}
                name = None
                email = None
                for header, norm in headers.items():
                    value = (row.get(header) or "").strip()
                    if header == phone_column:
                        continue
                    if norm == "name":
                        name = value or None
                    elif norm == "email":
                        email = value or None
                    elif value:
                        custom_fields[norm] = value

                db.add(Contact(
                    name=name,
                    phone_number=phone_number,
                    email=email,
                    group_id=group_id,
                    custom_fields=custom_fields,
                    tags=[],
                    created_by=user_id,
                ))
                existing.add(phone_number)
                imported += 1

            db.flush()
            self._refresh_group_count(db, group_id)
            db.commit()

            logger.info(f"CSV import by {user_id}: {imported} imported, {skipped} skipped")
            return ContactImportResponse(imported=imported, skipped=skipped, errors=errors)

        except UnicodeDecodeError:
            raise ValueError("CSV file must be UTF-8 encoded")

        finally:
            self._close_db(db)

    # =========================================================================
    # Contact Groups
    # =========================================================================

    def list_groups(self) -> List[ContactGroupResponse]:
        """List contact groups by name."""
        db = self._get_db()
        try:
            groups = db.query(ContactGroup).order_by(ContactGroup.name).all()
            return [ContactGroupResponse.model_validate(g) for g in groups]

        finally:
            self._close_db(db)

    def get_group(self, group_id: str) -> Optional[ContactGroupResponse]:
        """Get a contact group."""
        db = self._get_db()
        try:
            group = db.query(ContactGroup).filter(ContactGroup.id == group_id).first()
            if not group:
                return None
            return ContactGroupResponse.model_validate(group)

        finally:
            self._close_db(db)

    def create_group(self, user_id: str, data: ContactGroupCreate) -> ContactGroupResponse:
        """Create a contact group with a unique name."""
        db = self._get_db()
        try:
            if db.query(ContactGroup).filter(func.lower(ContactGroup.name) == data.name.lower()).first():
                raise ValueError("A group with this name already exists")

            group = ContactGroup(
                name=data.name,
                description=data.description,
                created_by=user_id,
            )
            if data.color:
                group.color = data.color
            db.add(group)
            db.commit()
            db.refresh(group)

            return ContactGroupResponse.model_validate(group)

        finally:
            self._close_db(db)

    def update_group(self, group_id: str, data: ContactGroupUpdate) -> Optional[ContactGroupResponse]:
        """Update a contact group."""
        db = self._get_db()
        try:
            group = db.query(ContactGroup).filter(ContactGroup.id == group_id).first()
            if not group:
                return None

            if data.name is not None and data.name != group.name:
                clash = (
                    db.query(ContactGroup)
                    .filter(func.lower(ContactGroup.name) == data.name.lower(), ContactGroup.id != group_id)
                    .first()
                )
                if clash:
                    raise ValueError("A group with this name already exists")
                group.name = data.name
            if data.description is not None:
                group.description = data.description
            if data.color is not None:
                group.color = data.color

            group.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(group)
            return ContactGroupResponse.model_validate(group)

        finally:
            self._close_db(db)

    def delete_group(self, group_id: str) -> bool:
        """Delete a group; its contacts are kept and detached."""
        db = self._get_db()
        try:
            group = db.query(ContactGroup).filter(ContactGroup.id == group_id).first()
            if not group:
                return False

            db.query(Contact).filter(Contact.group_id == group_id).update(
                {Contact.group_id: None}, synchronize_session=False
            )
            db.delete(group)
            db.commit()
            return True

        finally:
            self._close_db(db)

    def list_group_contacts(self, group_id: str, page: int = 1, page_size: int = 50) -> Optional[ContactListResponse]:
        """Contacts in a group."""
        if not self.get_group(group_id):
            return None
        return self.list_contacts(group_id=group_id, page=page, page_size=page_size)

    def add_contacts_to_group(self, group_id: str, contact_ids: List[str]) -> Optional[ContactGroupResponse]:
        """Move contacts into a group."""
        db = self._get_db()
        try:
            group = db.query(ContactGroup).filter(ContactGroup.id == group_id).first()
            if not group:
                return None

            contacts = db.query(Contact).filter(Contact.id.in_(contact_ids)).all()
            previous_groups = {c.group_id for c in contacts if c.group_id and c.group_id != group_id}
            for contact in contacts:
                contact.group_id = group_id
            db.flush()

            for previous in previous_groups:
                self._refresh_group_count(db, previous)
            self._refresh_group_count(db, group_id)
            db.commit()
            db.refresh(group)
            return ContactGroupResponse.model_validate(group)

        finally:
            self._close_db(db)

    def remove_contacts_from_group(self, group_id: str, contact_ids: List[str]) -> Optional[ContactGroupResponse]:
        """Detach contacts from a group."""
        db = self._get_db()
        try:
            group = db.query(ContactGroup).filter(ContactGroup.id == group_id).first()
            if not group:
                return None

            db.query(Contact).filter(
                Contact.group_id == group_id, Contact.id.in_(contact_ids)
            ).update({Contact.group_id: None}, synchronize_session=False)
            db.flush()

            self._refresh_group_count(db, group_id)
            db.commit()
            db.refresh(group)
            return ContactGroupResponse.model_validate(group)

        finally:
            self._close_db(db)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_group(self, db: Session, group_id: str) -> ContactGroup:
        group = db.query(ContactGroup).filter(ContactGroup.id == group_id).first()
        if not group:
            raise ValueError("Contact group not found")
        return group

    def _refresh_group_count(self, db: Session, group_id: Optional[str]):
        if not group_id:
            return
        group = db.query(ContactGroup).filter(ContactGroup.id == group_id).first()
        if group:
            group.contact_count = db.query(Contact).filter(Contact.group_id == group_id).count()

    def _to_response(self, contact: Contact) -> ContactResponse:
        """Convert database contact to response model."""
        return ContactResponse(
            id=contact.id,
            name=contact.name,
            phone_number=contact.phone_number,
            email=contact.email,
            group_id=contact.group_id,
            group_name=contact.group.name if contact.group else None,
            custom_fields=contact.custom_fields or {},
            tags=contact.tags or [],
            profile_picture_url=contact.profile_picture_url,
            last_interaction_at=contact.last_interaction_at,
            created_at=contact.created_at,
        )


def get_contact_service(db: Optional[Session] = None) -> ContactService:
    """Get a contact service instance."""
    return ContactService(db)
