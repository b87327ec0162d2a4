import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as SchemaError

import policy
from auth import generate_passcode, get_passcode_hash, verify_passcode
from errors import ConflictError, Unauthorized, ValidationError, not_authenticated
from models import Identity, User
from storage import Storage, Tables

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def check_email(email: str) -> str:
    try:
        return _email_adapter.validate_python(email).lower()
    except SchemaError as e:
        raise ValidationError("Invalid email address") from e


def check_session(actor_id: Optional[str]) -> str:
    """Reject a missing session before the store is touched."""
    if not actor_id:
        raise not_authenticated()
    return actor_id


def load_actor(tx: Tables, actor_id: Optional[str]) -> Identity:
    """Resolve the actor from the store; the session only carries the id."""
    row = tx.get("users", check_session(actor_id))
    if row is None:
        logger.warning(f"Session references unknown identity {actor_id}")
        raise not_authenticated()
    return Identity(**row)


class AccountService:
    def __init__(self, storage: Storage):
        self.storage = storage

    def register_identity(self, name: str, email: str) -> Tuple[Identity, str]:
        """Create an identity and return it with its generated passcode."""
        name = (name or "").strip()
        email = normalize_email(email)
        if not name or not email:
            raise ValidationError("Name and email are required")
        email = check_email(email)

        passcode = generate_passcode()
        passcode_hash = get_passcode_hash(passcode)

        # Count and insert share one transaction so only one identity bootstraps as creator
        with self.storage.transaction() as tx:
            if tx.count("users", email=email):
                raise ConflictError("Email already registered")

            identity = Identity(
                id=str(uuid.uuid4()),
                name=name,
                email=email,
                is_creator=policy.is_creator(tx.count("users")),
                created_at=utcnow(),
                passcode_hash=passcode_hash,
            )
            tx.insert("users", identity.model_dump(mode="json"))

        logger.info(f"Registered {identity.email} (creator={identity.is_creator})")
        return identity, passcode

    def authenticate(self, email: str, passcode: str) -> Identity:
        email = normalize_email(email)
        if not email or not passcode:
            raise ValidationError("Email and passcode are required")

        logger.info(f"Login attempt for {email}")
        rows = self.storage.select_where("users", email=email)
        if not rows or not verify_passcode(passcode, rows[0]["passcode_hash"]):
            logger.warning(f"Invalid email or passcode for {email}")
            raise Unauthorized("Invalid email or passcode", 401)

        return Identity(**rows[0])

    def get_identity(self, actor_id: Optional[str]) -> Identity:
        check_session(actor_id)
        with self.storage.transaction() as tx:
            return load_actor(tx, actor_id)

    def update_profile(self, actor_id: Optional[str], name: str, email: str) -> Identity:
        check_session(actor_id)
        name = (name or "").strip()
        email = normalize_email(email)
        if not name or not email:
            raise ValidationError("Name and email are required")
        email = check_email(email)

        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            if tx.count("users", lambda u: u["id"] != actor.id, email=email):
                raise ConflictError("Email already registered")
            row = tx.update("users", actor.id, {"name": name, "email": email})

        logger.info(f"Updated profile of {actor.id}")
        return Identity(**row)

    def change_passcode(
        self, actor_id: Optional[str], current_passcode: str, new_passcode: str, confirm_passcode: str
    ) -> None:
        check_session(actor_id)
        new_passcode = (new_passcode or "").strip()
        if not new_passcode:
            raise ValidationError("New passcode is required")
        if new_passcode != (confirm_passcode or "").strip():
            raise ValidationError("New passcodes do not match")

        passcode_hash = get_passcode_hash(new_passcode)
        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            if not verify_passcode(current_passcode or "", actor.passcode_hash):
                raise Unauthorized("Current passcode is incorrect")
            tx.update("users", actor.id, {"passcode_hash": passcode_hash})

        logger.info(f"Changed passcode of {actor.id}")

    def list_identities(self, actor_id: Optional[str]) -> List[User]:
        """All accounts, for creators picking members and assignees."""
        check_session(actor_id)
        with self.storage.transaction() as tx:
            actor = load_actor(tx, actor_id)
            policy.require(actor.is_creator, "Only account creators can list users", actor)
            rows = tx.select_where("users")

        users = [Identity(**row).public() for row in rows]
        return sorted(users, key=lambda u: u.name.lower())
