"""Horse service - Business logic for horse profiles, ownership and leases"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...models import (
    BACKWARDS_COMPATIBILITY_ERROR,
    Horse,
    HorseOwner,
    Request,
    User,
    is_manager,
    is_service_provider,
)
from ...services.notification_service import create_notification
from ...shared.errors import ApiError, EntityNotFound, ModelValidationError
from ...shared.serializers import extract_id, iso, serialize_horse, serialize_user_summary
from ...shared.validators import validate_ownership
from .repository import HorseRepository, managed_by, name_matches
from .schemas import HorseBody, OwnerBody

logger = logging.getLogger(__name__)

MULTIPLE_OWNERS = "multipleOwners"

# Body attribute -> column for plain fields
HORSE_FIELDS = {
    "barnName": "barn_name",
    "showName": "show_name",
    "gender": "gender",
    "description": "description",
    "avatar": "avatar",
    "color": "color",
    "dam": "dam",
    "sire": "sire",
    "height": "height",
    "birthYear": "birth_year",
}


def user_manages_horse(user: User, horse: Horse) -> bool:
    """Trainer, lessee or one of the owners"""
    if horse.trainer_id == user.id or horse.leased_to_id == user.id:
        return True
    return any(owner.user_id == user.id for owner in horse.owners)


def clean_registrations(registrations) -> list[dict]:
    """Drop registrations with neither a name nor a number"""
    return [r.model_dump() for r in registrations or [] if r.name or r.number]


class HorseService:
    """Service layer for horse business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = HorseRepository()

    def _get_horse(self, horse_id: int) -> Horse:
        horse = self.repo.get_horse_by_id(self.db, horse_id)
        if not horse:
            raise EntityNotFound()
        return horse

    def _build_owners(self, owners: list[OwnerBody]) -> list[HorseOwner]:
        error = validate_ownership([{"percentage": owner.percentage} for owner in owners])
        if error:
            raise ModelValidationError({"_owners": error})

        built = []
        for owner in owners:
            user_id = extract_id(owner.user)
            if user_id is None or self.db.get(User, user_id) is None:
                raise ModelValidationError({"_owners": "Owner not found"})
            built.append(HorseOwner(user_id=user_id, percentage=owner.percentage))
        return built

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_horses(
        self,
        current_user: User,
        trainer: Optional[str],
        owner: Optional[str],
        search_term: Optional[str],
        serviceable: bool,
        sort: Optional[str],
        limit: int,
        skip: int,
    ) -> dict:
        if is_manager(current_user):
            filters = [managed_by(current_user.id)]
            if extract_id(trainer):
                filters.append(Horse.trainer_id == extract_id(trainer))
            if extract_id(owner):
                filters.append(Horse.owners.any(HorseOwner.user_id == extract_id(owner)))
            if search_term:
                filters.append(name_matches(search_term))
            horses, count = self.repo.find_page(self.db, filters, sort, limit, skip)
            return {"horses": [serialize_horse(h) for h in horses], "horseCount": count}

        if is_service_provider(current_user) and search_term:
            # Providers invoicing directly only see horses of managers who trust them
            manager_ids = [m.id for m in self.repo.get_trusting_managers(self.db, current_user)]
            filters = [name_matches(search_term), Horse.owners.any(HorseOwner.user_id.in_(manager_ids))]
            horses, count = self.repo.find_page(self.db, filters, sort, limit, skip)
            return {"horses": [serialize_horse(h) for h in horses], "horseCount": count}

        if is_service_provider(current_user) and serviceable:
            groups = []
            for manager in self.repo.get_trusting_managers(self.db, current_user):
                horses, _ = self.repo.find_page(self.db, [managed_by(manager.id)], sort, limit, skip)
                # Skip horses the manager has leased out, unless they still train them
                horses = [
                    horse
                    for horse in horses
                    if not (horse.leased_to_id and horse.leased_to_id != manager.id)
                    or horse.trainer_id == manager.id
                ]
                if horses:
                    groups.append(
                        {"_manager": serialize_user_summary(manager), "horses": [serialize_horse(h) for h in horses]}
                    )
            return {"horses": groups, "horseCount": len(groups)}

        return {"horses": [], "horseCount": 0}

    def get_upcoming_request_horses(self, current_user: User, trainer: Optional[str], owner: Optional[str]) -> dict:
        """Horses with an open request today or later, tagged with the next service date"""
        trainer_id = extract_id(trainer)
        owner_id = extract_id(owner)

        filters = []
        if trainer_id:
            filters.append(Request.trainer_id == trainer_id)
        requests = self.repo.get_upcoming_requests(self.db, filters)

        if owner_id:
            requests = [r for r in requests if any(o.get("user") == owner_id for o in r.owners or [])]
        if not trainer_id and not owner_id:
            requests = [
                r
                for r in requests
                if r.trainer_id == current_user.id
                or r.horse_manager_id == current_user.id
                or any(o.get("user") == current_user.id for o in r.owners or [])
            ]

        horses = []
        seen_show_names = set()
        for request in requests:
            horse = request.horse
            if (trainer_id or owner_id) and not user_manages_horse(current_user, horse):
                continue
            if trainer_id and horse.trainer_id != trainer_id:
                continue
            if owner_id and all(o.user_id != owner_id for o in horse.owners):
                continue
            if horse.show_name in seen_show_names:
                continue
            seen_show_names.add(horse.show_name)

            data = serialize_horse(horse)
            data["nextBraiding"] = iso(request.date)
            horses.append(data)

        return {"horses": horses, "horseCount": len(horses)}

    def get_horse(self, horse_id: int) -> dict:
        return serialize_horse(self._get_horse(horse_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_horse(self, current_user: User, data: HorseBody) -> dict:
        # Old app versions send a single owner
        if data.owner:
            raise ApiError(BACKWARDS_COMPATIBILITY_ERROR)

        missing = {
            key: f"Path `{key}` is required."
            for key in ("barnName", "showName", "gender")
            if not getattr(data, key)
        }
        trainer_id = extract_id(data.trainer)
        if not trainer_id:
            missing["_trainer"] = "Path `_trainer` is required."
        if missing:
            raise ModelValidationError(missing)

        horse = Horse(created_by_id=current_user.id, trainer_id=trainer_id)
        for key, column in HORSE_FIELDS.items():
            setattr(horse, column, getattr(data, key))
        horse.registrations = clean_registrations(data.registrations)
        horse.leased_to_id = extract_id(data.leasedTo)
        horse.owners = self._build_owners(data.owners or [])

        self.db.add(horse)
        self.db.commit()
        self.db.refresh(horse)
        logger.info(f"🐴 Horse {horse.id} created by user {current_user.id}")
        return serialize_horse(horse)

    async def update_horse(self, current_user: User, horse_id: int, data: HorseBody) -> dict:
        horse = self._get_horse(horse_id)

        # Old app versions edit a single owner; only a no-op passes
        owner_id = extract_id(data.owner) if isinstance(data.owner, (dict, int, str)) else None
        is_placeholder = isinstance(data.owner, dict) and data.owner.get("_id") == MULTIPLE_OWNERS
        if data.owner and not is_placeholder:
            if len(horse.owners) != 1 or horse.owners[0].user_id != owner_id:
                raise ApiError(BACKWARDS_COMPATIBILITY_ERROR)

        fields_set = data.model_fields_set
        old_lessee_id = horse.leased_to_id
        new_lessee_id = extract_id(data.leasedTo) if "leasedTo" in fields_set else old_lessee_id

        for key, column in HORSE_FIELDS.items():
            if key in fields_set:
                setattr(horse, column, getattr(data, key))
        if "registrations" in fields_set:
            horse.registrations = clean_registrations(data.registrations)
        if "trainer" in fields_set and extract_id(data.trainer):
            horse.trainer_id = extract_id(data.trainer)
        if "owners" in fields_set and data.owners is not None:
            horse.owners = self._build_owners(data.owners)
        horse.leased_to_id = new_lessee_id

        self.db.commit()
        self.db.refresh(horse)

        owner_name = current_user.name
        if isinstance(data.owner, dict) and data.owner.get("name"):
            owner_name = data.owner["name"]
        await self._notify_lease_change(horse, owner_name, old_lessee_id, new_lessee_id)

        return serialize_horse(horse)

    async def _notify_lease_change(
        self, horse: Horse, owner_name: str, old_lessee_id: Optional[int], new_lessee_id: Optional[int]
    ) -> None:
        added = (
            f"{owner_name} has leased {horse.barn_name} to you. "
            "You will be charged for this horse's service payments."
        )
        removed = (
            f"You are no longer leasing {horse.barn_name}. "
            f"{owner_name} has resumed ownership and will be charged for service payments."
        )

        if old_lessee_id and new_lessee_id and old_lessee_id != new_lessee_id:
            await create_notification(self.db, [new_lessee_id], added)
            await create_notification(self.db, [old_lessee_id], removed)
        elif not old_lessee_id and new_lessee_id:
            await create_notification(self.db, [new_lessee_id], added)
        elif old_lessee_id and not new_lessee_id:
            await create_notification(self.db, [old_lessee_id], removed)

    def update_multiple_owners(self, horse_id: int, owners: list[OwnerBody]) -> dict:
        horse = self._get_horse(horse_id)
        horse.owners = self._build_owners(owners)
        self.db.commit()
        self.db.refresh(horse)
        return serialize_horse(horse)

    def delete_horse(self, current_user: User, horse_id: int) -> None:
        horse = self._get_horse(horse_id)

        is_owner = any(owner.user_id == current_user.id for owner in horse.owners)
        if horse.trainer_id != current_user.id and not is_owner:
            raise ApiError("You do not have access to delete this horse profile.")

        if self.repo.has_unpaid_requests(self.db, horse):
            raise ApiError("This horse still has unpaid requests.")

        logger.info(f"🗑️ Deleting horse {horse.id}")
        self.db.delete(horse)
        self.db.commit()
