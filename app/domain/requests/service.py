"""Request service - Business logic for service requests and their lifecycle"""

import logging
import operator
from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import (
    Horse,
    Request,
    User,
    get_dummy_paying_user,
    get_horses,
    get_service_count,
    is_same_day,
    is_service_provider,
)
from ...services.notification_service import create_notification
from ...shared.errors import ApiError, EntityNotFound, ModelValidationError
from ...shared.serializers import extract_id, iso, serialize_horse, serialize_request, serialize_user_summary
from ...utils.dates import end_of_day, format_short_date, parse_date, start_of_day, to_naive_utc
from ..shows.repository import ShowRepository
from .repository import RequestRepository, is_owner, may_be_owned_by, provided_by
from .schemas import RequestBody

logger = logging.getLogger(__name__)

ACCEPTED = "accept"
COMPLETED = "complete"
DECLINED = "decline"
LEFT = "leave"
HORSE_SORTS = ("barnName", "-barnName", "showName", "-showName")
HORSE_SORT_ATTRIBUTES = {"barnName": "barn_name", "showName": "show_name"}


def is_main_service_provider(user: User, request: Request) -> bool:
    if request.reassigned_to_id is None:
        return user.id == request.service_provider_id
    return user.id == request.service_provider_id and user.id != request.reassigned_to_id


def is_reassigned_service_provider(user: User, request: Request) -> bool:
    if request.reassigned_to_id is None:
        return False
    return user.id != request.service_provider_id and user.id == request.reassigned_to_id


def service_names(services: list[dict]) -> str:
    return ", ".join(str(service.get("service")) for service in services or [])


def services_total(services: list[dict]) -> float:
    return round(sum(float(s.get("rate") or 0) * (s.get("quantity") or 1) for s in services or []), 2)


def schedule_date_range(
    today: datetime,
    upcoming: bool,
    past: bool,
    start_date: Optional[datetime],
    end_date: Optional[datetime],
) -> dict:
    """
    Date bounds for a schedule segment as {operator: value} with operators
    gt, gte, lt and lte. A filter range is clipped so the past segment stays
    before today and the upcoming segment stays on or after today; ranges
    lying wholly in the other segment come back unsatisfiable.
    """
    start_of_today = start_of_day(today)
    end_of_today = end_of_day(today)

    if not start_date and not end_date:
        if past:
            return {"lt": start_of_today}
        if upcoming:
            return {"gt": end_of_today}
        return {"gte": start_of_today, "lte": end_of_today}

    filter_start = start_of_day(start_date) if start_date else start_of_today
    filter_end = end_of_day(end_date) if end_date else end_of_today
    bounds = {"gte": filter_start, "lte": filter_end}

    if past:
        if filter_start > start_of_today:
            bounds.pop("gte", None)
        if filter_end > start_of_today and filter_start < start_of_today:
            bounds["lt"] = start_of_today
            bounds.pop("lte", None)
        if filter_start >= start_of_today and filter_end > start_of_today:
            bounds = {"lt": start_of_today, "gte": filter_start}

    if upcoming:
        if not end_date:
            bounds.pop("lte", None)
        if filter_start < start_of_today and filter_end >= start_of_today:
            bounds["gte"] = start_of_today
        if filter_start < start_of_today and filter_end < start_of_today:
            bounds = {"lt": filter_start, "gte": start_of_today}

    return bounds


def date_clauses(bounds: dict) -> list:
    operators = {"gt": operator.gt, "gte": operator.ge, "lt": operator.lt, "lte": operator.le}
    return [operators[op](Request.date, value) for op, value in bounds.items()]


def paginate(items: list, limit: int, skip: int) -> list:
    return items[skip : skip + limit]


def group_metadata(requests: list[Request]) -> dict:
    dates = [request.date for request in requests]
    return {
        "serviceCount": get_service_count(requests),
        "minDate": iso(min(dates)),
        "maxDate": iso(max(dates)),
        "total": sum(float(request.total or 0) for request in requests),
    }


class RequestService:
    """Service layer for request business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = RequestRepository()

    def _get_request(self, request_id: int) -> Request:
        request = self.repo.get_request_by_id(self.db, request_id)
        if not request:
            raise EntityNotFound()
        return request

    # ==========================================================================
    # Listing
    # ==========================================================================

    def get_requests(
        self,
        current_user: User,
        upcoming: bool,
        outstanding: bool,
        horse: Optional[str],
        sort: Optional[str],
        limit: int,
        skip: int,
    ) -> dict:
        """Requests for horses the user leases, trains or owns"""
        filters = []
        if upcoming:
            filters.append(Request.date >= start_of_day(datetime.utcnow()))
        if outstanding:
            filters.extend([Request.paid_at.is_(None), Request.deleted_at.is_(None)])
        if extract_id(horse):
            filters.append(Request.horse_id == extract_id(horse))

        requests = self.repo.find_managed(self.db, current_user.id, filters, sort)
        page = paginate(requests, limit, skip)

        results = []
        for request in page:
            data = serialize_request(request)
            if upcoming:
                data["dateOnly"] = iso(start_of_day(request.date))
            results.append(data)
        return {"requests": results, "requestCount": len(requests)}

    def get_grouped(
        self,
        current_user: User,
        horse_manager: bool,
        service_provider: bool,
        outstanding: bool,
        completed: bool,
        limit: int,
        skip: int,
    ) -> dict:
        """
        Requests grouped into would-be invoices: by custom-invoice flag, then
        paying user, then service provider. Each entry is [groupData, requests].
        """
        me = current_user.id
        filters = []
        if service_provider:
            filters.append(
                or_(
                    (Request.service_provider_id == me) & Request.reassigned_to_id.is_(None),
                    Request.reassigned_to_id == me,
                )
            )
        elif horse_manager:
            filters.append(
                or_(
                    Request.paying_user_id == me,
                    Request.payment_approvers.any(User.id == me),
                    may_be_owned_by(me),
                )
            )
        else:
            return {"requests": [], "requestCount": 0}

        if outstanding:
            filters.extend([Request.paid_at.is_(None), Request.completed_at.isnot(None)])
        if completed:
            filters.append(Request.paid_at.isnot(None))

        requests = self.repo.find(self.db, filters)
        if horse_manager and not service_provider:
            requests = [
                request
                for request in requests
                if request.paying_user_id == me
                or any(approver.id == me for approver in request.payment_approvers)
                or is_owner(request, me)
            ]

        owner_ids = {owner["user"] for request in requests for owner in request.owners or []}
        owners_by_id = {user.id: user for user in self.db.query(User).filter(User.id.in_(owner_ids)).all()}

        # Fill in a paying user where the request has none
        entries = []
        for request in requests:
            if request.paying_user is not None:
                payer = serialize_user_summary(request.paying_user)
            elif is_owner(request, me):
                payer = serialize_user_summary(current_user)
            else:
                payer = get_dummy_paying_user(request, owners_by_id)
            name = (payer or {}).get("name") or getattr(request.horse_manager, "name", "") or ""
            entries.append((name, payer, request))
        entries.sort(key=lambda entry: entry[0])

        groups: dict = {}
        for _, payer, request in entries:
            key = (bool(request.from_custom_invoice), (payer or {}).get("_id"), request.service_provider_id)
            groups.setdefault(key, {"payer": payer, "requests": []})["requests"].append(request)

        grouped = []
        for (from_custom_invoice, _, provider_id), group in groups.items():
            group_requests = group["requests"]
            main_manager = group["payer"] or serialize_user_summary(group_requests[0].horse_manager)

            group_data = {
                "_id": provider_id,
                "fromCustomInvoice": from_custom_invoice,
                "name": main_manager.get("name"),
                "_payingUser": main_manager,
                "_serviceProvider": serialize_user_summary(group_requests[0].service_provider),
                "_currentUser": serialize_user_summary(current_user),
                **group_metadata(group_requests),
                "horses": [serialize_horse(horse) for horse in get_horses(group_requests)],
            }
            if service_provider and outstanding:
                group_data["name"] = group_requests[0].horse_manager.name

            serialized = []
            for request in group_requests:
                data = serialize_request(request)
                data["_payingUser"] = group["payer"]
                serialized.append(data)
            grouped.append([group_data, serialized])

        return {"requests": paginate(grouped, limit, skip), "requestCount": len(requests)}

    def get_grouped_by_horse(self, current_user: User, limit: int, skip: int) -> dict:
        """Completed, uninvoiced requests grouped by provider, then by horse"""
        filters = [
            or_(Request.added_to_invoice.is_(False), Request.added_to_invoice.is_(None)),
            Request.deleted_at.is_(None),
            Request.completed_at.isnot(None),
            Request.paid_at.is_(None),
            provided_by(current_user.id),
        ]
        requests = self.repo.find(self.db, filters)
        requests.sort(key=lambda r: getattr(r.service_provider, "name", "") or "")

        by_provider: dict = {}
        for request in requests:
            by_provider.setdefault(request.service_provider_id, []).append(request)

        grouped = []
        for provider_id, provider_requests in by_provider.items():
            provider_requests.sort(key=lambda r: getattr(r.horse, "barn_name", "") or "")
            by_horse: dict = {}
            for request in provider_requests:
                by_horse.setdefault(request.horse_id, []).append(request)

            horse_groups = [
                [{"_id": horse_id, **group_metadata(horse_requests)}, [serialize_request(r) for r in horse_requests]]
                for horse_id, horse_requests in by_horse.items()
            ]
            grouped.append([provider_id, horse_groups])

        return {"requests": paginate(grouped, limit, skip), "requestCount": len(requests)}

    def get_schedule(
        self,
        current_user: User,
        today: bool,
        upcoming: bool,
        past: bool,
        start_date: Optional[str],
        end_date: Optional[str],
        sort: Optional[str],
        limit: int,
        skip: int,
    ) -> dict:
        """A provider's requests: current, previously reassigned or by date segment"""
        me = current_user.id
        sort = sort or "date"
        bounds = schedule_date_range(
            datetime.utcnow(), upcoming, past, parse_date(start_date), parse_date(end_date)
        )

        filters = date_clauses(bounds)
        if past:
            filters.append(Request.deleted_at.is_(None))
        requests = [
            request
            for request in self.repo.find(self.db, filters, sort)
            if request.service_provider_id == me
            or request.reassigned_to_id == me
            or me in (request.previous_reassignees or [])
        ]
        if today or upcoming:
            requests = [request for request in requests if me not in (request.dismissed_by or [])]

        if sort in HORSE_SORTS:
            attribute = HORSE_SORT_ATTRIBUTES[sort.lstrip("-")]
            requests.sort(
                key=lambda r: (getattr(r.horse, attribute, "") or "").upper(),
                reverse=sort.startswith("-"),
            )

        results = []
        for request in paginate(requests, limit, skip):
            data = serialize_request(request)
            if upcoming or past:
                data["dateOnly"] = iso(start_of_day(request.date))
            results.append(data)
        return {"requests": results, "requestCount": len(requests)}

    def get_last_request(self, current_user: User, horse_id: Optional[int]):
        request = self.repo.get_last_request(self.db, current_user.id, horse_id)
        if request is None:
            return None
        return serialize_request(request)

    def get_request(self, request_id: int) -> dict:
        return serialize_request(self._get_request(request_id))

    # ==========================================================================
    # Writes
    # ==========================================================================

    def _apply_show(self, request: Request, show) -> None:
        if isinstance(show, dict) and show.get("name"):
            request.show_id = ShowRepository.find_or_create(self.db, show["name"]).id
        elif isinstance(show, str) and show.strip():
            request.show_id = ShowRepository.find_or_create(self.db, show).id
        elif extract_id(show):
            request.show_id = extract_id(show)

    async def create_request(self, current_user: User, data: RequestBody) -> dict:
        horse_id = extract_id(data.horse)
        horse = self.db.get(Horse, horse_id) if horse_id else None

        errors = {}
        if not horse_id:
            errors["_horse"] = "Path `_horse` is required."
        elif horse is None:
            errors["_horse"] = "Horse not found"
        if not data.date:
            errors["date"] = "Path `date` is required."
        provider_id = current_user.id if data.fromCustomInvoice else extract_id(data.serviceProvider)
        if not provider_id:
            errors["_serviceProvider"] = "Path `_serviceProvider` is required."
        if errors:
            raise ModelValidationError(errors)

        services = [service.model_dump() for service in data.services]
        request = Request(
            date=to_naive_utc(data.date),
            from_custom_invoice=data.fromCustomInvoice,
            horse_id=horse.id,
            service_provider_id=provider_id,
            reassigned_to_id=extract_id(data.reassignedTo),
            previous_reassignees=[extract_id(p) for p in data.previousReassignees or [] if extract_id(p)],
            services=services,
            instructions=data.instructions,
            competition_class=data.competitionClass,
            provider_notes=data.providerNotes,
            added_to_invoice=bool(data.addedToInvoice),
            total=services_total(services),
        )
        # Custom invoices are raised by the provider against the horse's trainer
        request.horse_manager_id = horse.trainer_id if data.fromCustomInvoice else current_user.id
        self._apply_show(request, data.show)

        # Lessee pays, then a sole owner; several owners split the invoice later
        if horse.leased_to is not None:
            paying_user = horse.leased_to
        elif len(horse.owners) == 1:
            paying_user = horse.owners[0].user
        elif len(horse.owners) > 1:
            paying_user = None
        else:
            paying_user = horse.trainer
        request.paying_user = paying_user
        if paying_user is not None:
            request.payment_approvers = [approval.approver for approval in paying_user.payment_approvals]

        request.leased_to_id = horse.leased_to_id
        request.owners = horse.owner_snapshot()
        request.trainer_id = horse.trainer_id

        if data.fromCustomInvoice:
            now = datetime.utcnow()
            request.accepted_at = now
            request.completed_at = now

        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)
        logger.info(f"📝 Request {request.id} created by user {current_user.id}")

        if not data.fromCustomInvoice:
            verb = "have" if len(services) > 1 else "has"
            message = (
                f"{service_names(services)} for {horse.barn_name} on {format_short_date(request.date)} "
                f"{verb} been requested."
            )
            await create_notification(
                self.db, [request.service_provider_id], message, send_push=is_same_day(request.date)
            )

        return serialize_request(request)

    def delete_requests(self, request_ids: list[int]) -> None:
        requests = self.repo.get_requests_by_ids(self.db, request_ids)
        if not requests:
            raise EntityNotFound()

        now = datetime.utcnow()
        for request in requests:
            request.deleted_at = now
        self.db.commit()
        logger.info(f"🗑️ Marked {len(requests)} request(s) deleted")

    async def update_request(self, current_user: User, request_id: int, data: RequestBody) -> dict:
        request = self._get_request(request_id)
        if request.paid_at:
            raise ApiError("This request has already been paid")

        fields_set = data.model_fields_set
        old_total = request.total
        horse_name = getattr(request.horse, "barn_name", "")

        original_provider_id = request.service_provider_id
        new_provider_id = extract_id(data.serviceProvider) or original_provider_id
        has_new_provider = new_provider_id != original_provider_id

        original_reassignee_id = request.reassigned_to_id
        body_reassignee_id = extract_id(data.reassignedTo) if "reassignedTo" in fields_set else original_reassignee_id
        new_reassignee_id = None
        has_new_reassignee = False
        if body_reassignee_id and body_reassignee_id != new_provider_id:
            new_reassignee_id = body_reassignee_id
            has_new_reassignee = new_reassignee_id != original_reassignee_id

        previous = [extract_id(p) for p in data.previousReassignees or [] if extract_id(p)]
        if data.previousReassignees is None:
            previous = list(request.previous_reassignees or [])
        if original_reassignee_id and original_reassignee_id != new_reassignee_id:
            if original_reassignee_id not in previous:
                previous.append(original_reassignee_id)
        request.previous_reassignees = previous

        # Reassigning back to the main provider clears the reassignee
        back_to_provider = bool(body_reassignee_id) and body_reassignee_id == new_provider_id
        if "reassignedTo" in fields_set or back_to_provider:
            request.reassigned_to_id = new_reassignee_id

        if has_new_provider or has_new_reassignee or back_to_provider:
            request.declined_at = None
            request.accepted_at = None

        request.service_provider_id = new_provider_id
        if "date" in fields_set and data.date:
            request.date = to_naive_utc(data.date)
        if "horse" in fields_set and extract_id(data.horse):
            request.horse_id = extract_id(data.horse)
        if "horseManager" in fields_set and extract_id(data.horseManager):
            request.horse_manager_id = extract_id(data.horseManager)
        if "show" in fields_set:
            self._apply_show(request, data.show)
        if "services" in fields_set:
            request.services = [service.model_dump() for service in data.services]
        for key, column in (
            ("instructions", "instructions"),
            ("competitionClass", "competition_class"),
            ("providerNotes", "provider_notes"),
            ("fromCustomInvoice", "from_custom_invoice"),
            ("addedToInvoice", "added_to_invoice"),
        ):
            if key in fields_set:
                setattr(request, column, getattr(data, key))
        request.total = services_total(request.services)

        self.db.commit()
        self.db.refresh(request)

        date_text = format_short_date(request.date)
        provider_name = getattr(request.service_provider, "name", "")
        manager_name = getattr(request.horse_manager, "name", "")

        if has_new_reassignee and is_service_provider(current_user):
            await create_notification(
                self.db,
                [request.reassigned_to_id],
                f"{provider_name} has requested your assignment for {horse_name} on {date_text}.",
                send_push=is_same_day(request.date),
            )
        elif not has_new_reassignee and (
            is_main_service_provider(current_user, request) or is_reassigned_service_provider(current_user, request)
        ):
            if old_total != request.total:
                await create_notification(
                    self.db,
                    [request.horse_manager_id],
                    f"{provider_name} updated the requested services for {horse_name} on {date_text}.",
                )
        else:
            await create_notification(
                self.db,
                [request.service_provider_id, request.reassigned_to_id],
                f"{manager_name} updated an appointment for {horse_name} on {date_text}.",
            )

        return serialize_request(request)

    def _dismiss(self, request: Request, user: User) -> None:
        if user.id not in (request.dismissed_by or []):
            request.dismissed_by = list(request.dismissed_by or []) + [user.id]

    async def update_status(self, current_user: User, request_id: int, status: str) -> dict:
        request = self._get_request(request_id)
        now = datetime.utcnow()
        # Checked before the status change so a reassignee leaving is still recognised
        is_reassignee = is_reassigned_service_provider(current_user, request)

        if status == ACCEPTED:
            request.accepted_at = now
            label = "accepted"
        elif status == COMPLETED:
            request.completed_at = now
            label = "completed"
        elif status == DECLINED:
            request.declined_at = now
            label = "declined"
            self._dismiss(request, current_user)
            if is_main_service_provider(current_user, request):
                request.declined_by_head_service_provider = True
        elif status == LEFT and is_main_service_provider(current_user, request):
            request.declined_at = now
            request.declined_by_head_service_provider = True
            label = "left"
            self._dismiss(request, current_user)
        elif status == LEFT and is_reassignee:
            request.declined_at = now
            request.accepted_at = None
            label = "left"
            self._dismiss(request, current_user)
        elif status == LEFT:
            raise ApiError("You are not assigned to this request")
        else:
            raise ApiError("Invalid status")

        self.db.commit()
        self.db.refresh(request)

        rejected = status in (DECLINED, LEFT)
        recipient = request.service_provider_id if rejected and is_reassignee else request.horse_manager_id
        provider = request.reassigned_to or request.service_provider
        message = (
            f"{provider.name} has {label} request for {service_names(request.services)} "
            f"on {format_short_date(request.date)} for {getattr(request.horse, 'barn_name', '')}."
        )
        await create_notification(self.db, [recipient], message, send_push=rejected)

        logger.info(f"📌 Request {request.id} {label} by user {current_user.id}")
        return serialize_request(request)

    def dismiss_request(self, current_user: User, request_id: int) -> dict:
        request = self._get_request(request_id)
        self._dismiss(request, current_user)
        self.db.commit()
        self.db.refresh(request)
        return serialize_request(request)

    async def delete_request(self, request_id: int) -> dict:
        """Soft delete; the row is kept with deletedAt set"""
        request = self._get_request(request_id)
        request.deleted_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(request)

        message = (
            f"{service_names(request.services)} cancelled for {getattr(request.horse, 'barn_name', '')} "
            f"by {request.horse_manager.name} on {format_short_date(request.date)}."
        )
        await create_notification(self.db, [request.service_provider_id, request.reassigned_to_id], message)
        return serialize_request(request)
