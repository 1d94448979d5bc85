"""Row builders and auth helpers shared by the API tests"""

from datetime import datetime, timedelta

from app.models import HORSE_MANAGER, SERVICE_PROVIDER, Horse, HorseOwner, Request, User
from app.models_invoice import Invoice, InvoicePayer
from app.security_utils import create_access_token, hash_password_bcrypt


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def make_user(db, name: str, roles=None, **fields) -> User:
    user = User(
        name=name,
        email=fields.pop("email", f"{name.lower().replace(' ', '.')}@example.com"),
        password=hash_password_bcrypt("password123"),
        roles=roles or [HORSE_MANAGER],
        account_setup_complete=fields.pop("account_setup_complete", True),
        device_ids=fields.pop("device_ids", [f"device-{name.lower().replace(' ', '-')}"]),
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_manager(db, name: str, **fields) -> User:
    fields.setdefault("stripe_customer_id", f"cus_{name.lower().replace(' ', '_')}")
    return make_user(db, name, [HORSE_MANAGER], **fields)


def make_provider(db, name: str, **fields) -> User:
    fields.setdefault("stripe_seller_id", f"acct_{name.lower().replace(' ', '_')}")
    return make_user(db, name, [SERVICE_PROVIDER], **fields)


def make_horse(db, trainer: User, owners=None, leased_to: User = None, barn_name="Biscuit") -> Horse:
    horse = Horse(
        barn_name=barn_name,
        show_name=f"Sir {barn_name}",
        gender="gelding",
        trainer_id=trainer.id,
        created_by_id=trainer.id,
        leased_to_id=leased_to.id if leased_to else None,
    )
    for user, percentage in owners or []:
        horse.owners.append(HorseOwner(user_id=user.id, percentage=percentage))
    db.add(horse)
    db.commit()
    db.refresh(horse)
    return horse


def make_request(db, horse: Horse, provider: User, manager: User = None, **fields) -> Request:
    services = fields.pop("services", [{"service": "Braiding", "rate": 100, "quantity": 1}])
    request = Request(
        date=fields.pop("date", datetime.utcnow() + timedelta(days=2)),
        horse_id=horse.id,
        horse_manager_id=(manager or horse.trainer).id,
        trainer_id=horse.trainer_id,
        leased_to_id=horse.leased_to_id,
        service_provider_id=provider.id,
        owners=horse.owner_snapshot(),
        services=services,
        total=sum(s["rate"] * (s.get("quantity") or 1) for s in services),
        **fields,
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    return request


def make_invoice(db, horse: Horse, provider: User, requests, payers, tip: float = 0, **fields) -> Invoice:
    invoice = Invoice(
        amount=sum(request.total for request in requests),
        tip=tip,
        owners=horse.owner_snapshot(),
        horse_id=horse.id,
        service_provider_id=provider.id,
        trainer_id=horse.trainer_id,
        **fields,
    )
    invoice.requests = list(requests)
    reassignees = {r.reassigned_to.id: r.reassigned_to for r in requests if r.reassigned_to is not None}
    invoice.reassignees = list(reassignees.values())
    invoice.paying_users = [InvoicePayer(user_id=user.id, percentage=pct) for user, pct in payers]
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return invoice


def push_messages(pushes) -> list[str]:
    return [payload["contents"]["en"] for payload in pushes]
