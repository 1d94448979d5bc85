from datetime import datetime, timedelta

from app.domain.users.service import STRIPE_STATE_SALT, approved_amount_text, clean_roles
from app.models import Notification, PaymentApproval, Request, User
from app.models_invoice import InvoiceApproval, Payment, Transaction
from app.security_utils import generate_timed_token, verify_password_bcrypt
from app.services import stripe_service
from tests.factories import (
    auth_headers,
    make_horse,
    make_invoice,
    make_manager,
    make_provider,
    make_request,
    make_user,
)


def test_clean_roles_and_amount_text():
    assert clean_roles(["", None]) == ["user"]
    assert clean_roles(["horse manager"]) == ["horse manager"]
    assert approved_amount_text(True, None) == "any amount"
    assert approved_amount_text(False, 250) == "up to $250"


# ============================================================================
# Sign up and sign in
# ============================================================================


def test_signup_returns_token(client, db):
    response = client.post(
        "/api/users/signup",
        json={"email": " New.User@Example.com ", "password": "secret1", "name": "New User", "roles": []},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "new.user@example.com"
    assert body["roles"] == ["user"]
    assert body["token"]

    login = client.post("/api/auth/local", json={"email": "new.user@example.com", "password": "secret1"})
    assert login.status_code == 200
    assert login.json()["token"]


def test_signup_rejects_taken_email(client, db):
    make_manager(db, "Tess Trainer")

    response = client.post(
        "/api/users/signup", json={"email": "tess.trainer@example.com", "password": "secret1"}
    )

    assert response.status_code == 422
    assert response.json() == {"errors": {"email": "Email already exists"}}


def test_login_with_wrong_password(client, db):
    make_manager(db, "Tess Trainer")

    response = client.post("/api/auth/local", json={"email": "tess.trainer@example.com", "password": "nope"})

    assert response.status_code == 401


def test_invalid_token_is_rejected(client, db):
    response = client.get("/api/users/me", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401


# ============================================================================
# Profile
# ============================================================================


def test_me_includes_stripe_state_for_providers(client, db):
    manager = make_manager(db, "Tess Trainer")
    provider = make_provider(db, "Pat Braider")

    as_manager = client.get("/api/users/me", headers=auth_headers(manager)).json()
    as_provider = client.get("/api/users/me", headers=auth_headers(provider)).json()

    assert as_manager["stripeCustomerSetup"] is True
    assert "stripeConnectState" not in as_manager
    assert as_provider["stripeConnectState"]


def test_multiple_owners_lookup_is_retired(client, db):
    manager = make_manager(db, "Tess Trainer")

    response = client.get("/api/users/multipleOwners", headers=auth_headers(manager))

    assert response.status_code == 422
    assert "please upgrade" in response.json()["message"]
    assert client.get("/api/users/999", headers=auth_headers(manager)).status_code == 404


def test_update_me_applies_present_fields(client, db):
    manager = make_manager(db, "Tess Trainer", barn="Old Barn", phone="555-0100")

    response = client.put(
        "/api/users/me",
        json={"barn": "Willow Creek", "services": [{"service": "Braiding", "rate": 90}]},
        headers=auth_headers(manager),
    )

    body = response.json()
    assert body["barn"] == "Willow Creek"
    assert body["phone"] == "555-0100"
    db.expire_all()
    assert db.get(User, manager.id).services == [{"service": "Braiding", "rate": 90}]


def test_user_search_only_lists_finished_accounts(client, db):
    manager = make_manager(db, "Tess Trainer")
    make_provider(db, "Pat Braider")
    make_provider(db, "Paula Pending", account_setup_complete=False)

    response = client.get(
        "/api/users", params={"searchTerm": "Pa", "role": "service provider"}, headers=auth_headers(manager)
    )

    body = response.json()
    assert body["userCount"] == 1
    assert [user["name"] for user in body["users"]] == ["Pat Braider"]


def test_approver_search_excludes_self(client, db):
    manager = make_manager(db, "Tess Trainer")
    other = make_manager(db, "Tara Trainer")

    response = client.get(
        "/api/users",
        params={"searchTerm": "T", "role": "payment approver", "excludeIds": "999,abc"},
        headers=auth_headers(manager),
    )

    assert [user["_id"] for user in response.json()["users"]] == [other.id]


def test_add_device_once(client, db):
    manager = make_manager(db, "Tess Trainer", device_ids=[])

    first = client.post("/api/users/addDevice", json={"deviceId": {"userId": "abc"}}, headers=auth_headers(manager))
    second = client.post("/api/users/addDevice", json={"deviceId": "abc"}, headers=auth_headers(manager))

    assert first.json() == {"message": "Device id has been added"}
    assert second.json() == {"message": "Device id has already been added"}


# ============================================================================
# Passwords
# ============================================================================


def test_change_password(client, db):
    manager = make_manager(db, "Tess Trainer")

    wrong = client.put(
        "/api/users/me/password", json={"oldPassword": "nope", "newPassword": "next"}, headers=auth_headers(manager)
    )
    right = client.put(
        "/api/users/me/password",
        json={"oldPassword": "password123", "newPassword": "next-password"},
        headers=auth_headers(manager),
    )

    assert wrong.json() == {"message": "Incorrect password"}
    assert right.json() == {"message": "Password successfully changed"}
    db.expire_all()
    assert verify_password_bcrypt("next-password", db.get(User, manager.id).password)


def test_forgot_and_reset_password(client, db, emails):
    manager = make_manager(db, "Tess Trainer")

    forgot = client.put("/api/users/me/forgot", json={"email": "tess.trainer@example.com"})
    db.expire_all()
    token = db.get(User, manager.id).reset_password_token

    assert forgot.json() == {"message": "Password reset instructions have been sent."}
    assert emails[0]["subject"] == "Password Reset"
    assert client.get(f"/api/users/me/reset/{token}").json() == {"message": "Password reset token is valid."}

    reset = client.put(f"/api/users/me/reset/{token}", json={"password": "brand-new"})

    assert reset.json() == {"message": "Password has been updated."}
    assert client.get(f"/api/users/me/reset/{token}").json() == {
        "message": "Password reset token is incorrect or has expired."
    }


def test_expired_reset_token(client, db):
    make_manager(
        db,
        "Tess Trainer",
        reset_password_token="stale",
        reset_password_expires=datetime.utcnow() - timedelta(minutes=1),
    )

    response = client.put("/api/users/me/reset/stale", json={"password": "brand-new"})

    assert response.json() == {"message": "Password reset token is incorrect or has expired."}


def test_forgot_password_unknown_email(client, db):
    response = client.put("/api/users/me/forgot", json={"email": "ghost@example.com"})

    assert response.json() == {"message": "Could not find a user with this email"}


# ============================================================================
# Stripe
# ============================================================================


def test_payment_setup_saves_card(client, db, monkeypatch):
    manager = make_manager(db, "Tess Trainer", stripe_customer_id=None)

    async def fake_create_customer(email, source):
        return {"id": "cus_new", "sources": {"data": [{"last4": "4242", "exp_month": 4, "exp_year": 2030}]}}

    monkeypatch.setattr(stripe_service, "create_customer", fake_create_customer)

    response = client.post("/api/users/me/stripePaymentSetup", json={"id": "tok_visa"}, headers=auth_headers(manager))

    assert response.status_code == 200
    db.expire_all()
    user = db.get(User, manager.id)
    assert (user.stripe_customer_id, user.stripe_last4, user.stripe_exp_month) == ("cus_new", "4242", "4")


def test_payment_setup_surfaces_stripe_errors(client, db, monkeypatch):
    manager = make_manager(db, "Tess Trainer")

    async def fake_update_customer(customer_id, email, source):
        raise stripe_service.StripeError("Your card was declined.")

    monkeypatch.setattr(stripe_service, "update_customer", fake_update_customer)

    response = client.post("/api/users/me/stripePaymentSetup", json={"id": "tok_bad"}, headers=auth_headers(manager))

    assert response.json() == {"message": "Your card was declined."}


def test_stripe_redirect_connects_account(client, db, monkeypatch):
    provider = make_provider(db, "Pat Braider", stripe_seller_id=None)
    state = generate_timed_token({"user_id": provider.id}, salt=STRIPE_STATE_SALT)

    async def fake_exchange(code):
        return {"stripe_user_id": "acct_connected"}

    monkeypatch.setattr(stripe_service, "exchange_oauth_code", fake_exchange)

    response = client.get(f"/api/users/stripeRedirect?code=ac_123&state={state}", follow_redirects=False)
    denied = client.get("/api/users/stripeRedirect?code=ac_123&state=forged", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"].endswith("/admin/stripe/approve")
    assert denied.headers["location"].endswith("/admin/stripe/deny")
    db.expire_all()
    assert db.get(User, provider.id).stripe_seller_id == "acct_connected"


def test_connect_webhook_records_posted_payout(client, db, emails):
    trainer = make_manager(db, "Tess Trainer")
    provider = make_provider(db, "Pat Braider")
    horse = make_horse(db, trainer)
    request = make_request(db, horse, provider)
    payment = Payment(service_provider_id=provider.id, paying_user_id=trainer.id, amount=100)
    db.add(payment)
    db.flush()
    db.add(Transaction(payment_id=payment.id, service_provider_id=provider.id, request_id=request.id, transfer_id="tr_1"))
    db.commit()

    response = client.post(
        "/api/users/stripe/webhookConnect",
        json={"type": "payment.created", "data": {"object": {"source_transfer": "tr_1", "amount": 10000}}},
    )

    assert response.status_code == 200
    assert emails[0]["subject"] == "Stripe Connect Account Activity"
    db.expire_all()
    assert db.query(Transaction).one().stripe_transfer_amount == 100
    assert db.query(Notification).one().message == "Payment for Biscuit for $100.00 has been posted."


# ============================================================================
# Payment approvers
# ============================================================================


def test_add_update_and_delete_payment_approval(client, db):
    owner = make_manager(db, "Alice Owner")
    trainer = make_manager(db, "Tess Trainer")
    provider = make_provider(db, "Pat Braider")
    horse = make_horse(db, trainer, owners=[(owner, 100)])
    request = make_request(db, horse, provider)
    invoice = make_invoice(db, horse, provider, [request], [(owner, 100)])
    invoice.payment_approvals = [InvoiceApproval(approver_id=trainer.id, payer_id=owner.id, max_amount=50)]
    db.commit()

    added = client.post(
        "/api/users/approvals/addPaymentApproval",
        json={"_approver": trainer.id, "maxAmount": 100},
        headers=auth_headers(owner),
    ).json()
    updated = client.put(
        "/api/users/approvals/updatePaymentApproval",
        json={"_id": added["_id"], "isUnlimited": True},
        headers=auth_headers(owner),
    ).json()
    authorizations = client.get("/api/users/approvals/ownerAuthorizations", headers=auth_headers(trainer)).json()

    assert added["_approver"]["_id"] == trainer.id
    assert updated["isUnlimited"] is True
    assert [a["_owner"]["_id"] for a in authorizations] == [owner.id]

    messages = [n.message for n in db.query(Notification).order_by(Notification.id).all()]
    assert messages == [
        "Alice Owner has approved you to pay up to $100 on their behalf.",
        "Payment approval updated. You can now pay any amount on Alice Owner's behalf.",
    ]

    db.expire_all()
    assert db.get(InvoiceApproval, invoice.payment_approvals[0].id).is_unlimited is True
    assert [approver.id for approver in db.get(Request, request.id).payment_approvers] == [trainer.id]

    deleted = client.delete(
        f"/api/users/approvals/deletePaymentApproval/{added['_id']}", headers=auth_headers(owner)
    )

    assert deleted.json() == {"deletedId": added["_id"]}
    db.expire_all()
    assert db.query(PaymentApproval).count() == 0
    assert db.get(Request, request.id).payment_approvers == []


# ============================================================================
# Trusted providers
# ============================================================================


def test_trusted_providers_are_grouped_by_label(client, db):
    manager = make_manager(db, "Tess Trainer")
    braider = make_provider(db, "Pat Braider")
    farrier = make_provider(db, "Fran Farrier")
    vet = make_user(db, "Val Vet", ["service provider"])

    client.post(
        "/api/users/providers/addServiceProvider",
        json={"_provider": braider.id, "label": "braider"},
        headers=auth_headers(manager),
    )
    client.post(
        "/api/users/providers/addServiceProvider",
        json={"_provider": farrier.id, "label": "other", "customLabel": " Farrier "},
        headers=auth_headers(manager),
    )
    grouped = client.post(
        "/api/users/providers/addServiceProvider",
        json={"_provider": vet.id, "label": "braider"},
        headers=auth_headers(manager),
    ).json()

    assert [[entry["_provider"]["_id"] for entry in group] for group in grouped] == [
        [braider.id, vet.id],
        [farrier.id],
    ]
    assert grouped[1][0]["customLabel"] == "farrier"

    remaining = client.delete(
        f"/api/users/providers/deleteServiceProvider/{grouped[1][0]['_id']}", headers=auth_headers(manager)
    ).json()

    assert len(remaining) == 1
    last = db.query(Notification).order_by(Notification.id.desc()).first()
    assert last.message.startswith("You can no longer invoice Tess Trainer directly.")
