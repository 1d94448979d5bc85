from datetime import datetime

from app.models import Notification, Request
from app.models_invoice import Invoice, Payment
from tests.factories import (
    auth_headers,
    make_horse,
    make_invoice,
    make_manager,
    make_provider,
    make_request,
    push_messages,
)


def co_owned_invoice(db, tip=0):
    trainer = make_manager(db, "Tess Trainer")
    alice = make_manager(db, "Alice Owner")
    bob = make_manager(db, "Bob Owner")
    provider = make_provider(db, "Pat Braider")
    horse = make_horse(db, trainer, owners=[(alice, 60), (bob, 40)])
    request = make_request(db, horse, provider, completed_at=None)
    invoice = make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)], tip=tip)
    return trainer, alice, bob, provider, invoice


# ============================================================================
# Payment fan-out
# ============================================================================


def test_first_payer_is_charged_their_share_plus_fee_and_tip(client, db, stripe, pushes):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)

    response = client.post(
        "/api/payments",
        json={"_invoice": invoice.id, "_payingUser": alice.id, "tip": 10, "uuid": "charge-key-1"},
        headers=auth_headers(alice),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Payment successful"
    assert body["payment"]["amount"] == 60
    assert body["payment"]["tip"] == 6

    # 60 for the service, 3 service fee, 6 tip
    assert stripe.charges == [
        {"amount": 6900, "customer": alice.stripe_customer_id, "receipt_email": alice.email, "idempotency_key": "charge-key-1"}
    ]
    assert [t["amount"] for t in stripe.transfers] == [6000, 600]
    assert all(t["destination"] == provider.stripe_seller_id for t in stripe.transfers)
    assert all(t["source_transaction"] == "ch_1" for t in stripe.transfers)

    types = sorted(t["type"] for t in body["payment"]["transactions"])
    assert types == ["request", "tip"]
    assert "Alice Owner has made a payment of $66.00." in push_messages(pushes)

    db.expire_all()
    stored = db.get(Invoice, invoice.id)
    assert stored.tip == 10
    assert stored.paid_in_full_at is None


def test_last_payer_marks_invoice_and_requests_paid(client, db, stripe, emails):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)
    client.post("/api/payments", json={"_invoice": invoice.id, "_payingUser": alice.id, "tip": 10}, headers=auth_headers(alice))

    response = client.post(
        "/api/payments", json={"_invoice": invoice.id, "_payingUser": bob.id, "tip": 10}, headers=auth_headers(bob)
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Invoice paid in full"
    assert stripe.charges[-1]["amount"] == 4600

    db.expire_all()
    stored = db.get(Invoice, invoice.id)
    assert stored.paid_in_full_at is not None
    assert all(request.paid_at is not None for request in stored.requests)
    assert sum(1 for email in emails if email["subject"] == "HorseLinc - Invoice Paid In Full") == 2


def test_paying_on_behalf_of_owner_records_notification(client, db, stripe):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)

    response = client.post(
        "/api/payments", json={"_invoice": invoice.id, "_payingUser": alice.id}, headers=auth_headers(trainer)
    )

    assert response.status_code == 200
    notification = db.query(Notification).one()
    assert notification.message == "Tess Trainer has made a payment of $63.00 on your behalf."
    assert [user.id for user in notification.recipients] == [alice.id]


def test_reassigned_request_pays_out_to_reassignee(client, db, stripe, pushes):
    trainer = make_manager(db, "Tess Trainer")
    provider = make_provider(db, "Pat Braider")
    helper = make_provider(db, "Hal Helper")
    horse = make_horse(db, trainer)
    own = make_request(db, horse, provider)
    reassigned = make_request(db, horse, provider, reassigned_to_id=helper.id, services=[{"service": "Mane", "rate": 50}])
    invoice = make_invoice(db, horse, provider, [own, reassigned], [(trainer, 100)])

    response = client.post(
        "/api/payments", json={"_invoice": invoice.id, "_payingUser": trainer.id}, headers=auth_headers(trainer)
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Invoice paid in full"
    destinations = {t["destination"]: t["amount"] for t in stripe.transfers}
    assert destinations == {provider.stripe_seller_id: 10000, helper.stripe_seller_id: 5000}
    assert "Tess Trainer has made a payment of $50.00." in push_messages(pushes)


def test_charge_failure_removes_payment(client, db, stripe, emails):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)
    stripe.fail_charge = "Your card was declined."

    response = client.post(
        "/api/payments", json={"_invoice": invoice.id, "_payingUser": alice.id}, headers=auth_headers(alice)
    )

    assert response.status_code == 422
    assert response.json() == {"message": "Your card was declined."}
    assert db.query(Payment).count() == 0
    assert [email["subject"] for email in emails] == ["Stripe Charge Failure"]


def test_payout_failure_still_records_payment(client, db, stripe, emails, pushes):
    trainer = make_manager(db, "Tess Trainer")
    provider = make_provider(db, "Pat Braider", stripe_seller_id=None)
    horse = make_horse(db, trainer)
    request = make_request(db, horse, provider)
    invoice = make_invoice(db, horse, provider, [request], [(trainer, 100)])

    response = client.post(
        "/api/payments", json={"_invoice": invoice.id, "_payingUser": trainer.id}, headers=auth_headers(trainer)
    )

    assert response.status_code == 200
    assert response.json()["message"] == (
        "Your payment has been submitted, but it may not have reached its final payee(s). Please contact HorseLinc."
    )
    transactions = response.json()["payment"]["transactions"]
    assert [t["transferId"] for t in transactions] == [""]

    failure = next(email for email in emails if email["subject"] == "Stripe Payout Failure")
    assert failure["bcc"] == [provider.email]
    assert any("error transferring the funds" in message for message in push_messages(pushes))

    db.expire_all()
    assert db.get(Request, request.id).paid_at is not None


def test_payment_requires_stripe_customer(client, db, stripe):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)
    bob.stripe_customer_id = None
    db.commit()

    mine = client.post("/api/payments", json={"_invoice": invoice.id, "_payingUser": bob.id}, headers=auth_headers(bob))
    theirs = client.post(
        "/api/payments", json={"_invoice": invoice.id, "_payingUser": bob.id}, headers=auth_headers(trainer)
    )

    assert mine.json()["message"] == (
        "You need to complete your payment information in your profile before you may proceed."
    )
    assert theirs.json()["message"] == (
        "Bob Owner needs to complete their payment information in their profile before you may proceed."
    )
    assert stripe.charges == []


def test_duplicate_payment_is_rejected(client, db, stripe):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)
    body = {"_invoice": invoice.id, "_payingUser": alice.id}
    client.post("/api/payments", json=body, headers=auth_headers(alice))

    response = client.post("/api/payments", json=body, headers=auth_headers(alice))

    assert response.status_code == 422
    assert response.json()["message"] == "A payment has already been made against this invoice for Alice Owner"
    assert len(stripe.charges) == 1


def test_payment_rejects_deleted_invoice_and_old_clients(client, db, stripe):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)

    old_client = client.post("/api/payments", json={"_invoice": invoice.id}, headers=auth_headers(alice))
    assert "please upgrade" in old_client.json()["message"]

    invoice.deleted_at = datetime.utcnow()
    db.commit()
    deleted = client.post(
        "/api/payments", json={"_invoice": invoice.id, "_payingUser": alice.id}, headers=auth_headers(alice)
    )
    assert deleted.json() == {"message": "This invoice has been deleted."}


# ============================================================================
# Paid outside the app
# ============================================================================


def test_mark_as_paid_creates_outstanding_payments(client, db, pushes, emails):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)

    response = client.post("/api/payments/markAsPaid", json={"invoice": invoice.id}, headers=auth_headers(provider))

    assert response.status_code == 200
    assert response.json()["paidInFullAt"] is not None
    payments = db.query(Payment).order_by(Payment.id).all()
    assert [(p.paying_user_id, p.amount) for p in payments] == [(alice.id, 60), (bob.id, 40)]
    assert all(p.paid_outside_app for p in payments)
    assert "Pat Braider has marked your invoice totaling $105.00 as paid!" in push_messages(pushes)
    assert any(email["subject"] == "HorseLinc - Invoice Paid In Full" for email in emails)


def test_mark_as_paid_is_limited_to_main_provider(client, db):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)

    response = client.post("/api/payments/markAsPaid", json={"invoice": invoice.id}, headers=auth_headers(alice))

    assert response.status_code == 422
    assert response.json()["message"] == "You are not authorized to mark invoice as paid."


def test_mark_as_paid_twice_is_rejected(client, db):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)
    client.post("/api/payments/markAsPaid", json={"invoice": invoice.id}, headers=auth_headers(provider))

    response = client.post("/api/payments/markAsPaid", json={"invoice": invoice.id}, headers=auth_headers(provider))

    assert response.json()["message"] == "This invoice has already been paid."


# ============================================================================
# Reminders and reports
# ============================================================================


def test_request_payment_pushes_to_trainers(client, db, pushes):
    trainer = make_manager(db, "Tess Trainer")
    provider = make_provider(db, "Pat Braider")
    horse = make_horse(db, trainer)
    first = make_request(db, horse, provider)
    second = make_request(db, horse, provider)

    response = client.get(
        f"/api/payments/requestPayment?requests={first.id}&requests={second.id}", headers=auth_headers(provider)
    )

    assert response.json() == {"message": "Success"}
    assert pushes[0]["include_player_ids"] == trainer.device_ids


def test_request_payment_when_everything_is_paid(client, db, pushes):
    trainer = make_manager(db, "Tess Trainer")
    provider = make_provider(db, "Pat Braider")
    horse = make_horse(db, trainer)
    paid = make_request(db, horse, provider, paid_at=datetime.utcnow())

    response = client.get(f"/api/payments/requestPayment?requests={paid.id}", headers=auth_headers(provider))

    assert response.status_code == 422
    assert response.json()["message"] == "All these requests have been paid! Refresh to see changes."
    assert pushes == []


def test_report_unapproved_emails_the_payer(client, db, emails):
    trainer = make_manager(db, "Tess Trainer")
    body = {
        "requests": [
            {
                "total": 200,
                "tipAmount": 20,
                "_payingUser": {"email": "owner@example.com"},
                "_currentUser": {"name": trainer.name, "email": trainer.email},
                "approvedMax": 100,
            }
        ]
    }

    response = client.post("/api/payments/reportUnapproved", json=body, headers=auth_headers(trainer))

    assert response.json() == {"message": "Email successfully sent."}
    assert emails[0]["to"] == "owner@example.com"
    assert emails[0]["subject"] == "Pending Invoice Over Trainer's Approved Limit"


# ============================================================================
# Listing
# ============================================================================


def test_payment_lists_by_role(client, db, stripe):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)
    client.post("/api/payments", json={"_invoice": invoice.id, "_payingUser": alice.id}, headers=auth_headers(alice))
    client.post("/api/payments", json={"_invoice": invoice.id, "_payingUser": bob.id}, headers=auth_headers(bob))

    as_manager = client.get("/api/payments?horseManager=true", headers=auth_headers(alice)).json()
    as_provider = client.get("/api/payments?serviceProvider=true", headers=auth_headers(provider)).json()
    neither = client.get("/api/payments", headers=auth_headers(alice)).json()

    assert as_manager["paymentCount"] == 1
    assert as_manager["payments"][0]["horses"][0]["barnName"] == "Biscuit"
    assert as_provider["paymentCount"] == 2
    assert neither == {"payments": [], "paymentCount": 0}


def test_payment_list_pages_in_the_query(client, db):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)
    for day in range(1, 6):
        db.add(
            Payment(
                invoice_id=invoice.id,
                service_provider_id=provider.id,
                paying_user_id=alice.id,
                amount=day,
                date=datetime(2026, 10, day),
            )
        )
    db.commit()

    body = client.get("/api/payments?horseManager=true&limit=2&skip=1", headers=auth_headers(alice)).json()

    assert body["paymentCount"] == 5
    assert [payment["amount"] for payment in body["payments"]] == [4, 3]


def test_manager_list_matches_approvers_exactly(client, db):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)
    lookalike = int(f"{alice.id}{alice.id}")
    for amount, approvers in [(1, [lookalike]), (2, [lookalike, alice.id]), (3, [alice.id])]:
        db.add(
            Payment(
                invoice_id=invoice.id,
                service_provider_id=provider.id,
                paying_user_id=bob.id,
                amount=amount,
                approvers=approvers,
            )
        )
    db.commit()

    body = client.get("/api/payments?horseManager=true", headers=auth_headers(alice)).json()

    assert body["paymentCount"] == 2
    assert sorted(payment["amount"] for payment in body["payments"]) == [2, 3]


def test_show_payment_displays_tip(client, db, stripe):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)
    created = client.post(
        "/api/payments", json={"_invoice": invoice.id, "_payingUser": alice.id, "tip": 5}, headers=auth_headers(alice)
    ).json()["payment"]

    shown = client.get(f"/api/payments/{created['_id']}", headers=auth_headers(provider))

    assert shown.status_code == 200
    assert shown.json()["displayTip"] is True
    assert client.get("/api/payments/999", headers=auth_headers(provider)).status_code == 404


def test_update_payment(client, db, stripe):
    trainer, alice, bob, provider, invoice = co_owned_invoice(db)
    created = client.post(
        "/api/payments", json={"_invoice": invoice.id, "_payingUser": alice.id}, headers=auth_headers(alice)
    ).json()["payment"]

    response = client.put(f"/api/payments/{created['_id']}", json={"paidOutsideApp": True}, headers=auth_headers(provider))

    assert response.status_code == 200
    assert response.json()["paidOutsideApp"] is True
