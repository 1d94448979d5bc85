from datetime import datetime

from app.domain.invoices.export import MANAGER_HEADERS, PROVIDER_HEADERS, convert_all_to_csv, get_invoice_total
from app.domain.invoices.service import get_multi_owner_info, get_total_for_user
from app.models import Request
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


def co_owned_horse(db):
    trainer = make_manager(db, "Tess Trainer")
    alice = make_manager(db, "Alice Owner")
    bob = make_manager(db, "Bob Owner")
    provider = make_provider(db, "Pat Braider")
    horse = make_horse(db, trainer, owners=[(alice, 60), (bob, 40)])
    return trainer, alice, bob, provider, horse


# ============================================================================
# Create
# ============================================================================


def test_create_invoice_splits_between_owners(client, db, pushes, emails):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider)

    response = client.post(
        "/api/invoices",
        json={"_horse": horse.id, "_requests": [request.id], "tip": 0},
        headers=auth_headers(provider),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["amount"] == 100
    assert [(p["_user"]["_id"], p["percentage"]) for p in body["_payingUsers"]] == [(alice.id, 60), (bob.id, 40)]
    assert "An invoice for Biscuit has been submitted." in push_messages(pushes)

    submitted = next(email for email in emails if email["subject"] == "HorseLinc - Invoice Submitted")
    assert submitted["to"] == [alice.email, bob.email]

    db.expire_all()
    assert db.get(Request, request.id).added_to_invoice is True


def test_create_invoice_for_leased_horse_bills_lessee(client, db):
    trainer = make_manager(db, "Tess Trainer")
    lessee = make_manager(db, "Lee Lessee")
    provider = make_provider(db, "Pat Braider")
    horse = make_horse(db, trainer, leased_to=lessee)
    request = make_request(db, horse, provider)

    response = client.post(
        "/api/invoices", json={"_horse": horse.id, "_requests": [request.id]}, headers=auth_headers(provider)
    )

    payers = response.json()["_payingUsers"]
    assert [(p["_user"]["_id"], p["percentage"]) for p in payers] == [(lessee.id, 100)]


def test_create_invoice_notifies_reassignees(client, db, pushes, emails):
    trainer = make_manager(db, "Tess Trainer")
    provider = make_provider(db, "Pat Braider")
    helper = make_provider(db, "Hal Helper")
    horse = make_horse(db, trainer)
    request = make_request(db, horse, provider, reassigned_to_id=helper.id)

    response = client.post(
        "/api/invoices", json={"_horse": horse.id, "_requests": [request.id]}, headers=auth_headers(provider)
    )

    assert response.status_code == 200
    assert [user["_id"] for user in response.json()["_reassignees"]] == [helper.id]
    assert "Pat Braider has submitted an invoice for Biscuit." in push_messages(pushes)
    assert any(email["to"] == helper.email for email in emails)


def test_create_invoice_requires_own_requests(client, db):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    other = make_provider(db, "Olive Other")
    request = make_request(db, horse, other)

    response = client.post(
        "/api/invoices", json={"_horse": horse.id, "_requests": [request.id]}, headers=auth_headers(provider)
    )

    assert response.status_code == 422
    assert response.json() == {"message": "You do not have permission to create this invoice."}


# ============================================================================
# Read
# ============================================================================


def test_invoice_lists_for_payers_and_providers(client, db):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider)
    make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)], tip=5)

    as_owner = client.get("/api/invoices?horseManager=true", headers=auth_headers(alice)).json()
    outstanding = client.get("/api/invoices?serviceProvider=true&outstanding=true", headers=auth_headers(provider)).json()
    complete = client.get("/api/invoices?serviceProvider=true&complete=true", headers=auth_headers(provider)).json()

    assert as_owner["invoiceCount"] == 1
    assert as_owner["invoices"][0]["totalForUser"] == 105
    assert as_owner["invoices"][0]["serviceCount"] == 1
    assert outstanding["invoiceCount"] == 1
    assert complete["invoiceCount"] == 0


def test_get_invoice_includes_payments(client, db):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider)
    invoice = make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)])

    response = client.get(f"/api/invoices/{invoice.id}", headers=auth_headers(alice))

    assert response.status_code == 200
    assert response.json()["_payments"] == []
    assert client.get("/api/invoices/999", headers=auth_headers(alice)).status_code == 404


# ============================================================================
# Update and delete
# ============================================================================


def test_update_invoice_recalculates_amount(client, db, pushes):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider)
    invoice = make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)])

    response = client.put(
        f"/api/invoices/{invoice.id}",
        json={"_requests": [{"_id": request.id, "services": [{"service": "Braiding", "rate": 75, "quantity": 2}]}], "tip": 5},
        headers=auth_headers(provider),
    )

    assert response.status_code == 200
    assert response.json()["amount"] == 150
    assert response.json()["tip"] == 5
    assert "Pat Braider has updated the invoice for Biscuit." in push_messages(pushes)


def test_update_invoice_after_payment_is_rejected(client, db):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider)
    invoice = make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)])
    db.add(Payment(invoice_id=invoice.id, service_provider_id=provider.id, paying_user_id=alice.id, amount=60))
    db.commit()

    response = client.put(f"/api/invoices/{invoice.id}", json={"tip": 5}, headers=auth_headers(provider))

    assert response.json() == {"message": "Invoice cannot be updated once a payment has been made."}


def test_delete_invoice_soft_deletes_requests(client, db, pushes):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider)
    invoice = make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)])

    forbidden = client.delete(f"/api/invoices/{invoice.id}", headers=auth_headers(alice))
    response = client.delete(f"/api/invoices/{invoice.id}", headers=auth_headers(provider))

    assert forbidden.json() == {"message": "You are not authorized to delete this invoice."}
    assert response.json() == {"message": "Invoice successfully deleted"}
    assert "Your invoice of $105.00 has been deleted by Pat Braider." in push_messages(pushes)

    db.expire_all()
    assert db.get(Invoice, invoice.id).deleted_at is not None
    assert db.get(Request, request.id).deleted_at is not None


def test_delete_invoice_after_payment_is_rejected(client, db):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider)
    invoice = make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)])
    db.add(Payment(invoice_id=invoice.id, service_provider_id=provider.id, paying_user_id=alice.id, amount=60))
    db.commit()

    response = client.delete(f"/api/invoices/{invoice.id}", headers=auth_headers(provider))

    assert response.status_code == 422
    assert response.json() == {"message": "There is already a payment against this invoice."}
    db.expire_all()
    assert db.get(Invoice, invoice.id).deleted_at is None
    assert db.get(Request, request.id).deleted_at is None


# ============================================================================
# Reminders
# ============================================================================


def test_request_payment_reminds_payers(client, db, pushes, emails):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider)
    invoice = make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)])

    response = client.post("/api/invoices/requestPayment", json={"_id": invoice.id}, headers=auth_headers(provider))

    assert response.status_code == 200
    assert (
        "Your invoice of $105 remains outstanding. Head to the Payments tab to resolve the invoice."
        in push_messages(pushes)
    )
    assert emails[0]["subject"] == "HorseLinc - Payment Reminder for Outstanding Invoice"


def test_request_payment_on_deleted_invoice(client, db):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider)
    invoice = make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)], deleted_at=datetime.utcnow())

    response = client.post("/api/invoices/requestPayment", json={"_id": invoice.id}, headers=auth_headers(provider))

    assert response.json() == {"message": "This invoice has been deleted by the main service provider."}


def test_request_approval_and_increase(client, db, pushes, emails):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider)
    invoice = make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)])
    body = {"invoiceId": invoice.id, "ownerId": alice.id, "amountOwed": 63}

    approval = client.post("/api/invoices/requestApproval", json=body, headers=auth_headers(trainer))
    increase = client.post("/api/invoices/requestApprovalIncrease", json=body, headers=auth_headers(trainer))

    assert approval.json() == {"message": "Email and push successfully sent."}
    assert increase.json() == {"message": "Email and push successfully sent."}
    messages = push_messages(pushes)
    assert messages[0].startswith("Tess Trainer does not have the ability to initiate payments on your behalf.")
    assert "resolve this pending invoice of $63.00" in messages[1]
    assert [email["subject"] for email in emails] == [
        "HorseLinc - Approval Requested for Outstanding Invoice",
        "HorseLinc - Invoice Over Payment Approver Limit",
    ]


def test_request_submission_pushes_main_provider(client, db, pushes, emails):
    trainer = make_manager(db, "Tess Trainer")
    provider = make_provider(db, "Pat Braider")
    helper = make_provider(db, "Hal Helper")
    horse = make_horse(db, trainer)
    request = make_request(db, horse, provider, reassigned_to_id=helper.id)

    response = client.post(
        "/api/invoices/requestSubmission",
        json={"requests": [{"_id": request.id, "_serviceProvider": {"_id": provider.id}}]},
        headers=auth_headers(helper),
    )

    assert response.json() == {"message": "Success"}
    assert pushes[0]["include_player_ids"] == provider.device_ids
    assert "Hal Helper has requested an invoice submission." in pushes[0]["contents"]["en"]
    assert emails[0]["to"] == provider.email


# ============================================================================
# Export
# ============================================================================


def test_export_to_csv_emails_attachment(client, db, emails):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider)
    make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)])

    response = client.post(
        "/api/invoices/exportToCsv", json={"userType": "service provider"}, headers=auth_headers(provider)
    )

    assert response.json() == {"message": "Invoice export complete"}
    attachment = emails[0]["attachments"][0]
    assert attachment["filename"].startswith("HorseLinc-Invoice-Export-")
    assert attachment["filename"].endswith(".csv")


def test_export_to_csv_without_invoices(client, db, emails):
    provider = make_provider(db, "Pat Braider")

    response = client.post(
        "/api/invoices/exportToCsv", json={"userType": "service provider"}, headers=auth_headers(provider)
    )

    assert response.json() == {"message": "NO INVOICES FOUND"}
    assert emails == []


def test_csv_rows_follow_the_reader(db):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    request = make_request(db, horse, provider, instructions="Hunter braids")
    invoice = make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)], tip=5)

    manager_csv = convert_all_to_csv([invoice], alice, {invoice.id: []})
    provider_csv = convert_all_to_csv([invoice], provider, {invoice.id: []})

    manager_header, manager_row = manager_csv.split("\r\n")
    assert manager_header == MANAGER_HEADERS
    assert manager_row.startswith("OUTSTANDING,")
    assert ",12/31/9999,105.00,5.00,0.00,0.00," in manager_row
    assert "Instructions: Hunter braids" in manager_row

    provider_header, provider_row = provider_csv.split("\r\n")
    assert provider_header == PROVIDER_HEADERS
    assert ",12/31/9999,100.00,5.00,0.00," in provider_row
    assert get_invoice_total(invoice, provider) == "100.00"


def test_csv_has_one_row_per_invoice_newest_first(db):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    invoices = []
    for created_at in [datetime(2026, 9, 18, 12), datetime(2026, 10, 17, 12), datetime(2026, 10, 8, 12)]:
        request = make_request(db, horse, provider)
        invoices.append(
            make_invoice(db, horse, provider, [request], [(alice, 60), (bob, 40)], created_at=created_at)
        )
    invoices[1].paid_in_full_at = datetime(2026, 10, 20, 12)
    db.commit()

    manager_lines = convert_all_to_csv(invoices, alice, {}).split("\r\n")
    provider_lines = convert_all_to_csv(invoices, provider, {}).split("\r\n")

    assert len(manager_lines) == 4
    assert [line.split(",")[1] for line in manager_lines[1:]] == ["10/17/2026", "10/08/2026", "09/18/2026"]
    assert not any(line.endswith(",") for line in manager_lines)

    # Outstanding invoices sort ahead of paid ones for providers
    assert len(provider_lines) == 4
    assert [line.split(",")[0] for line in provider_lines[1:]] == ["OUTSTANDING", "OUTSTANDING", "COMPLETE"]
    assert provider_lines[-1].split(",")[2] == "10/20/2026"


def test_totals_for_reassignee_and_owners(db):
    trainer, alice, bob, provider, horse = co_owned_horse(db)
    helper = make_provider(db, "Hal Helper")
    own = make_request(db, horse, provider)
    reassigned = make_request(db, horse, provider, reassigned_to_id=helper.id, services=[{"service": "Mane", "rate": 40}])
    invoice = make_invoice(db, horse, provider, [own, reassigned], [(alice, 60), (bob, 40)], tip=10)

    assert get_total_for_user(invoice, provider) == 150
    assert get_total_for_user(invoice, helper) == 40
    assert get_multi_owner_info(invoice) == [
        {"name": "Alice Owner", "percentage": 60, "paidAmount": "94.20"},
        {"name": "Bob Owner", "percentage": 40, "paidAmount": "62.80"},
    ]
