from app.services.wallet_errors import TransientProviderError


def _two_cards(core, make_customer, make_program, make_record):
    customer = make_customer()
    with_pass = make_program(name="Cartão Café")
    without_pass = make_program(name="Cartão Pão", wallet_enabled=False)
    core.lifecycle.provision_pass(customer.id, with_pass.id)
    make_record(customer, without_pass, current_stamps=4)
    return customer


def test_delete_revokes_only_provisioned_passes(core, provider, make_customer, make_program, make_record, audit_logs):
    customer = _two_cards(core, make_customer, make_program, make_record)

    result = core.lgpd.delete_wallet_data(customer.id, requested_by="dpo@cafe")

    deletes = [call for call in provider.calls if call[0] == "delete"]
    assert len(deletes) == 1
    assert result.success is True
    assert result.data == {"deletedPasses": 1, "totalPasses": 1}

    records = core.store.list_customer_records(customer.id)
    assert all(record.external_pass_id is None for record, _ in records)

    entry = result.audit_entry
    assert entry.action.value == "data_deletion"
    assert entry.customer_reference.startswith("cust_")
    assert str(customer.id) not in entry.model_dump_json()

    logs = audit_logs()
    assert logs[-1].action == "data_deletion"
    assert logs[-1].performed_by == "dpo@cafe"


def test_delete_collects_provider_errors(core, provider, make_customer, make_program, make_record):
    customer = _two_cards(core, make_customer, make_program, make_record)
    provider.fail_next(TransientProviderError("down"))

    result = core.lgpd.delete_wallet_data(customer.id)

    assert result.success is False
    assert len(result.errors) == 1
    assert result.data["deletedPasses"] == 0
    records = core.store.list_customer_records(customer.id)
    assert any(record.external_pass_id for record, _ in records)


def test_export_only_includes_cards_with_pass(core, make_customer, make_program, make_record):
    customer = _two_cards(core, make_customer, make_program, make_record)

    result = core.lgpd.export_wallet_data(customer.id, requested_by="customer")

    passes = result.data["walletPasses"]
    assert len(passes) == 1
    assert passes[0]["loyalty_card_name"] == "Cartão Café"
    assert passes[0]["external_pass_id"]
    assert result.data["walletData"]["totalPasses"] == 1
    assert result.data["customer"]["name"] == "Maria Silva Santos"
    assert result.data["exportInfo"]["exportedBy"] == "customer"
    assert result.audit_entry.action.value == "data_export"


def test_anonymize_masks_ledger_and_passes(core, provider, make_customer, make_program, make_record):
    customer = _two_cards(core, make_customer, make_program, make_record)

    result = core.lgpd.anonymize_wallet_data(customer.id)

    assert result.success is True
    stored = core.store.get_customer(customer.id)
    assert stored.name == "M****************s"
    assert stored.phone == "+************1"
    assert stored.email == "m***a@e*********m"

    pass_ids = [record.external_pass_id for record, _ in core.store.list_customer_records(customer.id) if record.external_pass_id]
    assert len(pass_ids) == 1
    assert provider.passes[pass_ids[0]]["payload"]["person"]["displayName"] == "Cliente"
    assert result.audit_entry.action.value == "data_anonymization"


def test_summary(core, make_customer, make_program, make_record):
    customer = _two_cards(core, make_customer, make_program, make_record)

    summary = core.lgpd.summarize_wallet_data(customer.id)

    assert summary["totalLoyaltyCards"] == 2
    assert summary["walletEnabledCards"] == 1
    assert summary["activeWalletPasses"] == 1
    assert summary["walletPlatforms"] == {"apple": True, "google": True}
    assert summary["customerName"] == "M****************s"


def test_reason_with_personal_data_is_masked_in_audit(core, make_customer, make_program, make_record, audit_logs):
    customer = _two_cards(core, make_customer, make_program, make_record)

    result = core.lgpd.delete_wallet_data(customer.id, reason="cliente Maria Silva tel +5511987654321")

    stored = str(audit_logs()[-1].details)
    assert "+5511987654321" not in stored
    assert "Maria" not in stored
    assert "+5511987654321" not in result.audit_entry.model_dump_json()
    assert audit_logs()[-1].details["reason"].startswith("c*****e ")
