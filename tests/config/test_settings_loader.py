"""
Tests for settings loading and the config bridges.

Covers:
- Shipped defaults parse and emit PAYMENT_CONFIG_TRACE
- Partial override files fall back to schema defaults
- Unknown sections, unknown keys and out-of-range values fail at load
- Checksums are deterministic
- Bridges wire settings into kernel and module services
"""

from datetime import date

import pytest
import yaml

from payment_config import (
    DEFAULT_SETTINGS_PATH,
    KernelSettings,
    ServicerFeeBasis,
    compute_checksum,
    get_active_settings,
    load_settings,
    parse_settings,
)
from payment_config.bridges import (
    build_artifact_store,
    build_consumer,
    build_remittance_service,
    build_retry_policy,
)
from payment_kernel.services.artifact_store import ArtifactInput
from payment_kernel.services.ingestion_ledger import IngestionLedger
from tests.support import FakeFetcher, make_request


def _write(tmp_path, document):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump(document))
    return path


class TestDefaults:
    def test_shipped_defaults(self):
        settings = get_active_settings()

        assert settings.remittance.servicer_fee_basis is ServicerFeeBasis.COLLECTED
        assert settings.remittance.require_balanced_reconciliation
        assert settings.reconciliation.variance_threshold_minor == 0
        assert settings.reconciliation.investor_payable_account == "2110"
        assert settings.reconciliation.servicer_fee_income_account == "4020"
        assert settings.artifacts.locator_hash_schemes == ("s3", "gs", "file")
        assert settings.messaging.max_retries == 3
        assert settings.messaging.dead_letter_domain == "payments"
        assert len(settings.checksum) == 64

    def test_shipped_file_matches_schema_defaults(self):
        shipped = load_settings(DEFAULT_SETTINGS_PATH)
        defaults = KernelSettings()
        for section in ("artifacts", "ingestion", "chain", "reconciliation", "remittance", "messaging"):
            assert getattr(shipped, section) == getattr(defaults, section)

    def test_trace_logged(self, captured_logs):
        settings = get_active_settings()

        [trace] = [r for r in captured_logs() if r["message"] == "PAYMENT_CONFIG_TRACE"]
        assert trace["checksum"] == settings.checksum
        assert trace["servicer_fee_basis"] == "collected"
        assert trace["source"].endswith("defaults.yaml")


class TestOverrides:
    def test_partial_document(self, tmp_path):
        path = _write(tmp_path, {"reconciliation": {"variance_threshold_minor": 5}})
        settings = get_active_settings(path)

        assert settings.reconciliation.variance_threshold_minor == 5
        assert settings.reconciliation.investor_payable_account == "2110"
        assert settings.messaging.max_retries == 3

    def test_empty_document(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert get_active_settings(path).remittance == KernelSettings().remittance

    def test_values_normalized(self):
        settings = parse_settings(
            {
                "artifacts": {"locator_hash_schemes": ["S3", "Azure"]},
                "reconciliation": {"investor_payable_account": 2110},
                "remittance": {"servicer_fee_basis": "interest"},
            }
        )
        assert settings.artifacts.locator_hash_schemes == ("s3", "azure")
        assert settings.reconciliation.investor_payable_account == "2110"
        assert settings.remittance.servicer_fee_basis is ServicerFeeBasis.INTEREST


class TestRejection:
    def test_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown settings sections"):
            parse_settings({"remitance": {}})

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="variance_treshold_minor"):
            parse_settings({"reconciliation": {"variance_treshold_minor": 1}})

    @pytest.mark.parametrize(
        "document",
        [
            {"messaging": {"max_retries": 0}},
            {"messaging": {"retry_max_delay_ms": 100}},
            {"messaging": {"retry_jitter_ratio": 1.5}},
            {"reconciliation": {"variance_threshold_minor": -1}},
            {"remittance": {"default_export_format": "pdf"}},
            {"remittance": {"servicer_fee_basis": "gross"}},
            {"artifacts": {"get_timeout_seconds": 0}},
            {"artifacts": "fast"},
        ],
    )
    def test_invalid_values(self, document):
        with pytest.raises(ValueError):
            parse_settings(document)

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_settings(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_settings(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("messaging: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_settings(path)


class TestChecksum:
    def test_key_order_irrelevant(self):
        assert compute_checksum({"a": 1, "b": {"c": 2}}) == compute_checksum({"b": {"c": 2}, "a": 1})

    def test_value_change_detected(self):
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})

    def test_settings_checksum_tracks_document(self):
        first = parse_settings({"reconciliation": {"variance_threshold_minor": 0}})
        second = parse_settings({"reconciliation": {"variance_threshold_minor": 1}})
        assert first.checksum != second.checksum


class TestBridges:
    def test_retry_policy(self):
        settings = parse_settings(
            {"messaging": {"retry_base_delay_ms": 1000, "retry_max_delay_ms": 4000, "retry_jitter_ratio": 0}}
        )
        policy = build_retry_policy(settings)
        assert [policy.delay_ms(n) for n in (1, 2, 3, 4)] == [1000, 2000, 4000, 4000]

    def test_consumer_max_retries(self, session, transport, deterministic_clock, payment_envelope):
        settings = parse_settings({"messaging": {"max_retries": 1}})
        consumer = build_consumer(session, "payment-intake", settings, transport=transport, clock=deterministic_clock)

        def failing(envelope):
            raise RuntimeError("transient")

        result = consumer.process(payment_envelope(), failing)
        assert result.dead_letter
        assert len(transport.messages_for("payments.dlq")) == 1

    def test_artifact_store_schemes(self, session, deterministic_clock, audit_log):
        """Schemes listed for locator hashing are never fetched."""
        url = "https://images.example.com/check.png"
        fetcher = FakeFetcher(contents={url: b"image"})
        settings = parse_settings({"artifacts": {"locator_hash_schemes": ["HTTPS"]}})
        store = build_artifact_store(
            session, settings, fetcher=fetcher, clock=deterministic_clock, audit_log=audit_log
        )
        ingestion = IngestionLedger(session, clock=deterministic_clock).ingest(make_request()).ingestion

        artifact = store.store(ArtifactInput(ingestion.id, "check_image", url))

        assert artifact.hash_source == "locator"
        assert fetcher.fetched == []

    def test_remittance_without_gate(self, session, deterministic_clock):
        settings = parse_settings({"remittance": {"require_balanced_reconciliation": False}})
        service = build_remittance_service(session, settings, clock=deterministic_clock)

        contract = service.create_contract(
            investor_id="INV-1",
            product_code="CONV-30",
            method="actual_cash",
            remittance_day=18,
            cutoff_day=25,
            servicer_fee_bps=25,
            late_fee_split_bps=0,
            waterfall_rules=[{"rank": 1, "bucket": "principal"}],
        )
        cycle = service.create_cycle(contract.id, date(2025, 8, 1), date(2025, 8, 31))
        service.record_collection(cycle.id, "LN-1", principal_minor=10000)
        service.calculate_waterfall(cycle.id)
        service.lock_cycle(cycle.id)

        export = service.generate_export(cycle.id)
        assert export.export_format == "csv"
