"""Tests for the deploy/upgrade/configure pipelines and the status report."""

import json

import pytest
from unittest.mock import AsyncMock, patch

from deployer.exceptions import (
    ArtifactNotBuilt,
    ConfigurationError,
    ContractNotDeployed,
    OperatorAborted,
    PipelineFailed,
    SubmissionRejected,
    UnknownNetwork,
    VerificationFailed,
)
from deployer.services import pipelines
from deployer.services.persistence import ConfigPersistence
from deployer.services.pipelines import PipelineStatus, StepRecord
from deployer.services.registry import NetworkRegistry
from deployer.services.verification import ContractVerifier

from tests.conftest import (
    AGGREGATOR,
    CLASS_HASH,
    DEPLOYER,
    ETH,
    MAINNET_GATEWAY,
    NEW_ADDRESS,
    STRK,
    TREASURY,
    USDC,
)


class Decline:
    def __init__(self):
        self.seen = []

    def confirm(self, title, params):
        self.seen.append((title, params))
        return False


class TestDeploy:
    @pytest.mark.asyncio
    async def test_deploy_records_address(self, make_ctx, transport, store_path):
        result = await pipelines.deploy(make_ctx(persist=True))

        assert result.ok
        assert result.record.contract_address == NEW_ADDRESS
        assert result.record.class_hash == CLASS_HASH
        assert result.persisted is True
        assert ("deploy", CLASS_HASH, [DEPLOYER]) in transport.calls
        assert [s.name for s in result.steps] == ["declare", "deploy"]
        assert json.loads(store_path.read_text())["SN_SEPOLIA"]["deployedAddress"] == NEW_ADDRESS

    @pytest.mark.asyncio
    async def test_deploy_then_status_on_reloaded_registry(self, make_ctx, transport, store_path):
        await pipelines.deploy(make_ctx(persist=True))

        transport.call_results["owner"] = int(DEPLOYER, 16)
        transport.call_results["is_token_supported"] = lambda token: token != USDC
        reloaded = NetworkRegistry.load(store_path, environ={})
        report = await pipelines.check_status(make_ctx(registry=reloaded))

        assert report.deployed
        assert report.address == NEW_ADDRESS
        assert report.explorer_url == "https://sepolia.starkscan.co/contract/0xabc"
        values = {item.name: item.value for item in report.items}
        assert values["class hash"] == CLASS_HASH
        assert values["owner is deployer"] is True
        assert values["STRK supported"] is True
        assert values["USDC supported"] is False
        assert report.failures == []

    @pytest.mark.asyncio
    async def test_declare_skipped_when_already_declared(self, make_ctx, transport):
        transport.declared.add(CLASS_HASH)
        result = await pipelines.deploy(make_ctx())
        assert result.steps[0] == StepRecord("declare", detail="already declared")
        assert ("declare", "Gateway") not in transport.calls

    @pytest.mark.asyncio
    async def test_deploy_failure_leaves_store_unchanged(self, make_ctx, transport, store_path):
        before = store_path.read_bytes()
        transport.reject_deploy = True

        with pytest.raises(PipelineFailed) as exc:
            await pipelines.deploy(make_ctx(persist=True))

        assert exc.value.step == "deploy"
        assert exc.value.network_id == "SN_SEPOLIA"
        assert isinstance(exc.value.cause, SubmissionRejected)
        assert store_path.read_bytes() == before

    @pytest.mark.asyncio
    async def test_declare_timeout_names_tx(self, make_ctx, transport, store_path):
        before = store_path.read_bytes()
        transport.never_final = True

        with pytest.raises(PipelineFailed) as exc:
            await pipelines.deploy(make_ctx(persist=True))

        assert exc.value.step == "declare"
        assert exc.value.tx_hash == "0x1001"
        assert "0x1001" in str(exc.value)
        assert store_path.read_bytes() == before

    @pytest.mark.asyncio
    async def test_unknown_network(self, make_ctx, transport):
        with pytest.raises(UnknownNetwork):
            await pipelines.deploy(make_ctx("UNKNOWN"))
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_operator_abort_sends_nothing(self, make_ctx, transport, store_path):
        before = store_path.read_bytes()
        decline = Decline()

        with pytest.raises(PipelineFailed) as exc:
            await pipelines.deploy(make_ctx(confirm=decline, persist=True))

        assert exc.value.step == "confirm"
        assert isinstance(exc.value.cause, OperatorAborted)
        assert transport.calls == []
        assert store_path.read_bytes() == before
        title, params = decline.seen[0]
        assert params["Deployer Address"] == DEPLOYER
        assert params["Treasury Address"] == TREASURY

    @pytest.mark.asyncio
    async def test_missing_artifact(self, make_ctx, transport):
        def missing():
            raise ArtifactNotBuilt("Make sure you run 'scarb build' first.")

        with pytest.raises(PipelineFailed) as exc:
            await pipelines.deploy(make_ctx(load_contract=missing))
        assert exc.value.step == "load artifact"
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_persistence_conflict_is_a_warning(self, make_ctx, tmp_path):
        other = tmp_path / "other.json"
        other.write_text("{}")
        result = await pipelines.deploy(make_ctx(persistence=ConfigPersistence(other)))

        assert result.ok
        assert result.persisted is False
        assert NEW_ADDRESS in result.warnings[0]
        assert other.read_text() == "{}"

    @pytest.mark.asyncio
    async def test_unwritable_store_is_a_warning(self, make_ctx, store_path):
        before = store_path.read_bytes()
        with patch("deployer.services.persistence.os.replace",
                   side_effect=PermissionError(13, "Read-only file system")):
            result = await pipelines.deploy(make_ctx(persist=True))

        assert result.ok
        assert result.persisted is False
        assert "Cannot write network store" in result.warnings[0]
        assert NEW_ADDRESS in result.warnings[0]
        assert store_path.read_bytes() == before

    @pytest.mark.asyncio
    async def test_chain_mismatch_stops_before_submission(self, make_ctx, transport):
        with patch("deployer.services.pipelines.ensure_chain_matches",
                   AsyncMock(side_effect=ConfigurationError("serves chain SN_MAIN"))):
            with pytest.raises(PipelineFailed) as exc:
                await pipelines.deploy(make_ctx(check_chain=True))
        assert exc.value.step == "chain check"
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_verification_failure_is_a_warning(self, make_ctx):
        verifier = ContractVerifier()
        verifier.verify = AsyncMock(side_effect=VerificationFailed("sncast not found on PATH"))
        result = await pipelines.deploy(make_ctx(verifier=verifier))
        assert result.ok
        assert "sncast not found" in result.warnings[0]


class TestUpgrade:
    @pytest.mark.asyncio
    async def test_upgrade_keeps_address(self, make_ctx, transport, store_path):
        before = store_path.read_bytes()
        verifier = ContractVerifier()
        verifier.verify = AsyncMock()

        result = await pipelines.upgrade(make_ctx("SN_MAIN", verifier=verifier))

        assert result.ok
        assert result.record.contract_address == MAINNET_GATEWAY
        assert result.record.class_hash == CLASS_HASH
        assert transport.invoked("upgrade") == [("invoke", MAINNET_GATEWAY, "upgrade", [CLASS_HASH])]
        verifier.verify.assert_awaited_once_with(CLASS_HASH, "Gateway", "mainnet")
        assert store_path.read_bytes() == before

    @pytest.mark.asyncio
    async def test_upgrade_requires_deployment(self, make_ctx, transport):
        with pytest.raises(PipelineFailed) as exc:
            await pipelines.upgrade(make_ctx())
        assert exc.value.step == "resolve contract"
        assert isinstance(exc.value.cause, ContractNotDeployed)
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_upgrade_explicit_address(self, make_ctx, transport):
        result = await pipelines.upgrade(make_ctx(address="0x123"))
        assert result.record.contract_address == "0x123"

    @pytest.mark.asyncio
    async def test_upgrade_revert(self, make_ctx, transport):
        transport.revert_args.add(CLASS_HASH)
        with pytest.raises(PipelineFailed) as exc:
            await pipelines.upgrade(make_ctx("SN_MAIN"))
        assert exc.value.step == "upgrade"
        assert exc.value.tx_hash in transport.reverted
        assert "Caller is not the owner" in str(exc.value)


class TestProtocolAddresses:
    @pytest.mark.asyncio
    async def test_sets_treasury_then_aggregator(self, make_ctx, transport):
        result = await pipelines.set_protocol_addresses(make_ctx("SN_MAIN"))
        assert result.ok
        assert result.succeeded == ["treasury", "aggregator"]
        invoked = transport.invoked("update_protocol_address")
        assert [c[3][1] for c in invoked] == [TREASURY, AGGREGATOR]

    @pytest.mark.asyncio
    async def test_aborts_on_first_failure(self, make_ctx, transport):
        transport.revert_args.add(TREASURY)
        with pytest.raises(PipelineFailed) as exc:
            await pipelines.set_protocol_addresses(make_ctx("SN_MAIN"))
        assert exc.value.step == "update treasury"
        assert exc.value.tx_hash is not None
        assert len(transport.invoked("update_protocol_address")) == 1

    @pytest.mark.asyncio
    async def test_missing_artifacts_fall_back_to_chain_abi(self, make_ctx, transport):
        def missing():
            raise ArtifactNotBuilt("Make sure you run 'scarb build' first.")

        result = await pipelines.set_protocol_addresses(make_ctx("SN_MAIN", load_contract=missing))
        assert result.ok


class TestTokenLoops:
    @pytest.mark.asyncio
    async def test_whitelists_every_token(self, make_ctx, transport):
        result = await pipelines.set_supported_tokens(make_ctx(address="0xabc"))
        assert result.ok
        assert result.succeeded == ["STRK", "ETH", "USDC"]
        assert [c[3][1] for c in transport.invoked("setting_manager_bool")] == [STRK, ETH, USDC]

    @pytest.mark.asyncio
    async def test_rejected_token_does_not_stop_loop(self, make_ctx, transport):
        transport.reject_args.add(ETH)
        result = await pipelines.set_supported_tokens(make_ctx(address="0xabc"))

        assert result.status is PipelineStatus.partial
        assert result.succeeded == ["STRK", "USDC"]
        assert len(result.failures) == 1
        assert result.failures[0].item == "ETH"
        assert result.failures[0].tx_hash is None
        assert len(transport.invoked("setting_manager_bool")) == 3

    @pytest.mark.asyncio
    async def test_reverted_token_reports_tx(self, make_ctx, transport):
        transport.revert_args.add(ETH)
        result = await pipelines.set_token_fee_settings(make_ctx(address="0xabc"))

        assert not result.ok
        assert [f.item for f in result.failures] == ["ETH"]
        assert result.failures[0].tx_hash in transport.reverted

    @pytest.mark.asyncio
    async def test_fee_arguments(self, make_ctx, transport):
        await pipelines.set_token_fee_settings(make_ctx(address="0xabc"))
        assert [c[3] for c in transport.invoked("set_token_fee_settings")] == [
            [STRK, 50000, 50000, 0, 500],
            [ETH, 50000, 50000, 0, 500],
            [USDC, 50000, 50000, 0, 250],
        ]

    @pytest.mark.asyncio
    async def test_requires_deployment(self, make_ctx, transport):
        with pytest.raises(PipelineFailed) as exc:
            await pipelines.set_supported_tokens(make_ctx())
        assert isinstance(exc.value.cause, ContractNotDeployed)
        assert transport.invoked() == []

    def test_fee_table(self, registry):
        table = pipelines.fee_table(registry.tokens("SN_SEPOLIA"))
        assert table[0]["name"] == "STRK"
        assert table[0]["Local (Sender→Provider)"] == "50%"
        assert table[2]["FX (Provider→Aggregator)"] == "0.25%"


class TestStatus:
    @pytest.mark.asyncio
    async def test_not_deployed(self, make_ctx, transport):
        report = await pipelines.check_status(make_ctx())
        assert report.deployed is False
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_query_failures_are_reported(self, make_ctx, transport):
        transport.call_errors.add("owner")
        transport.call_results["is_token_supported"] = True
        report = await pipelines.check_status(make_ctx("SN_MAIN"))

        names = [item.name for item in report.items]
        assert "owner is deployer" not in names
        assert [item.name for item in report.failures] == ["owner"]
        assert report.items[-1].name == "USDC supported"

    @pytest.mark.asyncio
    async def test_owner_mismatch(self, make_ctx, transport):
        transport.call_results["owner"] = 0x999
        report = await pipelines.check_status(make_ctx("SN_MAIN"))
        values = {item.name: item.value for item in report.items}
        assert values["owner"] == "0x999"
        assert values["owner is deployer"] is False

    @pytest.mark.asyncio
    async def test_chain_id_item(self, make_ctx, transport):
        with patch("deployer.services.pipelines.fetch_chain_id", AsyncMock(return_value="SN_MAIN")):
            report = await pipelines.check_status(make_ctx("SN_MAIN", check_chain=True))
        assert report.items[0].name == "chain id"
        assert report.items[0].value == "SN_MAIN"
