"""
Test suite for the command-line interface.
"""

import pytest

from bundler.cli import (
    EXIT_STARTUP_FAILURE,
    build_config,
    create_parser,
    main,
    parse_token_amount,
    run_bundler,
)
from bundler.config import BundlerConfig, NodeProvider


class TestParseTokenAmount:
    """Tests for token amount conversion."""

    def test_whole_amount(self):
        assert parse_token_amount("3", 18) == 3 * 10**18

    def test_fractional_amount(self):
        assert parse_token_amount("2677.5", 18) == 2_677_500_000_000_000_000_000

    def test_small_decimals(self):
        assert parse_token_amount("1.25", 6) == 1_250_000

    def test_too_many_decimals(self):
        with pytest.raises(ValueError, match="not representable"):
            parse_token_amount("0.001", 2)

    def test_negative(self):
        with pytest.raises(ValueError):
            parse_token_amount("-1", 18)

    def test_not_a_number(self):
        with pytest.raises(ValueError, match="Invalid token amount"):
            parse_token_amount("lots", 18)


class TestBuildConfig:
    """Tests for command-line overrides."""

    def test_run_overrides(self):
        args = create_parser().parse_args([
            "run",
            "--rpc-url", "https://node.test",
            "--provider", "websocket",
            "--relay", "https://relay-a.test",
            "--relay", "https://relay-b.test",
            "--amount", "1.5",
            "--payload", "0xabcd",
        ])

        config = build_config(args)

        assert config.rpc_url == "https://node.test"
        assert config.node_provider == NodeProvider.WEBSOCKET
        assert config.relayers == ["https://relay-a.test", "https://relay-b.test"]
        assert config.transfer_amount == 15 * 10**17
        assert config.claim_payload_bytes == bytes.fromhex("abcd")

    def test_invalid_payload_rejected(self):
        args = create_parser().parse_args(["estimate", "--payload", "0xnothex"])

        with pytest.raises(ValueError):
            build_config(args)

    def test_invalid_relay_url_rejected(self):
        args = create_parser().parse_args([
            "run",
            "--relay", "https://relay-a.test",
            "--relay", "https://relay-b.test:notaport",
        ])

        with pytest.raises(ValueError, match="relay-b.test:notaport"):
            build_config(args)

    def test_invalid_rpc_url_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["estimate", "--rpc-url", "node.test"])

        assert exc_info.value.code == EXIT_STARTUP_FAILURE

    def test_valid_urls_kept_verbatim(self):
        config = BundlerConfig(relayers=["https://relay-a.test", "http://localhost:8545/"])

        assert config.relayers == ["https://relay-a.test", "http://localhost:8545/"]

    def test_no_command_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == EXIT_STARTUP_FAILURE

    def test_invalid_amount_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["estimate", "--amount", "abc"])

        assert exc_info.value.code == EXIT_STARTUP_FAILURE


class TestRunBundler:
    """Tests for startup handling."""

    @pytest.mark.asyncio
    async def test_missing_keys_is_startup_failure(self, test_config):
        config = test_config.model_copy(update={"safe_wallet_private_key": None})

        assert await run_bundler(config) == EXIT_STARTUP_FAILURE

    @pytest.mark.asyncio
    async def test_shared_key_is_startup_failure(self, test_config):
        config = test_config.model_copy(
            update={"execution_wallet_private_key": test_config.safe_wallet_private_key}
        )

        assert await run_bundler(config) == EXIT_STARTUP_FAILURE
