"""Tests for the settlement CLI."""

import json
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

from payform_settlement.database import (
    Base,
    OrderRepository,
    OrderStatus,
    create_async_engine,
    get_async_session_factory,
)
from payform_settlement.settlement.cli import create_parser, main, run_sweep_async


class TestParser:
    def test_sweep_defaults(self):
        args = create_parser().parse_args(["sweep"])

        assert args.command == "sweep"
        assert args.older_than == 30
        assert args.provider is None
        assert args.limit == 100
        assert args.database_url is None

    def test_sweep_options(self):
        args = create_parser().parse_args(["sweep", "-m", "60", "-p", "cashfree", "-l", "500"])

        assert args.older_than == 60
        assert args.provider == "cashfree"
        assert args.limit == 500


class TestMain:
    """Tests for main()."""

    def test_no_command(self, capsys):
        assert main([]) == 1
        assert "sweep" in capsys.readouterr().out

    def test_invalid_limit(self):
        assert main(["sweep", "--limit", "0"]) == 1

    def test_runs_sweep(self):
        with patch("payform_settlement.settlement.cli.run_sweep", return_value=0) as run_sweep:
            assert main(["sweep", "--older-than", "45", "--provider", "simulator"]) == 0

        run_sweep.assert_called_once_with(
            older_than_minutes=45,
            provider="simulator",
            limit=100,
            database_url=None,
        )


class TestRunSweep:
    """run_sweep_async against a file database."""

    async def test_empty_database(self, tmp_path, capsys):
        database_url = f"sqlite+aiosqlite:///{tmp_path / 'sweep.db'}"

        exit_code = await run_sweep_async(30, database_url=database_url)

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["examined"] == 0
        assert summary["errors"] == []

    async def test_reports_errors(self, tmp_path, capsys):
        """An order the provider does not know makes the sweep exit non-zero."""
        database_url = f"sqlite+aiosqlite:///{tmp_path / 'sweep.db'}"
        engine = create_async_engine(database_url=database_url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = get_async_session_factory(engine)
        async with session_factory() as session, session.begin():
            order = await OrderRepository(session).create(
                order_id="payform_stale",
                provider="simulator",
                form_id="form_1",
                payer_email="payer@example.com",
                product_name="Workshop ticket",
                gross_amount=Decimal("1000"),
                payee_id="payee_1",
            )
            order.provider_order_ref = "sim_order_gone"
            order.status = OrderStatus.PENDING.value
            order.created_at = datetime.utcnow() - timedelta(hours=1)
        await engine.dispose()

        exit_code = await run_sweep_async(30, provider="simulator", database_url=database_url)

        assert exit_code == 1
        summary = json.loads(capsys.readouterr().out)
        assert summary["examined"] == 1
        assert summary["errors"][0]["order_id"] == "payform_stale"
        assert summary["errors"][0]["error"] == "OrderNotFound"
