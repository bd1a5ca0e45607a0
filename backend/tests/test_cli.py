"""
CLI command tests (flask test_cli_runner).
"""

from mesapos.models import BranchTable, Product, SalesShift, Staff
from mesapos.services import sales_service, shift_service


class TestSeedAndInventoryCommands:

    def test_seed_demo_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        assert runner.invoke(args=["seed", "demo"]).exit_code == 0
        result = runner.invoke(args=["seed", "demo"])
        assert result.exit_code == 0
        assert "Demo data ready" in result.output
        assert db_session.query(BranchTable).count() == 6
        assert db_session.query(Product).count() == 5
        assert db_session.query(Staff).count() == 2
        assert db_session.query(SalesShift).filter_by(status="open").count() == 1

    def test_low_stock(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["seed", "demo"])
        result = runner.invoke(args=["inventory", "low-stock", "--threshold", "10"])
        assert result.exit_code == 0
        assert "Pan con chicharrón" in result.output
        assert "Inca Kola" not in result.output

    def test_set_stock_unknown_product(self, app, db_session, branch):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "inventory", "set-stock", "--branch-id", str(branch.id), "--product-id", "9999", "--stock", "3",
        ])
        assert result.exit_code == 1
        assert "Product not found" in result.output


class TestSalesCommands:

    def test_open_sales(self, app, db_session, branch, table):
        sale = sales_service.create_sale(branch.id, table_id=table.id)
        result = app.test_cli_runner().invoke(args=["sales", "open", "--branch-id", str(branch.id)])
        assert result.exit_code == 0
        assert f"#{sale.id}" in result.output
        assert "table=M1" in result.output

    def test_no_unresolved(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["sales", "unresolved"])
        assert "No unresolved emissions." in result.output


class TestShiftCommands:

    def test_open_and_close(self, app, db_session, branch):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["shifts", "open", "--branch-id", str(branch.id), "--opening-cash", "80"])
        assert result.exit_code == 0
        shift = shift_service.get_active_shift(branch.id)["shift"]

        result = runner.invoke(args=["shifts", "active", "--branch-id", str(branch.id)])
        assert f"Shift {shift['id']}" in result.output
        assert "expected=80.00" in result.output

        result = runner.invoke(args=["shifts", "close", "--shift-id", str(shift["id"]), "--actual-cash", "75"])
        assert result.exit_code == 0
        assert "-5.00" in result.output

    def test_second_open_fails(self, app, db_session, branch):
        runner = app.test_cli_runner()
        runner.invoke(args=["shifts", "open", "--branch-id", str(branch.id), "--opening-cash", "0"])
        result = runner.invoke(args=["shifts", "open", "--branch-id", str(branch.id), "--opening-cash", "0"])
        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_no_active_shift(self, app, db_session, branch):
        result = app.test_cli_runner().invoke(args=["shifts", "active", "--branch-id", str(branch.id)])
        assert "No open shift." in result.output
