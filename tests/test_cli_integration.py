"""Integration tests for CLI."""

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

from conftest import sample_payload

SRC_DIR = Path(__file__).resolve().parent.parent / "src"


def run_orderdesk(args: list[str], data_dir: Path) -> subprocess.CompletedProcess:
    """Run orderdesk CLI command against a data directory."""
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC_DIR), env.get("PYTHONPATH")]))
    return subprocess.run(
        [sys.executable, "-m", "orderdesk.cli", "--data-dir", str(data_dir)] + args,
        capture_output=True,
        text=True,
        env=env,
    )


@pytest.fixture
def order_file(temp_dir):
    path = temp_dir / "order.json"
    path.write_text(json.dumps(sample_payload()))
    return path


@pytest.fixture
def data_dir(temp_dir):
    return temp_dir / "data"


def create_order(order_file: Path, data_dir: Path) -> str:
    result = run_orderdesk(["create", str(order_file)], data_dir)
    assert result.returncode == 0, result.stderr
    orders = json.loads((data_dir / "orders.json").read_text())["orders"]
    return orders[-1]["order_number"]


class TestCLIIntegration:
    """Integration tests for CLI commands."""

    def test_create(self, order_file, data_dir):
        result = run_orderdesk(["create", str(order_file)], data_dir)

        assert result.returncode == 0
        assert "Created order: TLS-" in result.stdout
        assert "120.00" in result.stdout
        assert (data_dir / "orders.json").exists()

    def test_create_invalid_total(self, temp_dir, data_dir):
        path = temp_dir / "bad.json"
        path.write_text(
            json.dumps(
                sample_payload(
                    pricing={"subtotal": 100.0, "tax": 8.0, "shipping": 12.0, "total": 119.0}
                )
            )
        )

        result = run_orderdesk(["create", str(path)], data_dir)
        assert result.returncode == 1
        assert "pricing.total" in result.stderr

    def test_create_missing_file(self, temp_dir, data_dir):
        result = run_orderdesk(["create", str(temp_dir / "missing.json")], data_dir)
        assert result.returncode == 1
        assert "not found" in result.stderr

    def test_list_and_show(self, order_file, data_dir):
        number = create_order(order_file, data_dir)

        result = run_orderdesk(["list"], data_dir)
        assert result.returncode == 0
        assert number in result.stdout

        result = run_orderdesk(["show", number, "--json"], data_dir)
        assert result.returncode == 0
        assert json.loads(result.stdout)["status"] == "pending_verification"

    def test_list_empty(self, data_dir):
        result = run_orderdesk(["list"], data_dir)
        assert result.returncode == 0
        assert "No orders found" in result.stdout

    def test_show_missing(self, data_dir):
        result = run_orderdesk(["show", "nope"], data_dir)
        assert result.returncode == 1
        assert "Order not found" in result.stderr

    def test_lifecycle(self, order_file, data_dir):
        number = create_order(order_file, data_dir)

        result = run_orderdesk(["verify", number, "--approve", "--actor", "admin"], data_dir)
        assert result.returncode == 0
        assert "Approved" in result.stdout

        result = run_orderdesk(["status", number, "processing"], data_dir)
        assert result.returncode == 0

        result = run_orderdesk(
            ["status", number, "shipped", "--carrier", "PosLaju", "--tracking", "PL123"],
            data_dir,
        )
        assert result.returncode == 0
        assert "tracking number: PL123" in result.stdout

        result = run_orderdesk(["status", number, "delivered"], data_dir)
        assert result.returncode == 0

        assert run_orderdesk(["refund-request", number, "damaged"], data_dir).returncode == 0
        assert run_orderdesk(["refund-resolve", number, "approved"], data_dir).returncode == 0

        result = run_orderdesk(["refund-process", number, "--amount", "20"], data_dir)
        assert result.returncode == 0
        assert "Refunded 20.00" in result.stdout

        result = run_orderdesk(["archive", number], data_dir)
        assert result.returncode == 0

        result = run_orderdesk(["show", number, "--json"], data_dir)
        data = json.loads(result.stdout)
        assert data["status"] == "refunded"
        assert data["archived"] is True

    def test_verify_twice_is_not_an_error(self, order_file, data_dir):
        number = create_order(order_file, data_dir)
        run_orderdesk(["verify", number, "--reject", "--notes", "blurry"], data_dir)

        result = run_orderdesk(["verify", number, "--approve"], data_dir)
        assert result.returncode == 0
        assert "Nothing to do" in result.stdout

    def test_invalid_transition(self, order_file, data_dir):
        number = create_order(order_file, data_dir)

        result = run_orderdesk(["status", number, "processing"], data_dir)
        assert result.returncode == 1
        assert "Cannot transition" in result.stderr

    def test_stats_json(self, order_file, data_dir):
        create_order(order_file, data_dir)

        result = run_orderdesk(["stats", "--json"], data_dir)
        assert result.returncode == 0
        stats = json.loads(result.stdout)
        assert stats["total_orders"] == 1
        assert stats["pending_orders"] == 1

    def test_expired_none(self, order_file, data_dir):
        create_order(order_file, data_dir)

        result = run_orderdesk(["expired"], data_dir)
        assert result.returncode == 0
        assert "No expired orders" in result.stdout

    def test_version(self, data_dir):
        result = run_orderdesk(["--version"], data_dir)
        assert result.returncode == 0
        assert "orderdesk" in result.stdout
