from decimal import Decimal

import pytest

pytestmark = [pytest.mark.asyncio, pytest.mark.integration]


async def _create_portfolio(client, name="API Portfolio"):
    response = await client.post("/api/v1/portfolios", json={"name": name})
    assert response.status_code == 201
    return response.json()["id"]


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["services"]["database"] == "connected"
    assert body["services"]["scheduler"] == "disabled"


async def test_portfolio_create_and_get(client):
    portfolio_id = await _create_portfolio(client, "Growth")

    response = await client.get(f"/api/v1/portfolios/{portfolio_id}")
    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Growth"
    assert body["is_fund"] is False
    assert Decimal(body["cash_balance"]) == 0

    assert (await client.post("/api/v1/portfolios", json={"name": "   "})).status_code == 400
    assert (await client.get("/api/v1/portfolios/999")).status_code == 404


async def test_cash_flow_endpoints(client):
    portfolio_id = await _create_portfolio(client)
    base = f"/api/v1/portfolios/{portfolio_id}"

    response = await client.post(f"{base}/cash-flows", json={"flow_type": "DEPOSIT", "amount": "1000"})
    assert response.status_code == 201
    deposit_id = response.json()["id"]
    response = await client.post(f"{base}/cash-flows", json={"flow_type": "FEE", "amount": "15.25"})
    assert response.status_code == 201
    fee_id = response.json()["id"]

    assert (await client.post(f"{base}/cash-flows", json={"flow_type": "DEPOSIT", "amount": "-1"})).status_code == 400
    assert (await client.post(f"{base}/cash-flows", json={"flow_type": "SUBSCRIBE", "amount": "1"})).status_code == 400
    assert (await client.post(f"{base}/cash-flows", json={"flow_type": "BONUS", "amount": "1"})).status_code == 422
    assert (await client.post("/api/v1/portfolios/999/cash-flows", json={"flow_type": "DEPOSIT", "amount": "1"})).status_code == 404

    listing = (await client.get(f"{base}/cash-flows")).json()
    assert listing["total"] == 2
    assert Decimal(listing["total_inflows"]) == Decimal("1000")
    assert Decimal(listing["total_outflows"]) == Decimal("15.25")
    assert Decimal(listing["net_cash_flow"]) == Decimal("984.75")

    response = await client.delete(f"/api/v1/cash-flows/{fee_id}")
    assert response.status_code == 200
    assert response.json()["portfolio_id"] == portfolio_id
    assert Decimal(response.json()["cash_balance"]) == Decimal("1000")
    assert (await client.delete(f"/api/v1/cash-flows/{fee_id}")).status_code == 404

    response = await client.post(f"{base}/cash-balance/recompute")
    assert Decimal(response.json()["cash_balance"]) == Decimal("1000")
    assert deposit_id != fee_id


async def test_fund_endpoints(client):
    portfolio_id = await _create_portfolio(client, "API Fund")
    funds = "/api/v1/funds"

    response = await client.post(f"{funds}/{portfolio_id}/convert")
    assert response.status_code == 200
    assert response.json()["is_fund"] is True
    assert (await client.post(f"{funds}/{portfolio_id}/convert")).status_code == 409

    response = await client.post(f"{funds}/{portfolio_id}/subscribe", json={"investor": "alice", "amount": "1000"})
    assert response.status_code == 201
    subscription = response.json()
    assert Decimal(subscription["units"]) == Decimal("1000")
    holding_id = subscription["holding_id"]

    response = await client.post(f"{funds}/{portfolio_id}/nav", json={"market_value": "1100"})
    assert response.status_code == 200
    assert Decimal(response.json()["nav_per_unit"]) == Decimal("1.1")

    response = await client.post(f"{funds}/holdings/{holding_id}/redeem", json={"units": "100"})
    assert response.status_code == 201
    assert Decimal(response.json()["amount"]) == Decimal("110")
    assert Decimal(response.json()["cash_balance"]) == Decimal("890")

    assert (await client.post(f"{funds}/holdings/{holding_id}/redeem", json={"units": "5000"})).status_code == 422
    assert (await client.post(f"{funds}/holdings/999/redeem", json={"units": "1"})).status_code == 404
    assert (await client.post(f"{funds}/{portfolio_id}/subscribe", json={"investor": "bob", "amount": "0"})).status_code == 400

    detail = (await client.get(f"{funds}/holdings/{holding_id}")).json()
    assert Decimal(detail["holding"]["units_held"]) == Decimal("900")
    assert [t["transaction_type"] for t in detail["transactions"]] == ["SUBSCRIBE", "REDEEM"]
    assert detail["transactions"][1]["cash_flow_type"] == "REDEEM"
    assert Decimal(detail["summary"]["realized_pl"]) == Decimal("10")

    investors = (await client.get(f"{funds}/{portfolio_id}/investors")).json()
    assert [i["investor"] for i in investors] == ["alice"]


async def test_fund_operations_on_plain_portfolio_conflict(client):
    portfolio_id = await _create_portfolio(client, "Plain")

    response = await client.post(f"/api/v1/funds/{portfolio_id}/subscribe", json={"investor": "alice", "amount": "10"})
    assert response.status_code == 409
    assert (await client.get(f"/api/v1/funds/{portfolio_id}/investors")).status_code == 409


async def test_snapshot_run_and_execution_endpoints(
    client, snapshot_runner, make_asset, make_position, price_provider, position_provider
):
    portfolio_id = await _create_portfolio(client, "Snapshotted")
    asset = await make_asset("AAA")
    position_provider.positions[portfolio_id] = [make_position(asset, 10, 1000)]
    price_provider.prices["AAA"] = "125"

    response = await client.post("/api/v1/snapshots/run", json={"snapshot_date": "2024-03-01"})
    assert response.status_code == 202
    run = response.json()
    assert run["status"] == "started"
    await snapshot_runner.wait(run["execution_id"])

    detail = (await client.get(f"/api/v1/executions/{run['execution_id']}")).json()
    assert detail["status"] == "completed"
    assert detail["successful_snapshots"] == 1
    assert detail["metadata"]["max_concurrency"] == 1
    assert [c["portfolio_id"] for c in detail["children"]] == [portfolio_id]

    snapshots = (await client.get(f"/api/v1/snapshots/{portfolio_id}", params={"start": "2024-03-01"})).json()
    assert len(snapshots) == 1
    assert Decimal(snapshots[0]["current_value"]) == Decimal("1250")
    assert Decimal(snapshots[0]["allocation_percentage"]) == Decimal("100")

    listing = (await client.get("/api/v1/executions", params={"status": "completed"})).json()
    assert listing["total"] == 1
    with_children = (await client.get("/api/v1/executions", params={"include_children": "true"})).json()
    assert with_children["total"] == 2

    stats = (await client.get("/api/v1/executions/stats")).json()
    assert stats["total_executions"] == 1
    assert stats["success_rate"] == 100.0

    response = await client.post(f"/api/v1/executions/{run['execution_id']}/cancel", json={"reason": "late"})
    assert response.status_code == 409


async def test_snapshot_and_execution_errors(client):
    portfolio_id = await _create_portfolio(client)

    assert (await client.post("/api/v1/snapshots/run", json={"portfolio_id": 999})).status_code == 404
    assert (await client.get("/api/v1/snapshots/999")).status_code == 404
    response = await client.get(
        f"/api/v1/snapshots/{portfolio_id}", params={"start": "2024-03-02", "end": "2024-03-01"}
    )
    assert response.status_code == 400
    assert (await client.get("/api/v1/executions/exec_missing")).status_code == 404
    assert (await client.post("/api/v1/executions/exec_missing/cancel")).status_code == 404
    response = await client.get(
        "/api/v1/executions",
        params={"start_date": "2024-03-02T00:00:00", "end_date": "2024-03-01T00:00:00"},
    )
    assert response.status_code == 400


async def test_admin_endpoints(client):
    portfolio_id = await _create_portfolio(client, "Reset Me")
    await client.post(f"/api/v1/portfolios/{portfolio_id}/cash-flows", json={"flow_type": "DEPOSIT", "amount": "300"})
    await client.post(f"/api/v1/funds/{portfolio_id}/convert")
    await client.post(f"/api/v1/funds/{portfolio_id}/subscribe", json={"investor": "alice", "amount": "700"})

    response = await client.post("/api/v1/admin/reset-fund-data", json={"portfolio_id": portfolio_id})
    assert response.status_code == 200
    [result] = response.json()
    assert result["cash_flows_deleted"] == 1
    assert result["holdings_deleted"] == 1
    assert Decimal(result["cash_balance"]) == Decimal("300")

    assert (await client.post("/api/v1/admin/reset-fund-data")).json() == []
    assert (await client.post("/api/v1/admin/reset-fund-data", json={"portfolio_id": 999})).status_code == 404

    response = await client.post("/api/v1/admin/tracking/cleanup", json={"days_to_keep": 0})
    assert response.json() == {"deleted": 0, "days_to_keep": 0}
    assert (await client.post("/api/v1/admin/tracking/cleanup", json={"days_to_keep": -1})).status_code == 422
