import asyncio
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel, PositiveFloat, PositiveInt

from avaworkload.bombard import BombardExecutor, random_user
from avaworkload.config import cfg
from avaworkload.errors import ConstructionError, RPCError, WorkloadError
from avaworkload.logging_config import setup_logging
from avaworkload.network import StaticNetwork
from avaworkload.workflow import StakingSchedule, WorkflowRunner

setup_logging()
log = logging.getLogger("avaworkload.app")

to = cfg["timeout"]
STARTUP_TIMEOUT = to["startup"]
ACCEPTANCE_TIMEOUT = to["acceptance"]
POLL_INTERVAL = to["poll_interval"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    network = StaticNetwork.from_config(cfg)
    app.state.network = network
    app.state.results = {}
    # One scenario at a time; they all draw on the same genesis account
    app.state.scenario_lock = asyncio.Lock()

    log.info("Waiting for %s nodes to become healthy...", len(network.nodes))
    await network.wait_all_healthy(STARTUP_TIMEOUT)
    log.info("Network is ready. Ready to accept requests!")
    try:
        yield
    finally:
        log.info("Shutting down...")
        await network.aclose()
        log.info("Shutdown complete")


app = FastAPI(
    title="Avalanche Workload",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Scenarios", "description": "Run a test scenario to completion"},
        {"name": "State", "description": "Inspect the network and past runs"},
    ],
)

r_scenario = APIRouter(prefix="/scenario", tags=["Scenarios"])
r_state = APIRouter(prefix="/state", tags=["State"])


class BombardReq(BaseModel):
    num_txs: PositiveInt = cfg["bombard"]["num_txs"]
    tx_fee: PositiveInt = cfg["bombard"]["tx_fee"]
    acceptance_timeout: PositiveFloat = ACCEPTANCE_TIMEOUT


class StakeReq(BaseModel):
    node: str | None = None  # defaults to the first non-genesis node
    seed_amount: PositiveInt = cfg["staking"]["seed_amount"]
    stake_amount: PositiveInt = cfg["staking"]["stake_amount"]


def _fail(e: WorkloadError) -> HTTPException:
    detail = "".join(traceback.format_exception_only(e)).strip()
    log.error("Scenario failed: %s", detail)
    return HTTPException(status_code=500, detail=detail)


@app.get("/health")
def health():
    return {"status": "ok"}


@r_state.get("/nodes")
async def state_nodes():
    network: StaticNetwork = app.state.network
    nodes = []
    for name, node in network.nodes.items():
        client = network.client(name)
        entry = {"name": name, "uri": node.uri}
        try:
            entry["node_id"] = await client.info.get_node_id()
            entry["healthy"] = await client.health.get_liveness()
        except RPCError as e:
            entry["error"] = str(e)
        nodes.append(entry)
    return {"nodes": nodes}


@r_state.get("/results")
async def state_results():
    return app.state.results


@r_scenario.post("/bombard")
async def scenario_bombard(req: BombardReq):
    network: StaticNetwork = app.state.network
    try:
        executor = BombardExecutor(
            network.clients(),
            req.num_txs,
            req.tx_fee,
            req.acceptance_timeout,
            poll_interval=POLL_INTERVAL,
            genesis_private_key=cfg["genesis"]["private_key"],
        )
    except (ValueError, ConstructionError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    async with app.state.scenario_lock:
        try:
            result = await executor.execute_test()
        except WorkloadError as e:
            raise _fail(e)
    summary = result.summary()
    app.state.results["bombard"] = summary
    return summary


@r_scenario.post("/stake")
async def scenario_stake(req: StakeReq):
    network: StaticNetwork = app.state.network
    names = network.names
    name = req.node or (names[1] if len(names) > 1 else names[0])
    if name not in network.nodes:
        raise HTTPException(status_code=404, detail=f"Unknown node: {name}")

    runner = WorkflowRunner(
        client=network.client(name),
        user=random_user(),
        acceptance_timeout=ACCEPTANCE_TIMEOUT,
        poll_interval=POLL_INTERVAL,
        staking=StakingSchedule.from_config(cfg["staking"]),
        genesis_private_key=cfg["genesis"]["private_key"],
    )
    async with app.state.scenario_lock:
        try:
            p_address = await runner.import_genesis_funds_and_start_validating(req.seed_amount, req.stake_amount)
            node_id = await runner.client.info.get_node_id()
            await runner.verify_validator(node_id)
        except WorkloadError as e:
            raise _fail(e)
    summary = {"node": name, "node_id": node_id, "p_address": p_address, "stake_amount": req.stake_amount}
    app.state.results["stake"] = summary
    return summary


app.include_router(r_scenario)
app.include_router(r_state)
