"""candlebt - Backtest Job API

Runs backtests as in-memory background jobs. Each job owns a BacktestRunner;
clients poll its observable state and may cancel it cooperatively.
"""

from typing import Any, Callable, Dict, List, Optional, Union
import uuid

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from candlebt import __version__
from candlebt.config import BacktestConfig, MarketDataConfig, LOG_DIR, LOG_LEVEL, MAX_JOBS, build_loader
from candlebt.data_source import close_loader
from candlebt.evaluators import EvaluatorValidator
from candlebt.exceptions import ValidationError
from candlebt.reporting import result_to_dict
from candlebt.runner import BacktestRunner
from candlebt.strategies import STRATEGIES
from candlebt.utils.logger import setup_logger
from candlebt.utils.monitor import monitor

# Initialize logger
logger = setup_logger("candlebt", log_dir=LOG_DIR, level=LOG_LEVEL)


class StrategySpec(BaseModel):
    """Registered strategy and its constructor parameters"""
    type: str
    params: Dict[str, Any] = Field(default_factory=dict)


class EvaluatorSpec(BaseModel):
    id: str
    params: Dict[str, Any] = Field(default_factory=dict)


class BacktestRequest(BaseModel):
    """Backtest job definition"""
    symbol: str
    start_date: str  # YYYY-MM-DD or ISO-8601
    end_date: str
    granularity: str = "ONE_HOUR"
    starting_balance: float = 10000.0
    strategy: StrategySpec
    evaluators: List[Union[str, EvaluatorSpec]] = Field(default_factory=list)
    liquidate_at_end: bool = True


class JobCreated(BaseModel):
    id: str


class JobState(BaseModel):
    """Observable job state"""
    id: str
    is_running: bool
    is_loading: bool
    progress: float
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def _default_loader_factory():
    return build_loader(MarketDataConfig(), logger=logger)


def create_app(
    loader_factory: Optional[Callable[[], Any]] = None,
    validator: Optional[EvaluatorValidator] = None,
    max_jobs: int = MAX_JOBS
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        loader_factory: Returns the candle loader shared by all jobs
        validator: Optional evaluator parameter validator
        max_jobs: Jobs to retain; the oldest finished ones are evicted beyond this
    """
    app = FastAPI(
        title="candlebt",
        version=__version__,
        description="Candle-by-candle strategy backtesting API"
    )
    loader = (loader_factory or _default_loader_factory)()
    jobs: Dict[str, BacktestRunner] = {}

    # Request validation error handler
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors with logging."""
        logger.error(f"Request validation error (422) on {request.method} {request.url.path}")
        for error in exc.errors():
            logger.error(f"  Field: {'.'.join(str(x) for x in error['loc'])} - {error['msg']}")

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": jsonable_errors(exc)}
        )

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming requests."""
        logger.info(f">> {request.method} {request.url.path}")
        response = await call_next(request)
        logger.info(f"<< {request.method} {request.url.path} - Status: {response.status_code}")
        return response

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cancel running jobs and close the shared loader"""
        logger.info("Shutting down candlebt API...")
        for runner in jobs.values():
            runner.cancel("Server shutting down")
        close_loader(loader)

    def evict_finished_jobs():
        """Drop the oldest finished jobs so a new one fits within max_jobs."""
        excess = len(jobs) - max_jobs + 1
        if excess <= 0:
            return
        finished = [job_id for job_id, runner in jobs.items() if not runner.state.is_running]
        for job_id in finished[:excess]:
            del jobs[job_id]
            logger.debug(f"Evicted finished backtest {job_id}")

    def get_job(job_id: str) -> BacktestRunner:
        runner = jobs.get(job_id)
        if runner is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Backtest not found: {job_id}")
        return runner

    @app.post("/backtests", response_model=JobCreated, status_code=status.HTTP_202_ACCEPTED)
    async def create_backtest(request: BacktestRequest, background_tasks: BackgroundTasks) -> JobCreated:
        """Validate the configuration and start the backtest in the background."""
        data = request.model_dump()
        try:
            config = BacktestConfig.from_dict(data)
        except ValidationError as e:
            logger.warning(f"Rejected backtest request: {e}")
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

        evict_finished_jobs()
        job_id = uuid.uuid4().hex
        runner = BacktestRunner(loader=loader, validator=validator, logger=logger)
        runner.queue()
        jobs[job_id] = runner
        background_tasks.add_task(runner.run, config)

        logger.info(f"Backtest {job_id} queued: {config.symbol} {config.granularity} ({config.strategy.name})")
        return JobCreated(id=job_id)

    @app.get("/backtests/{job_id}", response_model=JobState)
    async def get_backtest(job_id: str) -> JobState:
        """Current state of a backtest; ``result`` holds the JSON export once completed."""
        state = get_job(job_id).state
        return JobState(
            id=job_id,
            is_running=state.is_running,
            is_loading=state.is_loading,
            progress=state.progress,
            result=result_to_dict(state.result) if state.result is not None else None,
            error=state.error
        )

    @app.delete("/backtests/{job_id}")
    async def cancel_backtest(job_id: str):
        """Request cooperative cancellation of a running backtest."""
        cancelled = get_job(job_id).cancel()
        return {"id": job_id, "cancel_requested": cancelled}

    @app.get("/strategies")
    async def list_strategies():
        """Registered strategies"""
        return {
            "strategies": [
                {"type": key, "name": cls.__name__, "description": cls.description}
                for key, cls in sorted(STRATEGIES.items())
            ]
        }

    @app.get("/stats")
    async def run_stats():
        """Run statistics from the monitor"""
        return monitor.get_stats()

    @app.get("/")
    async def root():
        """Root endpoint with API info"""
        return {
            "name": "candlebt",
            "version": __version__,
            "status": "online",
            "description": "Candle-by-candle strategy backtesting API",
            "endpoints": {
                "/backtests": "POST - Start a backtest",
                "/backtests/{id}": "GET - Backtest state, DELETE - Cancel backtest",
                "/strategies": "GET - Registered strategies",
                "/stats": "GET - Run statistics",
                "/health": "GET - Health check",
                "/docs": "GET - API documentation"
            }
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "jobs": len(jobs),
            "running_jobs": sum(1 for runner in jobs.values() if runner.state.is_running),
            "version": __version__
        }

    return app


def jsonable_errors(exc: RequestValidationError) -> List[dict]:
    return [
        {"loc": [str(x) for x in error["loc"]], "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]


# Create the app instance
app = create_app()


def get_app() -> FastAPI:
    """Get the FastAPI application instance."""
    return app
