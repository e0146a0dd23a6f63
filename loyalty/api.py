import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from supabase import create_client

from .config import Settings, get_settings
from .context import LedgerContext
from .errors import ClientError, LedgerUnavailable, LoyaltyError, StoreUnavailable
from .inventory import InventoryStore, SupabaseInventoryStore
from .issuance import RewardIssuanceService
from .models import (
    IncrementTransactionRequest,
    IncrementTransactionResponse,
    IssuanceRun,
    LatestBlock,
    LatestBlockhash,
    MerchantAccount,
    MintNftRequest,
    MintNftResponse,
    UserAccount,
)
from .runlog import RunLog, SupabaseRunLog
from .service import LoyaltyService
from .validator import TransactionValidator

logger = logging.getLogger(__name__)


class Services:
    def __init__(
        self,
        context: LedgerContext,
        inventory: InventoryStore,
        runs: Optional[RunLog] = None,
        freshness_window: int = 3600,
    ):
        self.context = context
        self.loyalty = LoyaltyService(context, TransactionValidator(context.gateway, freshness_window))
        self.issuance = RewardIssuanceService(context, inventory, runs)

    def close(self) -> None:
        self.context.close()


def build_services(settings: Settings) -> Services:
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
        raise RuntimeError("Missing Supabase configuration. Set SUPABASE_URL and SUPABASE_SERVICE_KEY")
    client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)
    return Services(
        LedgerContext.from_settings(settings),
        SupabaseInventoryStore(client, table=settings.INVENTORY_TABLE),
        SupabaseRunLog(client, table=settings.RUNS_TABLE),
        settings.FRESHNESS_WINDOW_SECONDS,
    )


def _http_error(exc: LoyaltyError) -> HTTPException:
    if isinstance(exc, ClientError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, (LedgerUnavailable, StoreUnavailable)):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def get_services(request: Request) -> Services:
    return request.app.state.services


def create_app(services: Optional[Services] = None, root_path: str = "") -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            yield
            return
        settings = get_settings()
        logging.basicConfig(level=settings.LOG_LEVEL)
        app.state.services = build_services(settings)
        try:
            yield
        finally:
            app.state.services.close()

    app = FastAPI(
        title="Loyalty Ledger API",
        description="Loyalty counters and badge-gated NFT rewards for merchants and users on Solana",
        version="1.0.0",
        root_path=root_path,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "loyalty-ledger"}

    @app.post("/increment-transaction", response_model=IncrementTransactionResponse, tags=["Loyalty"])
    def increment_transaction(
        request: IncrementTransactionRequest, svc: Services = Depends(get_services)
    ) -> IncrementTransactionResponse:
        try:
            tx = svc.loyalty.increment_tx_count(
                request.user_address, request.merchant_address, request.transaction_id
            )
        except LoyaltyError as e:
            raise _http_error(e)
        return IncrementTransactionResponse(transaction_id=tx)

    @app.get("/merchants/{merchant_address}", response_model=MerchantAccount, tags=["Loyalty"])
    def get_merchant(merchant_address: str, svc: Services = Depends(get_services)) -> MerchantAccount:
        try:
            account = svc.loyalty.get_merchant_account(merchant_address)
        except LoyaltyError as e:
            raise _http_error(e)
        if account is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Merchant {merchant_address} not found")
        return account

    @app.get("/users/{user_address}", response_model=UserAccount, tags=["Loyalty"])
    def get_user(user_address: str, svc: Services = Depends(get_services)) -> UserAccount:
        try:
            account = svc.loyalty.get_user_account(user_address)
        except LoyaltyError as e:
            raise _http_error(e)
        if account is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {user_address} not found")
        return account

    @app.post("/web3/mint-nft", response_model=MintNftResponse, tags=["Rewards"])
    def mint_nft(request: MintNftRequest, svc: Services = Depends(get_services)) -> MintNftResponse:
        try:
            receipt = svc.issuance.issue(request.merchant_address, request.nft_type)
        except LoyaltyError as e:
            raise _http_error(e)
        return MintNftResponse.from_receipt(receipt)

    @app.get("/rewards/runs", response_model=list[IssuanceRun], tags=["Rewards"])
    def list_runs(incomplete: bool = False, svc: Services = Depends(get_services)) -> list[IssuanceRun]:
        try:
            if incomplete:
                return svc.issuance.runs.incomplete()
            return svc.issuance.runs.all()
        except LoyaltyError as e:
            raise _http_error(e)

    @app.get("/rewards/runs/{run_id}", response_model=IssuanceRun, tags=["Rewards"])
    def get_run(run_id: str, svc: Services = Depends(get_services)) -> IssuanceRun:
        try:
            run = svc.issuance.runs.get(run_id)
        except LoyaltyError as e:
            raise _http_error(e)
        if run is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Run {run_id} not found")
        return run

    @app.get("/web3/latest-block", response_model=LatestBlock, tags=["Web3"])
    def latest_block(svc: Services = Depends(get_services)) -> LatestBlock:
        try:
            return svc.context.gateway.get_latest_block()
        except LoyaltyError as e:
            raise _http_error(e)

    @app.get("/web3/latest-blockhash", response_model=LatestBlockhash, tags=["Web3"])
    def latest_blockhash(svc: Services = Depends(get_services)) -> LatestBlockhash:
        try:
            return svc.context.gateway.get_latest_blockhash()
        except LoyaltyError as e:
            raise _http_error(e)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
