"""
Payment Service — FastAPI エントリーポイント

決済シミュレーターを HTTP API として公開する。
PAYMENT_FAILURE_RATE の確率で 500 を返す(既定 30%)。
"""

import logging
import os

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .simulator import PaymentSimulator

PAYMENT_FAILURE_RATE = float(os.environ.get("PAYMENT_FAILURE_RATE", "0.3"))
PAYMENT_MIN_DELAY = float(os.environ.get("PAYMENT_MIN_DELAY", "1.0"))
PAYMENT_MAX_DELAY = float(os.environ.get("PAYMENT_MAX_DELAY", "3.0"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

simulator = PaymentSimulator(
    failure_rate=PAYMENT_FAILURE_RATE,
    min_delay=PAYMENT_MIN_DELAY,
    max_delay=PAYMENT_MAX_DELAY,
)

app = FastAPI(title="Payment Service")
logger.info("Payment Service configured with %.0f%% failure rate", PAYMENT_FAILURE_RATE * 100)


class PayRequest(BaseModel):
    amount: float
    order_id: str


@app.post("/pay")
async def pay(req: PayRequest):
    """決済を実行する(シミュレーション)"""
    outcome = await simulator.process(req.amount, req.order_id)
    if not outcome.success:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": outcome.error, "transaction_id": None},
        )
    return outcome.model_dump(exclude={"error"})


@app.get("/health")
async def health():
    return {"status": "ok", "service": "payment-service"}
