"""AI-generated business summary for the dashboard.

The summary is produced by an external text-generation service through the
``anthropic`` async client. The call is best effort: a missing credential or
any client/service failure is logged and turned into a fixed message so the
dashboard always has a string to display.
"""

from __future__ import annotations

import asyncio
import json
import os
from enum import Enum
from textwrap import dedent
from typing import Any, Dict, Optional

from anthropic import AsyncAnthropic

from . import log
from .constants import ANALYSIS_RECENT_SALES_LIMIT, TransactionDirection
from .data_manager import AppData, ConfigSettings


SYSTEM_INSTRUCTION = dedent(
    """
    You are a senior business analyst for a retail inventory management system.
    Analyze the provided JSON data containing the product list and recent sales.
    Provide a concise executive summary consisting of:
    1. Best performing products (by quantity sold).
    2. Stock alerts (items with low or high inventory compared to sales).
    3. A strategic pricing recommendation based on margins.
    4. A general business health sentiment (Positive, Neutral, Negative) with a short reason.
    Keep the output valid markdown, bulleted, and professional.
    """
).strip()

NO_ANALYSIS_MESSAGE = "No analysis could be generated at this time."
ANALYSIS_ERROR_MESSAGE = "Error generating analysis. Please check your API key and try again."


class JobState(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"


def build_analysis_context(data: AppData, *, sales_limit: int = ANALYSIS_RECENT_SALES_LIMIT) -> Dict[str, Any]:
    """Condense the state into the projection sent to the service.

    Products are reduced to name, stock, and default prices. Sales are the
    first ``sales_limit`` outward transactions in log order, each reduced to
    its date and ``"name (xqty)"`` strings.
    """

    sales = [transaction for transaction in data.transactions if transaction.direction is TransactionDirection.OUTWARD]
    return {
        "products": [
            {
                "name": product.name,
                "stock": product.current_stock,
                "buy": float(product.default_buy_price),
                "sell": float(product.default_sell_price),
            }
            for product in data.products
        ],
        "recentSales": [
            {
                "date": transaction.timestamp.date().isoformat(),
                "items": [f"{line.product_name} (x{line.quantity})" for line in transaction.lines],
            }
            for transaction in sales[:sales_limit]
        ],
    }


async def analyze_business_data(data: AppData, settings: ConfigSettings, *, client: Optional[Any] = None) -> str:
    """Ask the text-generation service for an executive summary of ``data``.

    Args:
        data (AppData): Snapshot to summarise.
        settings (ConfigSettings): Supplies the credential variable name, the
            model, and sampling options.
        client: Optional pre-built async client; one is created from the
            environment credential when omitted.

    Returns:
        str: The generated text, :data:`NO_ANALYSIS_MESSAGE` when the service
            returns nothing, or :data:`ANALYSIS_ERROR_MESSAGE` on any failure.
    """

    api_key = os.environ.get(settings.api_key_env)
    if client is None and not api_key:
        log.error("Analysis skipped: environment variable '%s' is not set", settings.api_key_env)
        return ANALYSIS_ERROR_MESSAGE

    context = build_analysis_context(data)
    try:
        client = client or AsyncAnthropic(api_key=api_key)
        response = await client.messages.create(
            model=settings.analysis_model,
            max_tokens=settings.analysis_max_tokens,
            temperature=settings.analysis_temperature,
            system=SYSTEM_INSTRUCTION,
            messages=[
                {
                    "role": "user",
                    "content": f"Here is the current business data: {json.dumps(context)}",
                }
            ],
        )
        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ).strip()
    except Exception as exc:
        log.error("Analysis request failed: %s", exc)
        return ANALYSIS_ERROR_MESSAGE

    if not text:
        log.warning("Analysis service returned an empty response")
        return NO_ANALYSIS_MESSAGE
    log.info("Received analysis (%d characters)", len(text))
    return text


class AnalysisJob:
    """One summary request with a two-state pending/resolved signal.

    Jobs are independent: several may be in flight at once and whichever
    resolves last is what the caller ends up displaying.
    """

    def __init__(self, data: AppData, settings: ConfigSettings, *, client: Optional[Any] = None) -> None:
        self.data = data
        self.settings = settings
        self.client = client
        self.state = JobState.PENDING
        self.result: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.state is JobState.RESOLVED

    async def run(self) -> str:
        self.result = await analyze_business_data(self.data, self.settings, client=self.client)
        self.state = JobState.RESOLVED
        return self.result

    def start(self) -> asyncio.Task:
        """Schedule :meth:`run` on the running event loop."""

        return asyncio.create_task(self.run())


def run_analysis(data: AppData, settings: ConfigSettings, *, client: Optional[Any] = None) -> str:
    """Run a single job to completion from synchronous code."""

    return asyncio.run(AnalysisJob(data, settings, client=client).run())
