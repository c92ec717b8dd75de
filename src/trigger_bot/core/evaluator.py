"""
Trigger evaluator - selects orders to trigger, market by market.

For each market: read the oracle price and slot, ask the current view
which orders fire, skip the ones already in flight, flag the rest and
hand them to the dispatcher.

A failure while evaluating one market is logged and contained; the other
markets in the same tick are unaffected. A snapshot timeout is not
market-scoped and propagates to the tick.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from trigger_bot.accounts.registry import AccountNotFoundError
from trigger_bot.orderbook.models import OrderNode

from .errors import SnapshotTimeoutError

if TYPE_CHECKING:
    from trigger_bot.accounts.registry import AccountRegistry
    from trigger_bot.orderbook.builder import MarketSource

    from .dispatcher import Dispatcher
    from .snapshot import SnapshotCell
    from .tracker import TriggerTracker

logger = logging.getLogger(__name__)

ACCOUNT_NOT_FOUND_CODE = "account_not_found"


@dataclass
class MarketEvaluation:
    """Outcome of evaluating one market in one tick."""

    market_index: int
    triggerable: int = 0
    skipped_in_flight: int = 0
    dispatched: int = 0
    account_errors: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TriggerEvaluator:
    """
    Per-market trigger selection.

    Usage:
        evaluator = TriggerEvaluator(market_source, registry, tracker, dispatcher, snapshot)
        result = await evaluator.evaluate_market(0)
    """

    def __init__(
        self,
        market_source: "MarketSource",
        accounts: "AccountRegistry",
        tracker: "TriggerTracker",
        dispatcher: "Dispatcher",
        snapshot: "SnapshotCell",
    ) -> None:
        self._market_source = market_source
        self._accounts = accounts
        self._tracker = tracker
        self._dispatcher = dispatcher
        self._snapshot = snapshot

    async def find_nodes_to_trigger(self, market_index: int) -> List[OrderNode]:
        """Query the current view for orders that fire at the market's oracle price."""
        oracle = self._market_source.get_oracle_price(market_index)
        slot = self._market_source.get_slot()

        return await self._snapshot.read(
            lambda view: view.find_nodes_to_trigger(market_index, slot, oracle.price)
            if view is not None
            else []
        )

    async def evaluate_market(self, market_index: int) -> MarketEvaluation:
        """
        Select and dispatch every triggerable order in a market.

        Raises:
            SnapshotTimeoutError: If the view could not be read in time
        """
        result = MarketEvaluation(market_index=market_index)

        try:
            nodes = await self.find_nodes_to_trigger(market_index)
            result.triggerable = len(nodes)

            for node in nodes:
                candidate = self._tracker.candidate_for(node)
                if candidate.in_flight:
                    result.skipped_in_flight += 1
                    continue

                candidate.mark_selected()
                logger.info(
                    f"trying to trigger (account: {node.user_account}) "
                    f"order {node.order.order_id}"
                )

                try:
                    account = await self._accounts.must_get(node.user_account)
                except AccountNotFoundError as e:
                    candidate.mark_failed(ACCOUNT_NOT_FOUND_CODE)
                    result.account_errors += 1
                    logger.error(
                        f"Skipping order {node.order.order_id}: {e}"
                    )
                    continue
                except BaseException:
                    candidate.mark_failed()
                    raise

                self._dispatcher.dispatch(candidate, node, account)
                result.dispatched += 1

        except SnapshotTimeoutError:
            raise
        except Exception as e:
            result.error = str(e)
            logger.error(
                f"Unexpected error for market {market_index} during triggers: {e}",
                exc_info=True,
            )

        return result
