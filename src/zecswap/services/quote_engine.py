"""Quote engine: prices a swap into ZEC and issues time-bounded quotes.

Both request modes go through the same forward formula::

    fee    = input * fee_rate
    output = (input - fee) * rate

``pay`` evaluates it directly. ``receive`` solves it for the smallest input
(at the source asset's precision) whose output reaches the requested ZEC
amount, so a ``receive`` quote and the ``pay`` quote for its input agree.
"""

import logging
import uuid
from datetime import timedelta
from decimal import ROUND_DOWN, ROUND_HALF_EVEN, ROUND_UP, Decimal, InvalidOperation
from typing import Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from zecswap.catalog.base import Asset, AssetCatalog
from zecswap.exceptions import InvalidAmount, QuoteNotFound
from zecswap.ledger.database import session_scope
from zecswap.ledger.models import Quote, QuoteMode, QuoteState
from zecswap.ledger.repository import SwapRepository
from zecswap.pricing.base import RateSource
from zecswap.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

ZEC_DECIMALS = 8
MAX_SOLVE_STEPS = 64


def quantum(decimals: int) -> Decimal:
    """Smallest representable unit at a precision (e.g. 8 -> 0.00000001)."""
    return Decimal(1).scaleb(-decimals)


def parse_amount(raw: Union[str, Decimal, int], decimals: int) -> Decimal:
    """Parse a user amount, enforcing positivity and on-chain precision.

    Raises:
        InvalidAmount: for unparseable, non-finite, non-positive or
            too-precise values
    """
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Amount is not a number: {raw!r}")

    if not amount.is_finite():
        raise InvalidAmount(f"Amount must be finite: {raw!r}")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive: {raw!r}")

    try:
        fits = amount == amount.quantize(quantum(decimals))
    except InvalidOperation:
        fits = False
    if not fits:
        raise InvalidAmount(f"Amount {raw} exceeds {decimals} decimal places")
    return amount


def compute_pay(
    amount: Decimal, rate: Decimal, fee_rate: Decimal, source_decimals: int
) -> tuple[Decimal, Decimal]:
    """Forward formula: returns (fee, expected_output) for an input amount."""
    fee = (amount * fee_rate).quantize(quantum(source_decimals), rounding=ROUND_HALF_EVEN)
    output = ((amount - fee) * rate).quantize(quantum(ZEC_DECIMALS), rounding=ROUND_DOWN)
    return fee, output


def solve_receive(
    target_output: Decimal, rate: Decimal, fee_rate: Decimal, source_decimals: int
) -> tuple[Decimal, Decimal, Decimal]:
    """Inverse formula: returns (input, fee, expected_output) for a desired output.

    Starts from the closed-form inverse rounded up to the source precision
    and steps up one unit at a time until the forward formula reaches the
    target. The fee is rounded to the source precision, so a smaller input
    can reach the target too; it then steps down while it still does. The
    forward formula is monotonic in the input, so the result is the smallest
    input that delivers the target.
    """
    step = quantum(source_decimals)
    guess = (target_output / ((1 - fee_rate) * rate)).quantize(step, rounding=ROUND_UP)
    guess = max(guess, step)

    for _ in range(MAX_SOLVE_STEPS):
        fee, output = compute_pay(guess, rate, fee_rate, source_decimals)
        if output >= target_output:
            break
        guess += step
    else:
        raise InvalidAmount(f"Could not price an input for {target_output} ZEC")

    for _ in range(MAX_SOLVE_STEPS):
        lower = guess - step
        if lower <= 0:
            break
        lower_fee, lower_output = compute_pay(lower, rate, fee_rate, source_decimals)
        if lower_output < target_output:
            break
        guess, fee, output = lower, lower_fee, lower_output

    return guess, fee, output


class QuoteEngine:
    """Issues and looks up quotes."""

    def __init__(
        self,
        catalog: AssetCatalog,
        rate_source: RateSource,
        session_factory: async_sessionmaker[AsyncSession],
        fee_rate: Decimal = Decimal("0.005"),
        ttl_seconds: int = 900,
        clock: Clock = utcnow,
    ):
        self.catalog = catalog
        self.rate_source = rate_source
        self.session_factory = session_factory
        self.fee_rate = Decimal(fee_rate)
        self.validity = timedelta(seconds=ttl_seconds)
        self.clock = clock

    async def request_quote(
        self,
        source_asset_id: str,
        amount: Union[str, Decimal],
        mode: Union[QuoteMode, str] = QuoteMode.PAY,
    ) -> Quote:
        """Price a swap and store the resulting quote.

        Args:
            source_asset_id: Catalog id of the asset being paid in
            amount: Source units in ``pay`` mode, ZEC in ``receive`` mode
            mode: Which side of the swap ``amount`` describes

        Returns:
            The stored Quote, valid for the configured window

        Raises:
            UnknownAsset, InvalidAmount, RateUnavailable
        """
        mode = QuoteMode(mode)
        asset = self.catalog.get_asset(source_asset_id)

        precision = asset.decimals if mode == QuoteMode.PAY else ZEC_DECIMALS
        requested = parse_amount(amount, precision)

        rate = await self.rate_source.get_rate(asset)
        input_amount, fee, output = self._price(asset, requested, mode, rate)

        issued_at = self.clock()
        quote = Quote(
            id=f"q_{uuid.uuid4().hex}",
            source_asset_id=asset.asset_id,
            request_mode=mode,
            requested_amount=requested,
            input_amount=input_amount,
            fee_amount=fee,
            expected_output=output,
            rate=rate,
            issued_at=issued_at,
            expires_at=issued_at + self.validity,
            state=QuoteState.UNUSED,
        )

        async with session_scope(self.session_factory) as session:
            await SwapRepository(session).add_quote(quote)

        logger.info(
            f"Issued quote {quote.id}: {input_amount} {asset.symbol} -> {output} ZEC "
            f"(mode={mode.value}, fee={fee}, rate={rate}, expires {quote.expires_at.isoformat()})"
        )
        return quote

    def _price(
        self, asset: Asset, requested: Decimal, mode: QuoteMode, rate: Decimal
    ) -> tuple[Decimal, Decimal, Decimal]:
        if mode == QuoteMode.PAY:
            fee, output = compute_pay(requested, rate, self.fee_rate, asset.decimals)
            input_amount = requested
        else:
            input_amount, fee, output = solve_receive(
                requested, rate, self.fee_rate, asset.decimals
            )

        if output <= 0:
            raise InvalidAmount(f"Amount {requested} {asset.symbol} is too small to convert")
        return input_amount, fee, output

    async def get_quote(self, quote_id: str) -> Quote:
        """Get a stored quote.

        Raises:
            QuoteNotFound: if no quote has this id
        """
        async with session_scope(self.session_factory) as session:
            quote = await SwapRepository(session).get_quote(quote_id)
        if quote is None:
            raise QuoteNotFound(f"Quote {quote_id} not found")
        return quote

    async def expire_stale_quotes(self) -> int:
        """Flag unused quotes past their window as expired. Returns the count."""
        async with session_scope(self.session_factory) as session:
            count = await SwapRepository(session).expire_stale_quotes(self.clock())
        if count:
            logger.debug(f"Marked {count} stale quote(s) expired")
        return count
