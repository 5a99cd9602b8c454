"""Registration of new strategies with the settlement backend."""
import logging

from execution.settlement_client import SettlementClient
from shared.schemas import RegistrationResult, Strategy
from storage.strategy_repository import StrategyRepository

logger = logging.getLogger(__name__)


async def register_strategy(
    strategy: Strategy,
    settlement: SettlementClient,
    strategies: StrategyRepository,
) -> RegistrationResult:
    """Register ``strategy`` and store the external id it is given.

    Failure never undoes the database record: the strategy stays ACTIVE and
    unregistered, and its first execution attempt fails at the backend. An
    already registered strategy is not sent again.
    """
    if strategy.is_registered:
        logger.info(
            "Strategy already registered",
            extra={"strategy_id": strategy.id, "external_id": strategy.external_id},
        )
        return RegistrationResult(success=True, external_id=strategy.external_id)

    try:
        result = await settlement.register(strategy)
    except Exception as e:
        logger.error(f"Registration raised: {e}", extra={"strategy_id": strategy.id})
        return RegistrationResult(success=False, reason=f"Registration error: {e}")

    if not result.success:
        logger.error(
            "Failed to register strategy",
            extra={"strategy_id": strategy.id, "reason": result.reason},
        )
        return result

    external_id = result.external_id or strategy.id
    await strategies.set_external_id(strategy.id, external_id)
    strategy.external_id = external_id
    logger.info(
        "Strategy registered",
        extra={"strategy_id": strategy.id, "external_id": external_id, "tx_ref": result.tx_ref},
    )
    return result
