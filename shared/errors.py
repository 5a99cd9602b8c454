"""Domain exceptions raised by the service layer."""


class SentimentFlowError(Exception):
    """Base class for errors the API layer knows how to report."""


class StrategyNotFound(SentimentFlowError):
    def __init__(self, strategy_id: str):
        super().__init__(f"Strategy not found: {strategy_id}")
        self.strategy_id = strategy_id


class StrategyNotActive(SentimentFlowError):
    def __init__(self, strategy_id: str, status: str):
        super().__init__(f"Cannot execute strategy with status: {status}")
        self.strategy_id = strategy_id
        self.status = status


class MissingSignalData(SentimentFlowError):
    """No market or sentiment snapshot is available for a strategy."""


class InvalidStrategy(SentimentFlowError):
    """Strategy parameters are out of range or inconsistent."""


class SettlementError(SentimentFlowError):
    """Settlement backend returned something the client cannot interpret."""
