"""Rule table mapping market identifiers to the sentiment tag they depend on.

Rules are tried in order and the first match wins, so exact overrides must
come before the broader prefix rules.
"""
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence


class TagRule(Protocol):
    tag: str

    def matches(self, market_id: str) -> bool: ...


@dataclass(frozen=True)
class ExactRule:
    market_id: str
    tag: str

    def matches(self, market_id: str) -> bool:
        return market_id == self.market_id


@dataclass(frozen=True)
class PrefixRule:
    prefix: str
    tag: str

    def matches(self, market_id: str) -> bool:
        return market_id.startswith(self.prefix)


DEFAULT_RULES: tuple[TagRule, ...] = (
    ExactRule("TRUMP_CABINET", "TRUMP"),
    ExactRule("TRUMP_NOMINEE", "TRUMP"),
    ExactRule("ELECTION_2028", "ELECTION"),
    ExactRule("FED_RATES", "FED"),
    ExactRule("ECON_RECESSION", "STOCK_MARKET"),
    ExactRule("FINANCE_NVIDIA", "STOCK_MARKET"),
    PrefixRule("CRYPTO_", "CRYPTO"),
    PrefixRule("SPORTS_", "SPORTS"),
    PrefixRule("POLITICS_", "POLITICS"),
)


def resolve_tag(market_id: str, rules: Sequence[TagRule] = DEFAULT_RULES) -> Optional[str]:
    """Return the sentiment tag for a market, or None if no rule applies."""
    for rule in rules:
        if rule.matches(market_id):
            return rule.tag
    return None
