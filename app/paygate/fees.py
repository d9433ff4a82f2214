# app/paygate/fees.py
"""
Fee schedule for gated resources.

Maps a resource type to the payment terms a client must satisfy:
amount (decimal ETH string), currency and destination address.

Unknown resource types fall back to the default rule. The fallback is
logged and flagged on the returned rule so it can be audited.

Configuration is loaded from app/core/config.py:
- VIEW_DETAILS_FEE, DEPOSIT_FEE, COMPETITION_ENTRY_FEE: per-type fees
- DEFAULT_FEE: fee for unrecognized resource types
- PAYMENT_WALLET_ADDRESS: destination for all payments
- PAYMENT_CURRENCY: currency label
"""
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# Conversion constants
WEI_PER_ETH = 10 ** 18
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

RESOURCE_MODEL_DETAILS = "model-details"
RESOURCE_DEPOSIT = "deposit"
RESOURCE_COMPETITION_ENTRY = "competition-entry"

RESOURCE_DESCRIPTIONS = {
    RESOURCE_MODEL_DETAILS: "View model details and analytics",
    RESOURCE_DEPOSIT: "Deposit funds into AI model",
    RESOURCE_COMPETITION_ENTRY: "Enter model into competition",
}


def eth_to_wei(amount: str) -> int:
    """Convert a decimal ETH string to wei without float rounding."""
    return int(Decimal(amount) * WEI_PER_ETH)


def wei_to_eth(wei: int) -> str:
    """Format wei as a decimal ETH string (no exponent, no trailing zeros)."""
    value = Decimal(wei) / WEI_PER_ETH
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


@dataclass(frozen=True)
class FeeRule:
    """Payment terms for one resource type."""
    resource_type: str
    amount: str
    currency: str
    destination: str
    description: str = "Gated resource"
    fallback: bool = False

    @property
    def amount_wei(self) -> int:
        return eth_to_wei(self.amount)

    def to_dict(self) -> Dict[str, object]:
        return {
            "resourceType": self.resource_type,
            "amount": self.amount,
            "amountWei": str(self.amount_wei),
            "currency": self.currency,
            "paymentAddress": self.destination,
            "description": self.description,
        }


class FeeSchedule:
    """
    Static mapping of resource type to FeeRule.

    ``lookup`` never fails: unknown types get the default rule.
    """

    def __init__(self, rules: Dict[str, FeeRule], default_rule: FeeRule):
        self._rules = dict(rules)
        self._default_rule = default_rule

    @classmethod
    def from_settings(cls, settings) -> "FeeSchedule":
        """Build the schedule from application settings."""
        destination = settings.PAYMENT_WALLET_ADDRESS
        if not destination:
            logger.warning("PAYMENT_WALLET_ADDRESS not configured - using placeholder")
            destination = ZERO_ADDRESS

        currency = settings.PAYMENT_CURRENCY
        configured = {
            RESOURCE_MODEL_DETAILS: settings.VIEW_DETAILS_FEE,
            RESOURCE_DEPOSIT: settings.DEPOSIT_FEE,
            RESOURCE_COMPETITION_ENTRY: settings.COMPETITION_ENTRY_FEE,
        }
        rules = {
            resource_type: FeeRule(
                resource_type=resource_type,
                amount=amount,
                currency=currency,
                destination=destination,
                description=RESOURCE_DESCRIPTIONS[resource_type],
            )
            for resource_type, amount in configured.items()
        }
        default_rule = FeeRule(
            resource_type="*",
            amount=settings.DEFAULT_FEE,
            currency=currency,
            destination=destination,
            fallback=True,
        )
        return cls(rules, default_rule)

    def lookup(self, resource_type: Optional[str]) -> FeeRule:
        """
        Get the fee rule for a resource type.

        Args:
            resource_type: Resource type requested by the client

        Returns:
            The configured FeeRule, or the default rule (with
            ``fallback=True`` and the requested type filled in)
        """
        rule = self._rules.get(resource_type or "")
        if rule is not None:
            return rule

        logger.warning(
            f"No fee configured for resource type '{resource_type}', "
            f"applying default fee {self._default_rule.amount} {self._default_rule.currency}"
        )
        return replace(self._default_rule, resource_type=resource_type or "")

    def rules(self) -> List[FeeRule]:
        """All explicitly configured rules, in configuration order."""
        return list(self._rules.values())

    @property
    def default_rule(self) -> FeeRule:
        return self._default_rule
