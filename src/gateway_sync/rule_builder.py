"""
Gateway rule expression building.

Rules reference the uploaded lists through wirefilter expressions of the
form ``any(dns.domains[*] in $<list-id>) or ...``.
"""

from typing import Sequence

from .config import DEFAULT_RULE_PREFIX
from .enums import MatchField, RuleFilter
from .models import RuleDefinition


def build_expression(list_ids: Sequence[object], match_field: MatchField) -> str:
    """
    Build a wirefilter expression matching any of the given lists.

    Args:
        list_ids: Remote list ids, in chunk creation order
        match_field: Traffic field to match against the lists

    Returns:
        The OR-joined expression, or an empty string when there are no ids.
        An empty expression means the rule must not be created or updated.
    """
    field_name = match_field.value if isinstance(match_field, MatchField) else str(match_field)
    return " or ".join(f"any({field_name}[*] in ${list_id})" for list_id in list_ids)


class RuleExpressionBuilder:
    """Builds the named DNS and SNI rules for one list namespace."""

    SNI_SUFFIX = " - SNI Based Filtering"

    def __init__(self, rule_prefix: str = DEFAULT_RULE_PREFIX) -> None:
        self._rule_prefix = rule_prefix

    @property
    def dns_rule_name(self) -> str:
        return self._rule_prefix

    @property
    def sni_rule_name(self) -> str:
        return f"{self._rule_prefix}{self.SNI_SUFFIX}"

    def managed_rule_names(self) -> frozenset[str]:
        """Names of every rule this builder can produce."""
        return frozenset({self.dns_rule_name, self.sni_rule_name})

    def build_rules(self, list_ids: Sequence[object], enable_sni: bool = False) -> list[RuleDefinition]:
        """
        Build the rule definitions referencing list_ids.

        Returns the DNS rule, followed by the SNI rule when enabled. Rules
        whose expression would be empty are left out.
        """
        rules = [
            RuleDefinition(
                name=self.dns_rule_name,
                expression=build_expression(list_ids, MatchField.DNS_DOMAINS),
                filters=[RuleFilter.DNS.value],
            )
        ]
        if enable_sni:
            rules.append(
                RuleDefinition(
                    name=self.sni_rule_name,
                    expression=build_expression(list_ids, MatchField.SNI_DOMAINS),
                    filters=[RuleFilter.L4.value],
                )
            )
        return [rule for rule in rules if rule.expression]
