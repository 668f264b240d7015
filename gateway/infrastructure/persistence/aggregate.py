from typing import Iterable

from gateway.domain.models.usage import ModelUsageTotals, UsageRecord, UsageTotals


def aggregate_usage(records: Iterable[UsageRecord]) -> UsageTotals:
    """Group usage records by model and compute the grand total"""
    totals = UsageTotals()
    for record in records:
        entry = totals.per_model.setdefault(record.model, ModelUsageTotals())
        entry.input_tokens += record.input_tokens
        entry.output_tokens += record.output_tokens
        entry.total_tokens += record.total_tokens
        entry.total_cost += record.cost
        entry.request_count += 1

        totals.grand_total.total_cost += record.cost
        totals.grand_total.total_tokens += record.total_tokens
        totals.grand_total.request_count += 1
    return totals
