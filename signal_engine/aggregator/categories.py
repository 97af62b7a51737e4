"""Dashboard metric categories."""

from enum import Enum


class MetricCategory(str, Enum):
    """Groups of metrics shown together on the dashboard."""

    USAGE = "usage"
    TVL = "tvl"
    CASHFLOW = "cashflow"


CATEGORY_METRICS: dict[MetricCategory, tuple[str, ...]] = {
    MetricCategory.USAGE: (
        "dailyActiveAddresses",
        "newAddresses",
        "dailyTransactions",
        "transactionVolume",
        "averageFee",
        "hashRate",
    ),
    MetricCategory.TVL: (
        "chainTVL",
        "chainTVLChange24h",
        "chainTVLChange7d",
        "chainTVLChange30d",
        "tvlDominance",
        "tvlRank",
        "tvlPeak",
        "tvlToMarketCapRatio",
        "defiTVL",
        "stakingTVL",
        "bridgeTVL",
        "lendingTVL",
        "dexTVL",
        "yieldTVL",
    ),
    MetricCategory.CASHFLOW: (
        "bridgeFlows",
        "exchangeFlows",
        "stakingMetrics",
        "miningValidation",
    ),
}


def metrics_for(category: MetricCategory | str) -> tuple[str, ...]:
    """Metric names belonging to a category."""
    return CATEGORY_METRICS[MetricCategory(category)]


def category_of(metric_name: str) -> MetricCategory | None:
    """Category of a metric, if it belongs to one."""
    for category, names in CATEGORY_METRICS.items():
        if metric_name in names:
            return category
    return None
