"""
Feature Access
==============

Feature sets granted by the premium entitlement.
"""

# Granted to everyone without an active subscription
BASIC_FEATURES = ["basic_features"]

# Granted by an active subscription
PREMIUM_FEATURES = [
    "create_listings",
    "host_events",
    "advanced_analytics",
    "priority_support",
    "live_streaming",
    "community_management",
]


def get_features(is_premium: bool) -> list[str]:
    """Get the feature list for a user's entitlement."""
    return list(PREMIUM_FEATURES if is_premium else BASIC_FEATURES)


def has_feature(is_premium: bool, feature: str) -> bool:
    """Check if an entitlement grants a specific feature."""
    return feature in get_features(is_premium)
