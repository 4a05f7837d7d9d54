"""
Custom Hypothesis Strategies for the Service Runtime

Service names, error messages and event payloads.
"""
import string

from hypothesis import strategies as st

from core.errors import (
    ErrorCategory,
    PlatformError,
    RepositoryError,
    ServiceMissingError,
)

NAME_ALPHABET = string.ascii_lowercase + string.digits + "_"

# Words that trigger a textual classification rule
RULE_KEYWORDS = [
    "telegram", "webapp", "platform",
    "database", "supabase", "repository",
    "service", "dicontainer", "missing required",
    "network", "fetch", "timeout",
    "auth", "login", "user",
    "failed to load", "script", "404",
]


def service_name_strategy():
    """Identifier-like service names."""
    return st.text(alphabet=NAME_ALPHABET, min_size=1, max_size=20).filter(
        lambda s: s[0].isalpha()
    )


def distinct_names_strategy(min_size=1, max_size=8):
    return st.lists(service_name_strategy(), min_size=min_size, max_size=max_size, unique=True)


def neutral_message_strategy():
    """Messages that match no classification rule."""
    return st.text(alphabet="qxzj ", min_size=1, max_size=30)


def error_message_strategy():
    """Arbitrary text, sometimes seeded with a rule keyword."""
    return st.one_of(
        st.text(max_size=60),
        st.builds(
            lambda prefix, word, suffix: f"{prefix}{word}{suffix}",
            st.text(max_size=10),
            st.sampled_from(RULE_KEYWORDS),
            st.text(max_size=10),
        ),
    )


def typed_error_strategy():
    """Typed errors paired with the category they carry."""
    return st.one_of(
        st.builds(lambda m: (RepositoryError(m), ErrorCategory.DATABASE), error_message_strategy()),
        st.builds(lambda m: (PlatformError(m), ErrorCategory.TELEGRAM), error_message_strategy()),
        st.builds(
            lambda m: (ServiceMissingError(m, "svc"), ErrorCategory.SERVICE),
            error_message_strategy(),
        ),
    )


def payload_strategy():
    return st.one_of(
        st.none(),
        st.integers(),
        st.text(max_size=20),
        st.dictionaries(st.text(max_size=5), st.integers(), max_size=3),
    )
