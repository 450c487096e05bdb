"""Cheap pre-flight check that turns away questions unrelated to the contract."""
import re
import logging

logger = logging.getLogger(__name__)

GUIDANCE_MESSAGE = (
    "I'm designed to answer questions about your union contract. Please ask a question "
    "related to your contract's terms, policies, or provisions, and I'll provide specific "
    "information with references to the relevant sections."
)

# Any of these keeps a message on-topic, whatever else it says.
CONTRACT_TERMS = (
    "contract", "union", "agreement", "cba", "jcba", "article", "section", "provision", "clause",
    "pay", "wage", "salary", "overtime", "premium", "per diem", "bonus", "holiday",
    "reserve", "call-out", "callout", "standby", "ready reserve", "airport standby",
    "seniority", "bid", "bidding", "line", "schedule", "scheduling", "pairing", "trip", "rotation",
    "duty", "rest", "layover", "deadhead", "turn", "reassign", "junior", "drafting",
    "vacation", "sick", "leave", "fmla", "maternity", "bereavement", "jury",
    "grievance", "discipline", "termination", "probation", "furlough", "recall",
    "crew", "flight attendant", "pilot", "purser", "captain", "first officer",
    "hotel", "uniform", "training", "benefit", "insurance", "pension", "401k", "retirement",
    "hours", "credit", "guarantee", "minimum", "days off", "trade", "swap", "drop", "pick up",
)

OFF_TOPIC_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\btell me a (joke|story)\b",
        r"\b(write|compose) (me )?(a |an )?(poem|song|story|essay|haiku|limerick|rap)\b",
        r"\b(recipe|cook|bake|ingredients?)\b",
        r"\bweather\b",
        r"\b(who won|score of|scores?|nba|nfl|mlb|nhl|super bowl|world cup)\b",
        r"\b(write|debug|fix) (some |this |my )?(code|script|function|program|sql|python|javascript)\b",
        r"\btranslate\b",
        r"\b(homework|math problem|solve for x|equation)\b",
        r"\b(stock|crypto|bitcoin|ethereum) (price|tip|pick)s?\b",
        r"\b(movie|tv show|netflix|celebrity|horoscope|zodiac)\b",
        r"\b(capital of|population of|meaning of life)\b",
        r"\b(ignore (all |your )?(previous |prior )?instructions|pretend you are|act as)\b",
    )
]

_TERM_PATTERNS = [re.compile(r"\b" + re.escape(term) + r"s?\b", re.IGNORECASE) for term in CONTRACT_TERMS]


def mentions_contract(text: str) -> bool:
    return any(p.search(text) for p in _TERM_PATTERNS)


def is_off_topic(text: str) -> bool:
    """
    Heuristic off-topic classification; no remote call.

    A message is off-topic only when it matches a known off-topic pattern
    and carries no contract vocabulary. Misclassification costs UX, not
    correctness.
    """
    if not text or not text.strip():
        return False

    if mentions_contract(text):
        return False

    for pattern in OFF_TOPIC_PATTERNS:
        if pattern.search(text):
            logger.info(f"Off-topic pattern matched: {pattern.pattern}")
            return True

    return False
