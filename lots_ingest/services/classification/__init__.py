"""Lot classification through an external chat-completions provider."""
from .categories import ALLOWED_CATEGORIES, CATEGORY_HINTS, CATEGORY_TREE, clean_categories
from .classifier import LotClassifier
from .client import ChatCompletionClient
from .errors import ClassificationError, ClassifierResponseError, PaymentRequiredError, RateLimitedError
from .manager import ClassificationManager

__all__ = [
    "ALLOWED_CATEGORIES",
    "CATEGORY_HINTS",
    "CATEGORY_TREE",
    "clean_categories",
    "LotClassifier",
    "ChatCompletionClient",
    "ClassificationError",
    "ClassifierResponseError",
    "PaymentRequiredError",
    "RateLimitedError",
    "ClassificationManager",
]
