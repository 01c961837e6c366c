from .labels import CATEGORIES, DEFAULT_CATEGORY, CategoryResult, CategorySource, is_valid_category
from .errors import ClassificationError, ClassifierRateLimitError, ModelNotFoundError
from .cache import ClassificationCache, RequestBudget
from .health import ClassifierHealth
from .upstream import TextGenerator, OpenAICompatibleGenerator, UnconfiguredGenerator
from .model_manager import ModelManager
from .classifier import TaskClassifier
from .batch_classifier import BatchClassifier, BatchOutcome, BatchProgress
