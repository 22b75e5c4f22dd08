from .classification import DEFAULT_CLASSIFICATION, FieldClassification
from .transformer import FieldTransformer

__all__ = ["DEFAULT_CLASSIFICATION", "FieldClassification", "FieldTransformer"]
