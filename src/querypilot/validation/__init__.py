from .validator import Correction, CorrectionType, QueryValidator, ValidationResult

__all__ = ["Correction", "CorrectionType", "QueryValidator", "ValidationResult"]
