"""scaffoldkit scaffolder -- renders template directories into new projects.

Placeholder substitution, template rendering, the step-based transaction
engine with rollback, and the plugin-free generation engine built on them.

Quick usage::

    from scaffoldkit.scaffolder import GenerationRequest, ScaffoldEngine

    engine = ScaffoldEngine("/path/to/kit")
    request = GenerationRequest(target_path="/tmp/demo", project_name="demo")
    result = await engine.generate_project("/path/to/template", request)
"""

from scaffoldkit.scaffolder.engine import GenerationRequest, GenerationResult, ScaffoldEngine
from scaffoldkit.scaffolder.substitution import VariableSubstitutor, canonical_variables, substitute
from scaffoldkit.scaffolder.templates import TemplateRenderer, TemplateRenderError
from scaffoldkit.scaffolder.transaction import (
    CommonSteps,
    GenerationState,
    RollbackReport,
    ScaffoldTransaction,
    TransactionStatus,
    TransactionStep,
    TransactionStepError,
)
from scaffoldkit.scaffolder.verifier import ProjectVerifier, VerificationError, VerificationResult

__all__ = [
    "CommonSteps",
    "GenerationRequest",
    "GenerationResult",
    "GenerationState",
    "ProjectVerifier",
    "RollbackReport",
    "ScaffoldEngine",
    "ScaffoldTransaction",
    "TemplateRenderError",
    "TemplateRenderer",
    "TransactionStatus",
    "TransactionStep",
    "TransactionStepError",
    "VariableSubstitutor",
    "VerificationError",
    "VerificationResult",
    "canonical_variables",
    "substitute",
]
