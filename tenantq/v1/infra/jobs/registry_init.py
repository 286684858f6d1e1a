"""
Job type registration.

Registers the built-in batch job types with the global job type registry.
"""

import logging

from tenantq.v1.core.registries import JobTypeConfig, job_type_registry

logger = logging.getLogger(__name__)

BUILTIN_JOB_TYPES = (
    JobTypeConfig(
        name="seo",
        display_name="Basic SEO Optimization",
        item_noun="products",
        progress_verb="Optimizing",
        success_verb="optimized",
    ),
    JobTypeConfig(
        name="seoApply",
        display_name="SEO Apply",
        item_noun="products",
        progress_verb="Applying",
        success_verb="applied",
    ),
    JobTypeConfig(
        name="aiEnhance",
        display_name="AI Enhancement",
        item_noun="products",
        progress_verb="Enhancing",
        success_verb="enhanced",
        seconds_per_item=2.8,
    ),
    JobTypeConfig(
        name="collectionSeo",
        display_name="Collection SEO Optimization",
        item_noun="collections",
        progress_verb="Optimizing",
        success_verb="optimized",
    ),
    JobTypeConfig(
        name="collectionAiEnhance",
        display_name="Collection AI Enhancement",
        item_noun="collections",
        progress_verb="Enhancing",
        success_verb="enhanced",
        seconds_per_item=2.8,
    ),
    JobTypeConfig(
        name="schema",
        display_name="Advanced Schema Generation",
        item_noun="schemas",
        progress_verb="Generating",
        success_verb="generated",
        batch_size=1,
        max_attempts=2,
    ),
)


def register_job_types() -> None:
    """Register the built-in job types with the job type registry."""

    for config in BUILTIN_JOB_TYPES:
        if config.name not in job_type_registry:
            job_type_registry.add(config)

    logger.info(
        "Job types registered", extra={"registered_types": job_type_registry.list()}
    )


# Auto-register job types when module is imported
register_job_types()
