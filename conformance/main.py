"""
Entry point wiring settings, resource configuration and collaborators into a run.
"""

from collections.abc import Iterable

from conformance.config.logging import get_logger
from conformance.config.resources import get_catalog
from conformance.config.settings import Settings, get_settings
from conformance.engine.context import RunOptions
from conformance.engine.coordinator import RunCoordinator
from conformance.errors import MissingConfigurationError
from conformance.models.results import RunReport
from conformance.sequences import build_catalog_sequences
from conformance.services.fhir_client import FHIRHttpClient
from conformance.services.profile_validation import RemoteProfileValidator

logger = get_logger(__name__)


def run_options(settings: Settings) -> RunOptions:
    return RunOptions(
        max_search_pages=settings.max_search_pages,
        max_reference_checks=settings.max_reference_checks,
        strict_search_matching=settings.strict_search_matching,
    )


async def run_conformance(
    base_url: str | None = None,
    patient_id: str | None = None,
    token: str | None = None,
    resource_types: Iterable[str] | None = None,
    settings: Settings | None = None,
) -> RunReport:
    """
    Run the configured sequences against a FHIR server.

    Arguments left as None fall back to settings.

    Raises:
        MissingConfigurationError: If no FHIR base URL is configured
        UnknownResourceTypeError: If a selected resource type is not configured
    """
    settings = settings or get_settings()
    base_url = base_url or settings.fhir_base_url
    if not base_url:
        raise MissingConfigurationError(
            "fhir_base_url", "Set FHIR_CONFORMANCE_FHIR_BASE_URL or pass --base-url"
        )
    patient_id = patient_id or settings.patient_id
    token = settings.bearer_token if token is None else token

    catalog = get_catalog()
    sequences = build_catalog_sequences(catalog)
    if resource_types is None:
        resource_types = catalog.ordered_types()

    validator = RemoteProfileValidator(settings.validator_url) if settings.validator_url else None
    if validator is None:
        logger.info("No validator_url configured, profile validation tests will be omitted")

    async with FHIRHttpClient(base_url, token=token, timeout=settings.request_timeout) as client:
        coordinator = RunCoordinator(
            sequences=sequences,
            client_factory=client.fork,
            capability_source=client,
            validator=validator,
            options=run_options(settings),
            fhir_version=settings.fhir_version,
            max_concurrent_sequences=settings.max_concurrent_sequences,
        )
        try:
            return await coordinator.start_run(patient_id, token, list(resource_types))
        finally:
            if validator is not None:
                await validator.aclose()
