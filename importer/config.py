"""Configuration for the Humanitix importer."""
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from humanitix.api_client import DEFAULT_BASE_URL

DEFAULT_MEMORY_LIMIT_MB = 512


class ConfigurationError(Exception):
    """Raised when the importer cannot run with the given configuration."""


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


@dataclass
class ImporterSettings:
    """Deployment settings, read from environment variables."""
    api_key: str = ''
    org_id: str = ''
    api_endpoint: str = DEFAULT_BASE_URL
    table_name: str = 'humanitix-events'
    media_bucket: str = ''
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    batch_size: int = 25
    memory_target_mb: int = 128
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    max_pages: int = 10
    import_limit: Optional[int] = None
    create_venues: bool = True
    create_organizers: bool = True
    fetch_images: bool = True

    @classmethod
    def from_env(cls) -> 'ImporterSettings':
        """
        Build settings from the process environment.

        Returns:
            ImporterSettings

        Raises:
            ConfigurationError: If a numeric variable is not an integer
        """
        memory_limit = _env_int('MEMORY_LIMIT_MB', None)
        if memory_limit is None:
            memory_limit = _env_int('AWS_LAMBDA_FUNCTION_MEMORY_SIZE', DEFAULT_MEMORY_LIMIT_MB)

        return cls(
            api_key=os.environ.get('HUMANITIX_API_KEY', '').strip(),
            org_id=os.environ.get('HUMANITIX_ORG_ID', '').strip(),
            api_endpoint=os.environ.get('HUMANITIX_API_ENDPOINT') or DEFAULT_BASE_URL,
            table_name=os.environ.get('TABLE_NAME', 'humanitix-events'),
            media_bucket=os.environ.get('MEDIA_BUCKET', ''),
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=_env_int('TIMEOUT_SECONDS', 30),
            batch_size=_env_int('BATCH_SIZE', 25),
            memory_target_mb=_env_int('MEMORY_TARGET_MB', 128),
            memory_limit_mb=memory_limit,
            max_pages=_env_int('MAX_PAGES', 10),
            import_limit=_env_int('IMPORT_LIMIT', None),
            create_venues=_env_bool('CREATE_VENUES', True),
            create_organizers=_env_bool('CREATE_ORGANIZERS', True),
            fetch_images=_env_bool('FETCH_IMAGES', True)
        )

    def validate(self) -> None:
        """Raise ConfigurationError for settings that make a run impossible."""
        if not self.api_key:
            raise ConfigurationError(
                'HUMANITIX_API_KEY is not set; cannot contact the Humanitix API'
            )
        if self.batch_size < 1:
            raise ConfigurationError('BATCH_SIZE must be at least 1')
        if self.memory_target_mb < 1 or self.memory_limit_mb < 1:
            raise ConfigurationError('Memory settings must be positive')


@dataclass(frozen=True)
class ImportOptions:
    """Options for a single import run."""
    limit: Optional[int] = None
    start_page: int = 1
    max_pages: int = 10
    create_venues: bool = True
    create_organizers: bool = True
    fetch_images: bool = True

    @classmethod
    def from_settings(cls, settings: ImporterSettings) -> 'ImportOptions':
        return cls(
            limit=settings.import_limit,
            max_pages=settings.max_pages,
            create_venues=settings.create_venues,
            create_organizers=settings.create_organizers,
            fetch_images=settings.fetch_images
        )

    @classmethod
    def from_payload(
        cls,
        payload: Optional[Mapping[str, Any]],
        settings: ImporterSettings
    ) -> 'ImportOptions':
        """
        Apply per-invocation overrides on top of the deployment defaults.

        Args:
            payload: Options mapping from the trigger event (may be None)
            settings: Deployment settings

        Returns:
            ImportOptions
        """
        options = cls.from_settings(settings)
        if not payload:
            return options

        overrides: Dict[str, Any] = {}
        for key in ('limit', 'start_page', 'max_pages'):
            if payload.get(key) is not None:
                try:
                    overrides[key] = int(payload[key])
                except (TypeError, ValueError):
                    raise ConfigurationError(f"Option '{key}' must be an integer")
        for key in ('create_venues', 'create_organizers', 'fetch_images'):
            if key in payload:
                overrides[key] = _as_bool(payload[key])

        options = replace(options, **overrides)
        if options.start_page < 1:
            options = replace(options, start_page=1)
        return options
