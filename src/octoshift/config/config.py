"""Configuration management for Octoshift."""

from typing import Optional, Dict, Any
from pathlib import Path
import os

from pydantic import BaseModel, ConfigDict, Field, field_validator
import yaml
from dotenv import load_dotenv

DEFAULT_GITHUB_API_URL = 'https://api.github.com'
DEFAULT_ADO_SERVER_URL = 'https://dev.azure.com'


class ClientSettings(BaseModel):
    """Retry, rate limit and paging settings shared by every API client."""

    timeout: float = Field(default=100.0, description='Request timeout in seconds')
    retry_delay: float = Field(
        default=1.0, description='Seconds between retries of transient failures'
    )
    max_retries: int = Field(
        default=5, description='Retries of transient failures per call'
    )
    secondary_rate_limit_base_delay: float = Field(
        default=60.0,
        description='First secondary rate limit backoff, doubled on each retry',
    )
    secondary_rate_limit_max_retries: int = Field(
        default=3, description='Secondary rate limit backoff steps before giving up'
    )
    graphql_page_size: int = Field(default=100, description='GraphQL `first` value')
    ado_page_size: int = Field(default=1000, description='ADO $top page size')
    bbs_page_size: int = Field(default=100, description='Bitbucket page limit')
    operation_retry_interval: float = Field(
        default=4.0,
        description='Base seconds between operation retries, multiplied by the retry number',
    )
    operation_max_retries: int = Field(
        default=5, description='Retries of a failed or unfinished operation'
    )

    @field_validator(
        'timeout',
        'retry_delay',
        'secondary_rate_limit_base_delay',
        'operation_retry_interval',
    )
    @classmethod
    def validate_delay(cls, v):
        """Validate delays are not negative."""
        if v < 0:
            raise ValueError('Delays must not be negative')
        return v

    @field_validator(
        'max_retries', 'secondary_rate_limit_max_retries', 'operation_max_retries'
    )
    @classmethod
    def validate_retries(cls, v):
        """Validate retry bounds are not negative."""
        if v < 0:
            raise ValueError('Retry counts must not be negative')
        return v

    @field_validator('graphql_page_size', 'ado_page_size', 'bbs_page_size')
    @classmethod
    def validate_page_size(cls, v):
        """Validate page sizes are positive."""
        if v <= 0:
            raise ValueError('Page sizes must be positive')
        return v


def _validate_url(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if not v.startswith(('http://', 'https://')):
        raise ValueError('URL must start with http:// or https://')
    return v.rstrip('/')


class GithubConfig(BaseModel):
    """Configuration for a GitHub (or GHES) endpoint."""

    api_url: str = Field(default=DEFAULT_GITHUB_API_URL, description='API base URL')
    pat: Optional[str] = Field(default=None, description='Personal access token')

    @field_validator('api_url')
    @classmethod
    def validate_api_url(cls, v):
        """Validate API URL format."""
        return _validate_url(v)

    @property
    def graphql_url(self) -> str:
        if self.api_url == DEFAULT_GITHUB_API_URL:
            return f'{self.api_url}/graphql'
        # GHES serves GraphQL beside /api/v3
        return self.api_url.replace('/api/v3', '/api') + '/graphql'


class AdoConfig(BaseModel):
    """Configuration for Azure DevOps."""

    server_url: str = Field(default=DEFAULT_ADO_SERVER_URL, description='Server URL')
    pat: Optional[str] = Field(default=None, description='Personal access token')

    @field_validator('server_url')
    @classmethod
    def validate_server_url(cls, v):
        """Validate server URL format."""
        return _validate_url(v)


class BbsConfig(BaseModel):
    """Configuration for Bitbucket Server."""

    server_url: Optional[str] = Field(default=None, description='Server URL')
    username: Optional[str] = Field(default=None, description='Username')
    password: Optional[str] = Field(default=None, description='Password')

    @field_validator('server_url')
    @classmethod
    def validate_server_url(cls, v):
        """Validate server URL format."""
        return _validate_url(v)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default='INFO', description='Log level')
    file: Optional[str] = Field(default=None, description='Log file path')
    verbose_file: Optional[str] = Field(
        default=None, description='Verbose log file path (always DEBUG)'
    )
    format: Optional[str] = Field(default=None, description='Log format')

    @field_validator('level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class Config(BaseModel):
    """Main configuration class for Octoshift."""

    model_config = ConfigDict(extra='forbid')

    github: GithubConfig = Field(
        default_factory=GithubConfig, description='Target GitHub settings'
    )
    github_source: Optional[GithubConfig] = Field(
        default=None, description='Source GitHub settings (GitHub to GitHub)'
    )
    ado: AdoConfig = Field(default_factory=AdoConfig, description='Azure DevOps settings')
    bbs: BbsConfig = Field(default_factory=BbsConfig, description='Bitbucket settings')
    client: ClientSettings = Field(
        default_factory=ClientSettings, description='API client settings'
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description='Logging settings'
    )

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Load configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        # Load .env file if it exists
        load_dotenv()

        config_data = {
            'github': {
                'api_url': os.getenv('GH_API_URL'),
                'pat': os.getenv('GH_PAT'),
            },
            'github_source': {
                'api_url': os.getenv('GH_SOURCE_API_URL'),
                'pat': os.getenv('GH_SOURCE_PAT'),
            },
            'ado': {
                'server_url': os.getenv('ADO_SERVER_URL'),
                'pat': os.getenv('ADO_PAT'),
            },
            'bbs': {
                'server_url': os.getenv('BBS_SERVER_URL'),
                'username': os.getenv('BBS_USERNAME'),
                'password': os.getenv('BBS_PASSWORD'),
            },
            'client': {
                'timeout': os.getenv('OCTOSHIFT_TIMEOUT'),
                'retry_delay': os.getenv('OCTOSHIFT_RETRY_DELAY'),
                'max_retries': os.getenv('OCTOSHIFT_MAX_RETRIES'),
            },
            'logging': {
                'level': os.getenv('LOG_LEVEL'),
                'file': os.getenv('LOG_FILE'),
                'verbose_file': os.getenv('VERBOSE_LOG_FILE'),
            },
        }

        # Remove None values
        config_data = cls._remove_none_values(config_data)
        if not config_data.get('github_source'):
            config_data.pop('github_source', None)

        return cls(**config_data)

    @staticmethod
    def _remove_none_values(data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively remove None values from dictionary."""
        if isinstance(data, dict):
            return {
                k: Config._remove_none_values(v)
                for k, v in data.items()
                if v is not None
            }
        return data

    def secrets(self) -> list:
        """Credentials that must never reach a log line."""
        values = [self.github.pat, self.ado.pat, self.bbs.password]
        if self.github_source:
            values.append(self.github_source.pat)
        return [value for value in values if value]

    def to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                self.model_dump(exclude_none=True),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )

    @staticmethod
    def create_template(output_path: str) -> None:
        """Create a configuration template file."""
        template_config = {
            'github': {
                'api_url': DEFAULT_GITHUB_API_URL,
                'pat': 'your-github-personal-access-token',
            },
            'ado': {
                'server_url': DEFAULT_ADO_SERVER_URL,
                'pat': 'your-ado-personal-access-token',
            },
            'bbs': {
                'server_url': 'https://bitbucket.example.com',
                'username': 'your-bitbucket-username',
                'password': 'your-bitbucket-password',
            },
            'client': ClientSettings().model_dump(),
            'logging': {
                'level': 'INFO',
                'file': 'octoshift.log',
                'verbose_file': 'octoshift.verbose.log',
            },
        }

        config_file = Path(output_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                template_config, f, default_flow_style=False, indent=2, sort_keys=False
            )
