from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    database_url: str = 'sqlite:///./casedesk.db'

    server_url: str = 'http://localhost:3000/api'
    request_timeout_seconds: float = 10

    sync_enabled: bool = True
    sync_interval_seconds: int = 60
    sync_batch_size: int = 50
    sync_max_retries: int = 8
    sync_backoff_base_seconds: int = 30
    sync_backoff_max_seconds: int = 3600

    # Attendance rows are keyed by the calendar day in this zone.
    attendance_timezone: str = 'UTC'

    log_level: str = 'INFO'
    log_format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @property
    def database_url_normalized(self) -> str:
        url = self.database_url.strip()
        if '://' not in url:
            return f'sqlite:///{url}'
        return url


settings = Settings()
