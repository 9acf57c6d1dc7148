from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Run shape
    RUN_MODE: str = "full"  # "full" | "sample"
    SAMPLE_SIZE: int = 10
    CONCURRENCY: int = 5
    MAX_RETRIES: int = 3

    # Browser timeouts
    NAV_TIMEOUT_MS: int = 30_000
    TABLE_TIMEOUT_MS: int = 10_000
    ATTEMPT_TIMEOUT: float = 45.0
    RETRY_BASE_DELAY: float = 2.0
    BATCH_DELAY: float = 0.5
    HEADLESS: bool = True

    # Sources
    REGION_DIRECTORY_URL: str = "https://api.donut.im/api/v1/regions/list"
    QUOTA_URL: str = "https://ev.or.kr/nportal/buySupprt/initSubsidyPaymentCheckAction.do"
    PRICE_URL: str = "https://ev.or.kr/nportal/buySupprt/psPopupLocalCarModelPrice.do"
    PRICE_YEAR: int = 2025
    PRICE_CAR_TYPE: str = "11"
    PRICE_UNIT: int = 10_000

    # Row acceptance thresholds (upstream layout drifts between seasons)
    QUOTA_MIN_CELLS: int = 10
    QUOTA_WIDE_MIN_CELLS: int = 24
    PRICE_MIN_CELLS: int = 6
    QUOTA_SINGLE_FETCH: bool = False

    # Keyword summary
    TARGET_MANUFACTURER: str = "폭스바겐"
    TARGET_KEYWORDS: str = "ID.4,ID.5,ID.7,ID.버즈"

    # Output
    DATA_DIR: str = "data"
    PRIOR_STATE_SOURCE: str = "snapshot"  # "snapshot" | "sheet"
    GOOGLE_SHEETS_ID: str = ""
    GOOGLE_SERVICE_ACCOUNT_FILE: str = "service_account.json"
    SHEET_QUOTA: str = "접수현황"
    SHEET_QUOTA_FAIL: str = "Fail Data_Quota"
    SHEET_PRICE: str = "보조금 ALL"
    SHEET_PRICE_SUMMARY: str = "보조금 DATA"
    SHEET_PRICE_FAIL: str = "Fail Data"

    # Jobs
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    SCRAPE_CRON_HOUR: int = 6

    class Config:
        env_file = ".env"

    @property
    def keywords(self) -> list[str]:
        return [k.strip() for k in self.TARGET_KEYWORDS.split(",") if k.strip()]

    @property
    def sample_mode(self) -> bool:
        return self.RUN_MODE.lower() == "sample"


@lru_cache
def get_settings() -> Settings:
    return Settings()
