from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # SMTP
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_from_address: str = "noreply@your-company.com"
    smtp_from_name: str = "HR Operations"

    # Google Workspace: service-account key file (refreshed tokens) or a fixed bearer token
    google_service_account_file: str = ""
    google_delegated_admin: str = ""
    google_api_token: str = ""
    roster_spreadsheet_id: str = ""
    employee_id_ledger_sheet: str = "編碼紀錄"

    # Business settings overrides (JSON object file, see settings_service)
    hr_settings_file: str = ""

    # Documents
    documents_root: str = "documents"
    document_templates_dir: str = "document_templates"
    document_ready_poll_seconds: float = 3.0
    document_ready_timeout_seconds: float = 30.0

    # Approval workflow
    public_base_url: str = "http://localhost:8000"
    approval_token_ttl_seconds: int = 3600

    # Admin job triggers
    admin_api_token: str = "CHANGE_ME"

    # Operator channel
    slack_webhook_url: str = ""

    # Scheduler
    scheduler_enabled: bool = True
    timezone: str = "Asia/Taipei"
    group_sync_hour: int = 6
    birthday_report_hour: int = 9
    employee_report_hour: int = 9
    payment_notice_day: int = 20
    payment_notice_hour: int = 10

    debug: bool = False

    @property
    def review_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/api/birthday-report/review"

    @property
    def documents_path(self) -> Path:
        return Path(self.documents_root)

    @property
    def document_templates_path(self) -> Path:
        return Path(self.document_templates_dir)

    model_config = {"env_file": ".env", "extra": "ignore"}

    def validate_secrets(self) -> None:
        """Raise if production-critical secrets are still defaults."""
        if self.admin_api_token == "CHANGE_ME":
            raise ValueError("admin_api_token must be changed from default")
        if len(self.admin_api_token) < 32:
            raise ValueError("admin_api_token must be at least 32 characters")
        parsed = urlparse(self.public_base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("public_base_url must be a valid http(s) URL")
        if self.approval_token_ttl_seconds <= 0:
            raise ValueError("approval_token_ttl_seconds must be positive")


settings = Settings()
