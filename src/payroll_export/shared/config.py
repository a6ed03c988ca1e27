"""Shared configuration for the payroll export services."""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import ConfigurationMissing


class PayrollExportConfig(BaseSettings):
    """Environment-driven settings for OAuth, Fortnox, storage and bank files."""

    # Fortnox OAuth
    fortnox_client_id: Optional[str] = Field(default=None, alias="FORTNOX_CLIENT_ID")
    fortnox_client_secret: Optional[str] = Field(
        default=None, alias="FORTNOX_CLIENT_SECRET"
    )
    fortnox_redirect_uri: Optional[str] = Field(
        default=None, alias="FORTNOX_REDIRECT_URI"
    )
    fortnox_auth_url: str = Field(
        default="https://apps.fortnox.se/oauth-v1/auth", alias="FORTNOX_AUTH_URL"
    )
    fortnox_token_url: str = Field(
        default="https://apps.fortnox.se/oauth-v1/token", alias="FORTNOX_TOKEN_URL"
    )
    fortnox_scope: str = Field(default="salary", alias="FORTNOX_SCOPE")
    fortnox_account_type: str = Field(default="service", alias="FORTNOX_ACCOUNT_TYPE")

    # Fortnox REST API
    fortnox_api_base_url: str = Field(
        default="https://api.fortnox.se/3", alias="FORTNOX_API_BASE_URL"
    )
    fortnox_debug: bool = Field(default=False, alias="FORTNOX_DEBUG")

    # Default employment-contract values used when mapping personnel
    default_employment_form: Optional[str] = Field(
        default=None, alias="FORTNOX_DEFAULT_EMPLOYMENT_FORM"
    )
    default_salary_form: str = Field(default="TIM", alias="FORTNOX_DEFAULT_SALARY_FORM")
    default_personel_type: str = Field(
        default="ARB", alias="FORTNOX_DEFAULT_PERSONEL_TYPE"
    )
    default_schedule_id: Optional[str] = Field(
        default=None, alias="FORTNOX_DEFAULT_SCHEDULE_ID"
    )
    default_fora_type: Optional[str] = Field(
        default=None, alias="FORTNOX_DEFAULT_FORA_TYPE"
    )
    default_tax_allowance: Optional[str] = Field(
        default=None, alias="FORTNOX_DEFAULT_TAX_ALLOWANCE"
    )
    default_tax_column: Optional[int] = Field(
        default=None, alias="FORTNOX_DEFAULT_TAX_COLUMN"
    )
    default_project: Optional[str] = Field(default=None, alias="FORTNOX_DEFAULT_PROJECT")
    default_country: Optional[str] = Field(default=None, alias="FORTNOX_DEFAULT_COUNTRY")

    # Application
    frontend_url: str = Field(default="http://localhost:5173", alias="FRONTEND_URL")
    session_cookie_name: str = Field(
        default="payroll_session", alias="SESSION_COOKIE_NAME"
    )
    session_backend: Literal["memory", "dapr"] = Field(
        default="memory", alias="SESSION_BACKEND"
    )
    session_ttl_seconds: int = Field(default=8 * 3600, alias="SESSION_TTL_SECONDS")
    oauth_state_ttl_seconds: int = Field(default=600, alias="OAUTH_STATE_TTL_SECONDS")
    oauth_state_max_pending: int = Field(
        default=10_000, alias="OAUTH_STATE_MAX_PENDING"
    )
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")

    # Record store (PostgREST / Supabase)
    supabase_url: Optional[str] = Field(default=None, alias="SUPABASE_URL")
    supabase_service_role_key: Optional[str] = Field(
        default=None, alias="SUPABASE_SERVICE_ROLE_KEY"
    )
    supabase_anon_key: Optional[str] = Field(default=None, alias="SUPABASE_ANON_KEY")
    default_organization: str = Field(
        default="test_frening", alias="DEFAULT_ORGANIZATION"
    )
    personnel_table_template: str = Field(
        default="{organization}_personnel", alias="PERSONNEL_TABLE_TEMPLATE"
    )
    compensations_table_template: str = Field(
        default="{organization}_compensations", alias="COMPENSATIONS_TABLE_TEMPLATE"
    )

    # Dapr sidecar
    dapr_http_port: int = Field(default=3500, alias="DAPR_HTTP_PORT")
    dapr_state_store: str = Field(default="statestore", alias="DAPR_STATE_STORE")

    # Bank file
    bank_name: str = Field(default="handelsbanken", alias="BANK_NAME")
    settlement_currency: str = Field(default="SEK", alias="SETTLEMENT_CURRENCY")
    clearing_system_code: str = Field(default="SESBA", alias="CLEARING_SYSTEM_CODE")
    pay_day_of_month: int = Field(default=25, ge=1, le=28, alias="PAY_DAY_OF_MONTH")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True

    @property
    def record_store_key(self) -> Optional[str]:
        return self.supabase_service_role_key or self.supabase_anon_key

    def require_oauth_client(self) -> None:
        """Raise ConfigurationMissing unless client id, secret and redirect URI are set."""
        missing = [
            name
            for name, value in (
                ("FORTNOX_CLIENT_ID", self.fortnox_client_id),
                ("FORTNOX_CLIENT_SECRET", self.fortnox_client_secret),
                ("FORTNOX_REDIRECT_URI", self.fortnox_redirect_uri),
            )
            if not value
        ]
        if missing:
            raise ConfigurationMissing(missing)

    def require_record_store(self) -> None:
        missing = []
        if not self.supabase_url:
            missing.append("SUPABASE_URL")
        if not self.record_store_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")
        if missing:
            raise ConfigurationMissing(missing)

    def table_name(self, kind: str, organization: Optional[str] = None) -> str:
        """Resolve the per-organization table for a record kind."""
        org = organization or self.default_organization
        templates = {
            "personnel": self.personnel_table_template,
            "compensations": self.compensations_table_template,
        }
        if kind not in templates:
            return f"{org}_{kind}"
        return templates[kind].format(organization=org)


config = PayrollExportConfig()
