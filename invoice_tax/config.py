"""Settings for the tax engine integration, loaded with pydantic-settings.

Every field can be overridden through an ``INVOICE_TAX_`` prefixed
environment variable, e.g. ``INVOICE_TAX_SKIP_ANOMALOUS_ADJUSTMENTS=true``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from invoice_tax.engine_models import Location


class TaxEngineSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="INVOICE_TAX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Engine connection
    url: Optional[str] = Field(None, description="Base URL of the tax engine")
    client_id: Optional[str] = Field(None, description="OAuth client id")
    client_secret: Optional[str] = Field(None, description="OAuth client secret")
    connect_timeout: float = Field(10.0, description="Connect timeout (seconds)")
    read_timeout: float = Field(60.0, description="Read timeout (seconds)")

    # Seller
    company_name: Optional[str] = None
    company_division: Optional[str] = None
    seller_address1: Optional[str] = None
    seller_address2: Optional[str] = None
    seller_city: Optional[str] = None
    seller_region: Optional[str] = None
    seller_postal_code: Optional[str] = None
    seller_country: Optional[str] = Field(
        None, description="Required for the seller origin address to be sent"
    )

    # Behaviour
    skip_anomalous_adjustments: bool = Field(
        False,
        description="Skip malformed tax batches instead of failing the invoice",
    )

    # Storage and logging
    database_url: str = Field("sqlite:///invoice_tax.db")
    log_level: str = Field("INFO")
    log_json: bool = Field(False)

    def seller_origin(self) -> Optional[Location]:
        if not self.seller_country:
            return None
        return Location(
            street_address1=self.seller_address1,
            street_address2=self.seller_address2,
            city=self.seller_city,
            main_division=self.seller_region,
            postal_code=self.seller_postal_code,
            country=self.seller_country,
        )
