"""
Pydantic schemas for the classification provider's JSON payload.

Field aliases follow the camelCase keys the prompt asks the model to emit;
snake_case names are accepted too.
"""
from decimal import Decimal
from typing import Optional, List, Any
from pydantic import BaseModel, Field, ConfigDict, field_validator


class LotClassificationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    categories: List[str] = Field(default_factory=list)
    suggested_category: Optional[str] = Field(None, alias="suggestedCategory")
    title: Optional[str] = None
    market_value_min: Optional[Decimal] = Field(None, alias="marketValueMin")
    market_value_max: Optional[Decimal] = Field(None, alias="marketValueMax")
    price_confidence: Optional[str] = Field(None, alias="priceConfidence")
    investment_summary: Optional[str] = Field(None, alias="investmentSummary")
    is_shared_ownership: bool = Field(False, alias="isSharedOwnership")
    property_region_code: Optional[str] = Field(None, alias="propertyRegionCode")
    property_region_name: Optional[str] = Field(None, alias="propertyRegionName")
    property_full_address: Optional[str] = Field(None, alias="propertyFullAddress")

    @field_validator("categories", mode="before")
    @classmethod
    def _coerce_categories(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, list):
            # non-string entries are dropped
            return [v for v in value if isinstance(v, str)]
        return value

    @field_validator("property_region_code", mode="before")
    @classmethod
    def _coerce_region_code(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("market_value_min", "market_value_max", mode="before")
    @classmethod
    def _blank_money(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("is_shared_ownership", mode="before")
    @classmethod
    def _null_flag(cls, value: Any) -> Any:
        return False if value is None else value
