from decimal import Decimal

from pydantic import BaseModel, Field


class MarginUpdateRequest(BaseModel):
	usd_margin: Decimal = Field(..., ge=0, le=100, description='Margin applied to USD, in percent')
	other_currencies_margin: Decimal = Field(
		..., ge=0, le=100, description='Margin applied to EUR, GBP and CAD, in percent'
	)

	class ConfigDict:
		json_schema_extra = {'example': {'usd_margin': 2.5, 'other_currencies_margin': 3.0}}
