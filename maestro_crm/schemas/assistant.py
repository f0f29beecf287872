from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from maestro_crm.schemas.common import CamelModel


class ServiceTimePredictionRequest(CamelModel):
    service_type: str
    location: str
    problem_description: str
    urgency: str = "medium"
    historical_data: Optional[str] = None


class ServiceTimePrediction(CamelModel):
    predicted_service_time: str = Field(
        ..., description='Predicted service time in minutes, e.g. "60 minutes"'
    )
    confidence_level: str = Field(
        ..., description='How confident the prediction is: "high", "medium" or "low"'
    )


class KnowledgeSuggestionRequest(CamelModel):
    service_request_description: str


class KnowledgeSuggestions(CamelModel):
    suggested_articles: List[str] = Field(default_factory=list)


class ServiceSummaryInput(CamelModel):
    customer_name: str
    service_type: str
    problem_description: str
    assigned_technician: str
    request_date: str
    priority: str


class ServiceSummary(CamelModel):
    summary: str


class QuoteMessageInput(CamelModel):
    """Fully populated record handed to the quote message generator."""

    customer_name: str
    service_request_id: str
    service_address: str
    service_type: str
    urgency: str
    problem_description: str
    quote_id: str
    items: List[dict]
    subtotal: float
    vat_amount: float
    vat_percentage: float
    total_amount: float
    valid_until: str
    technician_name: str
