from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import List, Optional, Protocol

import google.generativeai as genai
from google.api_core.exceptions import GoogleAPIError
from pydantic import ValidationError as PydanticValidationError

from maestro_crm.schemas.assistant import (
    KnowledgeSuggestionRequest,
    KnowledgeSuggestions,
    QuoteMessageInput,
    ServiceSummary,
    ServiceSummaryInput,
    ServiceTimePrediction,
    ServiceTimePredictionRequest,
)
from maestro_crm.schemas.knowledge import KnowledgeArticle
from maestro_crm.services.messages import render_quote_message

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)
_WORD = re.compile(r"[a-záéíóúñü0-9]{4,}")

_FALLBACK_MINUTES = {"high": 60, "medium": 90, "low": 120}


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> Optional[str]:
        """Return model output for ``prompt`` or ``None`` when unavailable."""


class GeminiTextGenerator:
    """LLM backed generator that uses Google Gemini models."""

    def __init__(self, *, api_key: Optional[str], model: str = "gemini-1.5-flash") -> None:
        self._api_key = api_key
        self._model = model
        self._configured = False

    def _ensure_configured(self) -> None:
        if self._configured or not self._api_key:
            return
        genai.configure(api_key=self._api_key)
        self._configured = True

    async def generate(self, prompt: str) -> Optional[str]:
        self._ensure_configured()
        if not self._api_key:
            logger.debug("Gemini API key missing - using fallback output")
            return None
        model = genai.GenerativeModel(self._model)
        try:
            response = await asyncio.to_thread(model.generate_content, prompt)
        except (GoogleAPIError, ValueError) as exc:
            logger.exception("Gemini generation failed: %s", exc)
            return None
        text = getattr(response, "text", None)
        if not text:
            logger.warning("Gemini response did not contain text output; falling back")
            return None
        return text.strip()


def _strip_fences(text: str) -> str:
    return _FENCE.sub("", text.strip()).strip()


def _keywords(text: str) -> set[str]:
    return set(_WORD.findall(text.lower()))


class AssistantService:
    """Templated prompts for the text the dashboard asks the model for."""

    def __init__(self, generator: TextGenerator, *, brand_name: str = "MaestroYa CRM") -> None:
        self._generator = generator
        self._brand_name = brand_name

    async def generate_quote_message(self, data: QuoteMessageInput) -> str:
        logger.info("Generating quote message for quote %s", data.quote_id)
        prompt = self._quote_message_prompt(data)
        text = await self._generator.generate(prompt)
        if text:
            return text
        return render_quote_message(data, brand_name=self._brand_name)

    async def predict_service_time(
        self, request: ServiceTimePredictionRequest
    ) -> ServiceTimePrediction:
        prompt = (
            "You are an AI assistant that predicts the service time required for a service request.\n"
            "Consider the following information to predict the service time:\n\n"
            f"Service Type: {request.service_type}\n"
            f"Location: {request.location}\n"
            f"Problem Description: {request.problem_description}\n"
            f"Urgency: {request.urgency}\n"
        )
        if request.historical_data:
            prompt += f"Historical Data: {request.historical_data}\n"
        prompt += (
            "\nBased on this information, predict the service time required and the confidence "
            "level of your prediction. Reply with JSON only, shaped as "
            '{"predictedServiceTime": "<minutes> minutes", "confidenceLevel": "high|medium|low"}.'
        )
        text = await self._generator.generate(prompt)
        if text:
            try:
                return ServiceTimePrediction.model_validate_json(_strip_fences(text))
            except PydanticValidationError:
                logger.warning("Unparseable service time prediction: %s", text)
        minutes = _FALLBACK_MINUTES.get(request.urgency, 90)
        return ServiceTimePrediction(
            predicted_service_time=f"{minutes} minutes",
            confidence_level="low",
        )

    async def suggest_articles(
        self,
        request: KnowledgeSuggestionRequest,
        articles: List[KnowledgeArticle],
        *,
        limit: int = 3,
    ) -> KnowledgeSuggestions:
        catalogue = "\n".join(f"- {article.title}" for article in articles)
        prompt = (
            "You are an expert service technician. Based on the following service request "
            "description, suggest relevant articles from the knowledge base that could help the "
            "technician resolve the issue.\n\n"
            f"Service Request Description: {request.service_request_description}\n\n"
        )
        if catalogue:
            prompt += f"Available articles:\n{catalogue}\n\n"
        prompt += "Reply with a JSON array of article titles or summaries only."
        text = await self._generator.generate(prompt)
        if text:
            try:
                suggestions = json.loads(_strip_fences(text))
            except json.JSONDecodeError:
                logger.warning("Unparseable article suggestions: %s", text)
            else:
                if isinstance(suggestions, list):
                    return KnowledgeSuggestions(
                        suggested_articles=[str(item) for item in suggestions]
                    )
        return KnowledgeSuggestions(
            suggested_articles=self.rank_articles(
                request.service_request_description, articles, limit=limit
            )
        )

    async def summarize_service_request(self, data: ServiceSummaryInput) -> ServiceSummary:
        prompt = (
            "You are an AI assistant that summarizes service requests for a CRM system.\n\n"
            "Given the following details of a service request, create a concise summary that "
            "includes the customer's name, the service type, a brief description of the problem, "
            "and the assigned technician.\n\n"
            f"Customer Name: {data.customer_name}\n"
            f"Service Type: {data.service_type}\n"
            f"Problem Description: {data.problem_description}\n"
            f"Assigned Technician: {data.assigned_technician}\n"
            f"Request Date: {data.request_date}\n"
            f"Priority: {data.priority}\n\n"
            "Summary:"
        )
        text = await self._generator.generate(prompt)
        if text:
            return ServiceSummary(summary=text)
        return ServiceSummary(
            summary=(
                f"{data.customer_name} solicitó un servicio de {data.service_type} "
                f"({data.priority}) el {data.request_date}: {data.problem_description} "
                f"Técnico asignado: {data.assigned_technician}."
            )
        )

    def _quote_message_prompt(self, data: QuoteMessageInput) -> str:
        template = render_quote_message(data, brand_name=self._brand_name)
        return (
            f'You are an expert assistant for a technical services company called "{self._brand_name}". '
            "Your task is to generate a clear, friendly, and professional message for a customer "
            "based on a service quote.\n\n"
            "The message MUST be in Spanish and formatted for easy readability on WhatsApp, using "
            "markdown for bolding and italics.\n\n"
            "Here is the template to follow exactly, already filled with the quote data:\n\n"
            f"{template}\n\n"
            "Return only the final message."
        )

    @staticmethod
    def rank_articles(
        description: str, articles: List[KnowledgeArticle], *, limit: int = 3
    ) -> List[str]:
        wanted = _keywords(description)
        scored = []
        for article in articles:
            score = len(wanted & _keywords(f"{article.title} {article.content}"))
            if score:
                scored.append((score, article.title))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [title for _, title in scored[:limit]]
