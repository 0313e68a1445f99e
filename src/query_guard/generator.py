"""
SQL Generator Adapter
=====================

Wraps a single call to the text-generation oracle behind a strict
request/response contract. Retries belong to the controllers.
"""

import json
import re
from datetime import datetime
from typing import Any, Optional

from query_guard.dates import detect_date_phrase, resolve_date_range
from query_guard.errors import GenerationFailed
from query_guard.llm.base import LLMInterface
from query_guard.models import GenerationAttempt, QueryRequest
from query_guard.observability.logging_config import get_logger
from query_guard.schema_context import SchemaContext

logger = get_logger(__name__)

PERCENTAGE = re.compile(r"percent|porcentaje|%|\bratio\b|\bshare\b")
DIVISION = re.compile(r"\bper\b|\bpor cada\b|\bdivid")
SQL_DIVISION = re.compile(r"[\w)\"]\s*/\s*[\w(\"]")
AVERAGE = re.compile(r"\baverage\b|\bavg\b|\bpromedio\b|\bmean\b")

REQUIRED_FIELDS = ("sql", "explanation", "confidence", "tables", "isReadOnly")


def apply_confidence_caps(question: str, sql: str, confidence: float) -> float:
    """Cap self-reported confidence for calculations the oracle often gets wrong."""
    text = question.lower()
    if PERCENTAGE.search(text):
        confidence = min(confidence, 0.7)
    if DIVISION.search(text) or SQL_DIVISION.search(sql):
        confidence = min(confidence, 0.8)
    if AVERAGE.search(text) or "avg(" in sql.lower():
        confidence = min(confidence, 0.75)
    return confidence


class SQLGenerator:
    """Builds prompts, calls the oracle once, and enforces the response contract."""

    SYSTEM_PROMPT = """You are a SQL generator for a multi-tenant restaurant analytics store.

Rules:
- Generate exactly one read-only SELECT statement. Never write, alter or delete data.
- Double-quote every table and column identifier.
- Filter on "{tenant_column}" = '<tenant id>' exactly once, with the tenant id given below.
- Never use OR to combine tenant filters, and never query system catalogs.
- Use aggregation functions (COUNT, SUM, AVG) when quantities are requested.
- Add ORDER BY and LIMIT when ranking or "top N" is requested.

Respond with a JSON object only:
{{"sql": "...", "explanation": "...", "confidence": 0.0-1.0, "tables": ["..."], "isReadOnly": true}}"""

    CORRECTION_TEMPLATE = """The previous SQL query failed.

Previous SQL: {previous_sql}
Error: {error_message}

Generate a corrected query that fixes this issue."""

    def __init__(
        self,
        llm: LLMInterface,
        schema: SchemaContext | None = None,
        timezone: str = "UTC",
    ) -> None:
        self.llm = llm
        self.schema = schema or SchemaContext()
        self.timezone = timezone

    def build_prompt(
        self,
        question: str,
        tenant_id: str,
        error_context: Optional[str] = None,
        previous_sql: Optional[str] = None,
        learned_template: Optional[str] = None,
        framing: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Assemble the generation prompt for one attempt."""
        sections = [
            self.schema.render(),
            f"Tenant id: '{tenant_id}'",
        ]

        phrase = detect_date_phrase(question)
        if phrase is not None:
            window = resolve_date_range(phrase, now=now, tz=self.timezone)
            start, end = window.sql_bounds()
            sections.append(
                f"Date window for '{phrase.value}': \"createdAt\" >= '{start}' "
                f"AND \"createdAt\" <= '{end}' (use these exact boundaries)"
            )

        if learned_template:
            sections.append(f"A similar question was answered before with (advisory only):\n{learned_template}")
        if framing:
            sections.append(framing)

        sections.append(f"Question: {question}")

        if error_context:
            sections.append(
                self.CORRECTION_TEMPLATE.format(
                    previous_sql=previous_sql or "(none)",
                    error_message=error_context,
                )
            )

        return "\n\n".join(sections)

    def _extract_json(self, content: str) -> dict[str, Any]:
        """Extract the JSON payload, handling markdown code blocks."""
        text = content.strip()
        if text.startswith("```"):
            lines = text.split("\n")
            # Remove first and last lines (code block markers)
            text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise GenerationFailed("Generator response did not contain a JSON object")
        try:
            payload = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise GenerationFailed(f"Generator response was not valid JSON: {e.msg}") from e
        if not isinstance(payload, dict):
            raise GenerationFailed("Generator response must be a JSON object")
        return payload

    def _extract_sql(self, sql: str) -> str:
        sql = sql.strip()
        if sql.startswith("```"):
            lines = sql.split("\n")
            sql = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
        sql = sql.strip()
        if sql.endswith(";"):
            sql = sql[:-1].rstrip()
        return sql

    def parse_response(self, content: str, attempt_number: int, question: str = "") -> GenerationAttempt:
        """
        Validate a raw oracle response against the generation contract.

        Raises:
            GenerationFailed: On malformed payloads and on non read-only candidates
        """
        payload = self._extract_json(content)

        missing = [f for f in REQUIRED_FIELDS if f not in payload]
        if missing:
            raise GenerationFailed(f"Generator response missing fields: {', '.join(missing)}")

        if payload["isReadOnly"] is not True:
            raise GenerationFailed(
                "Generator produced a statement that is not read-only",
                details={"isReadOnly": payload["isReadOnly"]},
            )

        sql = payload["sql"]
        if not isinstance(sql, str) or not sql.strip():
            raise GenerationFailed("Generator returned an empty SQL statement")
        sql = self._extract_sql(sql)

        confidence = payload["confidence"]
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise GenerationFailed("Generator confidence must be a number")
        if not 0.0 <= float(confidence) <= 1.0:
            raise GenerationFailed(f"Generator confidence out of range: {confidence}")

        tables = payload["tables"]
        if not isinstance(tables, list) or not all(isinstance(t, str) for t in tables):
            raise GenerationFailed("Generator tables must be a list of names")

        return GenerationAttempt(
            attempt_number=attempt_number,
            sql=sql,
            explanation=str(payload["explanation"]),
            confidence=apply_confidence_caps(question, sql, float(confidence)),
            tables=tables,
            is_read_only=True,
        )

    async def generate(
        self,
        request: QueryRequest,
        attempt_number: int,
        error_context: Optional[str] = None,
        previous_sql: Optional[str] = None,
        framing: Optional[str] = None,
        learned_template: Optional[str] = None,
    ) -> GenerationAttempt:
        """
        Produce one candidate for a request.

        Raises:
            GenerationFailed: If the oracle errors or breaks the response contract
        """
        prompt = self.build_prompt(
            request.question,
            request.tenant_id,
            error_context=error_context,
            previous_sql=previous_sql,
            learned_template=learned_template,
            framing=framing,
        )
        system_prompt = self.SYSTEM_PROMPT.format(tenant_column=self.schema.tenant_column)

        try:
            response = await self.llm.generate(prompt, system_prompt=system_prompt)
        except Exception as e:
            logger.warning("generator_call_failed", attempt=attempt_number, error=str(e))
            raise GenerationFailed(f"Generator call failed: {e}") from e

        attempt = self.parse_response(response.content, attempt_number, request.question)
        attempt.error_context = error_context
        logger.debug(
            "candidate_generated",
            attempt=attempt_number,
            model=response.model,
            confidence=attempt.confidence,
            tables=attempt.tables,
        )
        return attempt
